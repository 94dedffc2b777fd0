from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..contracts.v1 import PendingQuestion
from ..util.time import utc_now_iso
from .errors import DeadlineExceeded, NotFoundError
from .sessions import normalize_session_id
from .store import Store

logger = logging.getLogger("ccbridge.questions")


def _row_to_question(row: Dict[str, Any]) -> PendingQuestion:
    data = dict(row)
    try:
        choices = json.loads(data.get("choices") or "[]")
    except Exception:
        choices = []
    data["choices"] = [str(c) for c in choices] if isinstance(choices, list) else []
    return PendingQuestion.model_validate(data)


class QuestionAnswerChannel:
    """Single-slot question mailbox per session."""

    def __init__(
        self,
        store: Store,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self._sleep = sleep
        self._clock = clock

    def ask(self, session_id: str, text: str, choices: Optional[Sequence[str]] = None) -> str:
        """Replace any earlier question of the session with this one."""
        sid = normalize_session_id(session_id)
        qid = str(uuid.uuid4())
        payload = json.dumps([str(c) for c in (choices or [])], ensure_ascii=False)
        with self.store.transaction() as conn:
            if conn.execute("SELECT 1 FROM sessions WHERE id = ?", (sid,)).fetchone() is None:
                raise NotFoundError(f"session not found: {sid}")
            conn.execute(
                "INSERT OR REPLACE INTO pending_questions (id, session_id, text, choices, asked_at, answered)"
                " VALUES (?, ?, ?, ?, ?, 0)",
                (qid, sid, text, payload, utc_now_iso()),
            )
        logger.info("question asked by %s", sid, extra={"session_id": sid})
        return qid

    def pending(self, session_id: str) -> Optional[PendingQuestion]:
        row = self.store.query_one(
            "SELECT * FROM pending_questions WHERE session_id = ? AND answered = 0",
            (normalize_session_id(session_id),),
        )
        return _row_to_question(row) if row else None

    def answer(self, session_id: str, text: str) -> bool:
        cur = self.store.execute(
            "UPDATE pending_questions SET answered = 1, answer = ?, answered_at = ?"
            " WHERE session_id = ? AND answered = 0",
            (text, utc_now_iso(), normalize_session_id(session_id)),
        )
        return cur.rowcount > 0

    def take_answer(self, session_id: str) -> Optional[str]:
        """Return the answer and delete the question, or None if unanswered."""
        sid = normalize_session_id(session_id)
        with self.store.transaction() as conn:
            row = conn.execute(
                "SELECT id, answer FROM pending_questions WHERE session_id = ? AND answered = 1", (sid,)
            ).fetchone()
            if row is None:
                return None
            conn.execute("DELETE FROM pending_questions WHERE id = ?", (row["id"],))
        return str(row["answer"] or "")

    def take_answer_or_clear(self, session_id: str) -> Optional[str]:
        """Grab a last-moment answer if any; the question is gone afterwards either way."""
        sid = normalize_session_id(session_id)
        with self.store.transaction() as conn:
            row = conn.execute(
                "SELECT answer FROM pending_questions WHERE session_id = ? AND answered = 1", (sid,)
            ).fetchone()
            conn.execute("DELETE FROM pending_questions WHERE session_id = ?", (sid,))
        return None if row is None else str(row["answer"] or "")

    def clear_pending(self, session_id: str) -> None:
        self.store.execute("DELETE FROM pending_questions WHERE session_id = ?", (normalize_session_id(session_id),))

    def wait_for_answer(self, session_id: str, *, timeout: float, poll_interval: float = 1.0) -> str:
        deadline = self._clock() + max(0.0, timeout)
        while self._clock() < deadline:
            answer = self.take_answer(session_id)
            if answer is not None:
                return answer
            self._sleep(min(poll_interval, max(0.0, deadline - self._clock())))
        late = self.take_answer_or_clear(session_id)
        if late is not None:
            return late
        raise DeadlineExceeded(f"no answer within {timeout:g}s")

    def list_pending(self) -> List[PendingQuestion]:
        rows = self.store.query_all("SELECT * FROM pending_questions WHERE answered = 0 ORDER BY asked_at")
        return [_row_to_question(r) for r in rows]
