from __future__ import annotations

import logging
import uuid
from typing import List, Optional

from ..contracts.v1 import Instruction
from ..util.time import utc_now_iso
from .errors import NotFoundError
from .sessions import normalize_session_id
from .store import Store

logger = logging.getLogger("ccbridge.instructions")

_PENDING_SQL = "SELECT * FROM instructions WHERE session_id = ? AND acknowledged = 0 ORDER BY seq"


class InstructionQueue:
    """Per-session FIFO of operator instructions, delivered at most once."""

    def __init__(self, store: Store):
        self.store = store

    def enqueue(
        self,
        session_id: str,
        text: str,
        source_ref: Optional[int] = None,
        queued_ack_ref: Optional[int] = None,
    ) -> str:
        sid = normalize_session_id(session_id)
        iid = str(uuid.uuid4())
        with self.store.transaction() as conn:
            if conn.execute("SELECT 1 FROM sessions WHERE id = ?", (sid,)).fetchone() is None:
                raise NotFoundError(f"session not found: {sid}")
            conn.execute(
                "INSERT INTO instructions (id, session_id, text, source_message_ref, queued_ack_ref, received_at, acknowledged)"
                " VALUES (?, ?, ?, ?, ?, ?, 0)",
                (iid, sid, text, source_ref, queued_ack_ref, utc_now_iso()),
            )
        logger.info("queued instruction for %s", sid, extra={"session_id": sid, "instruction_id": iid})
        return iid

    def set_queued_ack(self, instruction_id: str, ref: Optional[int]) -> None:
        if ref is None:
            return
        self.store.execute("UPDATE instructions SET queued_ack_ref = ? WHERE id = ?", (int(ref), instruction_id))

    def pending_for(self, session_id: str) -> List[Instruction]:
        rows = self.store.query_all(_PENDING_SQL, (normalize_session_id(session_id),))
        return [Instruction.model_validate(r) for r in rows]

    def acknowledge_all(self, session_id: str) -> int:
        cur = self.store.execute(
            "UPDATE instructions SET acknowledged = 1 WHERE session_id = ? AND acknowledged = 0",
            (normalize_session_id(session_id),),
        )
        return cur.rowcount

    def take_pending(self, session_id: str) -> List[Instruction]:
        """Read and acknowledge in one write transaction.

        Two hook invocations racing on the same session cannot both receive
        the same instruction.
        """
        sid = normalize_session_id(session_id)
        with self.store.transaction() as conn:
            rows = [dict(r) for r in conn.execute(_PENDING_SQL, (sid,)).fetchall()]
            if rows:
                last_seq = rows[-1]["seq"]
                conn.execute(
                    "UPDATE instructions SET acknowledged = 1 WHERE session_id = ? AND acknowledged = 0 AND seq <= ?",
                    (sid, last_seq),
                )
        return [Instruction.model_validate(r) for r in rows]
