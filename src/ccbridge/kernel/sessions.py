from __future__ import annotations

import logging
import secrets
import time
import uuid
from typing import Callable, List, Optional

from ..contracts.v1 import ABORT_SENTINEL, SESSION_ID_ALPHABET, SESSION_ID_LENGTH, Session
from ..util.fs import pid_alive
from ..util.time import utc_iso, utc_now_iso
from .store import CONFIG_DEFAULT_SESSION, Store

logger = logging.getLogger("ccbridge.sessions")


def generate_session_id() -> str:
    return "".join(secrets.choice(SESSION_ID_ALPHABET) for _ in range(SESSION_ID_LENGTH))


def normalize_session_id(raw: str) -> str:
    return (raw or "").strip().upper()


def is_session_code(raw: str) -> bool:
    code = raw or ""
    return len(code) == SESSION_ID_LENGTH and all(c in SESSION_ID_ALPHABET for c in code)


class SessionRegistry:
    """Session lifecycle, default-session selection and liveness cleanup."""

    def __init__(
        self,
        store: Store,
        *,
        id_factory: Callable[[], str] = generate_session_id,
        probe: Callable[[int], bool] = pid_alive,
    ):
        self.store = store
        self._id_factory = id_factory
        self._probe = probe

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, session_id: str) -> Optional[Session]:
        row = self.store.query_one("SELECT * FROM sessions WHERE id = ?", (normalize_session_id(session_id),))
        return Session.model_validate(row) if row else None

    def exists(self, session_id: str) -> bool:
        return self.get(session_id) is not None

    def list_active(self) -> List[Session]:
        rows = self.store.query_all("SELECT * FROM sessions WHERE status = 'active' ORDER BY created_at, id")
        return [Session.model_validate(r) for r in rows]

    def find_by_process(self, pid: int) -> Optional[Session]:
        if pid <= 0:
            return None
        row = self.store.query_one(
            "SELECT * FROM sessions WHERE owning_process_id = ? AND status IN ('active', 'aborted')"
            " ORDER BY created_at DESC LIMIT 1",
            (int(pid),),
        )
        return Session.model_validate(row) if row else None

    def get_default(self) -> Optional[str]:
        value = normalize_session_id(self.store.get_config(CONFIG_DEFAULT_SESSION) or "")
        return value or None

    def default_session(self) -> Optional[Session]:
        sid = self.get_default()
        return self.get(sid) if sid else None

    def resolve(self, explicit: str = "", parent_pid: int = 0) -> Optional[Session]:
        """Pick the session a hook invocation belongs to.

        Explicit code first, then the session owned by the caller's parent
        process (an aborted one included, so it still receives its stop
        instruction), then the default session.
        """
        code = normalize_session_id(explicit)
        if code:
            found = self.get(code)
            if found is not None:
                return found
        by_pid = self.find_by_process(parent_pid)
        if by_pid is not None:
            return by_pid
        return self.default_session()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def register(self, description: str, owning_process_id: int = 0) -> str:
        now = utc_now_iso()
        with self.store.transaction() as conn:
            while True:
                sid = self._id_factory()
                row = conn.execute("SELECT status FROM sessions WHERE id = ?", (sid,)).fetchone()
                if row is None:
                    break
                if row["status"] != "active" and not self._has_undelivered(sid):
                    # Retired code: reuse it, dropping whatever the old session left behind.
                    self._purge(sid)
                    break
            conn.execute(
                "INSERT INTO sessions (id, description, owning_process_id, status, created_at, last_activity)"
                " VALUES (?, ?, ?, 'active', ?, ?)",
                (sid, (description or "").strip(), int(owning_process_id or 0), now, now),
            )
            current = self.get_default()
            if not current or conn.execute("SELECT 1 FROM sessions WHERE id = ?", (current,)).fetchone() is None:
                self.store.set_config(CONFIG_DEFAULT_SESSION, sid)
        logger.info("registered session %s", sid, extra={"session_id": sid})
        return sid

    def unregister(self, session_id: str) -> bool:
        sid = normalize_session_id(session_id)
        with self.store.transaction():
            removed = self._purge(sid)
            self._repair_default()
        if removed:
            logger.info("unregistered session %s", sid, extra={"session_id": sid})
        return removed

    def set_default(self, session_id: str) -> bool:
        sid = normalize_session_id(session_id)
        with self.store.transaction():
            if not self.exists(sid):
                return False
            self.store.set_config(CONFIG_DEFAULT_SESSION, sid)
        return True

    def abort(self, session_id: str) -> bool:
        """Mark aborted and queue the stop sentinel for the session's own hook."""
        sid = normalize_session_id(session_id)
        with self.store.transaction() as conn:
            cur = conn.execute("UPDATE sessions SET status = 'aborted' WHERE id = ?", (sid,))
            if cur.rowcount == 0:
                return False
            conn.execute(
                "INSERT INTO instructions (id, session_id, text, received_at, acknowledged) VALUES (?, ?, ?, ?, 0)",
                (str(uuid.uuid4()), sid, ABORT_SENTINEL, utc_now_iso()),
            )
        logger.info("abort requested for session %s", sid, extra={"session_id": sid})
        return True

    def touch(self, session_id: str) -> None:
        self.store.execute(
            "UPDATE sessions SET last_activity = ? WHERE id = ?",
            (utc_now_iso(), normalize_session_id(session_id)),
        )

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def cleanup_stale(self, max_age_seconds: float, *, now: Optional[float] = None) -> int:
        cutoff = utc_iso((time.time() if now is None else now) - max_age_seconds)
        with self.store.transaction() as conn:
            cur = conn.execute("DELETE FROM sessions WHERE created_at < ?", (cutoff,))
            removed = cur.rowcount
            self._purge_orphans()
            self._repair_default()
        if removed:
            logger.info("removed %d stale sessions", removed)
        return removed

    def cleanup_dead(self) -> List[str]:
        candidates = self.store.query_all(
            "SELECT id, owning_process_id FROM sessions WHERE owning_process_id > 0"
        )
        dead = [str(r["id"]) for r in candidates if not self._probe(int(r["owning_process_id"]))]
        if not dead:
            return []
        removed: List[str] = []
        with self.store.transaction():
            for sid in dead:
                if self._purge(sid):
                    removed.append(sid)
            self._repair_default()
        if removed:
            logger.info("removed dead sessions: %s", ", ".join(removed))
        return removed

    # ------------------------------------------------------------------
    # Internals (callers hold the transaction)
    # ------------------------------------------------------------------

    def _purge(self, sid: str) -> bool:
        cur = self.store.execute("DELETE FROM sessions WHERE id = ?", (sid,))
        self.store.execute("DELETE FROM instructions WHERE session_id = ?", (sid,))
        self.store.execute("DELETE FROM pending_questions WHERE session_id = ?", (sid,))
        return cur.rowcount > 0

    def _has_undelivered(self, sid: str) -> bool:
        return (
            self.store.query_one("SELECT 1 AS ok FROM instructions WHERE session_id = ? AND acknowledged = 0", (sid,))
            is not None
        )

    def _purge_orphans(self) -> None:
        self.store.execute("DELETE FROM instructions WHERE session_id NOT IN (SELECT id FROM sessions)")
        self.store.execute("DELETE FROM pending_questions WHERE session_id NOT IN (SELECT id FROM sessions)")

    def _repair_default(self) -> None:
        current = self.get_default()
        if current and self.store.query_one(
            "SELECT 1 AS ok FROM sessions WHERE id = ? AND status = 'active'", (current,)
        ):
            return
        nxt = self.store.query_one("SELECT id FROM sessions WHERE status = 'active' ORDER BY created_at, id LIMIT 1")
        if nxt is not None:
            self.store.set_config(CONFIG_DEFAULT_SESSION, str(nxt["id"]))
        elif current:
            self.store.delete_config(CONFIG_DEFAULT_SESSION)
