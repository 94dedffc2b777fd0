"""Interactive approvals with timeout and exactly-once resolution.

Every status transition is one conditional UPDATE on `status = 'pending'`,
so a late button press cannot override an expiry and a duplicate press
cannot resolve twice.
"""
from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from ..contracts.v1 import (
    CALLBACK_DATA_MAX_BYTES,
    MAX_OPTIONS,
    MIN_OPTIONS,
    Approval,
    ApprovalOption,
    ApprovalResult,
    ChatChoice,
    encode_callback,
    layout_rows,
)
from ..util.time import utc_iso, utc_now_iso
from .errors import AlreadyResolvedError, NotFoundError
from .store import Store

logger = logging.getLogger("ccbridge.approvals")

CALLBACK_ACTION = "approval"

SendFn = Callable[[Approval], Optional[int]]
EditFn = Callable[[int, str], Any]
OptionLike = Union[ApprovalOption, Dict[str, Any]]


def _row_to_approval(row: Dict[str, Any]) -> Approval:
    data = dict(row)
    try:
        options = json.loads(data.get("options") or "[]")
    except Exception:
        options = []
    data["options"] = options if isinstance(options, list) else []
    return Approval.model_validate(data)


def _coerce_options(options: Sequence[OptionLike]) -> List[ApprovalOption]:
    out: List[ApprovalOption] = []
    for opt in options:
        out.append(opt if isinstance(opt, ApprovalOption) else ApprovalOption.model_validate(opt))
    return out


class ApprovalManager:
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

    def create(self, category: str, title: str, message: str, options: Sequence[OptionLike]) -> str:
        opts = _coerce_options(options)
        if not (MIN_OPTIONS <= len(opts) <= MAX_OPTIONS):
            raise ValueError(f"approval needs {MIN_OPTIONS}-{MAX_OPTIONS} options, got {len(opts)}")
        aid = uuid.uuid4().hex[:8]
        for opt in opts:
            if not opt.label.strip() or not opt.value:
                raise ValueError("approval options need a label and a value")
            if len(encode_callback(CALLBACK_ACTION, aid, opt.value).encode("utf-8")) > CALLBACK_DATA_MAX_BYTES:
                raise ValueError(f"option value too long for a button payload: {opt.value!r}")
        self.store.execute(
            "INSERT INTO approvals (id, category, title, message, options, status, created_at)"
            " VALUES (?, ?, ?, ?, ?, 'pending', ?)",
            (
                aid,
                (category or "general").strip() or "general",
                title,
                message,
                json.dumps([o.model_dump() for o in opts], ensure_ascii=False),
                utc_now_iso(),
            ),
        )
        logger.info("created approval %s", aid, extra={"approval_id": aid})
        return aid

    def get(self, approval_id: str) -> Optional[Approval]:
        row = self.store.query_one("SELECT * FROM approvals WHERE id = ?", (approval_id,))
        return _row_to_approval(row) if row else None

    def status(self, approval_id: str) -> Optional[str]:
        row = self.store.query_one("SELECT status FROM approvals WHERE id = ?", (approval_id,))
        return str(row["status"]) if row else None

    def set_channel_message(self, approval_id: str, ref: int) -> None:
        self.store.execute("UPDATE approvals SET channel_message_ref = ? WHERE id = ?", (int(ref), approval_id))

    def list_pending(self) -> List[Approval]:
        rows = self.store.query_all("SELECT * FROM approvals WHERE status = 'pending' ORDER BY created_at DESC")
        return [_row_to_approval(r) for r in rows]

    def respond(self, approval_id: str, value: str, *, strict: bool = False) -> bool:
        """Resolve a pending approval; False (or an error when strict) if it was not pending."""
        cur = self.store.execute(
            "UPDATE approvals SET status = 'responded', response_value = ?, responded_at = ?"
            " WHERE id = ? AND status = 'pending'",
            (value, utc_now_iso(), approval_id),
        )
        if cur.rowcount > 0:
            logger.info("approval %s answered", approval_id, extra={"approval_id": approval_id})
            return True
        if strict:
            current = self.status(approval_id)
            if current is None:
                raise NotFoundError(f"approval not found: {approval_id}")
            raise AlreadyResolvedError(f"approval {approval_id} is already {current}")
        return False

    def expire(self, approval_id: str) -> bool:
        cur = self.store.execute(
            "UPDATE approvals SET status = 'expired' WHERE id = ? AND status = 'pending'", (approval_id,)
        )
        return cur.rowcount > 0

    def _result_for(self, approval: Approval) -> ApprovalResult:
        value = approval.response_value
        return ApprovalResult(approved=approval.is_affirmative(value), value=value)

    def send_and_await(
        self,
        approval_id: str,
        send_fn: SendFn,
        timeout: float,
        *,
        edit_fn: Optional[EditFn] = None,
        poll_interval: float = 1.0,
    ) -> ApprovalResult:
        approval = self.get(approval_id)
        if approval is None:
            raise NotFoundError(f"approval not found: {approval_id}")

        try:
            ref = send_fn(approval)
        except Exception as e:
            logger.warning("approval prompt delivery failed: %s", e, extra={"approval_id": approval_id})
            ref = None
        if ref is None:
            self.expire(approval_id)
            return ApprovalResult(approved=False, error="failed to deliver approval prompt")
        self.set_channel_message(approval_id, ref)

        deadline = self._clock() + max(0.0, timeout)
        while self._clock() < deadline:
            self._sleep(min(poll_interval, max(0.0, deadline - self._clock())))
            current = self.get(approval_id)
            if current is None:
                return ApprovalResult(approved=False, error="approval disappeared")
            if current.status == "responded":
                return self._result_for(current)
            if current.status == "expired":
                return ApprovalResult(approved=False, timed_out=True)

        if not self.expire(approval_id):
            # Lost the race to a last-moment response (or another expiry).
            current = self.get(approval_id)
            if current is not None and current.status == "responded":
                return self._result_for(current)
            return ApprovalResult(approved=False, timed_out=True)

        logger.info("approval %s expired", approval_id, extra={"approval_id": approval_id})
        if edit_fn is not None:
            try:
                edit_fn(ref, format_expired(approval))
            except Exception as e:
                logger.warning("could not mark prompt expired: %s", e, extra={"approval_id": approval_id})
        return ApprovalResult(approved=False, timed_out=True)

    def prune(self, retention_seconds: float, *, now: Optional[float] = None) -> int:
        """Expire abandoned pending approvals and drop resolved ones past retention."""
        cutoff = utc_iso((time.time() if now is None else now) - retention_seconds)
        with self.store.transaction() as conn:
            conn.execute("UPDATE approvals SET status = 'expired' WHERE status = 'pending' AND created_at < ?", (cutoff,))
            cur = conn.execute("DELETE FROM approvals WHERE status != 'pending' AND created_at < ?", (cutoff,))
        if cur.rowcount:
            logger.info("pruned %d old approvals", cur.rowcount)
        return cur.rowcount


# ----------------------------------------------------------------------
# Rendering
# ----------------------------------------------------------------------


def build_keyboard(approval: Approval) -> List[List[ChatChoice]]:
    choices = [
        ChatChoice(label=o.label, data=encode_callback(CALLBACK_ACTION, approval.id, o.value)) for o in approval.options
    ]
    return layout_rows(choices, per_row=2)


def format_prompt(approval: Approval, timeout: float) -> str:
    return f"*{approval.title}*\n\n{approval.message}\n\n_Expires in {int(round(timeout))}s_"


def format_outcome(approval: Approval, value: str) -> str:
    if approval.is_affirmative(value):
        icon, verdict = "✅", "APPROVED"
    else:
        icon, verdict = "❌", approval.option_label(value) if len(approval.options) > 2 else "DENIED"
    return f"{icon} *{approval.title}* - {verdict}\n\n{approval.message}"


def format_expired(approval: Approval) -> str:
    return f"⏰ *{approval.title}* - EXPIRED\n\n{approval.message}\n\n_Expired - no response received_"


def format_already_handled() -> str:
    return "⚠️ *Request Expired*\n\nThis request has already been handled or expired."
