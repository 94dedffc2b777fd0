from __future__ import annotations

from .approval import MAX_OPTIONS, MIN_OPTIONS, Approval, ApprovalOption, ApprovalResult, ApprovalStatus
from .chat import CALLBACK_DATA_MAX_BYTES, ChatChoice, ChatUpdate, encode_callback, layout_rows, parse_callback
from .hook import HookInput, HookOutput
from .session import (
    ABORT_SENTINEL,
    SESSION_ID_ALPHABET,
    SESSION_ID_LENGTH,
    Instruction,
    PendingQuestion,
    Session,
    SessionStatus,
)

__all__ = [
    "ABORT_SENTINEL",
    "Approval",
    "ApprovalOption",
    "ApprovalResult",
    "ApprovalStatus",
    "CALLBACK_DATA_MAX_BYTES",
    "ChatChoice",
    "ChatUpdate",
    "HookInput",
    "HookOutput",
    "Instruction",
    "MAX_OPTIONS",
    "MIN_OPTIONS",
    "PendingQuestion",
    "SESSION_ID_ALPHABET",
    "SESSION_ID_LENGTH",
    "Session",
    "SessionStatus",
    "encode_callback",
    "layout_rows",
    "parse_callback",
]
