from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ...util.time import utc_now_iso


SessionStatus = Literal["active", "aborted"]

# Restricted alphabet for session codes: no 0/O/1/I.
SESSION_ID_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
SESSION_ID_LENGTH = 3

# Reserved instruction text: the session's own hook treats it as a stop signal.
ABORT_SENTINEL = "ABORT_REQUESTED"


class Session(BaseModel):
    id: str
    description: str = ""
    owning_process_id: int = 0
    status: SessionStatus = "active"
    created_at: str = Field(default_factory=utc_now_iso)
    last_activity: str = Field(default_factory=utc_now_iso)

    model_config = ConfigDict(extra="ignore")

    @field_validator("owning_process_id", mode="before")
    @classmethod
    def _pid_or_zero(cls, v: object) -> int:
        try:
            return int(v or 0)  # type: ignore[arg-type]
        except Exception:
            return 0


class Instruction(BaseModel):
    id: str
    session_id: str
    text: str
    source_message_ref: Optional[int] = None
    queued_ack_ref: Optional[int] = None
    received_at: str = Field(default_factory=utc_now_iso)
    acknowledged: bool = False

    model_config = ConfigDict(extra="ignore")

    @property
    def is_abort(self) -> bool:
        return self.text == ABORT_SENTINEL


class PendingQuestion(BaseModel):
    id: str
    session_id: str
    text: str
    choices: List[str] = Field(default_factory=list)
    asked_at: str = Field(default_factory=utc_now_iso)
    answered: bool = False
    answer: Optional[str] = None
    answered_at: Optional[str] = None

    model_config = ConfigDict(extra="ignore")
