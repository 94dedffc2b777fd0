from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ...util.time import utc_now_iso


ApprovalStatus = Literal["pending", "responded", "expired"]

MIN_OPTIONS = 2
MAX_OPTIONS = 4


class ApprovalOption(BaseModel):
    label: str
    value: str

    model_config = ConfigDict(extra="forbid")


class Approval(BaseModel):
    id: str
    category: str = "general"
    title: str
    message: str
    # Order defines button layout; the first option is the affirmative one.
    options: List[ApprovalOption] = Field(default_factory=list)
    status: ApprovalStatus = "pending"
    response_value: Optional[str] = None
    channel_message_ref: Optional[int] = None
    created_at: str = Field(default_factory=utc_now_iso)
    responded_at: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

    def option_label(self, value: str) -> str:
        for opt in self.options:
            if opt.value == value:
                return opt.label
        return value

    def is_affirmative(self, value: Optional[str]) -> bool:
        return bool(self.options) and value is not None and value == self.options[0].value


class ApprovalResult(BaseModel):
    approved: bool = False
    value: Optional[str] = None
    timed_out: bool = False
    error: Optional[str] = None

    model_config = ConfigDict(extra="forbid")
