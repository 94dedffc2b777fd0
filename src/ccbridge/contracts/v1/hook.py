from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict


class HookInput(BaseModel):
    """Invocation context an agent runtime writes to a hook's stdin.

    Only the fields the bridge reads are declared; everything else is kept.
    """
    session_id: str = ""
    hook_event_name: str = ""
    cwd: str = ""
    stop_hook_active: bool = False
    message: str = ""

    model_config = ConfigDict(extra="allow")


class HookOutput(BaseModel):
    decision: Optional[Literal["block", "approve"]] = None
    reason: Optional[str] = None
    hookSpecificOutput: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="forbid")
