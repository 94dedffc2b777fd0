from __future__ import annotations

from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict


UpdateKind = Literal["message", "callback"]

# Telegram caps callback_data at 64 bytes.
CALLBACK_DATA_MAX_BYTES = 64


class ChatUpdate(BaseModel):
    """One inbound update, normalized away from the transport's wire format."""
    update_id: int
    kind: UpdateKind
    chat_id: str = ""
    message_id: int = 0
    text: str = ""
    callback_id: str = ""
    callback_data: str = ""
    from_user: str = ""

    model_config = ConfigDict(extra="forbid")


class ChatChoice(BaseModel):
    """One interactive button: visible label plus callback payload."""
    label: str
    data: str

    model_config = ConfigDict(extra="forbid")


def encode_callback(action: str, target: str, value: str) -> str:
    return f"{action}:{target}:{value}"


def parse_callback(data: str) -> Optional[Tuple[str, str, str]]:
    """Split `action:id:value`; the value may itself contain colons."""
    parts = (data or "").split(":", 2)
    if len(parts) != 3 or not parts[0] or not parts[1]:
        return None
    return parts[0], parts[1], parts[2]


def layout_rows(choices: List[ChatChoice], per_row: int = 2) -> List[List[ChatChoice]]:
    return [choices[i : i + per_row] for i in range(0, len(choices), per_row)]
