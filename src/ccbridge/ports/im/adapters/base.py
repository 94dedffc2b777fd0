"""
Base class for chat transports.

The bridge needs exactly three primitives from a chat platform: send a
message (optionally with 2-4 interactive choices), edit a message it sent,
and long-poll for updates after a cursor. Callback acknowledgement and
reactions are optional niceties.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from ....contracts.v1 import ChatChoice, ChatUpdate


class ChatTransport(ABC):
    platform: str = "unknown"

    @abstractmethod
    def connect(self) -> bool:
        """Verify credentials. Returns True if the platform accepted them."""

    @abstractmethod
    def send_message(
        self,
        text: str,
        *,
        choices: Optional[List[List[ChatChoice]]] = None,
        reply_to: Optional[int] = None,
    ) -> Optional[int]:
        """Send to the operator chat. Returns the message ref, or None on failure."""

    @abstractmethod
    def edit_message(self, message_ref: int, text: str) -> bool:
        """Replace a sent message's text, dropping any buttons."""

    @abstractmethod
    def get_updates(self, offset: int, timeout: int) -> List[ChatUpdate]:
        """Long-poll for updates with id >= offset. Raises TransportError."""

    def answer_callback(self, callback_id: str, text: str = "") -> None:
        """Acknowledge a button press (platform-specific, optional)."""
        _ = callback_id
        _ = text

    def react(self, message_ref: int, emoji: str = "👍") -> bool:
        """React to a message (platform-specific, optional)."""
        _ = message_ref
        _ = emoji
        return False

    def summarize(self, text: str, max_chars: int = 4096, max_lines: int = 200) -> str:
        """
        Clamp text for chat display.

        - Normalize newlines
        - Collapse runs of blank lines
        - Limit lines and characters
        """
        if not text:
            return ""

        t = text.replace("\r\n", "\n").replace("\r", "\n").replace("\t", "  ")
        lines = [ln.rstrip() for ln in t.split("\n")]

        while lines and not lines[0].strip():
            lines.pop(0)
        while lines and not lines[-1].strip():
            lines.pop()

        kept = []
        empty_count = 0
        for ln in lines:
            if not ln.strip():
                empty_count += 1
                if empty_count <= 1:
                    kept.append("")
            else:
                empty_count = 0
                kept.append(ln)

        out = "\n".join(kept[:max_lines]).strip()
        if len(out) > max_chars:
            out = out[: max(0, max_chars - 1)] + "…"
        return out
