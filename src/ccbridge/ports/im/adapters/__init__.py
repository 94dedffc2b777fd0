"""Chat platform transports."""

from .base import ChatTransport
from .telegram import TelegramAdapter

__all__ = ["ChatTransport", "TelegramAdapter"]
