"""
ccbridge chat port

Connects the operator's chat (Telegram) to the Store shared by all sessions.

Architecture:
- Exactly one listener process long-polls the chat
- Inbound: commands, instructions, answers and button presses -> Store
- Outbound: session processes send through their own transport instance

Usage:
    ccbridge config <bot_token> <chat_id>
    ccbridge listen
"""

from .bridge import PollingListener, start_listener
from .router import CommandRouter

__all__ = ["PollingListener", "start_listener", "CommandRouter"]
