"""
Chat command parser for ccbridge.

Classifies operator text, in precedence order:
- /status, /switch, /abort, /tell, /pause, /resume, /help, /ping, /cleanup
- ! shorthand instruction, optionally addressed (`!ABC text`, `! ABC text`)
- session prefix (`ABC: text`)
- anything else: a plain message for the default session
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ...contracts.v1 import SESSION_ID_ALPHABET, Session
from ...kernel.sessions import is_session_code


class CommandType(str, Enum):
    # Sessions
    STATUS = "status"
    SWITCH = "switch"
    ABORT = "abort"
    CLEANUP = "cleanup"

    # Instructions
    TELL = "tell"
    INSTRUCTION = "instruction"

    # Notifications
    PAUSE = "pause"
    RESUME = "resume"

    # Health / help
    PING = "ping"
    HELP = "help"
    UNKNOWN = "unknown"

    # Not a command
    SESSION_REPLY = "session_reply"
    MESSAGE = "message"


@dataclass
class ParsedCommand:
    """Result of parsing a chat message."""

    type: CommandType
    text: str  # Payload (instruction/reply text, or raw argument string)
    session: str = ""  # Addressed session code, upper-cased; "" when none
    args: List[str] = field(default_factory=list)
    name: str = ""  # Slash command name as typed
    raw: str = ""  # Original text, kept for session-prefix fallthrough


_CODE = f"[{SESSION_ID_ALPHABET}]{{3}}"

# `@BotName /cmd` (group privacy mode) and `/cmd@BotName` are both accepted.
_SLASH_RE = re.compile(r"^(?:@\S+\s+)?/(\w+)(?:@\S+)?(?:\s+(.*))?$", re.IGNORECASE | re.DOTALL)
_BANG_RE = re.compile(rf"^!\s*(?:({_CODE})\s+)?(.+)$", re.DOTALL)
_PREFIX_RE = re.compile(rf"^({_CODE}):\s*(.+)$", re.DOTALL)
_ADDRESSED_RE = re.compile(rf"^({_CODE})\s+(.+)$", re.DOTALL)

_COMMANDS = {
    "status": CommandType.STATUS,
    "switch": CommandType.SWITCH,
    "abort": CommandType.ABORT,
    "tell": CommandType.TELL,
    "pause": CommandType.PAUSE,
    "resume": CommandType.RESUME,
    "help": CommandType.HELP,
    "start": CommandType.HELP,  # Telegram sends /start on first contact
    "ping": CommandType.PING,
    "cleanup": CommandType.CLEANUP,
}


def parse_message(text: str) -> ParsedCommand:
    """
    Parse chat text into a command, an addressed reply or a plain message.

    Examples:
        "/switch abc" -> SWITCH, session="ABC"
        "/tell ABC deploy now" -> TELL, session="ABC", text="deploy now"
        "!XYZ run tests" -> INSTRUCTION, session="XYZ", text="run tests"
        "XYZ: 42" -> SESSION_REPLY, session="XYZ", text="42"
        "looks good" -> MESSAGE
    """
    text = (text or "").strip()
    if not text:
        return ParsedCommand(type=CommandType.MESSAGE, text="")

    m = _SLASH_RE.match(text)
    if m:
        return _parse_slash(m.group(1).lower(), (m.group(2) or "").strip())

    m = _BANG_RE.match(text)
    if m:
        return ParsedCommand(
            type=CommandType.INSTRUCTION,
            text=m.group(2).strip(),
            session=(m.group(1) or "").upper(),
        )

    m = _PREFIX_RE.match(text)
    if m:
        return ParsedCommand(type=CommandType.SESSION_REPLY, text=m.group(2).strip(), session=m.group(1), raw=text)

    return ParsedCommand(type=CommandType.MESSAGE, text=text)


def _parse_slash(name: str, rest: str) -> ParsedCommand:
    cmd_type = _COMMANDS.get(name, CommandType.UNKNOWN)
    args = rest.split() if rest else []

    if cmd_type in (CommandType.SWITCH, CommandType.ABORT):
        # Exactly one code from the session alphabet; anything else is reported as usage.
        code = args[0].upper() if len(args) == 1 else ""
        session = code if is_session_code(code) else ""
        return ParsedCommand(type=cmd_type, text=rest, session=session, args=args, name=name)

    if cmd_type == CommandType.TELL:
        # Only an upper-case code followed by a body addresses a session.
        m = _ADDRESSED_RE.match(rest)
        if m:
            return ParsedCommand(
                type=cmd_type, text=m.group(2).strip(), session=m.group(1).upper(), args=args, name=name
            )
        return ParsedCommand(type=cmd_type, text=rest, args=args, name=name)

    return ParsedCommand(type=cmd_type, text=rest, args=args, name=name)


def format_help() -> str:
    """Help text for chat commands."""
    return """🤖 *Session Bridge Commands*

*Sessions:*
/status - List active sessions
/switch ABC - Switch default session
/abort ABC - Abort a session
/cleanup - Remove dead and stale sessions

*Instructions:*
/tell ABC do something - Send instruction to session
/tell do something - Send to default session
! do something - Shorthand for /tell

*Notifications:*
/pause - Pause notifications
/resume - Resume notifications

*Health:*
/ping - Check if listener is alive

*Replying to a session:*
- Reply directly for the default session
- Prefix with session ID: `ABC: your reply`"""


def format_status(sessions: List[Session], default_session: Optional[str], paused: bool) -> str:
    """Format /status response."""
    if not sessions:
        return "📋 *No active sessions*\n\nStart an agent session to register one."

    lines = []
    for s in sessions:
        marker = " \\*" if s.id == default_session else ""
        desc = f" - {s.description}" if s.description else ""
        lines.append(f"`{s.id}`{marker}{desc}")
    out = "📋 *Active Sessions:*\n\n" + "\n".join(lines)
    if paused:
        out += "\n\n⏸️ Notifications paused"
    return out + "\n\n_\\* = default session_"


def format_cleanup(dead: List[str], stale: int, *, stale_hours: int = 24) -> str:
    if not dead and not stale:
        return "🧹 No stale sessions to clean up."
    parts = []
    if dead:
        parts.append("Dead processes: " + ", ".join(f"`{sid}`" for sid in dead))
    if stale:
        parts.append(f"Old sessions (>{stale_hours}h): {stale}")
    return "🧹 *Cleanup complete*\n\n" + "\n".join(parts)
