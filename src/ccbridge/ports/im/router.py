"""
Routes operator chat text to sessions.

Parsing lives in commands.py; this module performs the effects: registry
changes, queued instructions, answered questions and in-chat replies.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from ...kernel.instructions import InstructionQueue
from ...kernel.questions import QuestionAnswerChannel
from ...kernel.sessions import SessionRegistry
from ...kernel.store import CONFIG_PAUSED, Store
from ...util.time import format_duration
from .adapters.base import ChatTransport
from .commands import CommandType, ParsedCommand, format_cleanup, format_help, format_status, parse_message

logger = logging.getLogger("ccbridge.router")


class CommandRouter:
    def __init__(
        self,
        store: Store,
        transport: ChatTransport,
        *,
        registry: Optional[SessionRegistry] = None,
        queue: Optional[InstructionQueue] = None,
        questions: Optional[QuestionAnswerChannel] = None,
        stale_after: float = 86400.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.transport = transport
        self.registry = registry or SessionRegistry(store)
        self.queue = queue or InstructionQueue(store)
        self.questions = questions or QuestionAnswerChannel(store)
        self.stale_after = stale_after
        self._clock = clock
        self._started = clock()

    def handle_text(self, text: str, message_id: int = 0) -> ParsedCommand:
        """Parse and act on one operator message. Returns what it was parsed as."""
        parsed = parse_message(text)
        if not parsed.text and parsed.type == CommandType.MESSAGE:
            return parsed

        handler = {
            CommandType.STATUS: self._handle_status,
            CommandType.SWITCH: self._handle_switch,
            CommandType.ABORT: self._handle_abort,
            CommandType.TELL: self._handle_tell,
            CommandType.PAUSE: self._handle_pause,
            CommandType.RESUME: self._handle_resume,
            CommandType.HELP: self._handle_help,
            CommandType.PING: self._handle_ping,
            CommandType.CLEANUP: self._handle_cleanup,
            CommandType.UNKNOWN: self._handle_unknown,
            CommandType.INSTRUCTION: self._handle_tell,
            CommandType.SESSION_REPLY: self._handle_session_reply,
            CommandType.MESSAGE: self._handle_default_reply,
        }[parsed.type]
        handler(parsed, message_id)
        return parsed

    def _reply(self, text: str, reply_to: Optional[int] = None) -> Optional[int]:
        return self.transport.send_message(text, reply_to=reply_to or None)

    # ------------------------------------------------------------------
    # Slash commands
    # ------------------------------------------------------------------

    def _handle_status(self, parsed: ParsedCommand, message_id: int) -> None:
        self._reply(
            format_status(
                self.registry.list_active(),
                self.registry.get_default(),
                self.store.get_config_bool(CONFIG_PAUSED),
            )
        )

    def _handle_switch(self, parsed: ParsedCommand, message_id: int) -> None:
        if not parsed.session:
            self._reply("Usage: /switch ABC")
            return
        if self.registry.set_default(parsed.session):
            self._reply(f"✅ Switched to session `{parsed.session}`")
        else:
            self._reply(f"❌ Session `{parsed.session}` not found")

    def _handle_abort(self, parsed: ParsedCommand, message_id: int) -> None:
        if not parsed.session:
            self._reply("Usage: /abort ABC")
            return
        if self.registry.abort(parsed.session):
            self._reply(f"🛑 Abort signal sent to session `{parsed.session}`")
        else:
            self._reply(f"❌ Session `{parsed.session}` not found")

    def _handle_tell(self, parsed: ParsedCommand, message_id: int) -> None:
        """Shared by `/tell` and the `!` shorthand."""
        usage = "`/tell ABC instruction`" if parsed.type == CommandType.TELL else "`!ABC instruction`"
        if not parsed.text:
            self._reply(f"Usage: {usage}")
            return
        if parsed.session:
            if not self.registry.exists(parsed.session):
                self._reply(f"❌ Session `{parsed.session}` not found")
                return
            self._enqueue(parsed.session, parsed.text, message_id)
            return
        default = self.registry.default_session()
        if default is None:
            self._reply(f"❌ No default session. Use {usage}")
            return
        self._enqueue(default.id, parsed.text, message_id)

    def _handle_pause(self, parsed: ParsedCommand, message_id: int) -> None:
        self.store.set_config(CONFIG_PAUSED, "true")
        self._reply("⏸️ Notifications paused. Send /resume to continue.")

    def _handle_resume(self, parsed: ParsedCommand, message_id: int) -> None:
        self.store.set_config(CONFIG_PAUSED, "false")
        self._reply("▶️ Notifications resumed.")

    def _handle_help(self, parsed: ParsedCommand, message_id: int) -> None:
        self._reply(format_help())

    def _handle_ping(self, parsed: ParsedCommand, message_id: int) -> None:
        uptime = format_duration(self._clock() - self._started)
        count = len(self.registry.list_active())
        self._reply(f"🏓 *Pong!*\n\nListener uptime: {uptime}\nActive sessions: {count}")

    def _handle_cleanup(self, parsed: ParsedCommand, message_id: int) -> None:
        dead = self.registry.cleanup_dead()
        stale = self.registry.cleanup_stale(self.stale_after)
        self._reply(format_cleanup(dead, stale, stale_hours=int(self.stale_after // 3600)))

    def _handle_unknown(self, parsed: ParsedCommand, message_id: int) -> None:
        self._reply("❓ Unknown command. Send /help for options.")

    # ------------------------------------------------------------------
    # Replies to sessions
    # ------------------------------------------------------------------

    def _handle_session_reply(self, parsed: ParsedCommand, message_id: int) -> None:
        if self.registry.exists(parsed.session):
            self._answer_or_enqueue(parsed.session, parsed.text, message_id)
            return
        # Unknown code: probably ordinary text, treat it as a default-session reply.
        self._handle_default_reply(ParsedCommand(type=CommandType.MESSAGE, text=parsed.raw), message_id)

    def _handle_default_reply(self, parsed: ParsedCommand, message_id: int) -> None:
        default = self.registry.default_session()
        if default is None:
            self._reply("❓ No active session. Start an agent session first or use /status to check.")
            return
        self._answer_or_enqueue(default.id, parsed.text, message_id)

    def _answer_or_enqueue(self, session_id: str, text: str, message_id: int) -> None:
        if self.questions.answer(session_id, text):
            logger.info("answered question of %s", session_id, extra={"session_id": session_id})
            self._reply(f"✅ Answer sent to `{session_id}`", reply_to=message_id)
            return
        self._enqueue(session_id, text, message_id)

    def _enqueue(self, session_id: str, text: str, message_id: int) -> None:
        iid = self.queue.enqueue(session_id, text, source_ref=message_id or None)
        ack = self._reply(f"📨 Instruction queued for `{session_id}`", reply_to=message_id)
        self.queue.set_queued_ack(iid, ack)
