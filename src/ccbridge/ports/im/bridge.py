"""
Polling listener: the single consumer of the chat long-poll.

- Persists the update cursor before acting on each update
- Button presses resolve approvals or answer questions
- Text goes to the CommandRouter
- Transport failures back off exponentially and never stop the loop
- Periodic maintenance: dead-session cleanup and approval pruning
"""

from __future__ import annotations

import logging
import os
import signal
import sys
import time
from typing import Any, Callable, Optional

from ...contracts.v1 import ChatUpdate, parse_callback
from ...kernel.approvals import ApprovalManager, format_already_handled, format_outcome
from ...kernel.errors import AlreadyResolvedError, NotFoundError, TransportError
from ...kernel.questions import QuestionAnswerChannel
from ...kernel.sessions import SessionRegistry, normalize_session_id
from ...kernel.settings import BridgeSettings, load_settings
from ...kernel.store import CONFIG_CURSOR, Store
from ...paths import listener_lock_path, listener_pid_path
from ...util.file_lock import LockUnavailableError, acquire_singleton, release_singleton
from ...util.fs import atomic_write_text
from ...util.obslog import setup_root_json_logging
from .adapters.base import ChatTransport
from .router import CommandRouter
from .transport import make_transport

logger = logging.getLogger("ccbridge.listener")

ANSWER_ACTION = "answer"


class PollingListener:
    """
    Drives one chat transport against the Store.

    Only this object writes the update cursor, so exactly one listener may run
    per bridge home (see start_listener).
    """

    def __init__(
        self,
        store: Store,
        transport: ChatTransport,
        *,
        settings: Optional[BridgeSettings] = None,
        chat_id: str = "",
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.transport = transport
        self.settings = settings or BridgeSettings()
        self.chat_id = str(chat_id or "")
        self.registry = SessionRegistry(store)
        self.approvals = ApprovalManager(store)
        self.questions = QuestionAnswerChannel(store)
        self.router = CommandRouter(
            store,
            transport,
            registry=self.registry,
            questions=self.questions,
            stale_after=self.settings.stale_after,
            clock=clock,
        )
        self._sleep = sleep
        self._clock = clock
        self._last_maintenance = clock()
        self.running = False

    @property
    def cursor(self) -> int:
        return self.store.get_config_int(CONFIG_CURSOR, default=0)

    def start(self, *, announce: bool = True) -> bool:
        if not self.transport.connect():
            return False
        self.running = True
        self.maintenance()
        if announce:
            self.transport.send_message("🟢 *Listener Started*\n\nSend /help for available commands.")
        return True

    def stop(self) -> None:
        self.running = False

    def run_once(self) -> int:
        """Fetch and process one batch. Raises TransportError if the fetch fails."""
        updates = self.transport.get_updates(self.cursor + 1, self.settings.listener.poll_timeout)
        for update in updates:
            if update.update_id > self.cursor:
                # A crash after this point skips the update instead of replaying it.
                self.store.set_config(CONFIG_CURSOR, str(update.update_id))
            try:
                self.handle_update(update)
            except Exception as e:
                logger.exception("update handling failed: %s", e, extra={"update_id": update.update_id})
        self.maybe_maintenance()
        return len(updates)

    def run_forever(self) -> None:
        floor = self.settings.listener.backoff_floor
        cap = self.settings.listener.backoff_cap
        backoff = floor
        while self.running:
            try:
                self.run_once()
                backoff = floor
                continue
            except TransportError as e:
                delay = max(backoff, min(e.retry_after, cap))
                logger.warning("transport error, retrying in %.0fs: %s", delay, e)
            except Exception as e:
                delay = backoff
                logger.exception("listener iteration failed, retrying in %.0fs: %s", delay, e)
            self._sleep(delay)
            backoff = min(cap, max(floor, backoff * 2))

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def handle_update(self, update: ChatUpdate) -> None:
        if self.chat_id and update.chat_id != self.chat_id:
            logger.info("ignoring update from chat %s", update.chat_id, extra={"update_id": update.update_id})
            return
        if update.kind == "callback":
            self.handle_callback(update)
            return
        if update.text.strip():
            self.router.handle_text(update.text, update.message_id)

    def handle_callback(self, update: ChatUpdate) -> None:
        parsed = parse_callback(update.callback_data)
        if parsed is None:
            self.transport.answer_callback(update.callback_id, "Unknown action")
            return
        action, target, value = parsed
        if action == "approval":
            self._handle_approval_callback(update, target, value)
        elif action == ANSWER_ACTION:
            self._handle_answer_callback(update, normalize_session_id(target), value)
        else:
            self.transport.answer_callback(update.callback_id, "Unknown action")

    def _handle_approval_callback(self, update: ChatUpdate, approval_id: str, value: str) -> None:
        try:
            self.approvals.respond(approval_id, value, strict=True)
        except NotFoundError:
            self.transport.answer_callback(update.callback_id, "Unknown request")
            if update.message_id:
                self.transport.edit_message(update.message_id, "⚠️ *Unknown Request*\n\nThis request no longer exists.")
            return
        except AlreadyResolvedError:
            self.transport.answer_callback(update.callback_id, "Already handled")
            if update.message_id:
                self.transport.edit_message(update.message_id, format_already_handled())
            return

        approval = self.approvals.get(approval_id)
        label = approval.option_label(value) if approval else value
        self.transport.answer_callback(update.callback_id, f"Selected: {label}")
        if approval is not None and update.message_id:
            self.transport.edit_message(update.message_id, format_outcome(approval, value))

    def _handle_answer_callback(self, update: ChatUpdate, session_id: str, value: str) -> None:
        if not self.registry.exists(session_id):
            self.transport.answer_callback(update.callback_id, "Session not found")
            return
        if self.questions.answer(session_id, value):
            self.transport.answer_callback(update.callback_id, f"Sent: {value}")
            if update.message_id:
                self.transport.edit_message(update.message_id, f"✅ *[{session_id}] Answered:* {value}")
            return
        self.transport.answer_callback(update.callback_id, "No pending question")
        if update.message_id:
            self.transport.edit_message(update.message_id, f"⚠️ *[{session_id}]* No pending question to answer")

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def maybe_maintenance(self) -> None:
        if self._clock() - self._last_maintenance >= self.settings.listener.cleanup_interval:
            self.maintenance()

    def maintenance(self) -> None:
        self._last_maintenance = self._clock()
        try:
            self.registry.cleanup_dead()
        except Exception as e:
            logger.warning("session cleanup failed: %s", e)
        try:
            self.approvals.prune(self.settings.listener.approval_retention)
        except Exception as e:
            logger.warning("approval prune failed: %s", e)


def start_listener(*, announce: bool = True) -> None:
    """
    Run the listener until SIGINT/SIGTERM.

    This is the main entry point called by the CLI.
    """
    settings = load_settings()
    setup_root_json_logging(component="listener", level=settings.log_level)

    store = Store()
    transport = make_transport(store, settings)
    if transport is None:
        print("[error] Missing bot token or chat id. Run: ccbridge config <bot_token> <chat_id>")
        sys.exit(1)

    try:
        lock_file = acquire_singleton(listener_lock_path())
    except LockUnavailableError:
        print("[error] Another listener instance is already running")
        sys.exit(1)

    pid_path = listener_pid_path()
    atomic_write_text(pid_path, str(os.getpid()))

    listener = PollingListener(store, transport, settings=settings, chat_id=getattr(transport, "chat_id", ""))

    def handle_signal(signum: int, frame: Any) -> None:
        logger.info("received signal %s, stopping", signum)
        listener.stop()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    try:
        if not listener.start(announce=announce):
            print("[error] Failed to connect to the chat platform")
            sys.exit(1)
        print(f"[info] Listener started (pid {os.getpid()})")
        listener.run_forever()
    finally:
        try:
            pid_path.unlink()
        except FileNotFoundError:
            pass
        release_singleton(lock_file)
        store.close()
