"""
Agent-runtime hooks.

Each hook reads one JSON object on stdin and writes at most one JSON object
on stdout. A hook must never block or break the agent session, so any
failure is logged to hooks.log and the hook exits 0 without output.

Hooks:
- deliver: hand queued operator instructions to the session
- session-start: register the session and announce its code
- session-end: unregister the session
- notify: post a short status line to the chat
"""

from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, TextIO

from ...contracts.v1 import HookInput, HookOutput, Instruction, Session
from ...kernel.instructions import InstructionQueue
from ...kernel.sessions import SessionRegistry, normalize_session_id
from ...kernel.settings import BridgeSettings, load_settings
from ...kernel.store import CONFIG_PAUSED, Store
from ...paths import hook_log_path
from ...util.obslog import setup_root_json_logging
from ..im.adapters.base import ChatTransport
from ..im.transport import make_transport

logger = logging.getLogger("ccbridge.hook")

ABORT_TEXT = (
    "ABORT REQUESTED by the operator: stop the current task immediately, "
    "do not start new work, and end the session."
)


@dataclass
class HookContext:
    store: Store
    settings: BridgeSettings
    data: HookInput
    session: str = ""
    description: str = ""
    parent_pid: int = 0
    transport_factory: Optional[Callable[[], Optional[ChatTransport]]] = None
    _transport: Optional[ChatTransport] = field(default=None, init=False, repr=False)
    _transport_loaded: bool = field(default=False, init=False, repr=False)

    @property
    def registry(self) -> SessionRegistry:
        return SessionRegistry(self.store)

    def transport(self) -> Optional[ChatTransport]:
        if not self._transport_loaded:
            self._transport_loaded = True
            factory = self.transport_factory or (lambda: make_transport(self.store, self.settings))
            self._transport = factory()
        return self._transport

    def paused(self) -> bool:
        return self.store.get_config_bool(CONFIG_PAUSED)

    def resolve(self) -> Optional[Session]:
        return self.registry.resolve(self.session, self.parent_pid)


def render_instructions(items: List[Instruction]) -> str:
    texts = [ABORT_TEXT if i.is_abort else i.text for i in items]
    return "INSTRUCTION FROM THE OPERATOR (via chat) - act on this:\n\n" + "\n\n".join(texts)


def hook_deliver(ctx: HookContext) -> Optional[HookOutput]:
    session = ctx.resolve()
    if session is None:
        return None
    items = InstructionQueue(ctx.store).take_pending(session.id)
    if not items:
        return None
    ctx.registry.touch(session.id)
    logger.info("delivering %d instruction(s)", len(items), extra={"session_id": session.id, "hook": "deliver"})

    transport = ctx.transport()
    if transport is not None:
        for item in items:
            try:
                if item.source_message_ref:
                    transport.react(item.source_message_ref)
                if item.queued_ack_ref:
                    transport.edit_message(item.queued_ack_ref, f"✅ Delivered to `{session.id}`")
            except Exception as e:
                logger.warning("delivery receipt failed: %s", e, extra={"instruction_id": item.id})

    return HookOutput(decision="block", reason=render_instructions(items))


def hook_session_start(ctx: HookContext) -> Optional[HookOutput]:
    description = ctx.description.strip() or Path(ctx.data.cwd or os.getcwd()).name or "session"
    sid = ctx.registry.register(description, ctx.parent_pid)
    if not ctx.paused():
        transport = ctx.transport()
        if transport is not None:
            transport.send_message(f"🟢 *Session started:* `{sid}`\n\n{description}")
    return HookOutput(
        hookSpecificOutput={
            "hookEventName": ctx.data.hook_event_name or "SessionStart",
            "additionalContext": (
                f"Chat bridge session code: {sid}. "
                f"Operator messages prefixed `{sid}:` are addressed to this session."
            ),
        }
    )


def hook_session_end(ctx: HookContext) -> Optional[HookOutput]:
    # Never fall back to the default session here: that would end someone else's session.
    registry = ctx.registry
    session = registry.get(ctx.session) if ctx.session else None
    if session is None:
        session = registry.find_by_process(ctx.parent_pid)
    if session is not None:
        registry.unregister(session.id)
    return None


def format_notification(session_id: str, data: HookInput) -> str:
    event = data.hook_event_name or "Event"
    if event == "Stop":
        return f"✅ *Task completed*\n\nSession: `{session_id}`"
    if event == "Notification":
        detail = f"\n\n{data.message}" if data.message else ""
        return f"🔔 *Needs your input*\n\nSession: `{session_id}`{detail}"
    return f"ℹ️ *{event}*\n\nSession: `{session_id}`"


def hook_notify(ctx: HookContext) -> Optional[HookOutput]:
    if ctx.paused():
        return None
    session = ctx.resolve()
    if session is None:
        return None
    transport = ctx.transport()
    if transport is not None:
        transport.send_message(format_notification(session.id, ctx.data))
    ctx.registry.touch(session.id)
    return None


HOOKS: Dict[str, Callable[[HookContext], Optional[HookOutput]]] = {
    "deliver": hook_deliver,
    "session-start": hook_session_start,
    "session-end": hook_session_end,
    "notify": hook_notify,
}


def _read_input(stream: TextIO) -> HookInput:
    raw = stream.read()
    if not raw.strip():
        return HookInput()
    doc = json.loads(raw)
    return HookInput.model_validate(doc if isinstance(doc, dict) else {})


def run_hook(
    name: str,
    *,
    session: str = "",
    description: str = "",
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
    store: Optional[Store] = None,
    transport_factory: Optional[Callable[[], Optional[ChatTransport]]] = None,
    parent_pid: Optional[int] = None,
) -> int:
    """Run one hook. Always returns 0."""
    settings = load_settings()
    setup_root_json_logging(component="hook", level=settings.log_level, path=hook_log_path())
    out_stream = stdout or sys.stdout

    own_store = store is None
    try:
        handler = HOOKS[name]
        data = _read_input(stdin or sys.stdin)
        store = store or Store()
        ctx = HookContext(
            store=store,
            settings=settings,
            data=data,
            session=normalize_session_id(session),
            description=description,
            parent_pid=os.getppid() if parent_pid is None else parent_pid,
            transport_factory=transport_factory,
        )
        result = handler(ctx)
        if result is not None:
            out_stream.write(json.dumps(result.model_dump(exclude_none=True), ensure_ascii=False) + "\n")
            out_stream.flush()
    except Exception as e:
        logger.exception("hook %s failed: %s", name, e, extra={"hook": name})
    finally:
        if own_store and store is not None:
            store.close()
    return 0
