"""Blocking calls a session makes from its own logic: ask a question, request an approval."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from ...contracts.v1 import CALLBACK_DATA_MAX_BYTES, ApprovalOption, ApprovalResult, ChatChoice, encode_callback, layout_rows
from ...kernel.approvals import ApprovalManager, OptionLike, build_keyboard, format_prompt
from ...kernel.errors import BridgeError, DeadlineExceeded
from ...kernel.questions import QuestionAnswerChannel
from ...kernel.sessions import normalize_session_id
from ...kernel.settings import BridgeSettings, load_settings
from ...kernel.store import Store
from ..im.adapters.base import ChatTransport
from ..im.bridge import ANSWER_ACTION
from ..im.transport import make_transport

logger = logging.getLogger("ccbridge.client")

DEFAULT_OPTIONS = [ApprovalOption(label="✅ Approve", value="approve"), ApprovalOption(label="❌ Deny", value="deny")]


def _answer_choices(session_id: str, choices: Sequence[str]) -> List[List[ChatChoice]]:
    buttons = []
    for choice in choices:
        data = encode_callback(ANSWER_ACTION, session_id, choice)
        if len(data.encode("utf-8")) > CALLBACK_DATA_MAX_BYTES:
            logger.warning("choice too long for a button, reply by text instead: %r", choice)
            continue
        buttons.append(ChatChoice(label=choice, data=data))
    return layout_rows(buttons, per_row=2)


def format_question(session_id: str, text: str) -> str:
    return f"❓ *[{session_id}] Question:*\n\n{text}\n\n_Reply with `{session_id}: your answer`_"


def ask_question(
    session_id: str,
    text: str,
    choices: Optional[Sequence[str]] = None,
    timeout: Optional[float] = None,
    *,
    store: Optional[Store] = None,
    transport: Optional[ChatTransport] = None,
    settings: Optional[BridgeSettings] = None,
) -> str:
    """
    Post a question to the operator and block until it is answered.

    Raises DeadlineExceeded when nobody answers in time, BridgeError when the
    chat is not configured or the prompt could not be delivered.
    """
    settings = settings or load_settings()
    own_store = store is None
    store = store or Store()
    try:
        sid = normalize_session_id(session_id)
        transport = transport or make_transport(store, settings)
        if transport is None:
            raise BridgeError("chat not configured; run: ccbridge config <bot_token> <chat_id>")

        channel = QuestionAnswerChannel(store)
        channel.ask(sid, text, choices)
        ref = transport.send_message(format_question(sid, text), choices=_answer_choices(sid, choices or []) or None)
        if ref is None:
            channel.clear_pending(sid)
            raise BridgeError("failed to deliver question")

        wait = settings.questions
        try:
            return channel.wait_for_answer(
                sid,
                timeout=wait.timeout if timeout is None else timeout,
                poll_interval=wait.poll_interval,
            )
        except DeadlineExceeded:
            transport.edit_message(ref, f"⏰ *[{sid}] Question expired:*\n\n{text}\n\n_No answer received_")
            raise
    finally:
        if own_store:
            store.close()


def request_approval(
    title: str,
    message: str,
    options: Optional[Sequence[OptionLike]] = None,
    timeout: Optional[float] = None,
    category: str = "general",
    *,
    store: Optional[Store] = None,
    transport: Optional[ChatTransport] = None,
    settings: Optional[BridgeSettings] = None,
) -> ApprovalResult:
    """Ask the operator to pick one option; blocks until answered or expired."""
    settings = settings or load_settings()
    own_store = store is None
    store = store or Store()
    try:
        transport = transport or make_transport(store, settings)
        if transport is None:
            return ApprovalResult(approved=False, error="chat not configured")

        wait = settings.approvals
        limit = wait.timeout if timeout is None else timeout
        manager = ApprovalManager(store)
        aid = manager.create(category, title, message, list(options or DEFAULT_OPTIONS))
        return manager.send_and_await(
            aid,
            lambda approval: transport.send_message(format_prompt(approval, limit), choices=build_keyboard(approval)),
            limit,
            edit_fn=transport.edit_message,
            poll_interval=wait.poll_interval,
        )
    finally:
        if own_store:
            store.close()
