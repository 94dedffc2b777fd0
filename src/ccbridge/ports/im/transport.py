"""Credential lookup and transport construction shared by the listener, hooks and CLI."""

from __future__ import annotations

import os
import re
from typing import Optional, Tuple

from ...kernel.settings import BridgeSettings
from ...kernel.store import CONFIG_BOT_TOKEN, CONFIG_CHAT_ID, Store
from .adapters.base import ChatTransport
from .adapters.telegram import TelegramAdapter


def _is_env_var_name(value: str) -> bool:
    return bool(re.match(r"^[A-Za-z_][A-Za-z0-9_]*$", (value or "").strip()))


def load_credentials(store: Store, settings: BridgeSettings) -> Tuple[str, str]:
    """(bot_token, chat_id); either may be empty when not configured.

    The env var named by `telegram.token_env` wins over the stored token.
    """
    token = ""
    token_env = settings.token_env if _is_env_var_name(settings.token_env) else ""
    if token_env:
        token = os.environ.get(token_env, "").strip()
    if not token:
        token = (store.get_config(CONFIG_BOT_TOKEN) or "").strip()
    chat_id = (store.get_config(CONFIG_CHAT_ID) or "").strip()
    return token, chat_id


def make_transport(store: Store, settings: BridgeSettings) -> Optional[ChatTransport]:
    """Telegram transport for the configured chat, or None if unconfigured."""
    token, chat_id = load_credentials(store, settings)
    if not token or not chat_id:
        return None
    return TelegramAdapter(token=token, chat_id=chat_id)
