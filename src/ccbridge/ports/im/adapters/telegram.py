"""
Telegram Bot API transport.

- _api(): JSON POST wrapper with timeout and error normalization
- get_updates(): long-poll getUpdates, normalized into ChatUpdate
- send/edit with inline keyboards, Markdown with plain-text fallback
- Per-chat rate limiting
"""

from __future__ import annotations

import json
import logging
import threading
import time
import urllib.error
import urllib.request
from typing import Any, Dict, List, Optional

from ....contracts.v1 import ChatChoice, ChatUpdate
from ....kernel.errors import TransportError
from .base import ChatTransport

logger = logging.getLogger("ccbridge.telegram")

TELEGRAM_MAX_MESSAGE_LENGTH = 4096
API_BASE = "https://api.telegram.org"


class RateLimiter:
    """
    Minimum spacing between sends to one chat.

    Telegram allows roughly one message per second per chat.
    """

    def __init__(self, max_per_second: float = 1.0):
        self.min_interval = 1.0 / max_per_second
        self.last_send: Dict[str, float] = {}
        self.lock = threading.Lock()

    def acquire(self, chat_id: str) -> float:
        """Returns the wait needed before sending (0 if the slot was taken now)."""
        with self.lock:
            now = time.time()
            elapsed = now - self.last_send.get(chat_id, 0)
            if elapsed >= self.min_interval:
                self.last_send[chat_id] = now
                return 0.0
            return self.min_interval - elapsed

    def wait_and_acquire(self, chat_id: str) -> None:
        wait_time = self.acquire(chat_id)
        if wait_time > 0:
            time.sleep(wait_time)
            self.acquire(chat_id)


def _keyboard(choices: List[List[ChatChoice]]) -> Dict[str, Any]:
    return {"inline_keyboard": [[{"text": c.label, "callback_data": c.data} for c in row] for row in choices]}


def _is_parse_error(resp: Dict[str, Any]) -> bool:
    return resp.get("http_status") == 400 and "parse entities" in str(resp.get("description") or "")


class TelegramAdapter(ChatTransport):
    platform = "telegram"

    def __init__(self, token: str, chat_id: str, *, parse_mode: str = "Markdown"):
        self.token = token
        self.chat_id = str(chat_id)
        self.parse_mode = parse_mode
        self._rate_limiter = RateLimiter(max_per_second=1.0)
        self._bot_username = ""

    def _api(self, method: str, params: Optional[Dict[str, Any]] = None, timeout: float = 15) -> Dict[str, Any]:
        """
        Call the Bot API.

        Never raises: failures come back as {"ok": False, "error": ..., "http_status": ...}.
        """
        url = f"{API_BASE}/bot{self.token}/{method}"
        data = json.dumps(params or {}, ensure_ascii=False).encode("utf-8")

        req = urllib.request.Request(url, data=data, method="POST")
        req.add_header("Content-Type", "application/json; charset=utf-8")
        req.add_header("Accept", "application/json")

        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:
                body = resp.read().decode("utf-8", errors="replace")
                return json.loads(body)
        except urllib.error.HTTPError as e:
            out: Dict[str, Any] = {"ok": False, "error": str(e), "http_status": e.code}
            try:
                payload = json.loads(e.read().decode("utf-8", "ignore") or "{}")
                out["description"] = str(payload.get("description") or "")
                retry_after = (payload.get("parameters") or {}).get("retry_after")
                if retry_after:
                    out["retry_after"] = float(retry_after)
            except Exception:
                pass
            logger.warning("telegram %s: HTTP %s %s", method, e.code, out.get("description", ""))
            return out
        except Exception as e:
            logger.warning("telegram %s: %s", method, e)
            return {"ok": False, "error": str(e)}

    def connect(self) -> bool:
        resp = self._api("getMe", timeout=10)
        if not resp.get("ok"):
            logger.error("telegram connect failed: %s", resp.get("error", "unknown error"))
            return False
        info = resp.get("result") or {}
        self._bot_username = str(info.get("username") or "").strip()
        logger.info("connected as @%s", self._bot_username or "unknown")
        return True

    def _compose_safe(self, text: str) -> str:
        return self.summarize(text, TELEGRAM_MAX_MESSAGE_LENGTH, 400)

    def send_message(
        self,
        text: str,
        *,
        choices: Optional[List[List[ChatChoice]]] = None,
        reply_to: Optional[int] = None,
    ) -> Optional[int]:
        if not text:
            return None
        params: Dict[str, Any] = {
            "chat_id": self.chat_id,
            "text": self._compose_safe(text),
            "disable_web_page_preview": True,
        }
        if self.parse_mode:
            params["parse_mode"] = self.parse_mode
        if choices:
            params["reply_markup"] = _keyboard(choices)
        if reply_to:
            params["reply_to_message_id"] = int(reply_to)
            params["allow_sending_without_reply"] = True

        self._rate_limiter.wait_and_acquire(self.chat_id)
        resp = self._send_with_retry("sendMessage", params)
        if not resp.get("ok"):
            logger.warning("send failed: %s", resp.get("error", "unknown"), extra={"chat_id": self.chat_id})
            return None
        try:
            return int((resp.get("result") or {}).get("message_id") or 0) or None
        except Exception:
            return None

    def _send_with_retry(self, method: str, params: Dict[str, Any], retries: int = 1) -> Dict[str, Any]:
        resp = self._api(method, params, timeout=15)
        if resp.get("ok"):
            return resp
        if _is_parse_error(resp) and "parse_mode" in params:
            plain = dict(params)
            plain.pop("parse_mode", None)
            return self._api(method, plain, timeout=15)
        if retries > 0 and resp.get("http_status") not in (400, 401, 403, 404):
            time.sleep(min(float(resp.get("retry_after") or 1.0), 30.0))
            return self._send_with_retry(method, params, retries=retries - 1)
        return resp

    def edit_message(self, message_ref: int, text: str) -> bool:
        params: Dict[str, Any] = {
            "chat_id": self.chat_id,
            "message_id": int(message_ref),
            "text": self._compose_safe(text),
            "disable_web_page_preview": True,
        }
        if self.parse_mode:
            params["parse_mode"] = self.parse_mode
        return bool(self._send_with_retry("editMessageText", params).get("ok"))

    def answer_callback(self, callback_id: str, text: str = "") -> None:
        if not callback_id:
            return
        params: Dict[str, Any] = {"callback_query_id": callback_id}
        if text:
            params["text"] = text[:200]
        self._api("answerCallbackQuery", params, timeout=10)

    def react(self, message_ref: int, emoji: str = "👍") -> bool:
        resp = self._api(
            "setMessageReaction",
            {"chat_id": self.chat_id, "message_id": int(message_ref), "reaction": [{"type": "emoji", "emoji": emoji}]},
            timeout=10,
        )
        return bool(resp.get("ok"))

    def get_updates(self, offset: int, timeout: int) -> List[ChatUpdate]:
        resp = self._api(
            "getUpdates",
            {
                "offset": int(offset),
                "timeout": int(timeout),
                # Edited messages are ignored so an edit never re-runs a command.
                "allowed_updates": ["message", "callback_query"],
            },
            timeout=int(timeout) + 10,
        )
        if not resp.get("ok") or not isinstance(resp.get("result"), list):
            raise TransportError(
                f"getUpdates failed: {resp.get('description') or resp.get('error') or 'unknown error'}",
                http_status=int(resp.get("http_status") or 0),
                retry_after=float(resp.get("retry_after") or 0.0),
            )

        updates: List[ChatUpdate] = []
        for raw in resp["result"]:
            try:
                parsed = self._normalize(raw)
            except Exception as e:
                logger.warning("skipping unparseable update: %s", e)
                parsed = None
            if parsed is None:
                # Keep the id so the cursor still moves past it.
                try:
                    parsed = ChatUpdate(update_id=int(raw.get("update_id", 0)), kind="message")
                except Exception:
                    continue
            updates.append(parsed)
        return updates

    def _normalize(self, raw: Dict[str, Any]) -> Optional[ChatUpdate]:
        update_id = int(raw.get("update_id", 0))

        cq = raw.get("callback_query")
        if isinstance(cq, dict):
            msg = cq.get("message") or {}
            chat = msg.get("chat") or {}
            sender = cq.get("from") or {}
            return ChatUpdate(
                update_id=update_id,
                kind="callback",
                chat_id=str(chat.get("id", "")),
                message_id=int(msg.get("message_id") or 0),
                callback_id=str(cq.get("id") or ""),
                callback_data=str(cq.get("data") or ""),
                from_user=str(sender.get("username") or sender.get("first_name") or ""),
            )

        msg = raw.get("message")
        if isinstance(msg, dict):
            chat = msg.get("chat") or {}
            sender = msg.get("from") or {}
            return ChatUpdate(
                update_id=update_id,
                kind="message",
                chat_id=str(chat.get("id", "")),
                message_id=int(msg.get("message_id") or 0),
                text=str(msg.get("text") or msg.get("caption") or ""),
                from_user=str(sender.get("username") or sender.get("first_name") or ""),
            )
        return None
