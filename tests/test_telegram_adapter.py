import io
import json
import unittest
import urllib.error
from unittest.mock import patch


class _Resp:
    def __init__(self, payload):
        self._body = json.dumps(payload).encode("utf-8")

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def _http_error(code: int, payload: dict) -> urllib.error.HTTPError:
    return urllib.error.HTTPError(
        "https://api.telegram.org", code, "error", {}, io.BytesIO(json.dumps(payload).encode("utf-8"))
    )


class TestTelegramAdapter(unittest.TestCase):
    def _adapter(self):
        from ccbridge.ports.im.adapters.telegram import TelegramAdapter

        adapter = TelegramAdapter(token="T0KEN", chat_id="42")
        adapter._rate_limiter.min_interval = 0.0
        return adapter

    def test_get_updates_normalizes_messages_and_callbacks(self) -> None:
        payload = {
            "ok": True,
            "result": [
                {
                    "update_id": 5,
                    "message": {"message_id": 11, "chat": {"id": 42}, "from": {"username": "op"}, "text": "/status"},
                },
                {
                    "update_id": 6,
                    "callback_query": {
                        "id": "cbq",
                        "data": "approval:abcd1234:allow",
                        "from": {"first_name": "Op"},
                        "message": {"message_id": 12, "chat": {"id": 42}},
                    },
                },
                {"update_id": 7, "edited_message": {"message_id": 13}},
            ],
        }
        seen = {}

        def fake_urlopen(req, timeout=0):
            seen["url"] = req.full_url
            seen["body"] = json.loads(req.data.decode("utf-8"))
            seen["timeout"] = timeout
            return _Resp(payload)

        with patch("urllib.request.urlopen", fake_urlopen):
            updates = self._adapter().get_updates(5, 25)

        self.assertTrue(seen["url"].endswith("/botT0KEN/getUpdates"))
        self.assertEqual(seen["body"]["offset"], 5)
        self.assertEqual(seen["body"]["allowed_updates"], ["message", "callback_query"])
        self.assertEqual(seen["timeout"], 35)

        self.assertEqual([u.update_id for u in updates], [5, 6, 7])
        self.assertEqual((updates[0].kind, updates[0].chat_id, updates[0].text), ("message", "42", "/status"))
        self.assertEqual(updates[1].kind, "callback")
        self.assertEqual(updates[1].callback_data, "approval:abcd1234:allow")
        self.assertEqual(updates[1].message_id, 12)
        self.assertEqual(updates[2].text, "")

    def test_get_updates_raises_transport_error(self) -> None:
        from ccbridge.kernel.errors import TransportError

        err = _http_error(429, {"ok": False, "description": "Too Many Requests", "parameters": {"retry_after": 7}})
        with patch("urllib.request.urlopen", side_effect=err):
            with self.assertRaises(TransportError) as ctx:
                self._adapter().get_updates(1, 0)
        self.assertEqual(ctx.exception.http_status, 429)
        self.assertEqual(ctx.exception.retry_after, 7.0)

        with patch("urllib.request.urlopen", side_effect=OSError("network down")):
            with self.assertRaises(TransportError):
                self._adapter().get_updates(1, 0)

    def test_send_message_with_buttons_and_reply(self) -> None:
        from ccbridge.contracts.v1 import ChatChoice

        bodies = []

        def fake_urlopen(req, timeout=0):
            bodies.append(json.loads(req.data.decode("utf-8")))
            return _Resp({"ok": True, "result": {"message_id": 99}})

        choices = [[ChatChoice(label="Yes", data="approval:x:allow"), ChatChoice(label="No", data="approval:x:deny")]]
        with patch("urllib.request.urlopen", fake_urlopen):
            ref = self._adapter().send_message("Deploy?", choices=choices, reply_to=5)

        self.assertEqual(ref, 99)
        body = bodies[0]
        self.assertEqual(body["chat_id"], "42")
        self.assertEqual(body["reply_to_message_id"], 5)
        self.assertEqual(body["parse_mode"], "Markdown")
        self.assertEqual(
            body["reply_markup"]["inline_keyboard"],
            [[{"text": "Yes", "callback_data": "approval:x:allow"}, {"text": "No", "callback_data": "approval:x:deny"}]],
        )

    def test_send_falls_back_to_plain_text(self) -> None:
        bodies = []

        def fake_urlopen(req, timeout=0):
            body = json.loads(req.data.decode("utf-8"))
            bodies.append(body)
            if "parse_mode" in body:
                raise _http_error(400, {"ok": False, "description": "Bad Request: can't parse entities"})
            return _Resp({"ok": True, "result": {"message_id": 3}})

        with patch("urllib.request.urlopen", fake_urlopen):
            ref = self._adapter().send_message("unbalanced *markdown")
        self.assertEqual(ref, 3)
        self.assertEqual(len(bodies), 2)
        self.assertNotIn("parse_mode", bodies[1])

    def test_send_failure_returns_none(self) -> None:
        err = _http_error(403, {"ok": False, "description": "Forbidden: bot was blocked by the user"})
        with patch("urllib.request.urlopen", side_effect=err):
            self.assertIsNone(self._adapter().send_message("hi"))

    def test_long_text_is_clamped(self) -> None:
        bodies = []

        def fake_urlopen(req, timeout=0):
            bodies.append(json.loads(req.data.decode("utf-8")))
            return _Resp({"ok": True, "result": {"message_id": 1}})

        with patch("urllib.request.urlopen", fake_urlopen):
            self._adapter().send_message("x" * 10000)
        self.assertLessEqual(len(bodies[0]["text"]), 4096)

    def test_edit_and_react(self) -> None:
        calls = []

        def fake_urlopen(req, timeout=0):
            calls.append((req.full_url.rsplit("/", 1)[-1], json.loads(req.data.decode("utf-8"))))
            return _Resp({"ok": True, "result": True})

        adapter = self._adapter()
        with patch("urllib.request.urlopen", fake_urlopen):
            self.assertTrue(adapter.edit_message(7, "done"))
            self.assertTrue(adapter.react(8))
            adapter.answer_callback("cbq", "Selected: Yes")

        self.assertEqual([c[0] for c in calls], ["editMessageText", "setMessageReaction", "answerCallbackQuery"])
        self.assertEqual(calls[0][1]["message_id"], 7)
        self.assertEqual(calls[1][1]["reaction"], [{"type": "emoji", "emoji": "👍"}])
        self.assertEqual(calls[2][1]["text"], "Selected: Yes")


if __name__ == "__main__":
    unittest.main()
