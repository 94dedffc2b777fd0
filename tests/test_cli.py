import contextlib
import io
import json
import unittest

from fakes import HomeTestCase


class TestCli(HomeTestCase):
    def _main(self, *argv):
        from ccbridge.cli import main

        buf = io.StringIO()
        with contextlib.redirect_stdout(buf):
            code = main(list(argv))
        out = buf.getvalue().strip()
        return code, (json.loads(out) if out else None)

    def test_config_and_status(self) -> None:
        code, out = self._main("config", "123:abc", "42")
        self.assertEqual(code, 0)
        self.assertTrue(out["ok"])

        code, out = self._main("config", "only-token")
        self.assertEqual(code, 2)

        code, out = self._main("status")
        self.assertEqual(code, 0)
        self.assertEqual(out["result"]["bot_token"], "configured")
        self.assertEqual(out["result"]["chat_id"], "configured")
        self.assertFalse(out["result"]["listener"]["running"])
        self.assertEqual(out["result"]["active_sessions"], 0)

    def test_register_sessions_unregister(self) -> None:
        code, out = self._main("register", "--description", "api", "--pid", "0")
        self.assertEqual(code, 0)
        sid = out["result"]["session_id"]

        code, out = self._main("sessions")
        sessions = out["result"]["sessions"]
        self.assertEqual([s["id"] for s in sessions], [sid])
        self.assertTrue(sessions[0]["default"])

        self.assertEqual(self._main("unregister", sid.lower())[0], 0)
        code, out = self._main("unregister", sid)
        self.assertEqual(code, 2)
        self.assertEqual(out["error"]["code"], "session_not_found")

    def test_send_and_ask_without_config(self) -> None:
        code, out = self._main("send", "hello")
        self.assertEqual(code, 2)
        self.assertEqual(out["error"]["code"], "not_configured")

        code, out = self._main("ask", "ABC", "Which port?")
        self.assertEqual(code, 2)

    def test_cleanup(self) -> None:
        code, out = self._main("cleanup")
        self.assertEqual(code, 0)
        self.assertEqual(out["result"], {"dead": [], "stale": 0, "approvals_pruned": 0})


if __name__ == "__main__":
    unittest.main()
