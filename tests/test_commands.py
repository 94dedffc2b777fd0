import unittest


class TestParseMessage(unittest.TestCase):
    def test_slash_commands(self) -> None:
        from ccbridge.ports.im.commands import CommandType, parse_message

        self.assertEqual(parse_message("/status").type, CommandType.STATUS)
        self.assertEqual(parse_message("/STATUS").type, CommandType.STATUS)
        self.assertEqual(parse_message("/status@MyBridgeBot").type, CommandType.STATUS)
        self.assertEqual(parse_message("@MyBridgeBot /ping").type, CommandType.PING)
        self.assertEqual(parse_message("/start").type, CommandType.HELP)
        self.assertEqual(parse_message("/cleanup").type, CommandType.CLEANUP)
        self.assertEqual(parse_message("/frobnicate now").type, CommandType.UNKNOWN)

        sw = parse_message("/switch abc")
        self.assertEqual(sw.type, CommandType.SWITCH)
        self.assertEqual(sw.session, "ABC")
        self.assertEqual(parse_message("/abort").session, "")
        self.assertEqual(parse_message("/abort ABC now").session, "")
        # Codes outside the session alphabet (no 0/O/1/I) never address a session.
        self.assertEqual(parse_message("/switch O0I").session, "")
        self.assertEqual(parse_message("/abort ab1").session, "")

    def test_tell(self) -> None:
        from ccbridge.ports.im.commands import CommandType, parse_message

        p = parse_message("/tell ABC deploy now")
        self.assertEqual((p.type, p.session, p.text), (CommandType.TELL, "ABC", "deploy now"))

        p = parse_message("/tell fix the tests")
        self.assertEqual((p.session, p.text), ("", "fix the tests"))

        p = parse_message("/tell ABC")
        self.assertEqual((p.session, p.text), ("", "ABC"))

        p = parse_message("/tell XYZ line one\nline two")
        self.assertEqual(p.text, "line one\nline two")

    def test_bang_shorthand(self) -> None:
        from ccbridge.ports.im.commands import CommandType, parse_message

        for text, session, body in (
            ("! run the tests", "", "run the tests"),
            ("!XYZ run the tests", "XYZ", "run the tests"),
            ("! XYZ run the tests", "XYZ", "run the tests"),
            ("!stop", "", "stop"),
        ):
            p = parse_message(text)
            self.assertEqual(p.type, CommandType.INSTRUCTION, text)
            self.assertEqual((p.session, p.text), (session, body), text)

    def test_session_prefix_uses_restricted_alphabet(self) -> None:
        from ccbridge.ports.im.commands import CommandType, parse_message

        p = parse_message("XYZ: 42")
        self.assertEqual((p.type, p.session, p.text), (CommandType.SESSION_REPLY, "XYZ", "42"))
        self.assertEqual(p.raw, "XYZ: 42")

        # O and I are not in the alphabet; lower case is not a code.
        self.assertEqual(parse_message("FOO: bar").type, CommandType.MESSAGE)
        self.assertEqual(parse_message("ASK: bar").type, CommandType.SESSION_REPLY)
        self.assertEqual(parse_message("abc: bar").type, CommandType.MESSAGE)
        self.assertEqual(parse_message("looks good").type, CommandType.MESSAGE)

    def test_format_status(self) -> None:
        from ccbridge.contracts.v1 import Session
        from ccbridge.ports.im.commands import format_status

        sessions = [Session(id="ABC", description="api"), Session(id="XYZ", description="web")]
        out = format_status(sessions, "XYZ", paused=True)
        self.assertIn("`ABC` - api", out)
        self.assertIn("`XYZ` \\* - web", out)
        self.assertIn("paused", out)
        self.assertIn("No active sessions", format_status([], None, paused=False))


if __name__ == "__main__":
    unittest.main()
