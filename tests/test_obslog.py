import io
import json
import logging
import unittest


class TestJsonlLogging(unittest.TestCase):
    def test_formatter_emits_one_json_object_with_correlation_fields(self) -> None:
        from ccbridge.util.obslog import JsonlFormatter

        stream = io.StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(JsonlFormatter(component="listener"))
        log = logging.getLogger("ccbridge.test.obslog")
        log.propagate = False
        log.addHandler(handler)
        try:
            log.warning("queued %s", "deploy", extra={"session_id": "ABC", "update_id": 7, "hook": ""})
        finally:
            log.removeHandler(handler)

        lines = stream.getvalue().splitlines()
        self.assertEqual(len(lines), 1)
        payload = json.loads(lines[0])
        self.assertEqual(payload["component"], "listener")
        self.assertEqual(payload["level"], "WARNING")
        self.assertEqual(payload["msg"], "queued deploy")
        self.assertEqual(payload["session_id"], "ABC")
        self.assertEqual(payload["update_id"], "7")
        self.assertNotIn("hook", payload)
        self.assertTrue(payload["ts"].endswith("Z"))

    def test_exception_is_included(self) -> None:
        from ccbridge.util.obslog import JsonlFormatter

        fmt = JsonlFormatter(component="")
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            import sys

            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())
        payload = json.loads(fmt.format(record))
        self.assertEqual(payload["component"], "ccbridge")
        self.assertIn("RuntimeError: boom", payload["exc"])


if __name__ == "__main__":
    unittest.main()
