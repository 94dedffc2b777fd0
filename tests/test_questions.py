import threading
import unittest

from fakes import FakeClock, HomeTestCase


class TestQuestionAnswerChannel(HomeTestCase):
    def _setup(self, **kw):
        from ccbridge.kernel.questions import QuestionAnswerChannel
        from ccbridge.kernel.sessions import SessionRegistry

        store = self.open_store()
        SessionRegistry(store, id_factory=lambda: "XYZ").register("a")
        return store, QuestionAnswerChannel(store, **kw)

    def test_ask_replaces_previous_question(self) -> None:
        _, ch = self._setup()
        ch.ask("XYZ", "first?")
        ch.ask("XYZ", "second?", ["yes", "no"])
        q = ch.pending("XYZ")
        self.assertEqual(q.text, "second?")
        self.assertEqual(q.choices, ["yes", "no"])
        self.assertEqual(len(ch.list_pending()), 1)

    def test_ask_unknown_session(self) -> None:
        from ccbridge.kernel.errors import NotFoundError

        _, ch = self._setup()
        with self.assertRaises(NotFoundError):
            ch.ask("QQQ", "hello?")

    def test_answer_only_once_then_take(self) -> None:
        _, ch = self._setup()
        self.assertFalse(ch.answer("XYZ", "nobody asked"))
        ch.ask("XYZ", "port?")
        self.assertIsNone(ch.take_answer("XYZ"))
        self.assertTrue(ch.answer("XYZ", "42"))
        self.assertFalse(ch.answer("XYZ", "43"))
        self.assertIsNone(ch.pending("XYZ"))
        self.assertEqual(ch.take_answer("XYZ"), "42")
        self.assertIsNone(ch.take_answer("XYZ"))

    def test_concurrent_take_answer_returns_to_exactly_one_reader(self) -> None:
        from ccbridge.kernel.questions import QuestionAnswerChannel

        _, ch = self._setup()
        ch.ask("XYZ", "port?")
        ch.answer("XYZ", "42")

        results = []
        lock = threading.Lock()
        barrier = threading.Barrier(2)

        def reader() -> None:
            other = QuestionAnswerChannel(self.open_store())
            barrier.wait()
            value = other.take_answer("XYZ")
            with lock:
                results.append(value)

        threads = [threading.Thread(target=reader) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(sorted(results, key=lambda v: v is None), ["42", None])

    def test_take_answer_or_clear(self) -> None:
        _, ch = self._setup()
        ch.ask("XYZ", "port?")
        self.assertIsNone(ch.take_answer_or_clear("XYZ"))
        self.assertIsNone(ch.pending("XYZ"))
        # Clearing also means a late answer has nowhere to go.
        self.assertFalse(ch.answer("XYZ", "late"))

        ch.ask("XYZ", "again?")
        ch.answer("XYZ", "yes")
        self.assertEqual(ch.take_answer_or_clear("XYZ"), "yes")

    def test_wait_for_answer_returns_answer(self) -> None:
        clock = FakeClock()
        store, ch = self._setup(sleep=clock.sleep, clock=clock)
        ch.ask("XYZ", "port?")
        clock.on_sleep = lambda n: ch.answer("XYZ", "8080") if n == 3 else None
        self.assertEqual(ch.wait_for_answer("XYZ", timeout=30, poll_interval=0.01), "8080")
        self.assertEqual(len(clock.sleeps), 3)

    def test_wait_for_answer_times_out(self) -> None:
        from ccbridge.kernel.errors import DeadlineExceeded

        clock = FakeClock()
        _, ch = self._setup(sleep=clock.sleep, clock=clock)
        ch.ask("XYZ", "port?")
        with self.assertRaises(DeadlineExceeded):
            ch.wait_for_answer("XYZ", timeout=2.0, poll_interval=0.5)
        self.assertEqual(clock.sleeps, [0.5, 0.5, 0.5, 0.5])
        self.assertIsNone(ch.pending("XYZ"))


if __name__ == "__main__":
    unittest.main()
