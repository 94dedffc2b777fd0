import threading
import unittest

from fakes import HomeTestCase


class TestInstructionQueue(HomeTestCase):
    def _setup(self):
        from ccbridge.kernel.instructions import InstructionQueue
        from ccbridge.kernel.sessions import SessionRegistry

        store = self.open_store()
        SessionRegistry(store, id_factory=lambda: "ABC").register("a")
        return store, InstructionQueue(store)

    def test_fifo_then_acknowledge_all(self) -> None:
        _, q = self._setup()
        for n in range(5):
            q.enqueue("ABC", f"step {n}")

        pending = q.pending_for("ABC")
        self.assertEqual([i.text for i in pending], [f"step {n}" for n in range(5)])
        self.assertEqual(q.acknowledge_all("ABC"), 5)
        self.assertEqual(q.pending_for("ABC"), [])
        self.assertEqual(q.acknowledge_all("ABC"), 0)

    def test_unknown_session_is_not_found(self) -> None:
        from ccbridge.kernel.errors import NotFoundError

        _, q = self._setup()
        with self.assertRaises(NotFoundError):
            q.enqueue("XYZ", "nope")

    def test_message_refs_are_kept(self) -> None:
        _, q = self._setup()
        iid = q.enqueue("ABC", "deploy", source_ref=11)
        q.set_queued_ack(iid, 12)
        q.set_queued_ack(iid, None)
        item = q.pending_for("abc")[0]
        self.assertEqual(item.source_message_ref, 11)
        self.assertEqual(item.queued_ack_ref, 12)
        self.assertFalse(item.acknowledged)

    def test_take_pending_delivers_once(self) -> None:
        _, q = self._setup()
        q.enqueue("ABC", "one")
        q.enqueue("ABC", "two")
        self.assertEqual([i.text for i in q.take_pending("ABC")], ["one", "two"])
        self.assertEqual(q.take_pending("ABC"), [])

    def test_concurrent_take_pending_never_duplicates(self) -> None:
        from ccbridge.kernel.instructions import InstructionQueue

        _, q = self._setup()
        for n in range(20):
            q.enqueue("ABC", f"i{n}")

        got = []
        lock = threading.Lock()

        def reader() -> None:
            items = InstructionQueue(self.open_store()).take_pending("ABC")
            with lock:
                got.extend(i.text for i in items)

        threads = [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(sorted(got), sorted(f"i{n}" for n in range(20)))


if __name__ == "__main__":
    unittest.main()
