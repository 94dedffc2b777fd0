import threading
import time
import unittest

from fakes import FakeClock, HomeTestCase

YES_NO = [{"label": "Yes", "value": "allow"}, {"label": "No", "value": "deny"}]


class TestApprovalManager(HomeTestCase):
    def _manager(self, clock=None):
        from ccbridge.kernel.approvals import ApprovalManager

        store = self.open_store()
        if clock is None:
            return ApprovalManager(store)
        return ApprovalManager(store, sleep=clock.sleep, clock=clock)

    def test_create_validates_options(self) -> None:
        m = self._manager()
        with self.assertRaises(ValueError):
            m.create("general", "t", "m", YES_NO[:1])
        with self.assertRaises(ValueError):
            m.create("general", "t", "m", YES_NO * 3)
        with self.assertRaises(ValueError):
            m.create("general", "t", "m", [{"label": "", "value": "a"}, {"label": "B", "value": "b"}])
        with self.assertRaises(ValueError):
            m.create("general", "t", "m", [{"label": "A", "value": "x" * 60}, {"label": "B", "value": "b"}])

        aid = m.create("deploy", "Deploy?", "Push to prod", YES_NO)
        self.assertEqual(len(aid), 8)
        a = m.get(aid)
        self.assertEqual(a.status, "pending")
        self.assertEqual([o.value for o in a.options], ["allow", "deny"])
        self.assertEqual(a.category, "deploy")

    def test_respond_is_exactly_once(self) -> None:
        from ccbridge.kernel.errors import AlreadyResolvedError, NotFoundError

        m = self._manager()
        aid = m.create("general", "t", "m", YES_NO)
        self.assertTrue(m.respond(aid, "allow"))
        self.assertFalse(m.respond(aid, "deny"))
        with self.assertRaises(AlreadyResolvedError):
            m.respond(aid, "deny", strict=True)
        with self.assertRaises(NotFoundError):
            m.respond("nope", "deny", strict=True)
        self.assertEqual(m.get(aid).response_value, "allow")

    def test_concurrent_respond_stores_one_value(self) -> None:
        from ccbridge.kernel.approvals import ApprovalManager
        from ccbridge.kernel.errors import AlreadyResolvedError

        m = self._manager()
        aid = m.create("general", "t", "m", YES_NO)
        outcomes = []
        lock = threading.Lock()
        barrier = threading.Barrier(2)

        def press(value: str) -> None:
            other = ApprovalManager(self.open_store())
            barrier.wait()
            try:
                other.respond(aid, value, strict=True)
                result = "ok"
            except AlreadyResolvedError:
                result = "already"
            with lock:
                outcomes.append((value, result))

        threads = [threading.Thread(target=press, args=(v,)) for v in ("allow", "deny")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(sorted(r for _, r in outcomes), ["already", "ok"])
        winner = [v for v, r in outcomes if r == "ok"][0]
        self.assertEqual(m.get(aid).response_value, winner)

    def test_expire_does_not_override_response(self) -> None:
        m = self._manager()
        aid = m.create("general", "t", "m", YES_NO)
        m.respond(aid, "deny")
        self.assertFalse(m.expire(aid))
        a = m.get(aid)
        self.assertEqual(a.status, "responded")
        self.assertEqual(a.response_value, "deny")

        other = m.create("general", "t", "m", YES_NO)
        self.assertTrue(m.expire(other))
        self.assertFalse(m.expire(other))
        self.assertFalse(m.respond(other, "allow"))

    def test_send_and_await_times_out(self) -> None:
        clock = FakeClock()
        m = self._manager(clock)
        aid = m.create("general", "Deploy?", "Push to prod", YES_NO)
        edits = []

        result = m.send_and_await(aid, lambda a: 77, 2.0, edit_fn=lambda ref, text: edits.append((ref, text)), poll_interval=0.5)

        self.assertFalse(result.approved)
        self.assertTrue(result.timed_out)
        self.assertEqual(m.status(aid), "expired")
        self.assertEqual(m.get(aid).channel_message_ref, 77)
        self.assertAlmostEqual(sum(clock.sleeps), 2.0)
        self.assertEqual(len(edits), 1)
        self.assertEqual(edits[0][0], 77)
        self.assertIn("EXPIRED", edits[0][1])
        self.assertIn("no response received", edits[0][1])

    def test_send_and_await_returns_response(self) -> None:
        clock = FakeClock()
        m = self._manager(clock)
        aid = m.create("general", "t", "m", YES_NO)
        clock.on_sleep = lambda n: m.respond(aid, "allow") if n == 2 else None

        result = m.send_and_await(aid, lambda a: 5, 60.0, poll_interval=1.0)
        self.assertTrue(result.approved)
        self.assertEqual(result.value, "allow")
        self.assertFalse(result.timed_out)
        self.assertEqual(len(clock.sleeps), 2)

    def test_non_first_option_is_not_approved(self) -> None:
        clock = FakeClock()
        m = self._manager(clock)
        aid = m.create("general", "t", "m", YES_NO)
        clock.on_sleep = lambda n: m.respond(aid, "deny")
        result = m.send_and_await(aid, lambda a: 5, 10.0)
        self.assertFalse(result.approved)
        self.assertEqual(result.value, "deny")

    def test_late_response_wins_over_expiry(self) -> None:
        clock = FakeClock()
        m = self._manager(clock)
        aid = m.create("general", "t", "m", YES_NO)

        # The response lands during the final poll interval.
        def on_sleep(n: int) -> None:
            if clock.now >= 1000.0 + 3.0:
                m.respond(aid, "allow")

        clock.on_sleep = on_sleep
        edits = []
        result = m.send_and_await(aid, lambda a: 5, 3.0, edit_fn=lambda r, t: edits.append(t), poll_interval=1.0)
        self.assertTrue(result.approved)
        self.assertEqual(edits, [])

    def test_send_failure_expires_approval(self) -> None:
        clock = FakeClock()
        m = self._manager(clock)
        aid = m.create("general", "t", "m", YES_NO)
        result = m.send_and_await(aid, lambda a: None, 10.0)
        self.assertFalse(result.approved)
        self.assertIsNotNone(result.error)
        self.assertEqual(m.status(aid), "expired")
        self.assertEqual(clock.sleeps, [])

    def test_prune(self) -> None:
        m = self._manager()
        done = m.create("general", "t", "m", YES_NO)
        m.respond(done, "allow")
        stuck = m.create("general", "t", "m", YES_NO)

        self.assertEqual(m.prune(7200), 0)
        self.assertEqual(m.prune(7200, now=time.time() + 3 * 3600), 2)
        self.assertIsNone(m.get(done))
        self.assertIsNone(m.get(stuck))

    def test_rendering(self) -> None:
        from ccbridge.kernel.approvals import build_keyboard, format_expired, format_outcome

        m = self._manager()
        aid = m.create(
            "general",
            "Pick",
            "Which env?",
            [{"label": "Prod", "value": "prod"}, {"label": "Stage", "value": "stage"}, {"label": "Dev", "value": "dev"}],
        )
        a = m.get(aid)
        rows = build_keyboard(a)
        self.assertEqual([len(r) for r in rows], [2, 1])
        self.assertEqual(rows[0][0].data, f"approval:{aid}:prod")
        self.assertIn("APPROVED", format_outcome(a, "prod"))
        self.assertIn("Dev", format_outcome(a, "dev"))
        self.assertIn("EXPIRED", format_expired(a))


if __name__ == "__main__":
    unittest.main()
