import json
import tempfile
import threading
import unittest
from pathlib import Path

from fakes import FakeClock
from sleep_preventer.errors import InvalidSessionId
from sleep_preventer.session_store import SessionStore


class TestSessionStore(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.state_file = Path(self.tmp.name) / "sessions.json"
        self.clock = FakeClock()
        self.store = SessionStore(self.state_file, time_source=self.clock)

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def test_register_creates_session(self) -> None:
        session = self.store.register(101, origin="repo git:(main)")
        self.assertEqual(session.id, 101)
        self.assertEqual(session.registered_at, self.clock.now)
        self.assertEqual(session.last_refreshed_at, self.clock.now)
        self.assertEqual(session.origin, "repo git:(main)")
        self.assertEqual(self.store.count(), 1)

    def test_register_twice_refreshes_single_session(self) -> None:
        first = self.store.register(101)
        self.clock.advance(5)
        second = self.store.register(101)

        self.assertEqual(self.store.count(), 1)
        self.assertEqual(second.registered_at, first.registered_at)
        self.assertEqual(second.last_refreshed_at, first.last_refreshed_at + 5)

    def test_refresh_never_moves_last_refreshed_backwards(self) -> None:
        self.store.register(101)
        self.clock.advance(-30)
        refreshed = self.store.register(101)
        self.assertEqual(refreshed.last_refreshed_at, refreshed.registered_at)

    def test_refresh_keeps_origin_when_not_given(self) -> None:
        self.store.register(101, origin="api")
        refreshed = self.store.register(101)
        self.assertEqual(refreshed.origin, "api")

    def test_deregister_unknown_is_noop(self) -> None:
        self.assertFalse(self.store.deregister(999))
        self.store.register(101)
        self.assertTrue(self.store.deregister(101))
        self.assertFalse(self.store.deregister(101))
        self.assertEqual(self.store.count(), 0)

    def test_count_matches_unique_registered_ids(self) -> None:
        for pid in (1, 2, 3, 2, 1):
            self.store.register(pid)
        self.store.deregister(3)
        self.store.deregister(4)
        self.assertEqual(self.store.count(), 2)
        self.assertEqual(sorted(s.id for s in self.store.snapshot()), [1, 2])

    def test_invalid_ids_rejected(self) -> None:
        for bad in (0, -5, "abc", None, True, 1.5):
            with self.assertRaises(InvalidSessionId):
                self.store.register(bad)
        self.assertEqual(self.store.count(), 0)

    def test_snapshot_is_most_recent_first_copy(self) -> None:
        self.store.register(1)
        self.clock.advance(1)
        self.store.register(2)
        self.clock.advance(1)
        self.store.register(1)

        snapshot = self.store.snapshot()
        self.assertEqual([s.id for s in snapshot], [1, 2])

        self.store.deregister(1)
        self.assertEqual(len(snapshot), 2)

    def test_clear_removes_everything(self) -> None:
        for pid in range(1, 6):
            self.store.register(pid)
        self.assertEqual(self.store.clear(), 5)
        self.assertEqual(self.store.count(), 0)
        self.assertEqual(json.loads(self.state_file.read_text())["sessions"], [])

    def test_remove_if_unchanged_respects_refresh(self) -> None:
        session = self.store.register(101)
        self.clock.advance(2)
        self.store.register(101)

        self.assertFalse(self.store.remove_if_unchanged(101, session.generation))
        self.assertEqual(self.store.count(), 1)

        current = self.store.get(101)
        self.assertTrue(self.store.remove_if_unchanged(101, current.generation))
        self.assertEqual(self.store.count(), 0)

    def test_register_after_removal_creates_fresh_session(self) -> None:
        old = self.store.register(101)
        self.assertTrue(self.store.remove_if_unchanged(101, old.generation))
        self.clock.advance(20)
        fresh = self.store.register(101)
        self.assertEqual(fresh.registered_at, old.registered_at + 20)

    def test_refresh_on_same_clock_reading_blocks_removal(self) -> None:
        self.store.register(1)
        judged = self.store.snapshot()[0]
        refreshed = self.store.register(1)
        self.assertEqual(refreshed.last_refreshed_at, judged.last_refreshed_at)

        self.assertFalse(self.store.remove_if_unchanged(1, judged.generation))
        self.assertIsNotNone(self.store.get(1))

    def test_reregistered_id_is_not_removed_by_old_judgement(self) -> None:
        judged = self.store.register(1)
        self.store.deregister(1)
        self.store.register(1)
        self.assertFalse(self.store.remove_if_unchanged(1, judged.generation))
        self.assertEqual(self.store.count(), 1)

    def test_generation_is_not_persisted(self) -> None:
        self.store.register(1)
        persisted = json.loads(self.state_file.read_text())["sessions"][0]
        self.assertNotIn("generation", persisted)

    def test_state_survives_restart(self) -> None:
        self.store.register(101, origin="a")
        self.store.register(202)

        restarted = SessionStore(self.state_file, time_source=self.clock)
        self.assertEqual(sorted(s.id for s in restarted.snapshot()), [101, 202])
        self.assertEqual(restarted.get(101).origin, "a")

        # Re-registration after restart is an idempotent refresh
        restarted.register(101)
        self.assertEqual(restarted.count(), 2)

    def test_corrupt_state_starts_empty_and_is_moved_aside(self) -> None:
        self.state_file.write_text("{not json", encoding="utf-8")
        store = SessionStore(self.state_file, time_source=self.clock)
        self.assertEqual(store.count(), 0)
        self.assertTrue(self.state_file.with_name("sessions.json.corrupt").exists())

        store.register(5)
        self.assertEqual(SessionStore(self.state_file).count(), 1)

    def test_invalid_entries_are_skipped(self) -> None:
        self.state_file.write_text(json.dumps({
            "version": 1,
            "sessions": [
                {"id": 7, "registered_at": 10.0, "last_refreshed_at": 12.0},
                {"id": "nope", "registered_at": 10.0},
                {"registered_at": 10.0},
                {"id": 8, "registered_at": "soon"},
            ],
        }), encoding="utf-8")
        store = SessionStore(self.state_file, time_source=self.clock)
        self.assertEqual([s.id for s in store.snapshot()], [7])

    def test_unexpected_layout_treated_as_corrupt(self) -> None:
        self.state_file.write_text(json.dumps([1, 2, 3]), encoding="utf-8")
        store = SessionStore(self.state_file, time_source=self.clock)
        self.assertEqual(store.count(), 0)

    def test_concurrent_registration_does_not_duplicate(self) -> None:
        barrier = threading.Barrier(16)

        def worker(pid: int) -> None:
            barrier.wait()
            for _ in range(20):
                self.store.register(pid)

        threads = [threading.Thread(target=worker, args=(i % 4 + 1,)) for i in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(self.store.count(), 4)
        persisted = json.loads(self.state_file.read_text())["sessions"]
        self.assertEqual(sorted(s["id"] for s in persisted), [1, 2, 3, 4])


if __name__ == "__main__":
    unittest.main()
