import tempfile
import unittest
from pathlib import Path
from unittest import mock

from fakes import FakeClock, FakeProcessProbe
from sleep_preventer import reaper as reaper_module
from sleep_preventer.reaper import LivenessReaper
from sleep_preventer.session_store import SessionStore


class TestLivenessReaper(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.clock = FakeClock()
        self.store = SessionStore(Path(self.tmp.name) / "sessions.json", time_source=self.clock)
        self.probe = FakeProcessProbe()
        self.reaper = LivenessReaper(
            self.store,
            self.probe,
            grace_period=10.0,
            idle_cpu_threshold=1.0,
            probe_timeout=0.5,
            time_source=self.clock,
        )

    def tearDown(self) -> None:
        self.reaper.shutdown()
        self.tmp.cleanup()

    def test_dead_process_removed_even_inside_grace_period(self) -> None:
        self.store.register(11)
        report = self.reaper.run_once()
        self.assertEqual(report.removed, {11: reaper_module.PROCESS_GONE})
        self.assertEqual(self.store.count(), 0)

    def test_young_session_never_reaped_for_idleness(self) -> None:
        self.store.register(11)
        self.probe.alive.add(11)
        self.probe.cpu[11] = 0.0
        self.clock.advance(9.9)

        report = self.reaper.run_once()
        self.assertEqual(report.kept, {11: reaper_module.GRACE_PERIOD})
        self.assertEqual(self.store.count(), 1)

    def test_idle_session_past_grace_is_removed(self) -> None:
        self.store.register(11)
        self.probe.alive.add(11)
        self.probe.cpu[11] = 0.3
        self.clock.advance(15)

        report = self.reaper.run_once()
        self.assertEqual(report.removed, {11: reaper_module.IDLE})
        self.assertEqual(self.store.count(), 0)

    def test_busy_session_is_kept(self) -> None:
        self.store.register(11)
        self.probe.alive.add(11)
        self.probe.cpu[11] = 42.0
        self.clock.advance(60)

        report = self.reaper.run_once()
        self.assertEqual(report.kept, {11: reaper_module.BUSY})

    def test_unknown_cpu_is_treated_as_not_idle(self) -> None:
        self.store.register(11)
        self.probe.alive.add(11)
        self.probe.cpu[11] = None
        self.clock.advance(60)

        report = self.reaper.run_once()
        self.assertEqual(report.kept, {11: reaper_module.CPU_UNKNOWN})
        self.assertEqual(self.store.count(), 1)

    def test_grace_uses_first_registration_time(self) -> None:
        self.store.register(11)
        self.probe.alive.add(11)
        self.probe.cpu[11] = 0.0
        self.clock.advance(8)
        self.store.register(11)
        self.clock.advance(4)

        report = self.reaper.run_once()
        self.assertEqual(report.removed, {11: reaper_module.IDLE})

    def test_refresh_during_pass_wins_over_removal(self) -> None:
        self.store.register(11)
        self.probe.alive.add(11)
        self.clock.advance(30)

        def refresh_then_report_idle(pid):
            # Registration lands while the probe is in flight
            self.clock.advance(1)
            self.store.register(pid)
            return 0.0

        with mock.patch.object(self.probe, "cpu_percent", side_effect=refresh_then_report_idle):
            report = self.reaper.run_once()

        self.assertEqual(report.removed, {})
        self.assertEqual(report.kept, {11: "refreshed"})
        self.assertEqual(self.store.count(), 1)

    def test_refresh_on_same_clock_reading_wins_over_removal(self) -> None:
        self.store.register(11)
        self.probe.alive.add(11)
        self.clock.advance(30)

        def refresh_then_report_idle(pid):
            self.store.register(pid)
            return 0.0

        with mock.patch.object(self.probe, "cpu_percent", side_effect=refresh_then_report_idle):
            report = self.reaper.run_once()

        self.assertEqual(report.kept, {11: "refreshed"})
        self.assertEqual(self.store.count(), 1)

    def test_slow_probe_does_not_block_other_sessions(self) -> None:
        for pid in (11, 12):
            self.store.register(pid)
            self.probe.alive.add(pid)
            self.probe.cpu[pid] = 0.0
        self.probe.delays[11] = 2.0
        self.clock.advance(30)

        report = self.reaper.run_once()
        self.assertEqual(report.kept.get(11), reaper_module.PROBE_TIMEOUT)
        self.assertEqual(report.removed.get(12), reaper_module.IDLE)
        self.assertEqual([s.id for s in self.store.snapshot()], [11])

    def test_hung_check_does_not_starve_later_passes(self) -> None:
        reaper = LivenessReaper(
            self.store,
            self.probe,
            grace_period=10.0,
            probe_timeout=0.2,
            max_workers=1,
            time_source=self.clock,
        )
        self.addCleanup(reaper.shutdown)
        for pid in (11, 12):
            self.store.register(pid)
            self.probe.alive.add(pid)
            self.probe.cpu[pid] = 0.0
        self.probe.delays[11] = 1.5
        self.clock.advance(30)

        first = reaper.run_once()
        self.assertEqual(first.kept, {11: reaper_module.PROBE_TIMEOUT, 12: reaper_module.PROBE_TIMEOUT})

        # 11 exits while its old check is still stuck in the first pool
        self.probe.alive.discard(11)
        del self.probe.delays[11]

        second = reaper.run_once()
        self.assertEqual(second.removed, {11: reaper_module.PROCESS_GONE, 12: reaper_module.IDLE})
        self.assertEqual(self.store.count(), 0)

    def test_probe_exception_keeps_session(self) -> None:
        self.store.register(11)
        with mock.patch.object(self.probe, "exists", side_effect=RuntimeError("boom")):
            report = self.reaper.run_once()
        self.assertEqual(report.kept, {11: reaper_module.PROBE_ERROR})
        self.assertEqual(self.store.count(), 1)

    def test_empty_store_pass(self) -> None:
        report = self.reaper.run_once()
        self.assertEqual(report.examined, 0)
        self.assertEqual(report.to_dict(), {"examined": 0, "removed": {}, "kept": {}})


if __name__ == "__main__":
    unittest.main()
