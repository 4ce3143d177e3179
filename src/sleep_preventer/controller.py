#!/usr/bin/env python3
"""
Sleep Controller - control and query interface of the daemon.

Every mutating call reconciles synchronously before returning, so a reporter
that gets a response knows the resource is already in the right state.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional

from .power import PowerController, create_power_controller
from .process_probe import ProcessProbe
from .reaper import LivenessReaper, ReapReport
from .reconciler import Reconciler
from .safety_monitor import SafetyMonitor, ThermalFailurePolicy
from .session_store import SessionStore
from .settings import SettingsManager
from .thermal import ThermalSensor, create_thermal_sensor

logger = logging.getLogger(__name__)


class SleepController:
    def __init__(
        self,
        store: SessionStore,
        safety: SafetyMonitor,
        reaper: LivenessReaper,
        reconciler: Reconciler,
        probe: ProcessProbe,
        settings_manager: SettingsManager,
        time_source: Callable[[], float] = time.time,
    ):
        self.store = store
        self.safety = safety
        self.reaper = reaper
        self.reconciler = reconciler
        self.probe = probe
        self.settings_manager = settings_manager
        self._time = time_source

    # ------------------------------------------------------------------
    # Reporter operations
    # ------------------------------------------------------------------

    def register(self, session_id: Any, origin: Optional[str] = None) -> Dict[str, Any]:
        session = self.safety.register(session_id, origin=origin)
        result = self.reconciler.reconcile(reason=f"register {session.id}")

        status = self.status()
        status['session'] = session.to_dict()
        status['applied'] = result.applied
        return status

    def deregister(self, session_id: Any) -> Dict[str, Any]:
        removed = self.store.deregister(session_id)
        result = self.reconciler.reconcile(reason=f"deregister {session_id}")

        status = self.status()
        status['removed'] = removed
        status['applied'] = result.applied
        return status

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def status(self) -> Dict[str, Any]:
        return {
            'session_count': self.store.count(),
            'resource_enabled': self.reconciler.resource_enabled,
            'safety_state': self.safety.state.value,
            'overheating': self.safety.last_reading,
            'prevention_enabled': self.prevention_enabled,
        }

    def list_sessions(self) -> Dict[str, Any]:
        now = self._time()
        sessions = self.store.snapshot()
        active = []
        for session in sessions:
            active.append({
                'id': session.id,
                'age_seconds': int(session.age(now)),
                'cpu': self.probe.cpu_percent(session.id),
                'origin': session.origin or self.probe.origin(session.id),
            })

        active_ids = {s.id for s in sessions}
        try:
            inactive = [pid for pid in self.probe.reporter_pids() if pid not in active_ids]
        except Exception as e:
            logger.error(f"Failed to enumerate reporter processes: {e}")
            inactive = []

        return {
            'active': active,
            'inactive': inactive,
            'resource_enabled': self.reconciler.resource_enabled,
        }

    @property
    def prevention_enabled(self) -> bool:
        return self.settings_manager.settings.prevention_enabled

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def reset(self) -> Dict[str, Any]:
        """Clear all sessions and release sleep prevention"""
        cleared = self.store.clear()
        logger.warning(f"Reset requested, cleared {cleared} session(s)")
        self.reconciler.reconcile(reason="reset")

        status = self.status()
        status['cleared'] = cleared
        return status

    def set_prevention_enabled(self, enabled: bool) -> Dict[str, Any]:
        self.settings_manager.update(prevention_enabled=bool(enabled))
        logger.info(f"Sleep prevention switched {'on' if enabled else 'off'}")
        self.reconciler.reconcile(reason="manual switch")
        return self.status()

    def run_reaper(self) -> ReapReport:
        report = self.reaper.run_once()
        self.reconciler.reconcile(reason="reaper")
        return report

    def check_thermal(self) -> Dict[str, Any]:
        tripped = self.safety.tick()
        self.reconciler.reconcile(reason="safety")

        status = self.status()
        status['tripped'] = tripped
        return status

    def shutdown(self) -> bool:
        """Stop probes and release the resource if it is held"""
        self.reaper.shutdown()
        return self.reconciler.release()


def create_sleep_controller(
    settings_manager: SettingsManager,
    power: Optional[PowerController] = None,
    sensor: Optional[ThermalSensor] = None,
    probe: Optional[ProcessProbe] = None,
    time_source: Callable[[], float] = time.time,
) -> SleepController:
    """Wire a controller from settings; collaborators can be injected"""
    settings = settings_manager.settings

    store = SessionStore(settings_manager.data_dir / "sessions.json", time_source=time_source)
    if probe is None:
        probe = ProcessProbe(
            reporter_name=settings.reporter_process_name,
            cpu_sample_interval=settings.cpu_sample_interval,
        )
    if power is None:
        power = create_power_controller(settings.power_backend, timeout=settings.pmset_timeout)
    if sensor is None:
        sensor = create_thermal_sensor()

    safety = SafetyMonitor(
        sensor,
        store,
        failure_policy=ThermalFailurePolicy(settings.thermal_failure_policy),
        time_source=time_source,
    )
    reaper = LivenessReaper(
        store,
        probe,
        grace_period=settings.grace_period_seconds,
        idle_cpu_threshold=settings.idle_cpu_threshold,
        probe_timeout=settings.probe_timeout,
        time_source=time_source,
    )
    reconciler = Reconciler(
        store,
        safety,
        power,
        prevention_enabled=lambda: settings_manager.settings.prevention_enabled,
        sleep_when_lid_closed=settings.sleep_when_lid_closed,
    )

    logger.info(
        f"SleepController initialized (power={power.name}, thermal={sensor.name}, "
        f"grace={settings.grace_period_seconds}s, idle<{settings.idle_cpu_threshold}%)"
    )
    return SleepController(store, safety, reaper, reconciler, probe, settings_manager, time_source=time_source)
