#!/usr/bin/env python3
"""
Safety Monitor
Thermal latch that overrides sleep prevention when the machine overheats.

NORMAL --(warning)--> TRIPPED: store cleared, resource released
TRIPPED --(next registration)--> NORMAL
"""

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

from . import metrics
from .errors import ThermalReadError
from .session_store import Session, SessionStore
from .thermal import ThermalSensor

logger = logging.getLogger(__name__)


class SafetyState(Enum):
    NORMAL = "normal"
    TRIPPED = "tripped"


class ThermalFailurePolicy(Enum):
    FAIL_OPEN = "fail_open"      # unreadable sensor counts as not overheating
    FAIL_CLOSED = "fail_closed"  # unreadable sensor counts as overheating


class SafetyMonitor:
    def __init__(
        self,
        sensor: ThermalSensor,
        store: SessionStore,
        failure_policy: ThermalFailurePolicy = ThermalFailurePolicy.FAIL_OPEN,
        time_source: Callable[[], float] = time.time,
    ):
        self.sensor = sensor
        self.store = store
        self.failure_policy = failure_policy
        self._time = time_source

        # Guards the latch; also held across trip+clear and register+rearm
        self._lock = threading.RLock()
        self._state = SafetyState.NORMAL
        self.last_reading: Optional[bool] = None
        self.last_checked_at: Optional[float] = None
        self.tripped_at: Optional[float] = None
        self.trip_count = 0

    @property
    def state(self) -> SafetyState:
        with self._lock:
            return self._state

    def read_sensor(self) -> bool:
        """Read the thermal signal, applying the failure policy on errors"""
        try:
            return bool(self.sensor.is_overheating())
        except ThermalReadError as e:
            fallback = self.failure_policy is ThermalFailurePolicy.FAIL_CLOSED
            logger.warning(f"Thermal read failed ({e}); {self.failure_policy.value} -> overheating={fallback}")
            return fallback
        except Exception as e:
            fallback = self.failure_policy is ThermalFailurePolicy.FAIL_CLOSED
            logger.error(f"Unexpected thermal sensor error ({e}); {self.failure_policy.value} -> overheating={fallback}")
            return fallback

    def tick(self) -> bool:
        """
        Poll the sensor once. Returns True if this tick tripped the latch.

        An already tripped latch is not tripped again, so the store is cleared
        once per warning episode.
        """
        overheating = self.read_sensor()

        with self._lock:
            self.last_reading = overheating
            self.last_checked_at = self._time()
            if not overheating or self._state is SafetyState.TRIPPED:
                return False
            self._state = SafetyState.TRIPPED
            self.tripped_at = self.last_checked_at
            self.trip_count += 1
            cleared = self.store.clear()

        metrics.thermal_trips.inc()
        metrics.safety_tripped.set(1)
        logger.warning(f"Thermal warning detected, cleared {cleared} session(s) and forcing sleep re-enable")
        return True

    def rearm(self) -> bool:
        """Return to NORMAL (called on a successful registration)"""
        with self._lock:
            if self._state is SafetyState.NORMAL:
                return False
            self._state = SafetyState.NORMAL

        metrics.safety_tripped.set(0)
        logger.info("Safety latch re-armed by new registration")
        return True

    def register(self, session_id: Any, origin: Optional[str] = None) -> Session:
        """
        Store a registration and re-arm the latch in one step.

        A trip running concurrently either clears before the session is stored
        or waits until the latch is re-armed; it never wipes an acknowledged
        registration.
        """
        with self._lock:
            session = self.store.register(session_id, origin=origin)
            self.rearm()
        return session

    def details(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'state': self._state.value,
                'last_reading': self.last_reading,
                'last_checked_at': self.last_checked_at,
                'tripped_at': self.tripped_at,
                'trip_count': self.trip_count,
                'failure_policy': self.failure_policy.value,
            }
