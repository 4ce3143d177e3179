#!/usr/bin/env python3
"""
Reconciler
Derives the desired sleep-prevention state and drives the power toggle.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from . import metrics
from .power import PowerController
from .safety_monitor import SafetyMonitor, SafetyState
from .session_store import SessionStore

logger = logging.getLogger(__name__)


def compute_desired(session_count: int, safety_state: SafetyState, prevention_enabled: bool = True) -> bool:
    return session_count > 0 and safety_state is SafetyState.NORMAL and prevention_enabled


@dataclass
class ReconcileResult:
    desired: bool
    applied: bool
    resource_enabled: bool
    error: Optional[str] = None


class Reconciler:
    """
    Serialized apply step.

    The desired value is recomputed under the apply lock, so concurrent triggers
    always converge on the latest store and safety state. The cached state is only
    updated after a successful toggle; a failed toggle is retried on the next pass.
    """

    def __init__(
        self,
        store: SessionStore,
        safety: SafetyMonitor,
        power: PowerController,
        prevention_enabled: Callable[[], bool] = lambda: True,
        sleep_when_lid_closed: bool = True,
    ):
        self.store = store
        self.safety = safety
        self.power = power
        self.prevention_enabled = prevention_enabled
        self.sleep_when_lid_closed = sleep_when_lid_closed

        self._apply_lock = threading.Lock()
        # None until the first toggle succeeds, so the first pass always applies
        self._resource_enabled: Optional[bool] = None

    @property
    def resource_enabled(self) -> bool:
        return bool(self._resource_enabled)

    def _toggle(self, desired: bool) -> bool:
        try:
            ok = bool(self.power.set_sleep_disabled(desired))
        except Exception as e:
            logger.error(f"Power toggle raised: {e}")
            ok = False
        metrics.toggles.labels(result='ok' if ok else 'error').inc()
        return ok

    def reconcile(self, reason: str = "") -> ReconcileResult:
        with self._apply_lock:
            count = self.store.count()
            desired = compute_desired(count, self.safety.state, self.prevention_enabled())
            metrics.sessions_active.set(count)

            if desired == self._resource_enabled:
                return ReconcileResult(desired=desired, applied=False, resource_enabled=desired)

            previous = self._resource_enabled
            if not self._toggle(desired):
                logger.warning(f"Failed to apply sleep prevention={desired} ({reason}), will retry")
                return ReconcileResult(
                    desired=desired,
                    applied=False,
                    resource_enabled=bool(previous),
                    error="toggle_failed",
                )

            self._resource_enabled = desired
            metrics.prevention_active.set(1 if desired else 0)
            logger.info(f"Sleep prevention {'enabled' if desired else 'released'} "
                        f"(sessions={count}, reason={reason or 'n/a'})")

            if not desired and previous and self.sleep_when_lid_closed:
                self._sleep_if_lid_closed()

            return ReconcileResult(desired=desired, applied=True, resource_enabled=desired)

    def _sleep_if_lid_closed(self):
        try:
            if self.power.is_lid_closed():
                self.power.sleep_now()
        except Exception as e:
            logger.error(f"Lid-closed sleep check failed: {e}")

    def release(self) -> bool:
        """Force the released state (shutdown path). Returns True if released"""
        with self._apply_lock:
            if self._resource_enabled is False:
                return True
            if not self._toggle(False):
                logger.error("Failed to release sleep prevention")
                return False
            self._resource_enabled = False
            metrics.prevention_active.set(0)
            logger.info("Sleep prevention released")
            return True
