#!/usr/bin/env python3
"""
Liveness Reaper

Reclaims sessions whose reporter died or went idle without deregistering
(e.g. the user interrupted the reporter). Probes run outside the store lock on a
small thread pool, each bounded in time; removals are conditional so that a
registration racing with the pass is never lost.
"""

import logging
import math
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from . import metrics
from .process_probe import ProcessProbe
from .session_store import Session, SessionStore

logger = logging.getLogger(__name__)

# Decision reasons
PROCESS_GONE = "process_gone"
IDLE = "idle"
GRACE_PERIOD = "grace_period"
BUSY = "busy"
CPU_UNKNOWN = "cpu_unknown"
PROBE_TIMEOUT = "probe_timeout"
PROBE_ERROR = "probe_error"


@dataclass
class ReapDecision:
    session_id: int
    stale: bool
    reason: str
    cpu: Optional[float] = None


@dataclass
class ReapReport:
    examined: int = 0
    removed: Dict[int, str] = field(default_factory=dict)
    kept: Dict[int, str] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            'examined': self.examined,
            'removed': {str(k): v for k, v in self.removed.items()},
            'kept': {str(k): v for k, v in self.kept.items()},
        }


class LivenessReaper:
    def __init__(
        self,
        store: SessionStore,
        probe: ProcessProbe,
        grace_period: float = 10.0,
        idle_cpu_threshold: float = 1.0,
        probe_timeout: float = 2.0,
        max_workers: int = 4,
        time_source: Callable[[], float] = time.time,
    ):
        self.store = store
        self.probe = probe
        self.grace_period = grace_period
        self.idle_cpu_threshold = idle_cpu_threshold
        self.probe_timeout = probe_timeout
        self.max_workers = max_workers
        self._time = time_source
        self._executor = self._new_executor()
        self._executor_lock = threading.Lock()
        # Timed-out probes still occupying a worker
        self._stuck: List[Future] = []

    def _new_executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="reaper_probe")

    def evaluate(self, session: Session, now: float) -> ReapDecision:
        """Judge a single session. Unknown state keeps the session"""
        if not self.probe.exists(session.id):
            return ReapDecision(session.id, True, PROCESS_GONE)

        # Young sessions survive short legitimate pauses (e.g. context compaction)
        if session.age(now) < self.grace_period:
            return ReapDecision(session.id, False, GRACE_PERIOD)

        cpu = self.probe.cpu_percent(session.id)
        if cpu is None:
            return ReapDecision(session.id, False, CPU_UNKNOWN)
        if cpu < self.idle_cpu_threshold:
            return ReapDecision(session.id, True, IDLE, cpu)
        return ReapDecision(session.id, False, BUSY, cpu)

    def _collect_decisions(self, sessions: List[Session], now: float) -> List[ReapDecision]:
        with self._executor_lock:
            futures = [(s, self._executor.submit(self.evaluate, s, now)) for s in sessions]

        waves = max(1, math.ceil(len(sessions) / self.max_workers))
        deadline = time.monotonic() + self.probe_timeout * waves

        decisions = []
        timed_out: List[Future] = []
        for session, future in futures:
            remaining = max(0.0, deadline - time.monotonic())
            try:
                decisions.append(future.result(timeout=remaining))
            except FuturesTimeout:
                if not future.cancel():
                    timed_out.append(future)
                logger.warning(f"Liveness probe for session {session.id} timed out, keeping it")
                decisions.append(ReapDecision(session.id, False, PROBE_TIMEOUT))
            except Exception as e:
                logger.error(f"Liveness probe for session {session.id} failed: {e}")
                decisions.append(ReapDecision(session.id, False, PROBE_ERROR))

        self._recycle_if_exhausted(timed_out)
        return decisions

    def _recycle_if_exhausted(self, timed_out: List[Future]):
        """Replace the pool once hung probes hold every worker"""
        with self._executor_lock:
            self._stuck = [f for f in self._stuck + timed_out if not f.done()]
            if len(self._stuck) < self.max_workers:
                return
            logger.warning(f"{len(self._stuck)} liveness probe(s) hung, starting a fresh probe pool")
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = self._new_executor()
            self._stuck = []

    def run_once(self) -> ReapReport:
        """One reaper pass over a snapshot of the store"""
        sessions = self.store.snapshot()
        report = ReapReport(examined=len(sessions))
        if not sessions:
            return report

        now = self._time()
        by_id = {s.id: s for s in sessions}

        for decision in self._collect_decisions(sessions, now):
            if not decision.stale:
                report.kept[decision.session_id] = decision.reason
                continue

            session = by_id[decision.session_id]
            if self.store.remove_if_unchanged(session.id, session.generation):
                report.removed[session.id] = decision.reason
                metrics.sessions_reaped.labels(reason=decision.reason).inc()
                cpu_note = f", cpu={decision.cpu:.1f}%" if decision.cpu is not None else ""
                logger.info(f"Reaped session {session.id} ({decision.reason}{cpu_note})")
            else:
                # Refreshed or removed since the snapshot
                report.kept[session.id] = "refreshed"

        return report

    def shutdown(self):
        with self._executor_lock:
            self._executor.shutdown(wait=False, cancel_futures=True)
