#!/usr/bin/env python3
"""
Sleep Preventer Daemon

Runs the liveness reaper every reaper_interval and the thermal safety check every
thermal_interval, each followed by a reconciliation pass, and serves the control
API. On SIGTERM/SIGINT the loop stops and sleep prevention is released.
"""

import atexit
import fcntl
import logging
import os
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from .controller import SleepController, create_sleep_controller
from .errors import DaemonAlreadyRunning
from .logging_config import configure_logging
from .settings import SettingsManager

logger = logging.getLogger(__name__)


class InstanceLock:
    """Exclusive flock so that only one daemon runs per data directory"""

    def __init__(self, lock_path: Path):
        self.lock_path = Path(lock_path)
        self._fd: Optional[int] = None

    def acquire(self):
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.lock_path), os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            os.close(fd)
            raise DaemonAlreadyRunning(f"Another daemon holds {self.lock_path}") from None

        os.ftruncate(fd, 0)
        os.write(fd, f"pid={os.getpid()}\n".encode())
        self._fd = fd

    def release(self):
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
            os.close(self._fd)
        except OSError as e:
            logger.error(f"Error releasing instance lock: {e}")
        self._fd = None


class SleepDaemon:
    """Periodic reaper + safety loop on a background thread"""

    def __init__(
        self,
        controller: SleepController,
        reaper_interval: float = 1.0,
        thermal_interval: float = 30.0,
    ):
        self.controller = controller
        self.reaper_interval = reaper_interval
        self.thermal_interval = thermal_interval

        self.running = False
        self.thread: Optional[threading.Thread] = None
        self.lock = threading.Lock()
        self._wakeup = threading.Event()
        self._last_thermal_check: Optional[float] = None

        logger.info(f"SleepDaemon initialized (reaper={reaper_interval}s, thermal={thermal_interval}s)")

    def start(self):
        with self.lock:
            if self.running:
                logger.warning("SleepDaemon already running")
                return

            self.running = True
            self._wakeup.clear()
            self.thread = threading.Thread(
                target=self._loop,
                daemon=True,
                name="SleepDaemon"
            )
            self.thread.start()
            logger.info("SleepDaemon started")

    def stop(self):
        with self.lock:
            if not self.running:
                return
            self.running = False
            self._wakeup.set()

        if self.thread and self.thread.is_alive():
            self.thread.join(timeout=5.0)

        logger.info("SleepDaemon stopped")

    def tick(self, now: Optional[float] = None):
        """One loop iteration: reaper pass, then thermal check when due"""
        now = time.monotonic() if now is None else now

        try:
            report = self.controller.run_reaper()
            if report.removed:
                logger.info(f"Reaper removed {len(report.removed)} session(s): {report.removed}")
        except Exception as e:
            logger.error(f"Reaper pass failed: {e}")

        due = self._last_thermal_check is None or now - self._last_thermal_check >= self.thermal_interval
        if due:
            self._last_thermal_check = now
            try:
                result = self.controller.check_thermal()
                if result.get('tripped'):
                    logger.warning("Thermal safety latch tripped")
            except Exception as e:
                logger.error(f"Thermal check failed: {e}")

    def _loop(self):
        logger.info("Daemon loop starting")
        while self.running:
            self.tick()
            self._wakeup.wait(self.reaper_interval)
        logger.info("Daemon loop exited")


def make_cleanup(daemon: SleepDaemon, controller: SleepController, instance_lock: InstanceLock) -> Callable[[], None]:
    """Stop the loop and release sleep prevention; safe to call more than once"""
    cleaned_up = threading.Event()

    def cleanup():
        if cleaned_up.is_set():
            return
        cleaned_up.set()
        logger.info("Daemon shutting down, cleaning up...")
        try:
            daemon.stop()
            controller.shutdown()
        except Exception as e:
            logger.error(f"Cleanup failed: {e}")
        finally:
            instance_lock.release()

    return cleanup


def install_signal_handlers(cleanup: Callable[[], None]):
    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        cleanup()
        sys.exit(0)

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)
    return signal_handler


def run_daemon(
    settings_manager: Optional[SettingsManager] = None,
    interval: Optional[float] = None,
    port: Optional[int] = None,
) -> int:
    """Run loop + API until terminated. Returns a process exit code"""
    import uvicorn

    from .api import create_app

    settings_manager = settings_manager or SettingsManager()
    settings = settings_manager.settings
    configure_logging(settings_manager.data_dir / "logs", level=settings.log_level)

    instance_lock = InstanceLock(settings_manager.data_dir / "daemon.lock")
    try:
        instance_lock.acquire()
    except DaemonAlreadyRunning as e:
        logger.error(str(e))
        return 1

    controller = create_sleep_controller(settings_manager)
    daemon = SleepDaemon(
        controller,
        reaper_interval=interval or settings.reaper_interval,
        thermal_interval=settings.thermal_interval,
    )

    cleanup = make_cleanup(daemon, controller, instance_lock)
    atexit.register(cleanup)
    install_signal_handlers(cleanup)

    # Apply the restored state; the first loop tick reaps sessions whose process is gone
    controller.reconciler.reconcile(reason="startup")
    daemon.start()

    app = create_app(controller, instrument=settings.metrics_enabled)
    try:
        uvicorn.run(
            app,
            host=settings.api_host,
            port=port or settings.api_port,
            log_level=settings.log_level.lower(),
            access_log=False,
        )
    finally:
        cleanup()
    return 0
