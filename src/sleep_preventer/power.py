#!/usr/bin/env python3
"""
Power controllers - the privileged toggle that disables/enables system sleep.

set_sleep_disabled() is idempotent: applying the same value twice is harmless,
so callers may retry freely. It returns False on failure instead of raising.
"""

import logging
import re
import subprocess
from typing import List

logger = logging.getLogger(__name__)

CLAMSHELL_RE = re.compile(r'"AppleClamshellState"\s*=\s*(Yes|No)')


class PowerController:
    """Base interface for sleep toggles"""

    name = "none"

    def set_sleep_disabled(self, disabled: bool) -> bool:
        raise NotImplementedError

    def is_lid_closed(self) -> bool:
        return False

    def sleep_now(self) -> bool:
        return False


class PmsetPowerController(PowerController):
    """macOS `pmset disablesleep` through a passwordless sudo rule"""

    name = "pmset"

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    def _run(self, cmd: List[str]) -> subprocess.CompletedProcess:
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=self.timeout,
            check=False,
        )

    def set_sleep_disabled(self, disabled: bool) -> bool:
        value = "1" if disabled else "0"
        cmd = ["sudo", "-n", "pmset", "-a", "disablesleep", value]
        try:
            result = self._run(cmd)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.error(f"pmset disablesleep {value} failed: {e}")
            return False

        if result.returncode != 0:
            logger.error(f"pmset disablesleep {value} exited {result.returncode}: {result.stderr.strip()}")
            return False

        logger.info(f"System sleep {'disabled' if disabled else 'enabled'}")
        return True

    def is_lid_closed(self) -> bool:
        try:
            result = self._run(["ioreg", "-r", "-k", "AppleClamshellState", "-d", "4"])
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"ioreg clamshell query failed: {e}")
            return False
        match = CLAMSHELL_RE.search(result.stdout or "")
        return bool(match and match.group(1) == "Yes")

    def sleep_now(self) -> bool:
        try:
            result = self._run(["sudo", "-n", "pmset", "sleepnow"])
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.error(f"pmset sleepnow failed: {e}")
            return False
        if result.returncode != 0:
            logger.error(f"pmset sleepnow exited {result.returncode}: {result.stderr.strip()}")
            return False
        logger.info("Lid closed, sleep triggered")
        return True


class DryRunPowerController(PowerController):
    """Logs toggles without touching the OS (development and unsupported platforms)"""

    name = "dry-run"

    def __init__(self):
        self.sleep_disabled = False

    def set_sleep_disabled(self, disabled: bool) -> bool:
        logger.info(f"[dry-run] would set disablesleep={int(disabled)}")
        self.sleep_disabled = disabled
        return True


def create_power_controller(backend: str, timeout: float = 5.0) -> PowerController:
    if backend == "pmset":
        return PmsetPowerController(timeout=timeout)
    if backend == "dry-run":
        return DryRunPowerController()
    raise ValueError(f"Unknown power backend: {backend}")
