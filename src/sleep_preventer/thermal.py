#!/usr/bin/env python3
"""
Thermal sensors
Read the platform thermal state and report whether the machine is overheating
"""

import logging
import platform
import subprocess
from pathlib import Path
from typing import List, Optional

from .errors import ThermalReadError

logger = logging.getLogger(__name__)

THERMAL_ZONES = [
    "/sys/class/thermal/thermal_zone0/temp",  # CPU
    "/sys/class/thermal/thermal_zone1/temp",  # GPU
]

TEMP_CRITICAL = 90000  # 90°C, millidegrees


class ThermalSensor:
    """Base interface; is_overheating() raises ThermalReadError when unreadable"""

    name = "none"

    def is_overheating(self) -> bool:
        raise NotImplementedError


def parse_pmset_therm(output: str) -> bool:
    """Interpret `pmset -g therm` output"""
    scheduler_limited = "CPU_Scheduler_Limit" in output and "No CPU" not in output
    thermal_warning = "thermal warning level" in output and "No thermal warning" not in output
    return scheduler_limited or thermal_warning


class PmsetThermalSensor(ThermalSensor):
    """macOS thermal warnings via `pmset -g therm`"""

    name = "pmset"

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    def is_overheating(self) -> bool:
        try:
            result = subprocess.run(
                ["pmset", "-g", "therm"],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ThermalReadError(f"pmset -g therm failed: {e}") from e

        if result.returncode != 0:
            raise ThermalReadError(f"pmset -g therm exited {result.returncode}: {result.stderr.strip()}")
        return parse_pmset_therm(result.stdout)


class SysfsThermalSensor(ThermalSensor):
    """Linux thermal zones compared against a critical temperature"""

    name = "sysfs"

    def __init__(self, zones: Optional[List[str]] = None, critical: int = TEMP_CRITICAL):
        self.zones = zones if zones is not None else THERMAL_ZONES
        self.critical = critical

    def read_temp(self, zone_path: str) -> Optional[int]:
        """Read temperature from thermal zone"""
        try:
            return int(Path(zone_path).read_text().strip())
        except (OSError, ValueError):
            return None

    def is_overheating(self) -> bool:
        temps = [t for t in (self.read_temp(z) for z in self.zones) if t is not None]
        if not temps:
            raise ThermalReadError(f"No readable thermal zone among {self.zones}")
        max_temp = max(temps)
        if max_temp > self.critical:
            logger.warning(f"Temperature critical: {max_temp/1000}°C")
            return True
        return False


def create_thermal_sensor() -> ThermalSensor:
    if platform.system() == "Darwin":
        return PmsetThermalSensor()
    return SysfsThermalSensor()
