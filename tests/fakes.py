"""
Test doubles for the OS-facing collaborators
"""

import time

from sleep_preventer.errors import ThermalReadError
from sleep_preventer.power import PowerController
from sleep_preventer.thermal import ThermalSensor


class FakeClock:
    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePowerController(PowerController):
    name = "fake"

    def __init__(self) -> None:
        self.calls: list[bool] = []
        self.sleep_disabled = False
        self.fail = False
        self.lid_closed = False
        self.sleep_now_calls = 0

    def set_sleep_disabled(self, disabled: bool) -> bool:
        self.calls.append(disabled)
        if self.fail:
            return False
        self.sleep_disabled = disabled
        return True

    def is_lid_closed(self) -> bool:
        return self.lid_closed

    def sleep_now(self) -> bool:
        self.sleep_now_calls += 1
        return True


class FakeThermalSensor(ThermalSensor):
    name = "fake"

    def __init__(self, overheating: bool = False) -> None:
        self.overheating = overheating
        self.error = False
        self.reads = 0

    def is_overheating(self) -> bool:
        self.reads += 1
        if self.error:
            raise ThermalReadError("sensor unavailable")
        return self.overheating


class FakeProcessProbe:
    def __init__(self) -> None:
        self.alive: set[int] = set()
        self.cpu: dict[int, float | None] = {}
        self.origins: dict[int, str] = {}
        self.reporters: list[int] = []
        self.delays: dict[int, float] = {}

    def exists(self, pid: int) -> bool:
        return pid in self.alive

    def cpu_percent(self, pid: int):
        delay = self.delays.get(pid)
        if delay:
            time.sleep(delay)
        return self.cpu.get(pid)

    def origin(self, pid: int) -> str:
        return self.origins.get(pid, "unknown")

    def reporter_pids(self) -> list[int]:
        return list(self.reporters)

    def find_reporter_ancestor(self, pid=None) -> int:
        return pid or 4242
