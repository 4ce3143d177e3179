"""
Exception types raised by the sleep preventer
"""


class SleepPreventerError(Exception):
    """Base class for all sleep preventer errors"""


class InvalidSessionId(SleepPreventerError, ValueError):
    """Session ids are positive process ids"""


class ThermalReadError(SleepPreventerError):
    """The thermal state could not be read"""


class DaemonAlreadyRunning(SleepPreventerError):
    """Another daemon holds the instance lock"""


class DaemonUnavailable(SleepPreventerError):
    """The CLI could not reach the daemon API"""
