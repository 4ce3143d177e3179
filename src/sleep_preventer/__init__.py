"""
Claude Sleep Preventer

Keeps the machine awake while Claude Code sessions are working and lets it sleep
again once every session has finished, died, or gone idle.

Architecture:
- session_store: persisted registry of reporter sessions
- reaper: removes sessions whose process died or went idle
- safety_monitor: thermal latch that forces sleep back on
- reconciler: derives and applies the desired sleep-prevention state
- controller: control/query interface used by the API
- daemon: periodic loop, instance lock, shutdown handling
- api / cli: HTTP surface and command line entry point
"""

__version__ = "1.0.0"
