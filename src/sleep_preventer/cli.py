#!/usr/bin/env python3
"""
claude-sleep-preventer command line

  daemon            run the reaper/safety loop and the control API
  start / stop      register / deregister the calling Claude process (hooks)
  status / list     query the daemon
  cleanup           run a reaper pass now
  thermal           run a thermal safety check now
  reset             clear all sessions and re-enable sleep
  enable / disable  manual sleep prevention switch
"""

import argparse
import json
import logging
import sys
from typing import Any, Dict, Optional

from . import __version__
from .client import DaemonClient
from .errors import DaemonUnavailable
from .process_probe import ProcessProbe
from .settings import SettingsManager

logger = logging.getLogger(__name__)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="claude-sleep-preventer",
        description="Keep your Mac awake while Claude Code is working",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--port", type=int, default=None, help="Daemon API port (default from settings)")
    sub = parser.add_subparsers(dest="command", required=True)

    daemon = sub.add_parser("daemon", help="Run as daemon with cleanup + thermal monitoring")
    daemon.add_argument("-i", "--interval", type=float, default=None, help="Reaper interval in seconds")

    start = sub.add_parser("start", help="Register current Claude process and disable sleep")
    start.add_argument("--pid", type=int, default=None, help="Reporter pid (default: nearest claude ancestor)")
    stop = sub.add_parser("stop", help="Unregister current Claude process")
    stop.add_argument("--pid", type=int, default=None, help="Reporter pid (default: nearest claude ancestor)")

    sub.add_parser("status", help="Show current status")
    sub.add_parser("list", help="List active/inactive instances as JSON")
    sub.add_parser("cleanup", help="Clean up stale sessions (interrupted reporters)")
    sub.add_parser("thermal", help="Check thermal state")
    sub.add_parser("reset", help="Force reset: clear all sessions and re-enable sleep")
    sub.add_parser("enable", help="Turn sleep prevention on")
    sub.add_parser("disable", help="Turn sleep prevention off")
    return parser


def format_status(status: Dict[str, Any]) -> str:
    lines = [
        f"Claude Code Sleep Preventer v{__version__}",
        "==========================================",
        f"Working instances: {status.get('session_count', 0)}",
        f"Sleep disabled: {'Yes' if status.get('resource_enabled') else 'No'}",
        f"Prevention switch: {'On' if status.get('prevention_enabled', True) else 'Off'}",
        f"Safety latch: {status.get('safety_state', 'unknown')}",
        f"Thermal warning: {'YES!' if status.get('overheating') else 'No'}",
    ]
    return "\n".join(lines)


def _reporter_pid(args: argparse.Namespace, probe: ProcessProbe) -> int:
    return args.pid if args.pid else probe.find_reporter_ancestor()


def run_command(args: argparse.Namespace, client: DaemonClient, probe: ProcessProbe) -> int:
    if args.command == "start":
        pid = _reporter_pid(args, probe)
        try:
            client.register(pid, origin=probe.origin(pid))
        except DaemonUnavailable as e:
            # Never block the reporter on a missing daemon
            print(f"[sleep-preventer] register {pid} skipped: {e}", file=sys.stderr)
        return 0

    if args.command == "stop":
        pid = _reporter_pid(args, probe)
        try:
            client.deregister(pid)
        except DaemonUnavailable as e:
            print(f"[sleep-preventer] deregister {pid} skipped: {e}", file=sys.stderr)
        return 0

    try:
        if args.command == "status":
            print(format_status(client.status()))
        elif args.command == "list":
            print(json.dumps(client.list_sessions()))
        elif args.command == "cleanup":
            print(json.dumps(client.cleanup(), indent=2))
        elif args.command == "thermal":
            result = client.thermal()
            if result.get("overheating"):
                print("THERMAL WARNING DETECTED!")
            else:
                print("Thermal state: OK")
        elif args.command == "reset":
            client.reset()
            print("Reset complete. Sleep re-enabled.")
        elif args.command == "enable":
            client.set_prevention(True)
            print("Sleep prevention enabled")
        elif args.command == "disable":
            client.set_prevention(False)
            print("Sleep prevention disabled")
        else:
            print(f"Unknown command: {args.command}", file=sys.stderr)
            return 2
    except DaemonUnavailable as e:
        print(f"Daemon not reachable: {e}", file=sys.stderr)
        return 1
    return 0


def main(argv: Optional[list] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    settings_manager = SettingsManager()
    settings = settings_manager.settings

    if args.command == "daemon":
        from .daemon import run_daemon
        return run_daemon(settings_manager, interval=args.interval, port=args.port)

    logging.basicConfig(level=logging.WARNING, format='%(levelname)s - %(message)s')
    client = DaemonClient(host=settings.api_host, port=args.port or settings.api_port)
    probe = ProcessProbe(reporter_name=settings.reporter_process_name)
    return run_command(args, client, probe)


if __name__ == "__main__":
    raise SystemExit(main())
