"""
Process introspection for reporter sessions (psutil backed)
"""

import logging
import os
import subprocess
from pathlib import Path
from typing import List, Optional

import psutil

logger = logging.getLogger(__name__)

# How far up the parent chain we look for the reporter process
MAX_ANCESTOR_DEPTH = 10


class ProcessProbe:
    """Liveness, CPU and origin lookups for reporter pids"""

    def __init__(self, reporter_name: str = "claude", cpu_sample_interval: float = 0.1):
        self.reporter_name = reporter_name
        self.cpu_sample_interval = cpu_sample_interval

    def exists(self, pid: int) -> bool:
        """True if the pid is running and not a zombie"""
        try:
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            # Process exists but belongs to someone else
            return True

    def cpu_percent(self, pid: int) -> Optional[float]:
        """
        Sample CPU utilisation over cpu_sample_interval.

        Returns None when the value cannot be determined.
        """
        try:
            return float(psutil.Process(pid).cpu_percent(interval=self.cpu_sample_interval))
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess) as e:
            logger.debug(f"CPU sample unavailable for pid {pid}: {e}")
            return None

    def cwd(self, pid: int) -> Optional[str]:
        try:
            return psutil.Process(pid).cwd()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return None

    def origin(self, pid: int) -> str:
        """Display tag: '<dir name> git:(<branch>)' or 'unknown'"""
        cwd = self.cwd(pid)
        if not cwd:
            return "unknown"
        dir_name = Path(cwd).name or cwd
        branch = git_branch(cwd)
        if branch:
            return f"{dir_name} git:({branch})"
        return dir_name

    def reporter_pids(self) -> List[int]:
        """All running processes named like the reporter"""
        pids = []
        for proc in psutil.process_iter(['pid', 'name']):
            try:
                if proc.info.get('name') == self.reporter_name:
                    pids.append(proc.info['pid'])
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        return sorted(pids)

    def find_reporter_ancestor(self, pid: Optional[int] = None) -> int:
        """
        Walk up the parent chain of pid looking for the reporter process.

        Falls back to the immediate parent of pid when none is found.
        """
        if pid is None:
            pid = os.getpid()

        try:
            proc = psutil.Process(pid)
            fallback = proc.ppid() or pid
        except psutil.NoSuchProcess:
            return pid

        current = proc
        for _ in range(MAX_ANCESTOR_DEPTH):
            try:
                parent = current.parent()
                if parent is None:
                    break
                if parent.name() == self.reporter_name:
                    return parent.pid
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                break
            current = parent

        return fallback


def git_branch(path: str) -> Optional[str]:
    """Current git branch of a working directory, if any"""
    try:
        result = subprocess.run(
            ["git", "-C", path, "branch", "--show-current"],
            capture_output=True,
            text=True,
            timeout=2.0,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    branch = result.stdout.strip()
    return branch or None
