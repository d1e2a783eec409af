"""
Base process management shared by all platforms.
"""
import os
import logging
import subprocess
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import psutil

from ..exceptions import ProcessError

logger = logging.getLogger('fixpanic.process.base')

# Names the agent binary has been shipped under
LEGACY_PROCESS_NAMES = ('fixpanic-connectivity-layer',)

DEFAULT_STOP_TIMEOUT = 10.0


@dataclass
class ProcessConfig:
    """Configuration for starting a process."""
    binary_path: str
    args: List[str] = field(default_factory=list)
    working_dir: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    detach: bool = True
    log_file: Optional[str] = None

    @property
    def command(self) -> List[str]:
        return [self.binary_path] + list(self.args)


@dataclass
class ProcessInfo:
    """Information about a (possibly) running process."""
    pid: int
    running: bool
    error: Optional[str] = None


class BaseProcessManager:
    """Common process management; subclasses implement start and stop."""

    platform_name = 'unknown'

    def start_process(self, config: ProcessConfig) -> ProcessInfo:
        """Start a process, detached from the CLI when ``config.detach`` is set."""
        raise NotImplementedError("Subclasses must implement start_process()")

    def stop_process(self, pid: int, timeout: float = DEFAULT_STOP_TIMEOUT) -> None:
        """Stop a process, escalating to a hard kill after ``timeout`` seconds."""
        raise NotImplementedError("Subclasses must implement stop_process()")

    def is_process_running(self, pid: int) -> bool:
        """Check if a process with the given PID is running (zombies count as stopped)."""
        if pid is None or pid <= 0:
            return False
        try:
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except (psutil.NoSuchProcess, psutil.ZombieProcess):
            return False
        except psutil.AccessDenied:
            # Exists but belongs to another user
            return True

    def get_process_status(self, pid: int) -> ProcessInfo:
        return ProcessInfo(pid=pid, running=self.is_process_running(pid))

    def find_processes(self, binary_path: str) -> List[int]:
        """Find running processes of the given binary.

        A process matches when its executable, its first argument or its
        name is the binary (or a legacy name of it). The CLI's own PID is
        never returned.
        """
        basename = os.path.basename(binary_path)
        names = {basename, os.path.splitext(basename)[0]} | set(LEGACY_PROCESS_NAMES)
        target = os.path.realpath(binary_path)
        own_pid = os.getpid()

        pids = []
        for proc in psutil.process_iter(['pid', 'name', 'exe', 'cmdline', 'status']):
            try:
                info = proc.info
                if info['pid'] == own_pid or info.get('status') == psutil.STATUS_ZOMBIE:
                    continue
                exe = info.get('exe') or ''
                cmdline = info.get('cmdline') or []
                first_arg = cmdline[0] if cmdline else ''
                if (
                    (exe and os.path.realpath(exe) == target)
                    or (first_arg and (first_arg == binary_path
                                       or os.path.basename(first_arg) in names))
                    or info.get('name') in names
                ):
                    pids.append(info['pid'])
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
        logger.debug(f"Found agent processes: {pids}")
        return sorted(pids)

    def run_foreground(self, config: ProcessConfig) -> int:
        """Run a process attached to the terminal and return its exit code."""
        env = dict(os.environ, **config.env) if config.env else None
        try:
            return subprocess.call(config.command, cwd=config.working_dir, env=env)
        except OSError as e:
            raise ProcessError(f"failed to start process: {e}") from e

    def _open_log(self, config: ProcessConfig):
        if config.log_file:
            log_dir = os.path.dirname(config.log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            return open(config.log_file, 'ab')
        return open(os.devnull, 'wb')

    def _popen(self, config: ProcessConfig, **kwargs) -> subprocess.Popen:
        env = dict(os.environ, **config.env) if config.env else None
        with self._open_log(config) as log:
            try:
                return subprocess.Popen(
                    config.command,
                    cwd=config.working_dir,
                    env=env,
                    stdin=subprocess.DEVNULL,
                    stdout=log,
                    stderr=subprocess.STDOUT,
                    close_fds=True,
                    **kwargs
                )
            except OSError as e:
                raise ProcessError(f"failed to start process on {self.platform_name}: {e}") from e

    def _get_process(self, pid: int) -> Optional[psutil.Process]:
        if pid is None or pid <= 0:
            raise ProcessError(f"invalid PID: {pid}")
        try:
            return psutil.Process(pid)
        except psutil.NoSuchProcess:
            return None
