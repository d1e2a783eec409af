"""
Process management for Linux and other Unix systems.
"""
import signal
import logging

import psutil

from .base import BaseProcessManager, ProcessConfig, ProcessInfo, DEFAULT_STOP_TIMEOUT
from ..exceptions import ProcessError

logger = logging.getLogger('fixpanic.process.unix')


class UnixProcessManager(BaseProcessManager):
    """Starts processes in their own session and stops them with SIGTERM/SIGKILL."""

    platform_name = 'unix'

    def start_process(self, config: ProcessConfig) -> ProcessInfo:
        # A new session detaches the child from the CLI's terminal and
        # process group, so it survives the CLI exiting.
        proc = self._popen(config, start_new_session=config.detach)
        logger.info(f"Started {config.binary_path} with PID {proc.pid}")
        return ProcessInfo(pid=proc.pid, running=True)

    def stop_process(self, pid: int, timeout: float = DEFAULT_STOP_TIMEOUT) -> None:
        """Send SIGTERM, wait up to ``timeout`` seconds, then SIGKILL.

        Args:
            pid: Process ID to stop
            timeout: Seconds to wait for a graceful exit

        Raises:
            ProcessError: If the PID is invalid or the process cannot be signalled
        """
        proc = self._get_process(pid)
        if proc is None:
            logger.debug(f"Process {pid} already exited")
            return

        try:
            proc.send_signal(signal.SIGTERM)
        except psutil.NoSuchProcess:
            return
        except psutil.AccessDenied as e:
            raise ProcessError(self._error_message(pid, 'send SIGTERM to', e)) from e

        try:
            proc.wait(timeout=timeout)
            logger.info(f"Process {pid} stopped gracefully")
            return
        except psutil.TimeoutExpired:
            logger.warning(f"Process {pid} did not exit after {timeout}s, sending SIGKILL")
        except psutil.NoSuchProcess:
            return

        try:
            proc.send_signal(signal.SIGKILL)
            proc.wait(timeout=5)
        except psutil.NoSuchProcess:
            return
        except (psutil.AccessDenied, psutil.TimeoutExpired) as e:
            raise ProcessError(self._error_message(pid, 'kill', e)) from e

    def _error_message(self, pid: int, action: str, error: Exception) -> str:
        return f"failed to {action} process {pid}: {error}"
