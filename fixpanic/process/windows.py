"""
Process management for Windows.
"""
import logging

import psutil

from .base import BaseProcessManager, ProcessConfig, ProcessInfo, DEFAULT_STOP_TIMEOUT
from ..exceptions import ProcessError

logger = logging.getLogger('fixpanic.process.windows')

# Win32 process creation flags (subprocess only defines them on Windows)
CREATE_NEW_PROCESS_GROUP = 0x00000200
DETACHED_PROCESS = 0x00000008
CREATE_NO_WINDOW = 0x08000000


class WindowsProcessManager(BaseProcessManager):
    """Starts detached processes without a console window."""

    platform_name = 'Windows'

    def start_process(self, config: ProcessConfig) -> ProcessInfo:
        flags = CREATE_NO_WINDOW
        if config.detach:
            flags |= CREATE_NEW_PROCESS_GROUP | DETACHED_PROCESS
        proc = self._popen(config, creationflags=flags)
        logger.info(f"Started {config.binary_path} with PID {proc.pid}")
        return ProcessInfo(pid=proc.pid, running=True)

    def stop_process(self, pid: int, timeout: float = DEFAULT_STOP_TIMEOUT) -> None:
        """Terminate the process, and kill it if it is still alive after ``timeout``."""
        proc = self._get_process(pid)
        if proc is None:
            return

        try:
            proc.terminate()
            proc.wait(timeout=timeout)
            return
        except psutil.NoSuchProcess:
            return
        except psutil.TimeoutExpired:
            logger.warning(f"Process {pid} did not exit after {timeout}s, killing it")
        except psutil.AccessDenied as e:
            raise ProcessError(f"failed to terminate process {pid} on Windows: {e}") from e

        try:
            proc.kill()
            proc.wait(timeout=5)
        except psutil.NoSuchProcess:
            return
        except (psutil.AccessDenied, psutil.TimeoutExpired) as e:
            raise ProcessError(f"failed to kill process {pid} on Windows: {e}") from e
