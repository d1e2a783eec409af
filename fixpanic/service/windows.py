"""
Windows Service Control Manager backend, driven through sc.exe.
"""
import re
import logging

from .base import (
    ServiceManager, DISPLAY_NAME,
    STATUS_ACTIVE, STATUS_INACTIVE, STATUS_ACTIVATING, STATUS_DEACTIVATING, STATUS_UNKNOWN,
    warn_on_failure,
)
from ..utils import is_command_available, run_command

logger = logging.getLogger('fixpanic.service.windows')

WINDOWS_SERVICE_NAME = 'FixpanicAgent'

_STATE_MAP = {
    'RUNNING': STATUS_ACTIVE,
    'STOPPED': STATUS_INACTIVE,
    'START_PENDING': STATUS_ACTIVATING,
    'STOP_PENDING': STATUS_DEACTIVATING,
}

_STATE_RE = re.compile(r'STATE\s*:\s*\d+\s+(\w+)')
_PID_RE = re.compile(r'PID\s*:\s*(\d+)')


class WindowsServiceManager(ServiceManager):
    """Manages the agent as a Windows service."""

    name = 'windows'

    def is_available(self) -> bool:
        return is_command_available('sc.exe')

    def is_installed(self) -> bool:
        result = run_command(['sc.exe', 'query', WINDOWS_SERVICE_NAME])
        return result.returncode == 0

    def install(self, binary_path: str, config_path: str) -> None:
        # sc.exe expects "option= value" with the space after the equals sign
        bin_path = f'"{binary_path}" --config "{config_path}"'
        self._run(
            ['sc.exe', 'create', WINDOWS_SERVICE_NAME,
             'binPath=', bin_path, 'start=', 'auto', 'DisplayName=', DISPLAY_NAME],
            'create Windows service',
        )
        logger.info(f"Created Windows service {WINDOWS_SERVICE_NAME}")

    def uninstall(self) -> None:
        if not self.is_installed():
            return
        if self.status() != STATUS_INACTIVE:
            warn_on_failure('stop service', self.stop)
        self._run(['sc.exe', 'delete', WINDOWS_SERVICE_NAME], 'delete Windows service')

    def start(self) -> None:
        self._run(['sc.exe', 'start', WINDOWS_SERVICE_NAME], 'start Windows service')

    def stop(self) -> None:
        self._run(['sc.exe', 'stop', WINDOWS_SERVICE_NAME], 'stop Windows service')

    def enable(self) -> None:
        self._run(['sc.exe', 'config', WINDOWS_SERVICE_NAME, 'start=', 'auto'],
                  'enable Windows service')

    def disable(self) -> None:
        self._run(['sc.exe', 'config', WINDOWS_SERVICE_NAME, 'start=', 'demand'],
                  'disable Windows service')

    def status(self) -> str:
        result = run_command(['sc.exe', 'query', WINDOWS_SERVICE_NAME])
        if result.returncode != 0:
            return STATUS_UNKNOWN
        match = _STATE_RE.search(result.stdout)
        if not match:
            return STATUS_UNKNOWN
        return _STATE_MAP.get(match.group(1).upper(), STATUS_UNKNOWN)

    def is_enabled(self) -> bool:
        result = run_command(['sc.exe', 'qc', WINDOWS_SERVICE_NAME])
        return result.returncode == 0 and 'AUTO_START' in result.stdout

    def main_pid(self) -> int:
        result = run_command(['sc.exe', 'queryex', WINDOWS_SERVICE_NAME])
        match = _PID_RE.search(result.stdout or '') if result.returncode == 0 else None
        return int(match.group(1)) if match else 0
