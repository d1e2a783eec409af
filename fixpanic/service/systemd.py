"""
systemd service manager (Linux).
"""
import os
import logging
import subprocess

from .base import (
    ServiceManager, SERVICE_NAME, SERVICE_STATUSES, STATUS_UNKNOWN, warn_on_failure,
)
from ..exceptions import ServiceError
from ..utils import is_command_available, run_command, write_file_atomic

logger = logging.getLogger('fixpanic.service.systemd')

UNIT_DIR = '/etc/systemd/system'
UNIT_NAME = f'{SERVICE_NAME}.service'


def render_unit(binary_path: str, config_path: str, user: str = 'root') -> str:
    """Render the systemd unit file for the agent."""
    return f"""[Unit]
Description=Fixpanic Agent
After=network.target

[Service]
Type=simple
User={user}
ExecStart={binary_path} --config {config_path}
Restart=always
RestartSec=10
StandardOutput=journal
StandardError=journal

[Install]
WantedBy=multi-user.target
"""


class SystemdServiceManager(ServiceManager):
    """Manages the agent as a systemd unit."""

    name = 'systemd'

    def __init__(self, platform_info, unit_dir: str = UNIT_DIR):
        super().__init__(platform_info)
        self.unit_dir = unit_dir

    @property
    def unit_path(self) -> str:
        return os.path.join(self.unit_dir, UNIT_NAME)

    def is_available(self) -> bool:
        return is_command_available('systemctl')

    def is_installed(self) -> bool:
        return os.path.exists(self.unit_path)

    def install(self, binary_path: str, config_path: str) -> None:
        """Write the unit file and reload systemd.

        Raises:
            ServiceError: If not running as root or systemd rejects the unit
        """
        if not self.platform.is_root:
            raise ServiceError("systemd service installation requires root privileges")

        try:
            write_file_atomic(self.unit_path, render_unit(binary_path, config_path), mode=0o644)
        except OSError as e:
            raise ServiceError(f"failed to write service file: {e}") from e
        logger.info(f"Wrote systemd unit {self.unit_path}")
        self._run(['systemctl', 'daemon-reload'], 'reload systemd')

    def uninstall(self) -> None:
        """Stop, disable and remove the unit; a missing unit is a no-op."""
        if not self.is_installed():
            return

        warn_on_failure('stop service', self.stop)
        warn_on_failure('disable service', self.disable)

        try:
            os.remove(self.unit_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise ServiceError(f"failed to remove service file: {e}") from e
        self._run(['systemctl', 'daemon-reload'], 'reload systemd')

    def start(self) -> None:
        self._run(['systemctl', 'start', UNIT_NAME], 'start service')

    def stop(self) -> None:
        self._run(['systemctl', 'stop', UNIT_NAME], 'stop service')

    def enable(self) -> None:
        self._run(['systemctl', 'enable', UNIT_NAME], 'enable service')

    def disable(self) -> None:
        self._run(['systemctl', 'disable', UNIT_NAME], 'disable service')

    def status(self) -> str:
        # is-active exits non-zero for every state except active
        result = self._query(['systemctl', 'is-active', UNIT_NAME])
        state = result.strip()
        return state if state in SERVICE_STATUSES else STATUS_UNKNOWN

    def is_enabled(self) -> bool:
        return self._query(['systemctl', 'is-enabled', UNIT_NAME]).strip() == 'enabled'

    def main_pid(self) -> int:
        text = self._run(['systemctl', 'show', '-p', 'MainPID', UNIT_NAME], 'get service PID')
        _, _, value = text.strip().partition('=')
        try:
            return int(value)
        except ValueError:
            return 0

    def get_logs(self, lines: int = 50) -> str:
        return self._run(
            ['journalctl', '-u', UNIT_NAME, '-n', str(lines), '--no-pager'], 'read journal',
        )

    def follow_logs(self, lines: int = 50) -> None:
        try:
            returncode = subprocess.call(['journalctl', '-u', UNIT_NAME, '-n', str(lines), '-f'])
        except OSError as e:
            raise ServiceError(f"failed to follow journal: {e}") from e
        if returncode != 0:
            raise ServiceError(f"failed to follow journal: exit status {returncode}")

    def _query(self, args) -> str:
        return run_command(args).stdout
