"""
launchd service manager (macOS).
"""
import os
import re
import logging
import plistlib

from .base import (
    ServiceManager, STATUS_ACTIVE, STATUS_INACTIVE, warn_on_failure,
)
from ..exceptions import ServiceError
from ..utils import is_command_available, run_command, write_file_atomic

logger = logging.getLogger('fixpanic.service.launchd')

LABEL = 'com.fixpanic.agent'
SYSTEM_PLIST_DIR = '/Library/LaunchDaemons'

_PID_RE = re.compile(r'"PID"\s*=\s*(\d+);')


def render_plist(binary_path: str, config_path: str, log_path: str, working_dir: str) -> bytes:
    """Render the launchd property list for the agent."""
    return plistlib.dumps({
        'Label': LABEL,
        'ProgramArguments': [binary_path, '--config', config_path],
        'RunAtLoad': True,
        'KeepAlive': True,
        'WorkingDirectory': working_dir,
        'StandardOutPath': log_path,
        'StandardErrorPath': log_path,
    })


class LaunchdServiceManager(ServiceManager):
    """Manages the agent as a launchd job.

    Root installs a LaunchDaemon, other users a per-user LaunchAgent.
    """

    name = 'launchd'

    @property
    def plist_path(self) -> str:
        if self.platform.is_root:
            directory = SYSTEM_PLIST_DIR
        else:
            directory = os.path.join(self.platform.home, 'Library', 'LaunchAgents')
        return os.path.join(directory, f'{LABEL}.plist')

    def is_available(self) -> bool:
        return is_command_available('launchctl')

    def is_installed(self) -> bool:
        return os.path.exists(self.plist_path)

    def install(self, binary_path: str, config_path: str) -> None:
        data = render_plist(binary_path, config_path, self.platform.log_path, self.platform.lib_dir)
        try:
            write_file_atomic(self.plist_path, data, mode=0o644)
        except OSError as e:
            raise ServiceError(f"failed to write plist file: {e}") from e
        logger.info(f"Wrote launchd plist {self.plist_path}")

    def uninstall(self) -> None:
        if not self.is_installed():
            return
        warn_on_failure('unload service', self._unload)
        try:
            os.remove(self.plist_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise ServiceError(f"failed to remove plist file: {e}") from e

    def start(self) -> None:
        result = run_command(['launchctl', 'load', self.plist_path])
        if result.returncode != 0 and 'already loaded' not in (result.stderr or ''):
            raise ServiceError("failed to load launchd service", result.stderr)
        self._run(['launchctl', 'start', LABEL], 'start launchd service')

    def stop(self) -> None:
        """Stop the job and unload it; KeepAlive would otherwise restart it."""
        self._run(['launchctl', 'stop', LABEL], 'stop launchd service')
        self._unload()

    def enable(self) -> None:
        # RunAtLoad starts the job at boot or login once the plist is installed
        logger.debug("launchd jobs are enabled by their plist")

    def disable(self) -> None:
        logger.debug("launchd jobs are disabled by unloading them")

    def status(self) -> str:
        """A listed job with a PID is active; anything else is inactive."""
        result = run_command(['launchctl', 'list', LABEL])
        if result.returncode != 0:
            return STATUS_INACTIVE
        return STATUS_ACTIVE if _PID_RE.search(result.stdout) else STATUS_INACTIVE

    def is_enabled(self) -> bool:
        return self.is_installed()

    def main_pid(self) -> int:
        result = run_command(['launchctl', 'list', LABEL])
        match = _PID_RE.search(result.stdout or '') if result.returncode == 0 else None
        return int(match.group(1)) if match else 0

    def _unload(self) -> None:
        self._run(['launchctl', 'unload', self.plist_path], 'unload launchd service')
