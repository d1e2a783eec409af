"""
Common interface for OS service managers.
"""
import os
import time
import logging
from typing import Optional, Sequence

from .. import output
from ..exceptions import ServiceError
from ..platform_info import PlatformInfo
from ..utils import run_command, tail_lines

logger = logging.getLogger('fixpanic.service.base')

SERVICE_NAME = 'fixpanic-agent'
DISPLAY_NAME = 'Fixpanic Agent'

# Normalized service states
STATUS_ACTIVE = 'active'
STATUS_INACTIVE = 'inactive'
STATUS_ACTIVATING = 'activating'
STATUS_DEACTIVATING = 'deactivating'
STATUS_FAILED = 'failed'
STATUS_UNKNOWN = 'unknown'

SERVICE_STATUSES = (
    STATUS_ACTIVE,
    STATUS_INACTIVE,
    STATUS_ACTIVATING,
    STATUS_DEACTIVATING,
    STATUS_FAILED,
    STATUS_UNKNOWN,
)

FOLLOW_POLL_INTERVAL = 0.5


class ServiceManager:
    """Base class for service managers.

    Every operation that shells out raises :class:`ServiceError` carrying
    the command's stderr when the command fails.
    """

    name = 'service'

    def __init__(self, platform_info: PlatformInfo):
        self.platform = platform_info

    def is_available(self) -> bool:
        """Check whether this service manager can be used on the host."""
        raise NotImplementedError

    def is_installed(self) -> bool:
        """Check whether the agent service definition exists."""
        raise NotImplementedError

    def install(self, binary_path: str, config_path: str) -> None:
        raise NotImplementedError

    def uninstall(self) -> None:
        raise NotImplementedError

    def start(self) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError

    def enable(self) -> None:
        raise NotImplementedError

    def disable(self) -> None:
        raise NotImplementedError

    def status(self) -> str:
        """Return one of the normalized ``SERVICE_STATUSES``."""
        raise NotImplementedError

    def is_active(self) -> bool:
        return self.status() == STATUS_ACTIVE

    def is_enabled(self) -> bool:
        raise NotImplementedError

    def main_pid(self) -> int:
        """Return the PID of the running service, or 0."""
        raise NotImplementedError

    def get_logs(self, lines: int = 50) -> str:
        """Return the last ``lines`` lines of agent output."""
        return ''.join(tail_lines(self._log_file(), lines))

    def follow_logs(self, lines: int = 50) -> None:
        """Print new agent output until interrupted."""
        follow_file(self._log_file(), lines)

    def _log_file(self) -> str:
        path = self.platform.log_path
        if not os.path.exists(path):
            raise ServiceError(f"log file not found: {path}")
        return path

    def _run(self, args: Sequence[str], action: str, timeout: Optional[float] = 30) -> str:
        """Run a service manager command and return its stdout.

        Raises:
            ServiceError: If the command exits non-zero
        """
        result = run_command(args, timeout=timeout)
        if result.returncode != 0:
            raise ServiceError(f"failed to {action}", result.stderr or result.stdout)
        return result.stdout


def follow_file(path: str, lines: int = 50, poll_interval: float = FOLLOW_POLL_INTERVAL) -> None:
    """Print the last lines of a file, then new lines as they are written.

    Runs until interrupted with Ctrl+C (the KeyboardInterrupt propagates).
    """
    for line in tail_lines(path, lines):
        print(line, end='')

    with open(path, 'r', encoding='utf-8', errors='replace') as f:
        f.seek(0, os.SEEK_END)
        while True:
            line = f.readline()
            if line:
                print(line, end='', flush=True)
                continue
            # Log rotated or truncated
            if os.path.exists(path) and os.path.getsize(path) < f.tell():
                f.seek(0)
            time.sleep(poll_interval)


def warn_on_failure(action: str, func, *args) -> bool:
    """Run an optional service step, turning a ServiceError into a warning."""
    try:
        func(*args)
        return True
    except ServiceError as e:
        logger.debug(f"{action} failed: {e}")
        output.print_warning(f"Failed to {action}: {e}")
        return False


__all__ = [
    'ServiceManager',
    'SERVICE_NAME',
    'DISPLAY_NAME',
    'SERVICE_STATUSES',
    'STATUS_ACTIVE',
    'STATUS_INACTIVE',
    'STATUS_ACTIVATING',
    'STATUS_DEACTIVATING',
    'STATUS_FAILED',
    'STATUS_UNKNOWN',
    'follow_file',
    'warn_on_failure',
]
