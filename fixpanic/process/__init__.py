"""
Cross-platform process lifecycle management.

Starts the agent detached from the CLI, finds it again later and stops it,
on Linux, macOS and Windows.
"""
import platform
from typing import Optional

from .base import BaseProcessManager, ProcessConfig, ProcessInfo
from .unix import UnixProcessManager
from .darwin import DarwinProcessManager
from .windows import WindowsProcessManager
from ..platform_info import normalize_os

_MANAGERS = {
    'linux': UnixProcessManager,
    'darwin': DarwinProcessManager,
    'windows': WindowsProcessManager,
}


def create_process_manager(system: Optional[str] = None) -> BaseProcessManager:
    """Create the process manager for the current (or given) OS.

    Raises:
        PlatformNotSupportedError: If the OS is not supported
    """
    os_name = normalize_os(system or platform.system())
    return _MANAGERS[os_name]()


__all__ = [
    'BaseProcessManager',
    'ProcessConfig',
    'ProcessInfo',
    'UnixProcessManager',
    'DarwinProcessManager',
    'WindowsProcessManager',
    'create_process_manager',
]
