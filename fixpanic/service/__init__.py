"""
OS service managers: systemd, launchd and the Windows SCM.
"""
import logging
from typing import Optional

from .base import (
    ServiceManager, SERVICE_NAME, SERVICE_STATUSES,
    STATUS_ACTIVE, STATUS_INACTIVE, STATUS_ACTIVATING, STATUS_DEACTIVATING,
    STATUS_FAILED, STATUS_UNKNOWN,
)
from .systemd import SystemdServiceManager
from .launchd import LaunchdServiceManager
from .windows import WindowsServiceManager
from ..platform_info import PlatformInfo

logger = logging.getLogger('fixpanic.service')

_MANAGERS = {
    'linux': SystemdServiceManager,
    'darwin': LaunchdServiceManager,
    'windows': WindowsServiceManager,
}


def create_service_manager(platform_info: PlatformInfo) -> Optional[ServiceManager]:
    """Create the service manager for the platform.

    Returns:
        The manager, or None when the platform's service manager is not
        available (e.g. a container without systemd)
    """
    manager_cls = _MANAGERS.get(platform_info.os)
    if manager_cls is None:
        return None
    manager = manager_cls(platform_info)
    if not manager.is_available():
        logger.debug(f"{manager.name} is not available on this host")
        return None
    return manager


__all__ = [
    'ServiceManager',
    'SystemdServiceManager',
    'LaunchdServiceManager',
    'WindowsServiceManager',
    'SERVICE_NAME',
    'SERVICE_STATUSES',
    'STATUS_ACTIVE',
    'STATUS_INACTIVE',
    'STATUS_ACTIVATING',
    'STATUS_DEACTIVATING',
    'STATUS_FAILED',
    'STATUS_UNKNOWN',
    'create_service_manager',
]
