"""
Platform detection and install layout.

Everything that depends on the host OS, CPU architecture or privilege level
is resolved here once and carried around in a :class:`PlatformInfo`.
"""
import os
import ntpath
import logging
import platform
import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from .exceptions import PlatformNotSupportedError
from .utils import is_running_as_admin, ensure_directory_exists

logger = logging.getLogger('fixpanic.platform')

AGENT_BINARY_BASENAME = 'fixpanic-agent'
CLI_BINARY_BASENAME = 'fixpanic'

DEFAULT_RELEASE_BASE_URL = 'https://github.com/fixpanic/fixpanic-agent/releases'
AGENT_RELEASES_API_URL = 'https://api.github.com/repos/fixpanic/fixpanic-agent/releases/latest'
CLI_RELEASES_API_URL = 'https://api.github.com/repos/fixpanic/fixpanic-cli/releases/latest'

SUPPORTED_OS = ('linux', 'darwin', 'windows')

_OS_ALIASES = {
    'linux': 'linux',
    'darwin': 'darwin',
    'macos': 'darwin',
    'windows': 'windows',
    'win32': 'windows',
}

_ARCH_ALIASES = {
    'x86_64': 'amd64',
    'amd64': 'amd64',
    'aarch64': 'arm64',
    'arm64': 'arm64',
    'i386': '386',
    'i686': '386',
    'x86': '386',
    '386': '386',
    'armv6l': 'arm',
    'armv7': 'arm',
    'armv7l': 'arm',
    'arm': 'arm',
}


def normalize_os(system: str) -> str:
    """Map ``platform.system()`` style names to release names (linux/darwin/windows)."""
    name = _OS_ALIASES.get(system.strip().lower())
    if name is None:
        raise PlatformNotSupportedError(f"Unsupported platform: {system}")
    return name


def normalize_arch(arch: str) -> str:
    """Normalize architecture names for consistency with release artifacts."""
    arch = arch.strip().lower()
    return _ARCH_ALIASES.get(arch, arch)


def detect_platform() -> Tuple[str, str]:
    """Return the normalized (os, arch) pair of the running host."""
    return normalize_os(platform.system()), normalize_arch(platform.machine())


def agent_binary_name(os_name: str) -> str:
    """Return the installed agent binary file name for an OS."""
    if os_name == 'windows':
        return f"{AGENT_BINARY_BASENAME}.exe"
    return AGENT_BINARY_BASENAME


def agent_artifact_name(os_name: str, arch: str) -> str:
    """Return the release artifact name, e.g. ``fixpanic-agent-linux-amd64``."""
    name = f"{AGENT_BINARY_BASENAME}-{os_name}-{arch}"
    if os_name == 'windows':
        name += '.exe'
    return name


def release_base_url() -> str:
    """Return the agent release base URL, honoring ``FIXPANIC_RELEASE_BASE_URL``."""
    return (os.getenv('FIXPANIC_RELEASE_BASE_URL') or DEFAULT_RELEASE_BASE_URL).rstrip('/')


def agent_download_url(version: str, os_name: str, arch: str,
                       base_url: Optional[str] = None) -> str:
    """Build the download URL of an agent release artifact.

    The layout is ``{base}/{version}/download/{artifact}`` where version is
    either ``latest`` or a release tag.
    """
    base = (base_url or release_base_url()).rstrip('/')
    version = version or 'latest'
    return f"{base}/{version}/download/{agent_artifact_name(os_name, arch)}"


def cli_asset_name(os_name: str, arch: str) -> str:
    """Return the CLI release asset name for the self-upgrade."""
    name = f"{CLI_BINARY_BASENAME}-{os_name}-{arch}"
    if os_name == 'windows':
        return name + '.exe'
    return name + '.tar.gz'


@dataclass
class PlatformInfo:
    """Platform-specific paths and facts for an agent installation."""
    os: str
    arch: str
    lib_dir: str
    bin_dir: str
    config_dir: str
    log_dir: str
    is_root: bool
    home: str

    @property
    def _path(self):
        return ntpath if self.os == 'windows' else posixpath

    @property
    def binary_path(self) -> str:
        """Full path to the agent binary."""
        return self._path.join(self.lib_dir, agent_binary_name(self.os))

    @property
    def config_path(self) -> str:
        """Full path to the agent config file."""
        return self._path.join(self.config_dir, 'agent.yaml')

    @property
    def rules_path(self) -> str:
        """Default location of the security rules file."""
        return self._path.join(self.config_dir, 'security-rules.yaml')

    @property
    def log_path(self) -> str:
        return self._path.join(self.log_dir, 'agent.log')

    @property
    def pid_file(self) -> str:
        """PID file written when the agent is spawned without a service manager."""
        return self._path.join(self.lib_dir, 'agent.pid')

    def create_directories(self) -> None:
        """Create the lib, config and log directories."""
        for directory in (self.lib_dir, self.config_dir, self.log_dir):
            ensure_directory_exists(directory, mode=0o755)

    def directories(self) -> Tuple[str, str, str]:
        return self.lib_dir, self.config_dir, self.log_dir


def get_platform_info(system: Optional[str] = None, machine: Optional[str] = None,
                      is_root: Optional[bool] = None, home: Optional[str] = None) -> PlatformInfo:
    """Return platform-specific information for the current (or given) host.

    Args:
        system: OS name override (defaults to ``platform.system()``)
        machine: Architecture override (defaults to ``platform.machine()``)
        is_root: Privilege override (defaults to the current process)
        home: Home directory override

    Returns:
        A populated PlatformInfo

    Raises:
        PlatformNotSupportedError: If the OS is not linux, darwin or windows
    """
    os_name = normalize_os(system or platform.system())
    arch = normalize_arch(machine or platform.machine())
    if is_root is None:
        is_root = is_running_as_admin()
    home = home or str(Path.home())

    if os_name == 'windows':
        if is_root:
            base = ntpath.join(os.getenv('ProgramData', r'C:\ProgramData'), 'Fixpanic')
        else:
            base = ntpath.join(os.getenv('LOCALAPPDATA', ntpath.join(home, 'AppData', 'Local')), 'Fixpanic')
        lib_dir = ntpath.join(base, 'lib')
        bin_dir = ntpath.join(base, 'bin')
        config_dir = ntpath.join(base, 'config')
        log_dir = ntpath.join(base, 'logs')
    elif is_root:
        lib_dir = '/usr/local/lib/fixpanic'
        bin_dir = '/usr/local/bin'
        config_dir = '/etc/fixpanic'
        log_dir = '/var/log/fixpanic'
    else:
        lib_dir = posixpath.join(home, '.local', 'lib', 'fixpanic')
        bin_dir = posixpath.join(home, '.local', 'bin')
        config_dir = posixpath.join(home, '.config', 'fixpanic')
        log_dir = posixpath.join(home, '.local', 'log', 'fixpanic')

    info = PlatformInfo(
        os=os_name,
        arch=arch,
        lib_dir=lib_dir,
        bin_dir=bin_dir,
        config_dir=config_dir,
        log_dir=log_dir,
        is_root=is_root,
        home=home,
    )
    logger.debug(f"Detected platform: {info}")
    return info
