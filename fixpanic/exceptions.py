"""
Exceptions raised by the Fixpanic CLI.

Every error the CLI reports to the user derives from :class:`FixpanicError`;
anything else reaching the top level is a bug.
"""
from typing import Optional


class FixpanicError(Exception):
    """Base class for all Fixpanic CLI errors."""
    pass


class PlatformNotSupportedError(FixpanicError):
    """Raised when the host operating system is not supported."""
    pass


class ConfigError(FixpanicError):
    """Raised when the agent configuration cannot be loaded, saved or validated."""
    pass


class RulesError(FixpanicError):
    """Raised when a security rules file is malformed."""
    pass


class DownloadError(FixpanicError):
    """Raised when a release artifact cannot be fetched or written."""
    pass


class ProcessError(FixpanicError):
    """Raised when an agent process cannot be started or stopped."""
    pass


class ServiceError(FixpanicError):
    """Raised when a service manager command fails."""

    def __init__(self, message: str, stderr: Optional[str] = None):
        self.stderr = (stderr or '').strip()
        if self.stderr:
            message = f"{message}: {self.stderr}"
        super().__init__(message)


class AgentNotInstalledError(FixpanicError):
    """Raised when a command needs an installed agent and there is none."""

    def __init__(self, message: str = "Fixpanic agent is not installed. "
                                      "Run 'fixpanic agent install' first"):
        super().__init__(message)


class AlreadyInstalledError(FixpanicError):
    """Raised by install when the agent binary already exists."""

    def __init__(self, message: str = "Fixpanic agent is already installed. "
                                      "Use --force to reinstall"):
        super().__init__(message)


class UpgradeError(FixpanicError):
    """Raised when the CLI cannot upgrade itself."""
    pass


class ConnectionTestError(FixpanicError):
    """Raised when the socket server cannot be reached."""
    pass
