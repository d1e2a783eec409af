"""
Process management for macOS.
"""
from .unix import UnixProcessManager


class DarwinProcessManager(UnixProcessManager):
    """macOS uses the Unix signals; only the error wording differs."""

    platform_name = 'macOS'

    def _error_message(self, pid: int, action: str, error: Exception) -> str:
        return f"failed to {action} process {pid} on macOS: {error}"
