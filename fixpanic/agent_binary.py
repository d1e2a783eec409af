"""
Agent binary management: download, version detection and updates.
"""
import os
import re
import logging
import subprocess
from typing import Optional, Tuple

import requests

from . import output
from .exceptions import DownloadError, FixpanicError, ProcessError
from .platform_info import AGENT_RELEASES_API_URL, PlatformInfo, agent_download_url
from .utils import calculate_file_hash, create_http_session, human_readable_size

logger = logging.getLogger('fixpanic.agent_binary')

DOWNLOAD_TIMEOUT = (10, 300)  # (connect, read) seconds
API_TIMEOUT = 10
CHUNK_SIZE = 64 * 1024

_VERSION_RE = re.compile(r'\bv?(\d+\.\d+\.\d+(?:[-+][0-9A-Za-z.\-]+)?)')


def extract_version(text: str) -> str:
    """Pull a ``vX.Y.Z`` version out of ``--version`` output.

    Output such as ``fixpanic-agent v1.0.0 - built 2024-01-01`` yields
    ``v1.0.0``. Text without a recognizable version is returned stripped.
    """
    match = _VERSION_RE.search(text or '')
    if not match:
        return (text or '').strip()
    return 'v' + match.group(1)


class AgentBinaryManager:
    """Handles agent binary operations for one platform layout."""

    def __init__(self, platform_info: PlatformInfo, session: Optional[requests.Session] = None,
                 base_url: Optional[str] = None, releases_api_url: str = AGENT_RELEASES_API_URL):
        self.platform = platform_info
        self.session = session or create_http_session()
        self.base_url = base_url
        self.releases_api_url = releases_api_url

    @property
    def binary_path(self) -> str:
        return self.platform.binary_path

    def download_url(self, version: str = 'latest') -> str:
        return agent_download_url(version, self.platform.os, self.platform.arch, self.base_url)

    def download(self, version: str = 'latest') -> str:
        """Download the agent binary and move it into place atomically.

        The body is streamed to ``<binary>.tmp``, made executable and then
        renamed over the final path, so a failed download never leaves a
        truncated binary behind.

        Args:
            version: Release tag or ``latest``

        Returns:
            Path of the installed binary

        Raises:
            DownloadError: On HTTP or filesystem errors
        """
        url = self.download_url(version)
        binary_path = self.binary_path
        tmp_path = binary_path + '.tmp'

        output.print_progress(f"Downloading from {url}")
        try:
            response = self.session.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT)
        except requests.RequestException as e:
            raise DownloadError(f"failed to download binary: {e}") from e

        try:
            if response.status_code != 200:
                raise DownloadError(f"failed to download binary: HTTP {response.status_code}")

            os.makedirs(os.path.dirname(binary_path), exist_ok=True)
            written = 0
            with open(tmp_path, 'wb') as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
                        written += len(chunk)
            if written == 0:
                raise DownloadError("failed to download binary: empty response body")

            os.chmod(tmp_path, 0o755)
            os.replace(tmp_path, binary_path)
        except requests.RequestException as e:
            raise DownloadError(f"failed to save binary: {e}") from e
        except OSError as e:
            raise DownloadError(f"failed to save binary: {e}") from e
        finally:
            response.close()
            if os.path.exists(tmp_path):
                os.remove(tmp_path)

        logger.info(f"Downloaded {human_readable_size(written)} to {binary_path}")
        output.print_success(f"Fixpanic agent downloaded to {binary_path}")
        return binary_path

    def is_installed(self) -> bool:
        """Check if the agent binary exists."""
        return os.path.isfile(self.binary_path)

    def get_version(self) -> str:
        """Return the output of ``<binary> --version``.

        Raises:
            ProcessError: If the binary is missing or fails to report a version
        """
        if not self.is_installed():
            raise ProcessError("Fixpanic agent not installed")
        try:
            result = subprocess.run(
                [self.binary_path, '--version'], capture_output=True, text=True, timeout=10,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ProcessError(f"failed to get version: {e}") from e
        if result.returncode != 0:
            raise ProcessError(f"failed to get version: exit status {result.returncode}")
        return result.stdout.strip()

    def remove(self) -> None:
        """Remove the agent binary; a missing binary is not an error."""
        try:
            os.remove(self.binary_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise FixpanicError(f"failed to remove binary: {e}") from e

    def verify_checksum(self, expected_checksum: str) -> None:
        """Verify the installed binary against a SHA-256 hex digest.

        Raises:
            DownloadError: On mismatch or if the binary cannot be read
        """
        try:
            actual = calculate_file_hash(self.binary_path, 'sha256')
        except OSError as e:
            raise DownloadError(f"failed to calculate checksum: {e}") from e
        if actual.lower() != expected_checksum.strip().lower():
            raise DownloadError(f"checksum mismatch: expected {expected_checksum}, got {actual}")

    def get_latest_version(self) -> str:
        """Fetch the latest agent release tag from GitHub."""
        try:
            response = self.session.get(
                self.releases_api_url, timeout=API_TIMEOUT,
                headers={'Accept': 'application/vnd.github+json'},
            )
        except requests.RequestException as e:
            raise DownloadError(f"failed to fetch latest release: {e}") from e

        if response.status_code != 200:
            raise DownloadError(f"GitHub API request failed: {response.status_code}")

        try:
            tag = response.json()['tag_name']
        except (ValueError, KeyError, TypeError) as e:
            raise DownloadError(f"failed to parse release info: {e}") from e
        return str(tag).strip()

    def is_update_available(self) -> Tuple[bool, str]:
        """Check whether a newer agent release exists.

        Returns:
            ``(available, latest_version)``; ``(True, '')`` when the agent is
            not installed at all
        """
        if not self.is_installed():
            return True, ''

        current = extract_version(self.get_version())
        latest = self.get_latest_version()
        return current != extract_version(latest), latest

    def ensure_latest(self, force: bool = False) -> bool:
        """Download the latest agent if it is missing or outdated.

        A failed update check is logged as a warning and keeps the existing
        binary. Download failures propagate.

        Args:
            force: Download even if the installed version is current

        Returns:
            True if a new binary was downloaded
        """
        output.print_progress("Checking for agent binary updates")

        latest_version = ''
        if not force:
            try:
                update_available, latest_version = self.is_update_available()
            except FixpanicError as e:
                output.print_warning(f"Failed to check for updates: {e}")
                return False

            if not update_available:
                output.print_list_item("Agent binary is up to date")
                return False

        if self.is_installed():
            try:
                current = self.get_version()
            except ProcessError:
                current = 'unknown'
            if latest_version:
                output.print_info(f"Agent update available: {current} -> {latest_version}")
            output.print_progress("Downloading latest agent binary")
        else:
            output.print_progress("Installing agent binary")

        self.download('latest')

        try:
            output.print_success(f"Agent binary updated to: {self.get_version()}")
        except ProcessError as e:
            output.print_warning(f"Failed to verify new version: {e}")
        return True
