"""
Self-upgrade of the Fixpanic CLI from GitHub Releases.

Only a frozen, standalone build of the CLI can replace its own executable.
A pip-installed CLI can still check for updates but is upgraded with pip.
"""
import os
import sys
import shutil
import logging
import tarfile
import tempfile
from datetime import datetime
from typing import Any, Dict, Optional

import requests

from . import __version__, output
from .exceptions import DownloadError, UpgradeError
from .platform_info import CLI_RELEASES_API_URL, CLI_BINARY_BASENAME, cli_asset_name, detect_platform
from .utils import create_http_session, human_readable_size

logger = logging.getLogger('fixpanic.self_upgrade')

API_TIMEOUT = 30
DOWNLOAD_TIMEOUT = (10, 300)
MIN_BINARY_SIZE = 1024
MAX_RELEASE_NOTES = 500
CHUNK_SIZE = 64 * 1024

PIP_UPGRADE_HINT = "pip install --upgrade fixpanic-cli"


def current_version() -> str:
    """Return the running CLI version as a release tag (``vX.Y.Z``)."""
    if not __version__ or __version__ == 'dev':
        return 'dev'
    return __version__ if __version__.startswith('v') else f"v{__version__}"


def is_frozen() -> bool:
    return bool(getattr(sys, 'frozen', False))


def current_binary_path() -> str:
    """Return the real path of the running standalone executable.

    Raises:
        UpgradeError: If the CLI is not running as a standalone executable
    """
    if not is_frozen():
        raise UpgradeError(
            "this installation of the Fixpanic CLI cannot replace itself; "
            f"upgrade it with: {PIP_UPGRADE_HINT}"
        )
    return os.path.realpath(sys.executable)


def get_latest_release(session: requests.Session, url: str = CLI_RELEASES_API_URL) -> Dict[str, Any]:
    """Fetch the latest release description from the GitHub API.

    Raises:
        UpgradeError: On network errors, non-200 responses or bad JSON
    """
    output.print_progress("Fetching from GitHub API")
    try:
        response = session.get(url, timeout=API_TIMEOUT,
                               headers={'Accept': 'application/vnd.github+json'})
    except requests.RequestException as e:
        raise UpgradeError(f"failed to fetch latest release: {e}") from e

    if response.status_code != 200:
        raise UpgradeError(f"GitHub API request failed: {response.status_code}")

    try:
        release = response.json()
    except ValueError as e:
        raise UpgradeError(f"failed to parse release info: {e}") from e
    if not isinstance(release, dict) or not release.get('tag_name'):
        raise UpgradeError("failed to parse release info: missing tag_name")
    return release


def format_release_date(published_at: str) -> str:
    """Format an ISO-8601 timestamp as e.g. ``January 2, 2006``.

    Unparseable values are returned unchanged.
    """
    if not published_at:
        return 'unknown'
    try:
        published = datetime.strptime(published_at, '%Y-%m-%dT%H:%M:%SZ')
    except ValueError:
        return published_at
    return f"{published.strftime('%B')} {published.day}, {published.year}"


def find_asset(release: Dict[str, Any], asset_name: str) -> Dict[str, Any]:
    """Find a named asset in a release.

    Raises:
        UpgradeError: If the release has no such asset
    """
    for asset in release.get('assets') or []:
        if asset.get('name') == asset_name and asset.get('browser_download_url'):
            return asset
    raise UpgradeError(f"no binary found for platform: {asset_name}")


def download_asset(session: requests.Session, url: str, dest_path: str) -> None:
    """Download a release asset.

    Transient failures are retried by the session's transport adapter
    (see :func:`fixpanic.utils.create_http_session`).

    Raises:
        DownloadError: If the download fails
    """
    try:
        with session.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT) as response:
            if response.status_code != 200:
                raise DownloadError(f"download failed: HTTP {response.status_code}")
            with open(dest_path, 'wb') as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
    except requests.RequestException as e:
        raise DownloadError(f"download failed: {e}") from e
    except OSError as e:
        raise DownloadError(f"failed to save download: {e}") from e


def extract_binary_from_tar_gz(archive_path: str, extract_dir: str) -> str:
    """Extract the CLI executable from a release tarball.

    The first regular file named ``fixpanic`` or ``fixpanic-*`` is written to
    ``<extract_dir>/fixpanic``; the archive's own paths are never used.

    Raises:
        UpgradeError: If the archive is unreadable or holds no CLI binary
    """
    binary_path = os.path.join(extract_dir, CLI_BINARY_BASENAME)
    try:
        with tarfile.open(archive_path, 'r:gz') as tar:
            for member in tar:
                name = os.path.basename(member.name)
                if not member.isreg():
                    continue
                if name != CLI_BINARY_BASENAME and not name.startswith(CLI_BINARY_BASENAME + '-'):
                    continue
                source = tar.extractfile(member)
                if source is None:
                    continue
                with source, open(binary_path, 'wb') as out:
                    shutil.copyfileobj(source, out)
                return binary_path
    except (tarfile.TarError, OSError) as e:
        raise UpgradeError(f"failed to extract binary: {e}") from e
    raise UpgradeError("binary not found in archive")


def verify_new_binary(path: str) -> None:
    """Check that a downloaded binary looks usable.

    Raises:
        UpgradeError: If it is missing, not executable or implausibly small
    """
    try:
        size = os.path.getsize(path)
    except OSError as e:
        raise UpgradeError(f"binary file not found: {e}") from e
    if os.name != 'nt' and not os.access(path, os.X_OK):
        raise UpgradeError("binary is not executable")
    if size < MIN_BINARY_SIZE:
        raise UpgradeError(f"binary file too small ({size} bytes), possibly corrupted")


def replace_binary(current_path: str, new_path: str) -> None:
    """Replace the running executable, restoring a backup if the swap fails.

    Raises:
        UpgradeError: If the new binary cannot be moved into place
    """
    backup_path = current_path + '.backup'
    have_backup = False
    try:
        shutil.copy2(current_path, backup_path)
        have_backup = True
        output.print_list_item(f"Backup created: {backup_path}")
    except OSError as e:
        output.print_warning(f"Could not create backup: {e}")

    try:
        # Across filesystems os.replace fails; stage the file next to the target first
        staged_path = current_path + '.new'
        shutil.copy2(new_path, staged_path)
        os.replace(staged_path, current_path)
    except OSError as e:
        if have_backup:
            try:
                os.replace(backup_path, current_path)
                output.print_warning("Restored previous version from backup")
            except OSError as restore_error:
                logger.error(f"Failed to restore backup: {restore_error}")
        if os.path.exists(current_path + '.new'):
            os.remove(current_path + '.new')
        raise UpgradeError(f"failed to replace binary: {e}") from e

    try:
        os.chmod(current_path, 0o755)
    except OSError as e:
        output.print_warning(f"Failed to set permissions on new binary: {e}")

    if have_backup:
        try:
            os.remove(backup_path)
        except OSError as e:
            logger.debug(f"Could not remove backup {backup_path}: {e}")


def run_upgrade(check: bool = False, force: bool = False,
                session: Optional[requests.Session] = None) -> None:
    """Upgrade the CLI to the latest GitHub release.

    Args:
        check: Only report whether an update is available
        force: Reinstall even if already on the latest version
        session: HTTP session to use (a new one by default)

    Raises:
        UpgradeError: If the upgrade cannot be performed
    """
    session = session or create_http_session()
    output.print_header("Fixpanic CLI Upgrade")

    output.print_step(1, "Checking current version")
    installed = current_version()
    output.print_key_value("Current version", installed)

    output.print_step(2, "Fetching latest release information")
    release = get_latest_release(session)
    latest = release['tag_name']
    output.print_key_value("Latest version", latest)
    output.print_key_value("Release date", format_release_date(release.get('published_at', '')))

    if installed == latest and not force:
        output.print_success("You are already on the latest version!")
        return

    if check:
        if installed == latest:
            output.print_success("You are on the latest version")
        else:
            output.print_info(f"Update available: {installed} -> {latest}")
        return

    if installed == latest:
        output.print_info("Forcing upgrade to the same version")
    else:
        output.print_info(f"Upgrading: {installed} -> {latest}")

    binary_path = current_binary_path()
    output.print_key_value("Current binary", binary_path)

    os_name, arch = detect_platform()
    asset_name = cli_asset_name(os_name, arch)
    asset = find_asset(release, asset_name)
    output.print_key_value("Asset", asset_name)
    output.print_key_value("Size", human_readable_size(asset.get('size') or 0))

    output.print_step(3, "Downloading new version")
    temp_dir = tempfile.mkdtemp(prefix='fixpanic-upgrade-')
    try:
        download_path = os.path.join(temp_dir, asset_name)
        try:
            download_asset(session, asset['browser_download_url'], download_path)
        except DownloadError as e:
            raise UpgradeError(f"failed to download new version: {e}") from e

        if asset_name.endswith('.tar.gz'):
            output.print_progress("Extracting binary from archive")
            new_binary = extract_binary_from_tar_gz(download_path, temp_dir)
        else:
            new_binary = download_path
        try:
            os.chmod(new_binary, 0o755)
        except OSError as e:
            raise UpgradeError(f"failed to make binary executable: {e}") from e

        output.print_step(4, "Verifying new binary")
        verify_new_binary(new_binary)
        output.print_success("New binary verified successfully")

        output.print_step(5, "Installing new version")
        replace_binary(binary_path, new_binary)
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    output.print_success("Fixpanic CLI upgraded successfully!")
    output.print_key_value("New version", latest)

    notes = (release.get('body') or '').strip()
    if notes and len(notes) < MAX_RELEASE_NOTES:
        output.print_info("Release notes:")
        output.print_plain(notes)

    output.print_info("Run 'fixpanic --version' to confirm the new version")
