"""
Utility functions for the Fixpanic CLI.
"""
import os
import shutil
import hashlib
import logging
import subprocess
import tempfile
from collections import deque
from typing import List, Optional, Sequence, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

# Configure logging
logger = logging.getLogger('fixpanic.utils')

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Retry policy for GitHub API and release downloads
HTTP_RETRIES = 3
HTTP_BACKOFF_FACTOR = 1
HTTP_RETRY_STATUSES = [429, 500, 502, 503, 504]


def setup_logging(log_level: str = 'WARNING', log_file: Optional[str] = None) -> None:
    """Configure logging for the CLI.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (if None, logs to stderr only)
    """
    # Convert string log level to numeric
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f'Invalid log level: {log_level}')

    log_handlers: List[logging.Handler] = [logging.StreamHandler()]

    if log_file:
        # Ensure log directory exists
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        log_handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=numeric_level,
        format=LOG_FORMAT,
        handlers=log_handlers,
        force=True
    )


def is_running_as_admin() -> bool:
    """Check if the current process is running with administrator/root privileges."""
    if os.name == 'nt':
        # Windows
        try:
            import ctypes
            return ctypes.windll.shell32.IsUserAnAdmin() != 0
        except Exception:
            return False
    else:
        # Unix/Linux/macOS
        return os.geteuid() == 0


def is_command_available(name: str) -> bool:
    """Check whether an executable is available on PATH."""
    return shutil.which(name) is not None


def run_command(args: Sequence[str], timeout: Optional[float] = 30) -> subprocess.CompletedProcess:
    """Run an external command and capture its output.

    The command is never run through a shell. A missing executable is
    reported the same way as a failing one: with a non-zero return code.

    Args:
        args: Program and arguments
        timeout: Seconds to wait before giving up

    Returns:
        The completed process with text stdout/stderr
    """
    logger.debug(f"Running: {' '.join(args)}")
    try:
        return subprocess.run(
            list(args), capture_output=True, text=True, timeout=timeout,
        )
    except FileNotFoundError as e:
        return subprocess.CompletedProcess(list(args), 127, stdout='', stderr=str(e))
    except subprocess.TimeoutExpired:
        return subprocess.CompletedProcess(list(args), -1, stdout='',
                                           stderr=f'command timed out after {timeout}s')


def create_http_session() -> requests.Session:
    """Create a requests session with retry logic."""
    session = requests.Session()
    retry_strategy = Retry(
        total=HTTP_RETRIES,
        backoff_factor=HTTP_BACKOFF_FACTOR,
        status_forcelist=HTTP_RETRY_STATUSES,
        allowed_methods=["GET"]
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def ensure_directory_exists(directory: str, mode: int = 0o755) -> None:
    """Ensure that a directory exists, creating it if necessary."""
    try:
        os.makedirs(directory, mode=mode, exist_ok=True)
    except Exception as e:
        logger.error(f'Error creating directory {directory}: {e}')
        raise


def write_file_atomic(path: str, data: Union[str, bytes], mode: int = 0o644) -> None:
    """Write a file via a temporary file in the same directory and rename it into place.

    Args:
        path: Destination path
        data: File contents
        mode: Permission bits applied before the rename
    """
    directory = os.path.dirname(os.path.abspath(path))
    ensure_directory_exists(directory)

    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.' + os.path.basename(path), suffix='.tmp')
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data.encode('utf-8') if isinstance(data, str) else data)
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def calculate_file_hash(file_path: str, algorithm: str = 'sha256') -> str:
    """Calculate the hash of a file.

    Args:
        file_path: Path to the file
        algorithm: Hash algorithm to use (default: sha256)

    Returns:
        Hex-encoded hash string
    """
    hash_func = getattr(hashlib, algorithm.lower(), None)
    if not hash_func:
        raise ValueError(f'Unsupported hash algorithm: {algorithm}')

    with open(file_path, 'rb') as f:
        file_hash = hash_func()
        # Read file in chunks to handle large files
        for chunk in iter(lambda: f.read(65536), b''):
            file_hash.update(chunk)
    return file_hash.hexdigest()


def tail_lines(file_path: str, lines: int) -> List[str]:
    """Return the last ``lines`` lines of a text file (all lines if ``lines`` <= 0)."""
    with open(file_path, 'r', encoding='utf-8', errors='replace') as f:
        if lines <= 0:
            return f.readlines()
        return list(deque(f, maxlen=lines))


def mask_secret(value: str, visible: int = 4) -> str:
    """Mask all but the last few characters of a secret."""
    if not value:
        return ''
    if len(value) <= visible:
        return '*' * len(value)
    return '*' * (len(value) - visible) + value[-visible:]


def human_readable_size(size_bytes: float) -> str:
    """Convert a size in bytes to a human-readable string."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if size_bytes < 1024.0:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.1f} PB"
