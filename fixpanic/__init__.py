"""
Fixpanic CLI
------------
Deploy and manage Fixpanic agents on customer servers.

The CLI downloads the agent binary, writes its configuration, registers it
with the operating system's service manager (or starts it directly) and
provides status, log and upgrade commands around it.
"""

__version__ = "1.0.0"
__author__ = "Fixpanic"
__license__ = "MIT"

from .exceptions import FixpanicError
from .platform_info import PlatformInfo, get_platform_info

__all__ = [
    'FixpanicError',
    'PlatformInfo',
    'get_platform_info',
    '__version__',
]

# Set up default logging to prevent "No handler found" warnings
import logging
logging.getLogger(__name__).addHandler(logging.NullHandler())
