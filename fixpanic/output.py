"""
Console output helpers.

User-facing messages go through these functions rather than the logging
module so that every command prints the same colored prefixes. Diagnostics
(what was executed, why a fallback was taken) still go to ``logging``.
"""
import os
import sys
from typing import Optional

# Colors for console output
class Colors:
    HEADER = '\033[95m'
    OKBLUE = '\033[94m'
    OKCYAN = '\033[96m'
    OKGREEN = '\033[92m'
    WARNING = '\033[93m'
    FAIL = '\033[91m'
    GRAY = '\033[37m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'
    UNDERLINE = '\033[4m'


_color_override: Optional[bool] = None


def should_use_colors() -> bool:
    """Decide whether ANSI colors should be emitted.

    Honors ``NO_COLOR`` and ``CLICOLOR=0``, and stays off when stdout is not
    a terminal. Windows consoles get plain text unless ``FORCE_COLOR=true``
    or ``CLICOLOR_FORCE=1`` is set.
    """
    if _color_override is not None:
        return _color_override

    if os.name == 'nt':
        if os.getenv('FORCE_COLOR') != 'true' and os.getenv('CLICOLOR_FORCE') != '1':
            return False

    if os.getenv('NO_COLOR'):
        return False

    if os.getenv('CLICOLOR') == '0':
        return False

    isatty = getattr(sys.stdout, 'isatty', None)
    if isatty is None or not isatty():
        return False

    return True


def set_colors(enabled: Optional[bool]) -> None:
    """Force colors on or off; ``None`` restores environment detection."""
    global _color_override
    _color_override = enabled


def colorize(color: str, text: str) -> str:
    if not should_use_colors():
        return text
    return f"{color}{text}{Colors.ENDC}"


def print_header(text: str) -> None:
    """Print a formatted header."""
    print(f"\n{colorize(Colors.HEADER, '=' * 60)}")
    print(colorize(Colors.HEADER + Colors.BOLD, text.upper()))
    print(colorize(Colors.HEADER, '=' * 60))


def print_step(step: int, text: str) -> None:
    """Print a numbered installation step."""
    print(f"{colorize(Colors.HEADER, f'[{step}]')} {text}")


def print_success(text: str) -> None:
    """Print a success message."""
    print(colorize(Colors.OKGREEN, f"[+] {text}"))


def print_warning(text: str) -> None:
    """Print a warning message."""
    print(colorize(Colors.WARNING, f"[!] {text}"))


def print_error(text: str) -> None:
    """Print an error message."""
    print(colorize(Colors.FAIL, f"[-] {text}"), file=sys.stderr)


def print_info(text: str) -> None:
    """Print an info message."""
    print(colorize(Colors.OKBLUE, f"[*] {text}"))


def print_progress(text: str) -> None:
    """Print a progress message."""
    print(colorize(Colors.OKCYAN, f"[~] {text}"))


def print_key_value(key: str, value: object) -> None:
    """Print an aligned key/value pair."""
    print(f"    {colorize(Colors.BOLD, key + ':')} {value}")


def print_list_item(text: str) -> None:
    print(f"    {colorize(Colors.OKGREEN, '-')} {text}")


def print_command(command: str) -> None:
    """Print a command the user can run."""
    print(f"    {colorize(Colors.GRAY, '$ ' + command)}")


def print_plain(text: str = '') -> None:
    print(text)
