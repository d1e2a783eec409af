"""
Security rules for the Fixpanic agent.

The agent only executes commands that its rules file allows. The file holds
two lists of regular expressions: deny patterns are checked first and win
over any allow pattern; a command matching neither list is denied.
"""
import os
import re
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import yaml

from .exceptions import RulesError
from .utils import write_file_atomic

logger = logging.getLogger('fixpanic.rules')

# Commands used by `fixpanic agent validate` to show how the rules behave
SAMPLE_COMMANDS = [
    "ls -la",
    "cat /etc/passwd",
    "rm -rf /",
    "ps aux",
    "systemctl restart nginx",
]

DEFAULT_RULES = r'''# Fixpanic Security Rules
# This file defines which commands the agent is allowed to execute
#
# Format:
# - allow: list of allowed command patterns (regex)
# - deny: list of denied command patterns (regex)
#
# Deny rules take precedence over allow rules. Commands matching no
# allow rule are denied.

version: "1.0"

# Allowed commands - basic system monitoring and diagnostics
allow:
  - "^ls\\s"                      # List directory contents
  - "^ps\\s"                      # Process status
  - "^top\\s"                     # System monitor
  - "^df\\s"                      # Disk space
  - "^free\\s"                    # Memory usage
  - "^uptime"                     # System uptime
  - "^uname\\s"                   # System information
  - "^cat\\s"                     # Read files (use with caution)
  - "^grep\\s"                    # Search in files
  - "^find\\s"                    # Find files
  - "^netstat\\s"                 # Network connections
  - "^ss\\s"                      # Socket statistics
  - "^ping\\s"                    # Network connectivity test
  - "^traceroute\\s"              # Network route tracing
  - "^journalctl\\s"              # System logs
  - "^systemctl\\sstatus\\s"      # Service status
  - "^docker\\sps"                # Docker containers
  - "^docker\\slogs\\s"           # Docker logs
  - "^kubectl\\sget\\s"           # Kubernetes resources
  - "^kubectl\\slogs\\s"          # Kubernetes logs

# Denied commands - potentially dangerous operations
deny:
  - "^rm\\s.*-[a-zA-Z]*[rf]"      # Recursive or forced delete
  - "^dd\\s"                      # Disk operations
  - "^mkfs"                       # File system creation
  - "^fdisk\\s"                   # Disk partitioning
  - "^parted\\s"                  # Partition editor
  - "^chmod\\s.*777"              # World-writable permissions
  - "^chown\\s.*root"             # Root ownership changes
  - "^sudo\\s"                    # Privilege escalation
  - "^su(\\s|$)"                  # Switch user
  - "^passwd"                     # Password changes
  - "^useradd\\s"                 # User addition
  - "^userdel\\s"                 # User deletion
  - "^systemctl\\s(restart|stop|start)\\s"  # Service control
  - "^reboot"                     # System reboot
  - "^shutdown"                   # System shutdown
  - "^halt"                       # System halt
  - "^poweroff"                   # System poweroff
  - "^curl.*\\|\\s*(ba)?sh"       # Pipe to shell
  - "^wget.*\\|\\s*(ba)?sh"       # Pipe to shell
'''


@dataclass
class SecurityRules:
    """Parsed security rules file."""
    version: str = ''
    allow: List[str] = field(default_factory=list)
    deny: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> 'SecurityRules':
        """Build rules from a parsed YAML mapping."""
        if not isinstance(data, dict):
            raise RulesError("rules file must contain a mapping")

        def _patterns(key: str) -> List[str]:
            value = data.get(key) or []
            if not isinstance(value, list):
                raise RulesError(f"'{key}' must be a list of patterns")
            return ['' if item is None else str(item) for item in value]

        version = data.get('version')
        return cls(
            version='' if version is None else str(version),
            allow=_patterns('allow'),
            deny=_patterns('deny'),
        )


def load_rules(path: str) -> SecurityRules:
    """Load a security rules file.

    Raises:
        RulesError: If the file cannot be read or is not valid YAML
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise RulesError(f"failed to read rules file: {e}") from e
    except yaml.YAMLError as e:
        raise RulesError(f"invalid YAML format: {e}") from e
    return SecurityRules.from_dict(data)


def validate_rules(rules: SecurityRules) -> None:
    """Validate the rules structure and every pattern.

    Raises:
        RulesError: Naming the offending list, index and pattern
    """
    if not rules.version:
        raise RulesError("rules version is required")

    for kind, patterns in (('allow', rules.allow), ('deny', rules.deny)):
        for index, pattern in enumerate(patterns):
            if not pattern:
                raise RulesError(f"empty {kind} pattern at index {index}")
            try:
                re.compile(pattern)
            except re.error as e:
                raise RulesError(f"invalid regex in {kind} pattern '{pattern}' at index {index}: {e}") from e


def _first_match(patterns: List[str], command: str) -> Optional[str]:
    for pattern in patterns:
        try:
            if re.search(pattern, command):
                return pattern
        except re.error:
            logger.warning(f"Skipping invalid pattern: {pattern}")
    return None


def evaluate_command(rules: SecurityRules, command: str) -> Tuple[bool, Optional[str]]:
    """Evaluate a command against the rules.

    Returns:
        ``(allowed, pattern)`` where pattern is the rule that decided, or
        None when the command was denied for matching nothing
    """
    denied_by = _first_match(rules.deny, command)
    if denied_by is not None:
        return False, denied_by

    allowed_by = _first_match(rules.allow, command)
    if allowed_by is not None:
        return True, allowed_by

    return False, None


def is_command_allowed(rules: SecurityRules, command: str) -> bool:
    """Check if a command is allowed; deny patterns take precedence."""
    return evaluate_command(rules, command)[0]


def create_default_rules_file(path: str) -> None:
    """Write the built-in default rules file."""
    try:
        write_file_atomic(path, DEFAULT_RULES, mode=0o644)
    except OSError as e:
        raise RulesError(f"failed to write rules file: {e}") from e
    logger.info(f"Default security rules written to {path}")


def ensure_rules_file(path: str) -> bool:
    """Create the default rules file if none exists.

    Returns:
        True if a new file was created
    """
    if os.path.exists(path):
        return False
    create_default_rules_file(path)
    return True
