"""
Agent configuration management.

The agent reads a YAML file that the CLI writes at install time. The models
below define its layout and defaults; unknown keys are kept so that settings
added by newer agent releases survive a rewrite by an older CLI.
"""
import os
import logging
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ConfigError
from .platform_info import PlatformInfo
from .utils import write_file_atomic

logger = logging.getLogger('fixpanic.config')

# Load environment variables from .env file if it exists
load_dotenv()

DEFAULT_SOCKET_SERVER = 'socket.fixpanic.com:8080'
LATEST_VERSION = 'latest'
LOG_LEVELS = ('debug', 'info', 'warn', 'warning', 'error')

CONFIG_HEADER = """# Fixpanic Agent Configuration
# Generated by the Fixpanic CLI. The agent reads this file at startup;
# restart the agent after editing it (fixpanic agent restart).

"""


class ConfigSection(BaseModel):
    """Base class for config sections."""
    model_config = ConfigDict(extra='allow', validate_assignment=True)


class AgentSection(ConfigSection):
    """Agent identity and the server it connects to.

    ``version`` is the release the CLI installed. Anything other than
    ``latest`` pins the agent and turns off the update check on start.
    """
    id: str = ''
    api_key: str = ''
    socket_server: str = DEFAULT_SOCKET_SERVER
    version: str = LATEST_VERSION

    @property
    def is_pinned(self) -> bool:
        return bool(self.version) and self.version != LATEST_VERSION


class ConnectionSection(ConfigSection):
    """Connection settings passed through to the agent."""
    use_tls: bool = True
    verify_tls: bool = True
    max_connections: int = Field(default=10, ge=1)
    connect_timeout: float = Field(default=30, gt=0)
    read_timeout: float = Field(default=60, gt=0)
    reconnect_interval: float = Field(default=5, ge=0)


class SecuritySection(ConfigSection):
    rules_file: str = '/etc/fixpanic/security-rules.yaml'


class LoggingSection(ConfigSection):
    """Agent logging configuration."""
    level: str = 'info'
    file: str = '/var/log/fixpanic/agent.log'

    @field_validator('level')
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Normalize the log level and reject unknown ones."""
        level = (v or '').strip().lower()
        if level not in LOG_LEVELS:
            raise ValueError(f"unknown log level '{v}', expected one of: {', '.join(LOG_LEVELS)}")
        return level


class AgentConfig(ConfigSection):
    """Complete agent configuration file."""
    agent: AgentSection = Field(default_factory=AgentSection)
    connection: ConnectionSection = Field(default_factory=ConnectionSection)
    security: SecuritySection = Field(default_factory=SecuritySection)
    logging: LoggingSection = Field(default_factory=LoggingSection)

    def ensure_valid(self) -> None:
        """Check that the configuration is complete enough to start an agent.

        Raises:
            ConfigError: If a required value is missing or malformed
        """
        if not self.agent.id.strip():
            raise ConfigError("agent ID is required")
        if not self.agent.api_key.strip():
            raise ConfigError("agent API key is required")
        if not self.agent.socket_server.strip():
            raise ConfigError("socket server address is required")
        split_address(self.agent.socket_server)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()


def split_address(address: str) -> Tuple[str, int]:
    """Split a ``host:port`` address (IPv6 hosts may be bracketed).

    Raises:
        ConfigError: If the address has no valid port
    """
    host, sep, port = address.strip().rpartition(':')
    if not sep or not host:
        raise ConfigError(f"invalid socket server address '{address}': expected host:port")
    host = host.strip('[]')
    try:
        port_number = int(port)
    except ValueError:
        raise ConfigError(f"invalid port in socket server address '{address}'") from None
    if not 0 < port_number <= 65535:
        raise ConfigError(f"port out of range in socket server address '{address}'")
    return host, port_number


def default_config(platform_info: Optional[PlatformInfo] = None) -> AgentConfig:
    """Return a default configuration, with paths for the given platform."""
    config = AgentConfig()
    if platform_info is not None:
        config.security.rules_file = platform_info.rules_path
        config.logging.file = platform_info.log_path
    return apply_env_overrides(config)


def apply_env_overrides(config: AgentConfig) -> AgentConfig:
    """Apply ``FIXPANIC_*`` environment variables on top of a config."""
    socket_server = os.getenv('FIXPANIC_SOCKET_SERVER')
    if socket_server:
        logger.debug(f"Socket server overridden from environment: {socket_server}")
        config.agent.socket_server = socket_server
    return config


def resolve_config_path(platform_info: PlatformInfo, override: Optional[str] = None) -> str:
    """Return the agent config path: explicit override, ``FIXPANIC_CONFIG``, then the platform default."""
    return override or os.getenv('FIXPANIC_CONFIG') or platform_info.config_path


def load_config(path: str) -> AgentConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to the configuration file

    Returns:
        The parsed configuration, with defaults for missing keys

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ConfigError(f"config file not found: {path}") from None
    except OSError as e:
        raise ConfigError(f"failed to read config file: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"failed to parse config file: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"failed to parse config file: expected a mapping in {path}")

    try:
        return AgentConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid config file {path}: {e}") from e


def save_config(config: AgentConfig, path: str) -> None:
    """Save configuration to a YAML file readable by the owner only.

    Raises:
        ConfigError: If the file cannot be written
    """
    text = CONFIG_HEADER + yaml.safe_dump(config.to_dict(), sort_keys=False, default_flow_style=False)
    try:
        write_file_atomic(path, text, mode=0o600)
    except OSError as e:
        raise ConfigError(f"failed to write config file: {e}") from e
    logger.info(f"Configuration written to {path}")
