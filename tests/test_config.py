"""
Tests for the agent configuration module.
"""
import os
import stat
import pytest
from unittest.mock import patch
import yaml

from fixpanic.config import (
    AgentConfig, DEFAULT_SOCKET_SERVER, default_config, load_config, resolve_config_path,
    save_config, split_address,
)
from fixpanic.exceptions import ConfigError


def _valid_config():
    config = AgentConfig()
    config.agent.id = 'agent-123'
    config.agent.api_key = 'secret-key'
    return config


class TestAgentConfig:
    """Tests for the AgentConfig model."""

    def test_defaults(self):
        config = AgentConfig()
        assert config.agent.socket_server == DEFAULT_SOCKET_SERVER
        assert config.connection.use_tls is True
        assert config.connection.max_connections == 10
        assert config.logging.level == 'info'

    def test_validate_accepts_complete_config(self):
        _valid_config().ensure_valid()

    def test_validate_rejects_empty_agent_id(self):
        config = _valid_config()
        config.agent.id = ''
        with pytest.raises(ConfigError, match='agent ID is required'):
            config.ensure_valid()

    def test_validate_rejects_blank_api_key(self):
        config = _valid_config()
        config.agent.api_key = '   '
        with pytest.raises(ConfigError, match='API key is required'):
            config.ensure_valid()

    def test_validate_rejects_missing_port(self):
        config = _valid_config()
        config.agent.socket_server = 'socket.fixpanic.com'
        with pytest.raises(ConfigError):
            config.ensure_valid()

    @pytest.mark.parametrize('version,pinned', [('latest', False), ('', False), ('v1.2.3', True)])
    def test_pinned_version(self, version, pinned):
        config = AgentConfig()
        config.agent.version = version
        assert config.agent.is_pinned is pinned

    def test_unknown_log_level_rejected(self):
        config = AgentConfig()
        with pytest.raises(ValueError):
            config.logging.level = 'verbose'

    def test_log_level_normalized(self):
        config = AgentConfig()
        config.logging.level = 'DEBUG'
        assert config.logging.level == 'debug'

    def test_out_of_range_limits_rejected(self):
        with pytest.raises(ValueError):
            AgentConfig.model_validate({'connection': {'max_connections': 0}})


class TestSplitAddress:
    """Tests for host:port parsing."""

    def test_host_and_port(self):
        assert split_address('socket.fixpanic.com:8080') == ('socket.fixpanic.com', 8080)

    def test_ipv6(self):
        assert split_address('[::1]:9000') == ('::1', 9000)

    @pytest.mark.parametrize('address', ['no-port', ':8080', 'host:http', 'host:70000'])
    def test_invalid(self, address):
        with pytest.raises(ConfigError):
            split_address(address)


class TestLoadSave:
    """Tests for reading and writing the config file."""

    def test_save_and_load(self, tmp_path):
        path = tmp_path / 'config' / 'agent.yaml'
        save_config(_valid_config(), str(path))

        loaded = load_config(str(path))
        assert loaded.agent.id == 'agent-123'
        assert loaded.agent.api_key == 'secret-key'
        assert loaded.connection.read_timeout == 60

    @pytest.mark.skipif(os.name == 'nt', reason='POSIX permissions')
    def test_save_is_owner_only(self, tmp_path):
        path = tmp_path / 'agent.yaml'
        save_config(_valid_config(), str(path))
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_saved_file_has_header(self, tmp_path):
        path = tmp_path / 'agent.yaml'
        save_config(_valid_config(), str(path))
        assert path.read_text().startswith('# Fixpanic Agent Configuration')

    def test_written_layout_matches_agent(self, tmp_path):
        path = tmp_path / 'agent.yaml'
        save_config(_valid_config(), str(path))

        data = yaml.safe_load(path.read_text())
        assert list(data) == ['agent', 'connection', 'security', 'logging']
        assert data['agent']['id'] == 'agent-123'
        assert data['agent']['api_key'] == 'secret-key'
        assert data['agent']['socket_server'] == DEFAULT_SOCKET_SERVER

    def test_loads_file_written_by_agent_tooling(self, tmp_path):
        path = tmp_path / 'agent.yaml'
        path.write_text(
            'agent:\n'
            '  id: agent-123\n'
            '  api_key: key-456\n'
            '  socket_server: relay.internal:9443\n'
            'security:\n'
            '  rules_file: /etc/fixpanic/security-rules.yaml\n'
            'logging:\n'
            '  level: info\n'
            '  file: /var/log/fixpanic/agent.log\n'
        )

        config = load_config(str(path))
        assert config.agent.id == 'agent-123'
        assert config.agent.api_key == 'key-456'
        assert config.agent.socket_server == 'relay.internal:9443'
        assert config.agent.is_pinned is False
        config.ensure_valid()

    def test_missing_keys_use_defaults(self, tmp_path):
        path = tmp_path / 'agent.yaml'
        path.write_text(yaml.safe_dump({'agent': {'id': 'a', 'api_key': 'k'}}))

        config = load_config(str(path))
        assert config.agent.socket_server == DEFAULT_SOCKET_SERVER
        assert config.security.rules_file == '/etc/fixpanic/security-rules.yaml'

    def test_unknown_keys_preserved(self, tmp_path):
        path = tmp_path / 'agent.yaml'
        path.write_text(yaml.safe_dump({
            'agent': {'id': 'a', 'api_key': 'k', 'region': 'eu'},
            'telemetry': {'enabled': False},
        }))

        config = load_config(str(path))
        save_config(config, str(path))
        data = yaml.safe_load(path.read_text())
        assert data['agent']['region'] == 'eu'
        assert data['telemetry'] == {'enabled': False}

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match='config file not found'):
            load_config(str(tmp_path / 'missing.yaml'))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / 'invalid.yaml'
        path.write_text('invalid: yaml: file')
        with pytest.raises(ConfigError, match='failed to parse'):
            load_config(str(path))

    def test_non_mapping(self, tmp_path):
        path = tmp_path / 'list.yaml'
        path.write_text('- one\n- two\n')
        with pytest.raises(ConfigError):
            load_config(str(path))


class TestEnvironment:
    """Tests for environment overrides."""

    def test_default_config_uses_platform_paths(self, platform_info):
        config = default_config(platform_info)
        assert config.security.rules_file == platform_info.rules_path
        assert config.logging.file == platform_info.log_path

    def test_socket_server_override(self):
        with patch.dict(os.environ, {'FIXPANIC_SOCKET_SERVER': 'localhost:9999'}):
            config = default_config()
        assert config.agent.socket_server == 'localhost:9999'

    def test_config_path_resolution(self, platform_info):
        assert resolve_config_path(platform_info) == platform_info.config_path
        with patch.dict(os.environ, {'FIXPANIC_CONFIG': '/tmp/env.yaml'}):
            assert resolve_config_path(platform_info) == '/tmp/env.yaml'
            assert resolve_config_path(platform_info, '/tmp/flag.yaml') == '/tmp/flag.yaml'
