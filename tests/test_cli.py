"""
Tests for the command-line interface.
"""
import pytest
from unittest.mock import patch

from fixpanic import __version__
from fixpanic.cli import FixpanicCLI, main
from fixpanic.exceptions import AgentNotInstalledError


@pytest.fixture
def controller():
    with patch('fixpanic.cli.AgentController') as mock_cls:
        yield mock_cls


class TestParser:
    """Tests for argument parsing."""

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            FixpanicCLI().parse_args(['--version'])
        assert excinfo.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_install_requires_credentials(self):
        with pytest.raises(SystemExit):
            FixpanicCLI().parse_args(['agent', 'install', '--agent-id', 'a'])

    def test_global_options(self):
        args = FixpanicCLI().parse_args([
            '--config', '/tmp/agent.yaml', '--socket-server', 'host:1', '--log-level', 'debug',
            'agent', 'status',
        ])
        assert args.config == '/tmp/agent.yaml'
        assert args.socket_server == 'host:1'
        assert args.log_level == 'DEBUG'
        assert args.handler == 'agent_status'

    def test_validate_alias(self):
        assert FixpanicCLI().parse_args(['agent', 'validate-rules']).handler == 'agent_validate'

    def test_logs_options(self):
        args = FixpanicCLI().parse_args(['agent', 'logs', '-n', '10', '-f'])
        assert args.lines == 10
        assert args.follow is True


class TestDispatch:
    """Tests for command dispatch and exit codes."""

    def test_no_command_prints_help(self, capsys):
        assert FixpanicCLI().run([]) == 0
        assert 'usage: fixpanic' in capsys.readouterr().out

    def test_install(self, controller):
        code = FixpanicCLI().run([
            '--socket-server', 'relay:9000',
            'agent', 'install', '--agent-id', 'a-1', '--api-key', 'k-1', '--version', 'v1.2.3', '--no-service',
        ])

        assert code == 0
        controller.assert_called_once_with(config_path=None, socket_server='relay:9000')
        controller.return_value.install.assert_called_once_with(
            agent_id='a-1', api_key='k-1', force=False, version='v1.2.3', no_service=True,
        )

    @pytest.mark.parametrize('argv,method,kwargs', [
        (['agent', 'start', '--foreground'], 'start', {'foreground': True}),
        (['agent', 'stop'], 'stop', {}),
        (['agent', 'restart'], 'restart', {}),
        (['agent', 'status'], 'status', {}),
        (['agent', 'uninstall', '--force'], 'uninstall', {'force': True}),
        (['agent', 'logs'], 'logs', {'lines': 50, 'follow': False}),
        (['agent', 'validate'], 'validate', {}),
        (['agent', 'test-connection'], 'test_connection', {}),
        (['agent', 'upgrade', '--force'], 'upgrade', {'force': True}),
    ])
    def test_agent_commands(self, controller, argv, method, kwargs):
        assert FixpanicCLI().run(argv) == 0
        getattr(controller.return_value, method).assert_called_once_with(**kwargs)

    def test_self_upgrade(self):
        with patch('fixpanic.cli.run_upgrade') as mock_upgrade:
            assert FixpanicCLI().run(['upgrade', '--check']) == 0
        mock_upgrade.assert_called_once_with(check=True, force=False)

    def test_fixpanic_error_exit_code(self, controller, capsys):
        controller.return_value.stop.side_effect = AgentNotInstalledError()

        assert FixpanicCLI().run(['agent', 'stop']) == 1
        assert "[-] Fixpanic agent is not installed" in capsys.readouterr().err

    def test_keyboard_interrupt_exit_code(self, controller):
        controller.return_value.status.side_effect = KeyboardInterrupt
        assert FixpanicCLI().run(['agent', 'status']) == 130

    def test_main_exits(self, controller):
        with pytest.raises(SystemExit) as excinfo:
            main(['agent', 'status'])
        assert excinfo.value.code == 0
