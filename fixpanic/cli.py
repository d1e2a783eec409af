"""
Command-line interface for the Fixpanic CLI.
"""
import argparse
import logging
import sys
from typing import Optional

from . import __version__, output
from .agent import AgentController
from .exceptions import FixpanicError
from .self_upgrade import run_upgrade
from .utils import setup_logging

logger = logging.getLogger('fixpanic.cli')

LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


class FixpanicCLI:
    """Command-line interface for managing the Fixpanic agent."""

    def __init__(self):
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create the argument parser.

        Returns:
            Configured argument parser
        """
        parser = argparse.ArgumentParser(
            prog='fixpanic',
            description='Fixpanic CLI - install and manage the Fixpanic agent',
        )

        # Global arguments
        parser.add_argument('--version', action='version', version=f'fixpanic {__version__}')
        parser.add_argument(
            '--config',
            type=str,
            default=None,
            help='Path to the agent configuration file (default: platform specific)'
        )
        parser.add_argument(
            '--socket-server',
            type=str,
            default=None,
            metavar='HOST:PORT',
            help='Socket server address, overriding the configuration'
        )
        parser.add_argument(
            '--log-level',
            type=str.upper,
            choices=LOG_LEVELS,
            default='WARNING',
            help='Logging level for diagnostics'
        )
        parser.add_argument('--log-file', type=str, default=None, help='Also write diagnostics to this file')
        parser.add_argument('--no-color', action='store_true', help='Disable colored output')

        subparsers = parser.add_subparsers(dest='command', help='Command to run')

        # Agent commands
        agent_parser = subparsers.add_parser('agent', help='Manage the Fixpanic agent')
        agent_parser.set_defaults(handler='agent_help')
        self.agent_parser = agent_parser
        agent_subparsers = agent_parser.add_subparsers(dest='agent_command', help='Agent command to run')

        install_parser = agent_subparsers.add_parser('install', help='Install the agent')
        install_parser.add_argument('--agent-id', required=True, help='Agent ID from the Fixpanic dashboard')
        install_parser.add_argument('--api-key', required=True, help='Agent API key')
        install_parser.add_argument('--force', action='store_true', help='Reinstall over an existing installation')
        install_parser.add_argument('--version', dest='agent_version', default='latest', metavar='TAG',
                                    help='Agent release to install')
        install_parser.add_argument('--no-service', action='store_true',
                                    help='Do not register the agent with the service manager')
        install_parser.set_defaults(handler='agent_install')

        start_parser = agent_subparsers.add_parser('start', help='Start the agent')
        start_parser.add_argument(
            '--foreground',
            action='store_true',
            help='Run in the foreground until Ctrl+C'
        )
        start_parser.set_defaults(handler='agent_start')

        stop_parser = agent_subparsers.add_parser('stop', help='Stop the agent')
        stop_parser.set_defaults(handler='agent_stop')

        restart_parser = agent_subparsers.add_parser('restart', help='Restart the agent')
        restart_parser.set_defaults(handler='agent_restart')

        status_parser = agent_subparsers.add_parser('status', help='Show the status of the agent')
        status_parser.set_defaults(handler='agent_status')

        uninstall_parser = agent_subparsers.add_parser('uninstall', help='Remove the agent')
        uninstall_parser.add_argument('--force', action='store_true', help='Do not ask for confirmation')
        uninstall_parser.set_defaults(handler='agent_uninstall')

        logs_parser = agent_subparsers.add_parser('logs', help='Show agent logs')
        logs_parser.add_argument('-n', '--lines', type=int, default=50, help='Number of lines to show')
        logs_parser.add_argument('-f', '--follow', action='store_true', help='Follow new log output')
        logs_parser.set_defaults(handler='agent_logs')

        validate_parser = agent_subparsers.add_parser('validate', aliases=['validate-rules'],
                                                      help='Validate the security rules file')
        validate_parser.set_defaults(handler='agent_validate')

        connection_parser = agent_subparsers.add_parser('test-connection',
                                                        help='Test connectivity to the socket server')
        connection_parser.set_defaults(handler='agent_test_connection')

        agent_upgrade_parser = agent_subparsers.add_parser('upgrade', help='Upgrade the agent binary')
        agent_upgrade_parser.add_argument('--force', action='store_true',
                                          help='Download even if already on the latest version')
        agent_upgrade_parser.set_defaults(handler='agent_upgrade')

        # CLI self-upgrade
        upgrade_parser = subparsers.add_parser('upgrade', help='Upgrade the Fixpanic CLI itself')
        upgrade_parser.add_argument('--check', action='store_true', help='Only check for updates')
        upgrade_parser.add_argument('--force', action='store_true',
                                    help='Upgrade even if already on the latest version')
        upgrade_parser.set_defaults(handler='upgrade')

        return parser

    def parse_args(self, args: Optional[list] = None) -> argparse.Namespace:
        """Parse command-line arguments.

        Args:
            args: Command-line arguments (default: sys.argv[1:])

        Returns:
            Parsed arguments
        """
        return self.parser.parse_args(args)

    def run(self, args: Optional[list] = None) -> int:
        """Run the CLI.

        Args:
            args: Command-line arguments (default: sys.argv[1:])

        Returns:
            Exit code
        """
        parsed_args = self.parse_args(args)

        setup_logging(parsed_args.log_level, parsed_args.log_file)
        if parsed_args.no_color:
            output.set_colors(False)

        handler_name = getattr(parsed_args, 'handler', None)
        if not handler_name:
            self.parser.print_help()
            return 0

        try:
            handler = getattr(self, f'handle_{handler_name}')
            return handler(parsed_args)
        except KeyboardInterrupt:
            output.print_plain()
            output.print_warning("Interrupted")
            return 130
        except FixpanicError as e:
            output.print_error(str(e))
            if parsed_args.log_level == 'DEBUG':
                logger.exception("Detailed error:")
            return 1

    def _controller(self, args: argparse.Namespace) -> AgentController:
        return AgentController(config_path=args.config, socket_server=args.socket_server)

    def handle_agent_help(self, args: argparse.Namespace) -> int:
        self.agent_parser.print_help()
        return 0

    def handle_agent_install(self, args: argparse.Namespace) -> int:
        """Handle the agent install command.

        Args:
            args: Parsed arguments

        Returns:
            Exit code
        """
        self._controller(args).install(
            agent_id=args.agent_id,
            api_key=args.api_key,
            force=args.force,
            version=args.agent_version,
            no_service=args.no_service,
        )
        return 0

    def handle_agent_start(self, args: argparse.Namespace) -> int:
        self._controller(args).start(foreground=args.foreground)
        return 0

    def handle_agent_stop(self, args: argparse.Namespace) -> int:
        self._controller(args).stop()
        return 0

    def handle_agent_restart(self, args: argparse.Namespace) -> int:
        self._controller(args).restart()
        return 0

    def handle_agent_status(self, args: argparse.Namespace) -> int:
        self._controller(args).status()
        return 0

    def handle_agent_uninstall(self, args: argparse.Namespace) -> int:
        self._controller(args).uninstall(force=args.force)
        return 0

    def handle_agent_logs(self, args: argparse.Namespace) -> int:
        self._controller(args).logs(lines=args.lines, follow=args.follow)
        return 0

    def handle_agent_validate(self, args: argparse.Namespace) -> int:
        """Handle the agent validate command (also available as validate-rules)."""
        self._controller(args).validate()
        return 0

    def handle_agent_test_connection(self, args: argparse.Namespace) -> int:
        self._controller(args).test_connection()
        return 0

    def handle_agent_upgrade(self, args: argparse.Namespace) -> int:
        self._controller(args).upgrade(force=args.force)
        return 0

    def handle_upgrade(self, args: argparse.Namespace) -> int:
        """Handle the CLI self-upgrade command.

        Args:
            args: Parsed arguments

        Returns:
            Exit code
        """
        run_upgrade(check=args.check, force=args.force)
        return 0


def main(argv: Optional[list] = None) -> None:
    """Entry point for the ``fixpanic`` console script."""
    cli = FixpanicCLI()
    sys.exit(cli.run(argv))


if __name__ == '__main__':
    main()
