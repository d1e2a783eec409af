"""
Agent lifecycle commands.

:class:`AgentController` holds the body of every ``fixpanic agent``
subcommand. It prefers the OS service manager and falls back to spawning the
agent directly when none is available, tracking the spawned process through a
PID file and a process scan.
"""
import os
import time
import logging
from typing import Callable, List, Optional

from . import output
from .agent_binary import AgentBinaryManager
from .config import (
    AgentConfig, DEFAULT_SOCKET_SERVER, LATEST_VERSION, default_config, load_config, resolve_config_path,
    save_config,
)
from .connection import run_connection_test
from .exceptions import (
    AgentNotInstalledError, AlreadyInstalledError, ConfigError, FixpanicError, ProcessError, ServiceError,
)
from .platform_info import PlatformInfo, get_platform_info
from .process import BaseProcessManager, ProcessConfig, create_process_manager
from .rules import SAMPLE_COMMANDS, ensure_rules_file, evaluate_command, load_rules, validate_rules
from .service import STATUS_ACTIVE, STATUS_INACTIVE, ServiceManager, create_service_manager
from .service.base import follow_file, warn_on_failure
from .utils import mask_secret, tail_lines, write_file_atomic

logger = logging.getLogger('fixpanic.agent')

# Seconds to wait before checking that a spawned agent is still alive
STARTUP_GRACE_PERIOD = 1.0

_DETECT = object()


class AgentController:
    """Implements the ``fixpanic agent`` commands for one platform layout."""

    def __init__(self, platform_info: Optional[PlatformInfo] = None, config_path: Optional[str] = None,
                 socket_server: Optional[str] = None,
                 binary_manager: Optional[AgentBinaryManager] = None,
                 process_manager: Optional[BaseProcessManager] = None,
                 service_manager=_DETECT,
                 input_func: Callable[[str], str] = input):
        self.platform = platform_info or get_platform_info()
        self.config_path = resolve_config_path(self.platform, config_path)
        self.socket_server = socket_server
        self.binary = binary_manager or AgentBinaryManager(self.platform)
        self.processes = process_manager or create_process_manager(self.platform.os)
        if service_manager is _DETECT:
            service_manager = create_service_manager(self.platform)
        self.service: Optional[ServiceManager] = service_manager
        self.input_func = input_func

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_installed(self) -> None:
        if not self.binary.is_installed():
            raise AgentNotInstalledError()

    def _service_installed(self) -> bool:
        return self.service is not None and self.service.is_installed()

    def _load_config_or_default(self) -> AgentConfig:
        try:
            return load_config(self.config_path)
        except ConfigError as e:
            logger.debug(f"Using default configuration: {e}")
            return default_config(self.platform)

    def _version_or_unknown(self) -> str:
        try:
            return self.binary.get_version()
        except ProcessError as e:
            logger.debug(f"Could not read agent version: {e}")
            return 'unknown'

    def _pinned_version(self) -> Optional[str]:
        """Release tag the agent was pinned to at install time, if any."""
        try:
            config = load_config(self.config_path)
        except ConfigError as e:
            logger.debug(f"Could not read pinned version: {e}")
            return None
        return config.agent.version if config.agent.is_pinned else None

    def _unpin_version(self) -> None:
        if not self._pinned_version():
            return
        try:
            config = load_config(self.config_path)
            config.agent.version = LATEST_VERSION
            save_config(config, self.config_path)
            output.print_info("Agent now follows the latest release")
        except ConfigError as e:
            output.print_warning(f"Failed to update pinned version in configuration: {e}")

    def _read_pid_file(self) -> Optional[int]:
        try:
            with open(self.platform.pid_file, 'r') as f:
                return int(f.read().strip())
        except (OSError, ValueError):
            return None

    def _write_pid_file(self, pid: int) -> None:
        try:
            write_file_atomic(self.platform.pid_file, f"{pid}\n", mode=0o644)
        except OSError as e:
            output.print_warning(f"Failed to write PID file: {e}")

    def _remove_pid_file(self) -> None:
        try:
            os.remove(self.platform.pid_file)
        except FileNotFoundError:
            pass
        except OSError as e:
            output.print_warning(f"Failed to remove PID file: {e}")

    def running_pids(self) -> List[int]:
        """PIDs of agent processes spawned outside the service manager."""
        pids = set(self.processes.find_processes(self.binary.binary_path))
        pid = self._read_pid_file()
        if pid is not None and self.processes.is_process_running(pid):
            pids.add(pid)
        if self._service_installed():
            # The service's own process is stopped through the service manager
            try:
                pids.discard(self.service.main_pid())
            except ServiceError:
                pass
        return sorted(pids)

    def _stop_spawned(self) -> int:
        """Stop every directly spawned agent process.

        Returns:
            Number of processes stopped

        Raises:
            ProcessError: If at least one process could not be stopped
        """
        stopped = 0
        failures = []
        for pid in self.running_pids():
            try:
                self.processes.stop_process(pid)
                output.print_success(f"Stopped agent process (PID: {pid})")
                stopped += 1
            except ProcessError as e:
                output.print_warning(str(e))
                failures.append(pid)
        self._remove_pid_file()
        if failures:
            raise ProcessError(f"failed to stop agent processes: {', '.join(map(str, failures))}")
        return stopped

    def _print_manual_start_hint(self) -> None:
        output.print_info("You can start the agent manually with:")
        output.print_command("fixpanic agent start")

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def install(self, agent_id: str, api_key: str, force: bool = False,
                version: str = 'latest', no_service: bool = False) -> None:
        """Install the agent binary, its configuration and its service.

        Args:
            agent_id: Agent ID issued by Fixpanic
            api_key: Agent API key
            force: Reinstall over an existing binary
            version: Release tag to install, or ``latest``
            no_service: Skip service registration

        Raises:
            AlreadyInstalledError: If the agent is installed and force is not set
            ConfigError: If the ID, key or socket server is invalid
            DownloadError: If the binary cannot be downloaded
        """
        output.print_header("Installing Fixpanic Agent")
        if not self.platform.is_root:
            output.print_warning("Not running as root: installing into your user directories")
        output.print_key_value("Platform", f"{self.platform.os}/{self.platform.arch}")

        output.print_step(1, "Creating directories")
        try:
            self.platform.create_directories()
        except OSError as e:
            raise FixpanicError(f"failed to create directories: {e}") from e

        if self.binary.is_installed() and not force:
            raise AlreadyInstalledError()

        config = default_config(self.platform)
        config.agent.id = (agent_id or '').strip()
        config.agent.api_key = (api_key or '').strip()
        config.agent.version = version or LATEST_VERSION
        if self.socket_server:
            config.agent.socket_server = self.socket_server
        config.ensure_valid()

        if force and self.binary.is_installed():
            try:
                self.stop()
            except FixpanicError as e:
                output.print_warning(f"Failed to stop the running agent: {e}")

        output.print_step(2, "Downloading agent binary")
        self.binary.download(version)

        output.print_step(3, "Writing configuration")
        save_config(config, self.config_path)
        output.print_success(f"Configuration saved to {self.config_path}")
        if ensure_rules_file(config.security.rules_file):
            output.print_success(f"Created default security rules: {config.security.rules_file}")

        output.print_step(4, "Registering service")
        if no_service:
            output.print_info("Skipping service registration (--no-service)")
            self._print_manual_start_hint()
        elif self.service is None:
            output.print_info("No service manager available on this system")
            self._print_manual_start_hint()
        else:
            try:
                if self.service.is_installed():
                    self.service.uninstall()
                self.service.install(self.binary.binary_path, self.config_path)
                self.service.enable()
                self.service.start()
                output.print_success(f"Agent service installed and started ({self.service.name})")
            except ServiceError as e:
                output.print_warning(f"Failed to set up the agent service: {e}")
                self._print_manual_start_hint()

        output.print_header("Installation complete")
        output.print_key_value("Binary", self.binary.binary_path)
        output.print_key_value("Config", self.config_path)
        output.print_key_value("Rules", config.security.rules_file)
        output.print_key_value("Logs", config.logging.file)
        output.print_key_value("Agent ID", config.agent.id)
        output.print_key_value("Socket server", config.agent.socket_server)

    def start(self, foreground: bool = False, check_updates: bool = True) -> None:
        """Start the agent through its service, or spawn it directly.

        Args:
            foreground: Run attached to the terminal until Ctrl+C
            check_updates: Update the binary before starting
        """
        self._require_installed()

        if check_updates:
            pinned = self._pinned_version()
            if pinned:
                output.print_info(f"Agent is pinned to {pinned}: skipping update check")
            else:
                try:
                    self.binary.ensure_latest()
                except FixpanicError as e:
                    output.print_warning(f"Failed to update agent binary: {e}")

        if self._service_installed():
            if self.service.is_active():
                output.print_success("Agent service is already running")
                return
        if self._service_installed() and not foreground:
            self.service.start()
            output.print_success(f"Agent service started ({self.service.name})")
            return

        pids = self.running_pids()
        if pids:
            output.print_success(f"Agent is already running (PID: {pids[0]})")
            return

        if not os.path.exists(self.config_path):
            raise ConfigError(f"config file not found: {self.config_path}. "
                              f"Run 'fixpanic agent install' first")

        config = self._load_config_or_default()
        process_config = ProcessConfig(
            binary_path=self.binary.binary_path,
            args=['--config', self.config_path],
            working_dir=self.platform.lib_dir,
            detach=not foreground,
            log_file=config.logging.file,
        )

        if foreground:
            output.print_info(f"Starting: {' '.join(process_config.command)}")
            output.print_info("Press Ctrl+C to stop the agent")
            process_config.log_file = None
            try:
                returncode = self.processes.run_foreground(process_config)
            except KeyboardInterrupt:
                output.print_plain()
                output.print_info("Agent stopped")
                return
            if returncode != 0:
                raise ProcessError(f"agent exited with status {returncode}")
            return

        output.print_warning("No service manager in use: starting the agent directly")
        output.print_info("The agent will not restart automatically if it crashes")
        info = self.processes.start_process(process_config)
        time.sleep(STARTUP_GRACE_PERIOD)
        if not self.processes.is_process_running(info.pid):
            raise ProcessError(f"agent exited right after starting; check {config.logging.file}")

        self._write_pid_file(info.pid)
        output.print_success(f"Agent started (PID: {info.pid})")
        output.print_key_value("Logs", config.logging.file)

    def stop(self) -> None:
        """Stop the agent service and any directly spawned agent."""
        self._require_installed()

        stopped = False
        if self._service_installed():
            if self.service.is_active():
                self.service.stop()
                output.print_success("Agent service stopped")
                stopped = True
            else:
                output.print_info("Agent service is not running")

        if self._stop_spawned():
            stopped = True

        if not stopped:
            output.print_info("Agent is not running")

    def restart(self) -> None:
        self._require_installed()
        try:
            self.stop()
        except FixpanicError as e:
            output.print_warning(f"Failed to stop agent: {e}")
        self.start()

    def status(self) -> None:
        """Print installation, configuration and runtime status."""
        output.print_header("Fixpanic Agent Status")

        if not self.binary.is_installed():
            output.print_warning("Agent is not installed")
            output.print_info("Install it with:")
            output.print_command("fixpanic agent install --agent-id <id> --api-key <key>")
            return

        output.print_success("Agent is installed")
        output.print_key_value("Version", self._version_or_unknown())

        output.print_key_value("Config", self.config_path)
        try:
            config = load_config(self.config_path)
            output.print_key_value("Agent ID", config.agent.id or '(not set)')
            output.print_key_value("API key", mask_secret(config.agent.api_key) or '(not set)')
            output.print_key_value("Socket server", config.agent.socket_server)
            output.print_key_value("Log level", config.logging.level)
        except ConfigError as e:
            output.print_warning(f"Could not read configuration: {e}")

        if self._service_installed():
            try:
                if self.service.is_enabled():
                    output.print_success("Service is enabled for auto-start")
                else:
                    output.print_warning("Service is not enabled for auto-start")
            except ServiceError as e:
                output.print_warning(f"Could not check if service is enabled: {e}")

            state = self.service.status()
            if state == STATUS_ACTIVE:
                output.print_success("Service is running")
                try:
                    pid = self.service.main_pid()
                    if pid:
                        output.print_key_value("Process ID", pid)
                except ServiceError as e:
                    logger.debug(f"Could not read service PID: {e}")
            elif state == STATUS_INACTIVE:
                output.print_error("Service is not running")
            else:
                output.print_warning(f"Service status: {state}")
        else:
            output.print_info("No agent service installed: checking the process directly")
            pids = self.running_pids()
            if pids:
                output.print_success(f"Agent is running (PID: {', '.join(map(str, pids))})")
            else:
                output.print_error("Agent is not running")

        output.print_key_value("Binary", self.binary.binary_path)
        output.print_key_value("Log file", self._load_config_or_default().logging.file)

        output.print_plain()
        output.print_info("Useful commands:")
        output.print_command("fixpanic agent start      # Start the agent")
        output.print_command("fixpanic agent stop       # Stop the agent")
        output.print_command("fixpanic agent logs       # View agent logs")
        output.print_command("fixpanic agent uninstall  # Remove the agent")

    def uninstall(self, force: bool = False) -> None:
        """Remove the agent, its service and its files.

        Does nothing when no agent is installed. Without ``force`` the user
        is asked for confirmation first.
        """
        config = self._load_config_or_default()
        rules_file = config.security.rules_file
        installed = (
            self.binary.is_installed()
            or os.path.exists(self.config_path)
            or self._service_installed()
        )
        if not installed:
            output.print_info("Fixpanic agent is not installed")
            return

        if not force:
            output.print_warning("This will completely remove the Fixpanic agent from your system.")
            output.print_plain("The following will be removed:")
            output.print_list_item(f"Binary: {self.binary.binary_path}")
            output.print_list_item(f"Configuration: {self.config_path}")
            output.print_list_item(f"Security rules: {rules_file}")
            if self._service_installed():
                output.print_list_item(f"Service: {self.service.name}")
            output.print_list_item("Directories (if empty): " + ', '.join(self.platform.directories()))
            try:
                answer = self.input_func("\nAre you sure you want to continue? [y/N]: ")
            except EOFError:
                answer = ''
            if answer.strip() not in ('y', 'Y'):
                output.print_info("Uninstallation cancelled")
                return

        output.print_header("Uninstalling Fixpanic Agent")

        if self._service_installed():
            output.print_progress(f"Removing {self.service.name} service")
            if self.service.is_active():
                warn_on_failure('stop service', self.service.stop)
            warn_on_failure('uninstall service', self.service.uninstall)

        try:
            self._stop_spawned()
        except ProcessError as e:
            output.print_warning(str(e))

        output.print_progress("Removing files")
        try:
            self.binary.remove()
            output.print_success(f"Removed binary: {self.binary.binary_path}")
        except FixpanicError as e:
            output.print_warning(f"Failed to remove binary: {e}")
        for label, path in (('configuration file', self.config_path), ('security rules', rules_file)):
            try:
                os.remove(path)
                output.print_success(f"Removed {label}: {path}")
            except FileNotFoundError:
                pass
            except OSError as e:
                output.print_warning(f"Failed to remove {label}: {e}")
        self._remove_pid_file()

        for directory in self.platform.directories():
            try:
                if os.path.isdir(directory) and not os.listdir(directory):
                    os.rmdir(directory)
                    output.print_success(f"Removed empty directory: {directory}")
            except OSError as e:
                logger.debug(f"Keeping directory {directory}: {e}")

        output.print_plain()
        output.print_success("Fixpanic agent uninstalled successfully!")

    def logs(self, lines: int = 50, follow: bool = False) -> None:
        """Show agent logs from the journal, or from the agent's log file."""
        if self.service is not None and self.service.name == 'systemd' and self.service.is_installed():
            try:
                if follow:
                    self.service.follow_logs(lines)
                else:
                    output.print_plain(self.service.get_logs(lines).rstrip('\n'))
                return
            except KeyboardInterrupt:
                output.print_plain()
                return
            except ServiceError as e:
                output.print_warning(f"Failed to read journal, falling back to log file: {e}")

        log_path = self._load_config_or_default().logging.file or self.platform.log_path
        if not os.path.exists(log_path):
            output.print_info(f"Log file not found: {log_path}")
            output.print_info("The agent may not have been started yet")
            return

        output.print_info(f"Showing logs from {log_path}")
        if follow:
            try:
                follow_file(log_path, lines)
            except KeyboardInterrupt:
                output.print_plain()
            return

        for line in tail_lines(log_path, lines):
            print(line, end='')

    def validate(self) -> None:
        """Validate the security rules file and show sample decisions."""
        self._require_installed()

        try:
            rules_file = load_config(self.config_path).security.rules_file
        except ConfigError as e:
            output.print_warning(f"Could not read configuration, using default rules path: {e}")
            rules_file = self.platform.rules_path
        output.print_key_value("Rules file", rules_file)

        if ensure_rules_file(rules_file):
            output.print_success(f"Created default security rules file: {rules_file}")

        rules = load_rules(rules_file)
        validate_rules(rules)

        output.print_success("Security rules are valid")
        output.print_key_value("Version", rules.version)
        output.print_key_value("Allow patterns", len(rules.allow))
        output.print_key_value("Deny patterns", len(rules.deny))

        if rules.allow:
            output.print_plain()
            output.print_info("Allowed patterns:")
            for pattern in rules.allow:
                output.print_list_item(pattern)
        if rules.deny:
            output.print_plain()
            output.print_info("Denied patterns:")
            for pattern in rules.deny:
                output.print_list_item(pattern)

        output.print_plain()
        output.print_info("Sample command checks:")
        for command in SAMPLE_COMMANDS:
            allowed, pattern = evaluate_command(rules, command)
            verdict = 'ALLOWED' if allowed else 'DENIED'
            reason = f" (matched: {pattern})" if pattern else " (no matching rule)"
            output.print_list_item(f"{command!r}: {verdict}{reason}")

    def test_connection(self) -> None:
        """Check that the socket server is reachable from this host."""
        self._require_installed()

        config = self._load_config_or_default()
        socket_server = self.socket_server or config.agent.socket_server or DEFAULT_SOCKET_SERVER
        run_connection_test(
            socket_server,
            use_tls=config.connection.use_tls,
            verify_tls=config.connection.verify_tls,
        )

    def upgrade(self, force: bool = False) -> None:
        """Replace the agent binary with the latest release and restart it if it was running."""
        self._require_installed()
        output.print_header("Upgrading Fixpanic Agent")

        old_version = self._version_or_unknown()
        output.print_key_value("Current version", old_version)

        was_running = bool(self.running_pids())
        if self._service_installed() and self.service.is_active():
            was_running = True

        if was_running:
            output.print_progress("Stopping agent")
            try:
                self.stop()
            except FixpanicError as e:
                output.print_warning(f"Failed to stop agent, attempting upgrade anyway: {e}")

        try:
            updated = self.binary.ensure_latest(force=force)
        except FixpanicError:
            # The old binary is still in place
            if was_running:
                output.print_warning("Upgrade failed: restarting the previous agent")
                self._restart_after_upgrade()
            raise
        new_version = self._version_or_unknown()

        if not updated or new_version == old_version:
            output.print_success(f"Agent is already at the latest version ({new_version})")
        else:
            output.print_success(f"Agent upgraded: {old_version} -> {new_version}")
        self._unpin_version()

        if was_running:
            self._restart_after_upgrade()

    def _restart_after_upgrade(self) -> None:
        output.print_progress("Restarting agent")
        try:
            self.start(check_updates=False)
        except FixpanicError as e:
            output.print_warning(f"Failed to restart agent: {e}")
            self._print_manual_start_hint()
