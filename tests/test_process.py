"""
Tests for cross-platform process management.
"""
import os
import signal
import subprocess
import pytest
from unittest.mock import MagicMock, PropertyMock, patch

import psutil

from fixpanic.exceptions import PlatformNotSupportedError, ProcessError
from fixpanic.process import (
    DarwinProcessManager, ProcessConfig, UnixProcessManager, WindowsProcessManager,
    create_process_manager,
)
from fixpanic.process import windows as windows_module


def _proc_entry(pid, name='', exe='', cmdline=None, status=psutil.STATUS_SLEEPING):
    proc = MagicMock()
    proc.info = {'pid': pid, 'name': name, 'exe': exe, 'cmdline': cmdline or [], 'status': status}
    return proc


class TestFactory:
    """Tests for create_process_manager."""

    @pytest.mark.parametrize('system,cls', [
        ('Linux', UnixProcessManager),
        ('Darwin', DarwinProcessManager),
        ('Windows', WindowsProcessManager),
    ])
    def test_platforms(self, system, cls):
        assert type(create_process_manager(system)) is cls

    def test_unsupported(self):
        with pytest.raises(PlatformNotSupportedError):
            create_process_manager('Plan9')


class TestIsProcessRunning:
    """Tests for process liveness checks."""

    def test_invalid_pids(self):
        manager = UnixProcessManager()
        assert manager.is_process_running(0) is False
        assert manager.is_process_running(-5) is False

    def test_current_process(self):
        assert UnixProcessManager().is_process_running(os.getpid()) is True

    def test_missing_process(self):
        with patch('fixpanic.process.base.psutil.Process', side_effect=psutil.NoSuchProcess(99999)):
            assert UnixProcessManager().is_process_running(99999) is False

    def test_zombie_is_not_running(self):
        proc = MagicMock()
        proc.status.return_value = psutil.STATUS_ZOMBIE
        with patch('fixpanic.process.base.psutil.Process', return_value=proc):
            assert UnixProcessManager().is_process_running(1234) is False

    def test_status(self):
        info = UnixProcessManager().get_process_status(os.getpid())
        assert info.pid == os.getpid()
        assert info.running is True


class TestFindProcesses:
    """Tests for locating agent processes."""

    def test_matches_exe_cmdline_and_name(self):
        binary = '/opt/fixpanic/lib/fixpanic-agent'
        entries = [
            _proc_entry(10, exe=binary),
            _proc_entry(11, cmdline=['/other/path/fixpanic-agent', '--config', 'x']),
            _proc_entry(12, name='fixpanic-agent'),
            _proc_entry(13, name='fixpanic-connectivity-layer'),
            _proc_entry(14, name='bash', exe='/bin/bash', cmdline=['bash']),
            _proc_entry(15, name='fixpanic-agent', status=psutil.STATUS_ZOMBIE),
            _proc_entry(os.getpid(), exe=binary),
        ]
        with patch('fixpanic.process.base.psutil.process_iter', return_value=entries):
            assert UnixProcessManager().find_processes(binary) == [10, 11, 12, 13]

    def test_vanished_process_is_skipped(self):
        vanished = MagicMock()
        type(vanished).info = PropertyMock(side_effect=psutil.NoSuchProcess(20))
        with patch('fixpanic.process.base.psutil.process_iter',
                   return_value=[vanished, _proc_entry(21, name='fixpanic-agent')]):
            assert UnixProcessManager().find_processes('/x/fixpanic-agent') == [21]


class TestUnixProcessManager:
    """Tests for starting and stopping processes on Unix."""

    def test_start_detached(self, tmp_path):
        log_file = tmp_path / 'logs' / 'agent.log'
        config = ProcessConfig(binary_path='/bin/agent', args=['--config', 'c.yaml'],
                               working_dir=str(tmp_path), log_file=str(log_file))
        with patch('fixpanic.process.base.subprocess.Popen') as mock_popen:
            mock_popen.return_value.pid = 4321
            info = UnixProcessManager().start_process(config)

        assert info.pid == 4321
        assert info.running is True
        args, kwargs = mock_popen.call_args
        assert args[0] == ['/bin/agent', '--config', 'c.yaml']
        assert kwargs['start_new_session'] is True
        assert kwargs['stdin'] == subprocess.DEVNULL
        assert kwargs['stderr'] == subprocess.STDOUT
        assert log_file.exists()

    def test_start_attached_keeps_session(self):
        config = ProcessConfig(binary_path='/bin/agent', detach=False)
        with patch('fixpanic.process.base.subprocess.Popen') as mock_popen:
            UnixProcessManager().start_process(config)
        assert mock_popen.call_args[1]['start_new_session'] is False

    def test_start_failure(self):
        config = ProcessConfig(binary_path='/missing/agent')
        with patch('fixpanic.process.base.subprocess.Popen', side_effect=FileNotFoundError('missing')):
            with pytest.raises(ProcessError):
                UnixProcessManager().start_process(config)

    def test_stop_graceful(self):
        proc = MagicMock()
        with patch('fixpanic.process.base.psutil.Process', return_value=proc):
            UnixProcessManager().stop_process(1234, timeout=3)

        proc.send_signal.assert_called_once_with(signal.SIGTERM)
        proc.wait.assert_called_once_with(timeout=3)

    @pytest.mark.skipif(not hasattr(signal, 'SIGKILL'), reason='POSIX signals')
    def test_stop_escalates_to_sigkill(self):
        proc = MagicMock()
        proc.wait.side_effect = [psutil.TimeoutExpired(3), None]
        with patch('fixpanic.process.base.psutil.Process', return_value=proc):
            UnixProcessManager().stop_process(1234, timeout=3)

        sent = [c.args[0] for c in proc.send_signal.call_args_list]
        assert sent == [signal.SIGTERM, signal.SIGKILL]

    def test_stop_already_exited(self):
        with patch('fixpanic.process.base.psutil.Process', side_effect=psutil.NoSuchProcess(1234)):
            UnixProcessManager().stop_process(1234)

    def test_stop_invalid_pid(self):
        with pytest.raises(ProcessError, match='invalid PID'):
            UnixProcessManager().stop_process(0)

    def test_stop_permission_denied(self):
        proc = MagicMock()
        proc.send_signal.side_effect = psutil.AccessDenied(1)
        with patch('fixpanic.process.base.psutil.Process', return_value=proc):
            with pytest.raises(ProcessError, match='on macOS'):
                DarwinProcessManager().stop_process(1)


class TestWindowsProcessManager:
    """Tests for the Windows process manager."""

    def test_creation_flags(self):
        config = ProcessConfig(binary_path=r'C:\agent.exe')
        with patch('fixpanic.process.base.subprocess.Popen') as mock_popen:
            mock_popen.return_value.pid = 77
            WindowsProcessManager().start_process(config)

        flags = mock_popen.call_args[1]['creationflags']
        assert flags & windows_module.CREATE_NEW_PROCESS_GROUP
        assert flags & windows_module.DETACHED_PROCESS
        assert flags & windows_module.CREATE_NO_WINDOW

    def test_stop_terminates_then_kills(self):
        proc = MagicMock()
        proc.wait.side_effect = [psutil.TimeoutExpired(2), None]
        with patch('fixpanic.process.base.psutil.Process', return_value=proc):
            WindowsProcessManager().stop_process(55, timeout=2)

        proc.terminate.assert_called_once()
        proc.kill.assert_called_once()
