"""
Tests for agent binary download and updates.
"""
import os
import subprocess
import pytest
from unittest.mock import MagicMock, patch

import requests

from fixpanic.agent_binary import AgentBinaryManager, extract_version
from fixpanic.exceptions import DownloadError, ProcessError


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def manager(platform_info, session):
    return AgentBinaryManager(platform_info, session=session, base_url='https://downloads.example.com')


def _version_result(stdout='fixpanic-agent v1.0.0 - built 2024-01-01', returncode=0):
    return subprocess.CompletedProcess(['fixpanic-agent', '--version'], returncode, stdout=stdout, stderr='')


class TestExtractVersion:
    """Tests for version parsing."""

    @pytest.mark.parametrize('text,expected', [
        ('fixpanic-agent v1.0.0 - built 2024-01-01', 'v1.0.0'),
        ('1.2.3', 'v1.2.3'),
        ('v2.0.0-rc.1', 'v2.0.0-rc.1'),
        ('  dev  ', 'dev'),
    ])
    def test_extract_version(self, text, expected):
        assert extract_version(text) == expected


class TestDownload:
    """Tests for the atomic download."""

    def test_download_writes_executable(self, manager, session, platform_info, make_response):
        session.get.return_value = make_response(chunks=[b'\x7fELF', b'rest-of-binary'])

        path = manager.download('v1.2.3')

        assert path == platform_info.binary_path
        with open(path, 'rb') as f:
            assert f.read() == b'\x7fELFrest-of-binary'
        if os.name != 'nt':
            assert os.access(path, os.X_OK)
        assert not os.path.exists(path + '.tmp')
        url = session.get.call_args[0][0]
        assert url == 'https://downloads.example.com/v1.2.3/download/fixpanic-agent-linux-amd64'

    def test_http_error_leaves_no_binary(self, manager, session, platform_info, make_response):
        session.get.return_value = make_response(status_code=404)

        with pytest.raises(DownloadError, match='HTTP 404'):
            manager.download()

        assert not os.path.exists(platform_info.binary_path)
        assert not os.path.exists(platform_info.binary_path + '.tmp')

    def test_interrupted_download_keeps_old_binary(self, manager, session, installed_binary, make_response):
        def broken_stream(chunk_size):
            yield b'partial'
            raise requests.ConnectionError('connection reset')

        response = make_response()
        response.iter_content.side_effect = broken_stream
        session.get.return_value = response
        with open(installed_binary, 'rb') as f:
            original = f.read()

        with pytest.raises(DownloadError):
            manager.download()

        with open(installed_binary, 'rb') as f:
            assert f.read() == original
        assert not os.path.exists(installed_binary + '.tmp')

    def test_empty_body(self, manager, session, make_response):
        session.get.return_value = make_response(chunks=[])
        with pytest.raises(DownloadError, match='empty'):
            manager.download()

    def test_default_session_retries(self, platform_info):
        manager = AgentBinaryManager(platform_info)
        retries = manager.session.get_adapter(manager.download_url()).max_retries
        assert retries.total == 3
        assert 503 in retries.status_forcelist

    def test_connection_error(self, manager, session):
        session.get.side_effect = requests.ConnectionError('no route to host')
        with pytest.raises(DownloadError):
            manager.download()


class TestBinaryState:
    """Tests for installation state, version and checksums."""

    def test_is_installed(self, manager, installed_binary):
        assert manager.is_installed() is True
        manager.remove()
        assert manager.is_installed() is False
        # Removing twice is fine
        manager.remove()

    def test_get_version(self, manager, installed_binary):
        with patch('fixpanic.agent_binary.subprocess.run', return_value=_version_result()) as mock_run:
            assert manager.get_version() == 'fixpanic-agent v1.0.0 - built 2024-01-01'
        assert mock_run.call_args[0][0] == [installed_binary, '--version']

    def test_get_version_not_installed(self, manager):
        with pytest.raises(ProcessError, match='not installed'):
            manager.get_version()

    def test_get_version_failure(self, manager, installed_binary):
        with patch('fixpanic.agent_binary.subprocess.run', return_value=_version_result('', 2)):
            with pytest.raises(ProcessError):
                manager.get_version()

    def test_verify_checksum(self, manager, installed_binary):
        import hashlib
        with open(installed_binary, 'rb') as f:
            digest = hashlib.sha256(f.read()).hexdigest()

        manager.verify_checksum(digest.upper())
        with pytest.raises(DownloadError, match='checksum mismatch'):
            manager.verify_checksum('0' * 64)


class TestUpdates:
    """Tests for update checks."""

    def test_latest_version(self, manager, session, make_response):
        session.get.return_value = make_response(json_data={'tag_name': 'v1.1.0'})
        assert manager.get_latest_version() == 'v1.1.0'

    def test_latest_version_api_error(self, manager, session, make_response):
        session.get.return_value = make_response(status_code=403)
        with pytest.raises(DownloadError, match='GitHub API request failed: 403'):
            manager.get_latest_version()

    def test_update_available_when_not_installed(self, manager):
        assert manager.is_update_available() == (True, '')

    def test_update_available(self, manager, installed_binary):
        with patch.object(manager, 'get_version', return_value='fixpanic-agent v1.0.0 - built today'), \
                patch.object(manager, 'get_latest_version', return_value='v1.1.0'):
            assert manager.is_update_available() == (True, 'v1.1.0')

    def test_up_to_date(self, manager, installed_binary):
        with patch.object(manager, 'get_version', return_value='fixpanic-agent v1.1.0'), \
                patch.object(manager, 'get_latest_version', return_value='v1.1.0'):
            assert manager.is_update_available() == (False, 'v1.1.0')
            with patch.object(manager, 'download') as mock_download:
                assert manager.ensure_latest() is False
            mock_download.assert_not_called()

    def test_ensure_latest_downloads_update(self, manager, installed_binary):
        with patch.object(manager, 'is_update_available', return_value=(True, 'v1.1.0')), \
                patch.object(manager, 'get_version', return_value='v1.0.0'), \
                patch.object(manager, 'download') as mock_download:
            assert manager.ensure_latest() is True
        mock_download.assert_called_once_with('latest')

    def test_failed_check_keeps_binary(self, manager, installed_binary, capsys):
        with patch.object(manager, 'is_update_available', side_effect=DownloadError('offline')), \
                patch.object(manager, 'download') as mock_download:
            assert manager.ensure_latest() is False
        mock_download.assert_not_called()
        assert 'Failed to check for updates' in capsys.readouterr().out

    def test_force_skips_check(self, manager, installed_binary):
        with patch.object(manager, 'is_update_available') as mock_check, \
                patch.object(manager, 'get_version', return_value='v1.0.0'), \
                patch.object(manager, 'download') as mock_download:
            assert manager.ensure_latest(force=True) is True
        mock_check.assert_not_called()
        mock_download.assert_called_once()
