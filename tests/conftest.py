"""
Shared fixtures for the Fixpanic CLI tests.
"""
import os
import pytest
from unittest.mock import MagicMock

from fixpanic import output
from fixpanic.platform_info import get_platform_info


@pytest.fixture(autouse=True)
def plain_output():
    """Disable ANSI colors so assertions can match printed text."""
    output.set_colors(False)
    yield
    output.set_colors(None)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep developer environment variables out of the tests."""
    for name in ('FIXPANIC_CONFIG', 'FIXPANIC_SOCKET_SERVER', 'FIXPANIC_RELEASE_BASE_URL'):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def platform_info(tmp_path):
    """A non-root Linux layout rooted in a temporary home directory."""
    return get_platform_info(system='Linux', machine='x86_64', is_root=False, home=str(tmp_path))


@pytest.fixture
def installed_binary(platform_info):
    """Create a fake agent binary at the platform's binary path."""
    os.makedirs(platform_info.lib_dir, exist_ok=True)
    with open(platform_info.binary_path, 'wb') as f:
        f.write(b'#!/bin/sh\necho "fixpanic-agent v1.0.0"\n')
    os.chmod(platform_info.binary_path, 0o755)
    return platform_info.binary_path


@pytest.fixture
def make_response():
    """Factory for mock requests.Response objects."""
    def _make(status_code=200, chunks=None, json_data=None):
        response = MagicMock()
        response.status_code = status_code
        response.iter_content.return_value = iter(chunks or [])
        response.json.return_value = json_data
        response.__enter__.return_value = response
        response.__exit__.return_value = False
        return response
    return _make
