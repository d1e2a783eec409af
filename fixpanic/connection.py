"""
Connectivity checks against the Fixpanic socket server.
"""
import ssl
import time
import socket
import logging
import ipaddress
from typing import List

from . import output
from .config import split_address
from .exceptions import ConnectionTestError

logger = logging.getLogger('fixpanic.connection')

CONNECT_TIMEOUT = 10.0
RECHECK_TIMEOUT = 5.0

TROUBLESHOOTING_TIPS = [
    "Check your internet connection",
    "Verify the socket server address is correct",
    "Check if your firewall is blocking the connection",
    "Ensure the socket server is accessible from your network",
]


def tcp_connect(host: str, port: int, timeout: float = CONNECT_TIMEOUT) -> float:
    """Open and close a TCP connection.

    Returns:
        Seconds taken to connect

    Raises:
        ConnectionTestError: If the connection fails or times out
    """
    started = time.monotonic()
    try:
        with socket.create_connection((host, port), timeout=timeout):
            pass
    except OSError as e:
        raise ConnectionTestError(f"connection to {host}:{port} failed: {e}") from e
    return time.monotonic() - started


def is_loopback(host: str) -> bool:
    if host.lower() == 'localhost':
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def resolve_host(host: str) -> List[str]:
    """Resolve a host name to its unique IP addresses, in resolver order."""
    try:
        infos = socket.getaddrinfo(host, None, proto=socket.IPPROTO_TCP)
    except socket.gaierror as e:
        raise ConnectionTestError(f"DNS resolution failed for {host}: {e}") from e

    addresses = []
    for info in infos:
        address = info[4][0]
        if address not in addresses:
            addresses.append(address)
    return addresses


def tls_handshake(host: str, port: int, verify: bool = True,
                  timeout: float = CONNECT_TIMEOUT) -> str:
    """Perform a TLS handshake and return the negotiated protocol version."""
    context = ssl.create_default_context()
    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    try:
        with socket.create_connection((host, port), timeout=timeout) as sock:
            with context.wrap_socket(sock, server_hostname=host) as tls_sock:
                return tls_sock.version() or 'unknown'
    except (OSError, ssl.SSLError) as e:
        raise ConnectionTestError(f"TLS handshake with {host}:{port} failed: {e}") from e


def run_connection_test(socket_server: str, use_tls: bool = True, verify_tls: bool = True) -> None:
    """Test that the agent would be able to reach its socket server.

    Only the first TCP connection is mandatory. DNS, the second connection
    and the TLS handshake print a warning when they fail.

    Args:
        socket_server: ``host:port`` address
        use_tls: Also try a TLS handshake
        verify_tls: Verify the server certificate during the handshake

    Raises:
        ConfigError: If the address is malformed
        ConnectionTestError: If the server cannot be reached
    """
    host, port = split_address(socket_server)
    output.print_info(f"Testing connection to: {socket_server}")

    output.print_progress(f"Connecting to {host}:{port}")
    try:
        elapsed = tcp_connect(host, port, CONNECT_TIMEOUT)
    except ConnectionTestError:
        output.print_error("Connection failed")
        output.print_plain()
        output.print_plain("Troubleshooting tips:")
        for number, tip in enumerate(TROUBLESHOOTING_TIPS, 1):
            output.print_plain(f"  {number}. {tip}")
        raise
    output.print_success(f"TCP connection successful ({elapsed * 1000:.0f} ms)")

    if not is_loopback(host):
        output.print_progress(f"Resolving hostname: {host}")
        try:
            addresses = resolve_host(host)
            output.print_success(f"DNS resolution successful. IP addresses: {', '.join(addresses)}")
        except ConnectionTestError as e:
            output.print_warning(str(e))

    output.print_progress("Testing connection timeout")
    try:
        tcp_connect(host, port, RECHECK_TIMEOUT)
        output.print_success("Connection timeout test passed")
    except ConnectionTestError as e:
        output.print_warning(f"Connection timeout test failed: {e}")

    if use_tls:
        output.print_progress("Testing TLS handshake")
        try:
            version = tls_handshake(host, port, verify=verify_tls)
            output.print_success(f"TLS handshake successful ({version})")
        except ConnectionTestError as e:
            output.print_warning(str(e))

    output.print_plain()
    output.print_success("Connection test completed successfully!")
    output.print_info("Your agent should be able to connect to the Fixpanic infrastructure.")
