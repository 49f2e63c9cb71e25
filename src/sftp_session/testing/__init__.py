"""
Testing utilities for sftp-session.

Provides an in-process SSH server and HTTP/SOCKS5 proxies for integration
tests without external services.
"""
from sftp_session.testing.mock_proxy import (
    MockHttpProxy,
    MockProxyConfig,
    MockSocks5Proxy,
    ProxyRequest,
)
from sftp_session.testing.mock_server import (
    MockServerConfig,
    MockSSHServer,
    generate_test_key,
)

__all__ = [
    "MockSSHServer",
    "MockServerConfig",
    "generate_test_key",
    "MockHttpProxy",
    "MockSocks5Proxy",
    "MockProxyConfig",
    "ProxyRequest",
]
