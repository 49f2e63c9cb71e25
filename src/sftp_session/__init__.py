"""sftp-session: SSH session factory for SFTP file system access."""

__version__ = "0.1.0"

from sftp_session.algorithms import (
    COMPATIBILITY_ALGORITHMS,
    ensure_compatibility_algorithms_registered,
    get_algorithm_preferences,
)
from sftp_session.authenticator import (
    AuthDataType,
    AuthenticationData,
    StaticUserAuthenticator,
    UserAuthenticator,
    proxy_authentication,
)
from sftp_session.client import SessionClient, UserInfo, get_key_fingerprint
from sftp_session.credentials import (
    AgentIdentityRepository,
    AgentIdentityRepositoryFactory,
    IdentityRepository,
    IdentityRepositoryFactory,
    LocalIdentityRepository,
    load_identity,
    resolve_identities,
    resolve_known_hosts,
)
from sftp_session.diagnostics import (
    EngineLogBridge,
    install_engine_log_bridge,
    map_engine_level,
    uninstall_engine_log_bridge,
)
from sftp_session.errors import (
    ConnectError,
    ErrorContext,
    IdentityLoadError,
    KnownHostsLoadError,
    ProxyError,
    SessionError,
)
from sftp_session.options import (
    ConnectionTarget,
    IdentityInfo,
    ProxyType,
    SessionOptions,
)
from sftp_session.platform import is_windows, resolve_trust_directory
from sftp_session.proxy import HttpProxy, Socks5Proxy, StreamProxy, build_proxy
from sftp_session.secure_bytes import SecretWiped, SecureBytes
from sftp_session.session import (
    SessionBuilder,
    SessionState,
    SSHSession,
    build_engine_config,
    create_connection,
    create_connection_async,
)
from sftp_session.tunnel import StreamProxyTunnel, open_http_tunnel, open_socks5_tunnel

__all__ = [
    # Session
    "create_connection",
    "create_connection_async",
    "SSHSession",
    "SessionBuilder",
    "SessionState",
    "build_engine_config",
    # Options
    "SessionOptions",
    "ConnectionTarget",
    "IdentityInfo",
    "ProxyType",
    # Algorithms
    "COMPATIBILITY_ALGORITHMS",
    "ensure_compatibility_algorithms_registered",
    "get_algorithm_preferences",
    # Credentials
    "IdentityRepository",
    "IdentityRepositoryFactory",
    "LocalIdentityRepository",
    "AgentIdentityRepository",
    "AgentIdentityRepositoryFactory",
    "load_identity",
    "resolve_identities",
    "resolve_known_hosts",
    # Proxy
    "HttpProxy",
    "Socks5Proxy",
    "StreamProxy",
    "StreamProxyTunnel",
    "build_proxy",
    "open_http_tunnel",
    "open_socks5_tunnel",
    # Authentication
    "AuthDataType",
    "AuthenticationData",
    "StaticUserAuthenticator",
    "UserAuthenticator",
    "proxy_authentication",
    # Client
    "SessionClient",
    "UserInfo",
    "get_key_fingerprint",
    # Diagnostics
    "EngineLogBridge",
    "install_engine_log_bridge",
    "uninstall_engine_log_bridge",
    "map_engine_level",
    # Errors
    "SessionError",
    "ConnectError",
    "IdentityLoadError",
    "KnownHostsLoadError",
    "ProxyError",
    "ErrorContext",
    # Platform
    "is_windows",
    "resolve_trust_directory",
    # SecureBytes
    "SecureBytes",
    "SecretWiped",
]
