"""Registry proxy package for Docker Registry v2 API.

This package relays Docker Registry requests to a single upstream registry,
answering its bearer-token challenge on behalf of the client.
"""

from .errors import (
    AuthenticationRequestFailed,
    RegistryProxyError,
    TokenIssuanceFailed,
    UpstreamUnreachable,
)
from .proxy import filter_request_headers, rewrite_realm, stream_response
from .relay import RegistryRelay, derive_scope, is_registry_path
from .types import ProxyRequest, RelayConfig
from .upstream import UpstreamClient, UpstreamResponse, UpstreamTimeouts

__all__ = [
    # Relay
    "RegistryRelay",
    "derive_scope",
    "is_registry_path",
    # Upstream
    "UpstreamClient",
    "UpstreamResponse",
    "UpstreamTimeouts",
    # Types
    "ProxyRequest",
    "RelayConfig",
    # Errors
    "RegistryProxyError",
    "UpstreamUnreachable",
    "TokenIssuanceFailed",
    "AuthenticationRequestFailed",
    # Utilities
    "filter_request_headers",
    "rewrite_realm",
    "stream_response",
]
