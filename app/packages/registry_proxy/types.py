"""Registry proxy types and data structures.

This module contains shared types used across the registry proxy package.
No dependencies on app.* modules to maintain independence.
"""

from dataclasses import dataclass, field

from starlette.datastructures import Headers


@dataclass(frozen=True)
class RelayConfig:
    """Configuration for the upstream registry and its token service.

    Attributes:
        registry_url: Base URL of the upstream registry API
                     (e.g., "https://registry-1.docker.io")
        auth_url: Base URL of the upstream token-issuance host
                 (e.g., "https://auth.docker.io")
        service: Service identifier sent to the token endpoint
                (e.g., "registry.docker.io")
        token_path_prefix: Path of the token endpoint on ``auth_url`` and the
                          inbound prefix routed to it (e.g., "/token")
        default_namespace: Namespace used when the path carries no scope
        default_repository: Repository used when the path carries no scope
        rewrite_realm: Replace ``auth_url`` with the proxy origin in
                      WWW-Authenticate challenges
        allow_write_methods: Relay POST/PUT/PATCH/DELETE to the registry
        public_url: Public origin of this proxy; derived from the inbound
                   request when empty
    """

    registry_url: str
    auth_url: str
    service: str
    token_path_prefix: str = "/token"
    default_namespace: str = "library"
    default_repository: str = "ubuntu"
    rewrite_realm: bool = True
    allow_write_methods: bool = False
    public_url: str = ""

    @property
    def token_url(self) -> str:
        return f"{self.auth_url}{self.token_path_prefix}"


@dataclass(frozen=True)
class ProxyRequest:
    """An inbound request as seen by the relay.

    ``query`` is the raw query string without the leading ``?`` and is
    forwarded byte-for-byte.
    """

    method: str
    path: str
    query: str = ""
    headers: Headers = field(default_factory=Headers)
    body: bytes | None = None
    origin: str = ""

    @property
    def path_with_query(self) -> str:
        if self.query:
            return f"{self.path}?{self.query}"
        return self.path
