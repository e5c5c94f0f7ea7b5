from functools import lru_cache

from app.packages.registry_proxy import (
    RegistryRelay,
    RelayConfig,
    UpstreamClient,
    UpstreamTimeouts,
)
from app.settings import settings


def relay_config_factory() -> RelayConfig:
    return RelayConfig(
        registry_url=settings.UPSTREAM_REGISTRY_URL,
        auth_url=settings.UPSTREAM_AUTH_URL,
        service=settings.UPSTREAM_SERVICE,
        token_path_prefix=settings.TOKEN_PATH_PREFIX,
        default_namespace=settings.DEFAULT_NAMESPACE,
        default_repository=settings.DEFAULT_REPOSITORY,
        rewrite_realm=settings.REWRITE_REALM,
        allow_write_methods=settings.ALLOW_WRITE_METHODS,
        public_url=settings.PUBLIC_URL,
    )


@lru_cache
def upstream_client_factory() -> UpstreamClient:
    return UpstreamClient(
        timeouts=UpstreamTimeouts(
            connect=settings.UPSTREAM_CONNECT_TIMEOUT,
            read=settings.UPSTREAM_READ_TIMEOUT,
            write=settings.UPSTREAM_WRITE_TIMEOUT,
            pool=settings.UPSTREAM_POOL_TIMEOUT,
        )
    )


@lru_cache
def registry_relay_factory() -> RegistryRelay:
    """Factory function for the relay used by the registry routes.

    The relay holds only immutable configuration and is shared by all
    requests of a worker process.
    """
    return RegistryRelay(
        config=relay_config_factory(),
        upstream=upstream_client_factory(),
    )
