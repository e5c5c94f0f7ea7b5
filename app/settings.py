from pydantic import field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from app.utils.settings_utils import DockerSecretsSettingsSource


class GeneralConfig(BaseSettings):
    PUBLIC_URL: str = ""
    """Public origin of this proxy, used when rewriting the WWW-Authenticate realm.
    When empty, the origin of each inbound request is used.
    """
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    SENTRY_DSN: str = ""
    SENTRY_ENVIRONMENT: str = ""

    @field_validator("PUBLIC_URL")
    @classmethod
    def strip_public_url(cls, value: str) -> str:
        return value.rstrip("/")


class UpstreamConfig(BaseSettings):
    UPSTREAM_REGISTRY_URL: str = "https://registry-1.docker.io"
    UPSTREAM_AUTH_URL: str = "https://auth.docker.io"
    UPSTREAM_SERVICE: str = "registry.docker.io"
    TOKEN_PATH_PREFIX: str = "/token"

    UPSTREAM_CONNECT_TIMEOUT: float = 30.0
    UPSTREAM_READ_TIMEOUT: float = 1800.0  # 30 minutes for large blobs
    UPSTREAM_WRITE_TIMEOUT: float = 1800.0
    UPSTREAM_POOL_TIMEOUT: float = 10.0

    @field_validator("UPSTREAM_REGISTRY_URL", "UPSTREAM_AUTH_URL")
    @classmethod
    def strip_upstream_urls(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("TOKEN_PATH_PREFIX")
    @classmethod
    def validate_token_prefix(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("TOKEN_PATH_PREFIX must start with '/'")
        if value == "/v2" or value.startswith("/v2/"):
            raise ValueError("TOKEN_PATH_PREFIX must not overlap the registry API")
        return value


class RelayBehaviourConfig(BaseSettings):
    DEFAULT_NAMESPACE: str = "library"
    DEFAULT_REPOSITORY: str = "ubuntu"
    REWRITE_REALM: bool = True
    ALLOW_WRITE_METHODS: bool = False


class Settings(
    GeneralConfig,
    UpstreamConfig,
    RelayBehaviourConfig,
    BaseSettings,
):
    model_config = SettingsConfigDict(
        env_file=(".env", ".env.prod", ".env.test"),
        extra="allow",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """
        Define the priority order for settings sources.

        Priority (highest to lowest):
        1. Docker secrets from files (reads *_FILE env vars)
        2. Environment variables
        3. .env files
        4. Default values
        """
        return (
            init_settings,
            DockerSecretsSettingsSource(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )


settings = Settings()
