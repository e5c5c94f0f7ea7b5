import os
from pathlib import Path
from typing import Any

import structlog
from pydantic_settings import (
    PydanticBaseSettingsSource,
)

logger = structlog.stdlib.get_logger(__name__)


class DockerSecretsSettingsSource(PydanticBaseSettingsSource):
    """
    Custom settings source that reads Docker secrets from files.

    For any setting, if an environment variable <SETTING_NAME>_FILE exists,
    it will read the secret value from that file path.

    Example:
        If UPSTREAM_AUTH_URL_FILE=/run/secrets/upstream_auth_url
        Then UPSTREAM_AUTH_URL will be read from that file
    """

    def get_field_value(
        self, field_name: str, field_info: Any
    ) -> tuple[Any, str, bool]:
        file_path = os.getenv(f"{field_name}_FILE")
        if not file_path:
            return None, field_name, False

        path = Path(file_path)
        if not path.exists():
            logger.warning("Secret file not found", setting=field_name, path=file_path)
            return None, field_name, False

        try:
            return path.read_text().strip(), field_name, False
        except OSError as e:
            logger.warning(
                "Could not read secret file",
                setting=field_name,
                path=file_path,
                error=str(e),
            )
            return None, field_name, False

    def prepare_field_value(
        self, field_name: str, field: Any, value: Any, value_is_complex: bool
    ) -> Any:
        return value

    def __call__(self) -> dict[str, Any]:
        d: dict[str, Any] = {}

        for field_name, field_info in self.settings_cls.model_fields.items():
            field_value, field_key, _ = self.get_field_value(field_name, field_info)
            if field_value is not None:
                d[field_key] = field_value

        return d
