from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from ._validators import _ensure_token
from .database import DatabaseConfig
from .mpx import MpxConfig
from .sync import SyncConfig

logger = logging.getLogger(__name__)


class RuntimeConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, validation_alias="LOG_FILE")
    use_loguru: bool = Field(default=True, validation_alias="LOG_USE_LOGURU")

    @field_validator("log_level", mode="before")
    @classmethod
    def _validate_log_level(cls, value: Any) -> str:
        log_level = str(value or "INFO").upper()
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if log_level not in valid_levels:
            msg = f"Invalid log level: {value}. Must be one of {valid_levels}"
            raise ValueError(msg)
        return log_level

    @field_validator("log_file", mode="before")
    @classmethod
    def _validate_log_file(cls, value: Any) -> str | None:
        if value is None:
            return None
        trimmed = str(value).strip()
        return trimmed or None


@dataclass(frozen=True)
class AppConfig:
    mpx: MpxConfig
    sync: SyncConfig
    database: DatabaseConfig
    runtime: RuntimeConfig


class Settings(BaseSettings):
    """Application settings loaded automatically from environment variables.

    Nested models are populated by matching validation_alias on each field.
    """

    model_config = SettingsConfigDict(
        extra="ignore",
        populate_by_name=True,
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    mpx: MpxConfig = Field(default_factory=MpxConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)

    @classmethod
    def _nested_models(cls) -> dict[str, type[BaseModel]]:
        nested: dict[str, type[BaseModel]] = {}
        for field_name, field_info in cls.model_fields.items():
            annotation = field_info.annotation
            if isinstance(annotation, type) and issubclass(annotation, BaseModel):
                nested[field_name] = annotation
        return nested

    def __init__(self, **data: Any) -> None:
        super().__init__(**self._build_nested_from_env(data))

    @classmethod
    def _build_nested_from_env(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Build nested config objects from flat environment variables.

        Constructor arguments take precedence over ``os.environ``.
        """
        result = dict(data)
        env_data: dict[str, Any] = dict(os.environ)

        for field_name, nested_model in cls._nested_models().items():
            nested_data: dict[str, Any] = {}
            for nested_field_name, nested_field in nested_model.model_fields.items():
                env_value = cls._resolve_env_value(env_data, nested_field)
                if env_value is not None:
                    nested_data[nested_field_name] = env_value

            if not nested_data:
                continue
            if field_name in result and isinstance(result[field_name], dict):
                result[field_name] = {**nested_data, **result[field_name]}
            elif field_name not in result:
                result[field_name] = nested_data

        return result

    @staticmethod
    def _resolve_env_value(data: dict[str, Any], field: Any) -> Any | None:
        """Resolve environment variable value for a field using its aliases."""
        aliases: list[str] = []
        alias = field.validation_alias
        if isinstance(alias, AliasChoices):
            aliases.extend(choice for choice in alias.choices if isinstance(choice, str))
        elif isinstance(alias, str):
            aliases.append(alias)

        for name in aliases:
            if name in data:
                return data[name]
        return None

    def as_app_config(self) -> AppConfig:
        return AppConfig(
            mpx=self.mpx,
            sync=self.sync,
            database=self.database,
            runtime=self.runtime,
        )


def load_config(*, require_token: bool = False) -> AppConfig:
    """Load application configuration from environment variables and ``.env``.

    Args:
        require_token: Fail when no MPX token is configured. Commands that only
            touch local state (cursor inspection, queue status) leave this off.

    Returns:
        Immutable AppConfig instance with all configuration sections.

    Raises:
        RuntimeError: If configuration validation fails.
    """
    try:
        settings = Settings()
        if require_token:
            _ensure_token(settings.mpx.token, name="MPX")
    except (ValidationError, ValueError) as exc:
        msg = f"Configuration validation failed: {exc}"
        raise RuntimeError(msg) from exc

    if not settings.mpx.token:
        logger.warning("mpx_token_missing", extra={"hint": "set MPX_TOKEN"})

    return settings.as_app_config()
