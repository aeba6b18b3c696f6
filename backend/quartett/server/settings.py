"""Quartett server configuration via environment variables."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from shared.validators import StringListEnvSettingsSource, parse_string_list

if TYPE_CHECKING:
    from pydantic_settings.sources.base import PydanticBaseSettingsSource


class QuartettServerSettings(BaseSettings):
    model_config = {"env_prefix": "QUARTETT_"}

    grace_period_seconds: float = Field(default=30, gt=0)
    completed_retention_seconds: float = Field(default=60, ge=0)
    max_sessions: int = Field(default=500, ge=1)
    invite_code_length: int = Field(default=6, ge=4, le=12)
    max_username_length: int = Field(default=20, ge=1, le=64)
    log_dir: str = Field(default="backend/logs/quartett", min_length=1)
    cors_origins: list[str] = ["http://localhost:8080"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v: str | list[str]) -> list[str]:
        return parse_string_list(v)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return init_settings, StringListEnvSettingsSource(settings_cls), dotenv_settings, file_secret_settings
