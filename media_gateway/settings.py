from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """Configuration for the S3-compatible object store (R2, MinIO, AWS)."""

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    endpoint: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "MEDIA_GATEWAY_STORE_ENDPOINT",
            "R2_ENDPOINT",
        ),
    )
    access_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "MEDIA_GATEWAY_STORE_ACCESS_KEY_ID",
            "R2_ACCESS_KEY_ID",
            "AWS_ACCESS_KEY_ID",
        ),
    )
    secret_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "MEDIA_GATEWAY_STORE_SECRET_ACCESS_KEY",
            "R2_SECRET_ACCESS_KEY",
            "AWS_SECRET_ACCESS_KEY",
        ),
    )
    session_token: str | None = Field(
        default=None,
        validation_alias="MEDIA_GATEWAY_STORE_SESSION_TOKEN",
    )
    region: str = Field(
        default="auto",
        validation_alias=AliasChoices(
            "MEDIA_GATEWAY_STORE_REGION",
            "AWS_REGION",
        ),
    )
    bucket: str = Field(
        default="darslinker",
        validation_alias=AliasChoices(
            "MEDIA_GATEWAY_BUCKET",
            "R2_BUCKET_NAME",
        ),
    )
    addressing_style: Literal["auto", "virtual", "path"] = Field(
        default="auto",
        validation_alias="MEDIA_GATEWAY_STORE_ADDRESSING_STYLE",
    )
    connect_timeout: float = Field(
        default=10.0,
        gt=0,
        validation_alias="MEDIA_GATEWAY_STORE_CONNECT_TIMEOUT",
    )
    read_timeout: float = Field(
        default=60.0,
        gt=0,
        validation_alias="MEDIA_GATEWAY_STORE_READ_TIMEOUT",
    )
    max_pool_connections: int = Field(
        default=50,
        gt=0,
        validation_alias="MEDIA_GATEWAY_STORE_MAX_POOL_CONNECTIONS",
    )


class GatewaySettings(BaseSettings):
    """Configuration for how media is served to clients."""

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    chunk_size: int = Field(
        default=64 * 1024,
        gt=0,
        validation_alias="MEDIA_GATEWAY_CHUNK_SIZE",
    )
    cache_control: str = Field(
        default="public, max-age=31536000",
        validation_alias="MEDIA_GATEWAY_CACHE_CONTROL",
    )
    default_content_type: str = Field(
        default="video/mp4",
        validation_alias="MEDIA_GATEWAY_DEFAULT_CONTENT_TYPE",
    )
    default_url_ttl: int = Field(
        default=3600,
        gt=0,
        validation_alias="MEDIA_GATEWAY_URL_TTL",
    )
    max_url_ttl: int = Field(
        default=7 * 24 * 3600,
        gt=0,
        validation_alias="MEDIA_GATEWAY_MAX_URL_TTL",
    )
    log_level: str = Field(
        default="INFO",
        validation_alias="MEDIA_GATEWAY_LOG_LEVEL",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_log_level(cls, value: object) -> str:
        if value is None:
            return "INFO"
        level = str(value).strip().upper()
        if level not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            msg = f"Invalid log level: {value!r}"
            raise ValueError(msg)
        return level


def load_store_settings_from_env() -> StoreSettings:
    """Load object store settings from environment variables.

    Returns:
        StoreSettings instance populated from environment variables.
    """
    return StoreSettings()


def load_gateway_settings_from_env() -> GatewaySettings:
    """Load serving settings from environment variables.

    Returns:
        GatewaySettings instance populated from environment variables.
    """
    return GatewaySettings()
