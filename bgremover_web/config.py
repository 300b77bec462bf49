"""
Configuration loader for the background-removal web tool.

Environment variables are centralized here to keep the rest of the code
focused on business logic and to make operational tuning clear.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .schemas import (
    Device,
    ModelVariant,
    OutputConfig,
    OutputFormat,
    OutputType,
    RemovalConfig,
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        protected_namespaces=(),
    )

    # Defaults for the settings panel
    default_model: ModelVariant = ModelVariant.ISNET_FP16
    default_device: Device = Device.CPU
    default_output_format: OutputFormat = OutputFormat.PNG
    default_output_quality: float = 0.8
    default_output_type: OutputType = OutputType.FOREGROUND
    debug: bool = False

    # rembg session names backing each model variant
    isnet_session_model: str = "isnet-general-use"
    isnet_fp16_session_model: str = "silueta"
    isnet_quint8_session_model: str = "u2netp"

    # API
    max_upload_bytes: int = Field(10 * 1024 * 1024, gt=0)
    preload_on_startup: bool = True
    require_preload: bool = False
    log_level: str = "INFO"

    @field_validator("default_output_quality")
    @classmethod
    def validate_quality(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("DEFAULT_OUTPUT_QUALITY must be between 0 and 1")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()


def default_removal_config(settings: Optional[Settings] = None) -> RemovalConfig:
    """Build the configuration the settings panel starts from."""
    settings = settings or get_settings()
    return RemovalConfig(
        debug=settings.debug,
        device=settings.default_device,
        model=settings.default_model,
        output=OutputConfig(
            format=settings.default_output_format,
            quality=settings.default_output_quality,
            type=settings.default_output_type,
        ),
    )


def session_model_name(variant: ModelVariant, settings: Optional[Settings] = None) -> str:
    """
    Translate a model variant into the rembg session to create.

    The variants trade quality for speed: `isnet` is the full model,
    `isnet_fp16` the recommended lighter one and `isnet_quint8` the fastest.
    """
    settings = settings or get_settings()
    if variant == ModelVariant.ISNET:
        return settings.isnet_session_model
    if variant == ModelVariant.ISNET_QUINT8:
        return settings.isnet_quint8_session_model
    return settings.isnet_fp16_session_model
