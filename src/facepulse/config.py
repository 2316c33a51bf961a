"""Environment-based configuration for FacePulse."""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from FACEPULSE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FACEPULSE_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 3000
    log_level: str = "INFO"

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model assets: local directory, optionally populated from a Hub repo
    models_dir: str = "models"
    models_repo: str | None = None
    models_revision: str | None = None

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    queue_timeout: float = Field(default=5.0, gt=0)
    inference_timeout: float | None = Field(default=30.0, gt=0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=10_485_760, ge=1)

    # Detection parameters
    score_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    live_input_size: int = Field(default=224, ge=32, multiple_of=32)
    single_shot_input_size: int = Field(default=320, ge=32, multiple_of=32)

    # Live loop
    camera_index: int = Field(default=0, ge=0)
    camera_width: int = Field(default=640, ge=1)
    camera_height: int = Field(default=480, ge=1)
    live_interval_ms: int = Field(default=80, ge=0)
    rich_every: int = Field(default=3, ge=1)
    min_expression_probability: float = Field(default=0.05, ge=0.0, le=1.0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()


def configure_logging(level: str) -> None:
    """Configure root logging once for an entry point."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
