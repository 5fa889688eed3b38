"""Environment-based configuration for PhotoLabel."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from PHOTOLABEL_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PHOTOLABEL_",
        case_sensitive=False,
        protected_namespaces=("settings_",),
    )

    # Authentication (None = disabled)
    api_key: str | None = None

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Startup assets
    model_path: Path = Path("assets/model.onnx")
    labels_path: Path = Path("assets/labels.txt")

    # Optional download source (None = use model_path as-is)
    model_repo_id: str | None = None
    model_filename: str = "model.onnx"
    models_dir: str = "models"

    # Model input contract
    input_height: int = Field(default=224, ge=1)
    input_width: int = Field(default=224, ge=1)
    normalization: Literal["unit", "imagenet", "symmetric"] = "unit"
    apply_exif_orientation: bool = True

    # Ranking
    top_k: int = Field(default=5, ge=0)

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    queue_timeout: float = Field(default=5.0, gt=0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
