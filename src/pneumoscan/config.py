"""Environment-based configuration for PneumoScan."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class Settings(BaseSettings):
    """Application settings loaded from PNEUMOSCAN_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PNEUMOSCAN_",
        case_sensitive=False,
        protected_namespaces=("settings_",),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8080

    # Inference backend used by the analysis controller
    backend: Literal["local", "remote"] = "local"
    remote_url: str = "http://127.0.0.1:8080"
    remote_timeout: float = Field(default=30.0, gt=0)

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Classifier artifact (relative to the working directory unless absolute)
    models_dir: str = "model_web"
    model_filename: str = "pneumonia_classifier.onnx"
    model_repo_id: str | None = None

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)

    # Input limits
    max_file_size: int = Field(default=16_777_216, ge=1)
    max_image_pixels: int = Field(default=50_000_000, ge=1)

    # Classifier input edge length (square, single channel)
    image_size: int = Field(default=256, ge=1)

    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
