"""Configuration management for the ScreenSense service."""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables
load_dotenv()

CHANGE_DETECTION_METHODS = ("hash", "sampling", "pixels")


class Config(BaseSettings):
    """Configuration class for ScreenSense."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # Ignore unexpected env vars rather than raising errors
    )

    # Storage
    db_path: str = Field(
        default=os.path.join(os.path.expanduser("~"), ".screensense", "semantic-ui.sqlite3"),
        description="Path of the semantic index database file",
    )

    # Embedding Configuration
    embedding_model: str = Field(default="all-MiniLM-L6-v2", description="sentence-transformers model")
    embedding_dimension: int = Field(default=384)
    embedding_batch_size: int = Field(default=32)
    embedding_device: str = Field(default="cpu")

    # Search defaults
    search_default_k: int = Field(default=5)
    search_default_min_score: float = Field(default=0.0)

    # Screen Watcher Configuration
    watcher_fps: float = Field(default=2.0, description="Capture ticks per second")
    watcher_enabled: bool = Field(default=True)
    watcher_capture_on_change: bool = Field(default=True)
    watcher_fast_mode: bool = Field(default=True, description="OCR-only captures on background ticks")
    watcher_max_retries: int = Field(default=3)
    watcher_retry_delay: float = Field(default=5.0, description="Seconds before auto-resume after errors")
    watcher_stage_timeout: float = Field(default=30.0, description="Timeout per capture stage in seconds")

    # Change Detection
    change_detection_method: str = Field(default="sampling")
    change_threshold: float = Field(default=0.05)
    change_downscale_factor: int = Field(default=4)
    change_sample_grid: int = Field(default=4)  # 4x4 sample points
    change_pixel_threshold: int = Field(default=30)  # summed RGB difference
    change_debounce_ms: int = Field(default=100)

    # Computer Vision Configuration
    use_owlv2: bool = Field(default=True, description="Enable zero-shot OWLv2 detection")
    owlv2_model: str = Field(default="google/owlv2-base-patch16-ensemble")
    detection_confidence_threshold: float = Field(default=0.15)
    detection_max_elements: int = Field(default=100)

    # OCR Engine
    ocr_lang: str = Field(default="eng")
    # Path to the Tesseract OCR binary (leave None to use system PATH)
    tesseract_cmd: Optional[str] = Field(default=None, description="Path to Tesseract executable")
    ocr_cache_size: int = Field(default=50)

    # Retention
    screenshot_dir: str = Field(default="screenshots")
    save_screenshots: bool = Field(default=False)
    node_retention_days: float = Field(default=7)
    screenshot_retention_hours: float = Field(default=24)
    cleanup_interval_hours: float = Field(default=6)
    vacuum_interval_hours: float = Field(default=24)
    max_database_size_gb: float = Field(default=5)

    # Logging
    log_level: str = Field(default="INFO")
    log_dir: str = Field(default="logs")
    log_to_file: bool = Field(default=True)

    # API Configuration
    api_host: str = Field(default="localhost")
    api_port: int = Field(default=8000)
    cors_origins: list[str] = Field(default=["http://localhost:3000"])

    def validate_config(self) -> bool:
        """Validate configuration values."""
        if self.change_threshold < 0 or self.change_threshold > 1:
            raise ValueError("Change threshold must be between 0 and 1")

        if self.detection_confidence_threshold < 0 or self.detection_confidence_threshold > 1:
            raise ValueError("Detection confidence threshold must be between 0 and 1")

        if self.watcher_fps <= 0:
            raise ValueError("Watcher fps must be positive")

        if self.watcher_max_retries < 1:
            raise ValueError("Watcher max retries must be at least 1")

        if self.change_detection_method not in CHANGE_DETECTION_METHODS:
            raise ValueError(
                f"Unknown change detection method {self.change_detection_method!r}; "
                f"expected one of {CHANGE_DETECTION_METHODS}"
            )

        if self.embedding_dimension <= 0:
            raise ValueError("Embedding dimension must be positive")

        return True

    def get_screenshot_path(self) -> str:
        """Get the full path to screenshot directory."""
        return os.path.join(os.getcwd(), self.screenshot_dir)


# Global configuration instance
try:
    config = Config()
except Exception as e:
    print(f"Warning: Could not load configuration: {e}")
    config = Config(_env_file=None)
