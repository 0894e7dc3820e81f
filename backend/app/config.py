"""
PluginGate Application Configuration
Admission pipeline limits, storage locations and logging settings
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIB = 1024 * 1024


class Settings(BaseSettings):
    """Application settings for the plugin admission pipeline"""

    model_config = SettingsConfigDict(env_file=".env", env_prefix="PLUGINGATE_", extra="ignore")

    # Application
    app_name: str = "PluginGate"
    app_version: str = "1.0.0"
    debug: bool = False

    # Storage
    plugins_dir: Path = Field(default=Path("plugins"), description="Final installed-plugins directory")
    temp_dir: Path = Field(default=Path(".temp"), description="Scratch area for archive extraction")

    # Upload and archive limits
    max_upload_size: int = 10 * MIB
    max_archive_entries: int = 2000
    max_uncompressed_size: int = 50 * MIB
    max_compression_ratio: int = 100

    # Security scanning
    max_scan_file_size: int = 1 * MIB
    max_scan_seconds: float = 30.0
    scan_workers: int = 4
    pass_threshold: int = 70
    large_file_threshold: int = 10 * MIB

    # Install locking
    commit_lock_stale_seconds: float = 600.0

    # Logging
    log_level: str = "INFO"

    @field_validator("max_upload_size")
    @classmethod
    def upload_size_must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("max_upload_size must be positive")
        return v

    @field_validator("pass_threshold")
    @classmethod
    def threshold_must_be_a_score(cls, v: int) -> int:
        if not 0 <= v <= 100:
            raise ValueError("pass_threshold must be between 0 and 100")
        return v

    @field_validator("scan_workers")
    @classmethod
    def workers_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("scan_workers must be at least 1")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings"""
    return Settings()
