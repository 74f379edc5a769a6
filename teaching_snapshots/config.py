"""
Configuration for the Snapshot Engine
=====================================

Environment variables:
- SNAPSHOT_ENV: development|test|production (default: development)
- STRICT_VALIDATION: raise on schema failures when writing (default: true)
- MAX_SNAPSHOT_SIZE: serialized envelope limit in bytes (default: 5 MiB)
- SYNC_STORES: push restored data into dependent stores (default: true)
- MAX_PARTY_DEPTH: nesting limit when flattening party lists (default: 8)
- LOG_LEVEL: DEBUG|INFO|WARNING|ERROR (default: INFO)
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings

from .schemas import SaveType

DEFAULT_MAX_SNAPSHOT_SIZE = 5 * 1024 * 1024
TEST_MAX_SNAPSHOT_SIZE = 1 * 1024 * 1024


class Settings(BaseSettings):
    """Engine settings from environment variables"""

    snapshot_env: str = "development"

    # Write policy
    strict_validation: bool = True
    max_snapshot_size: int = DEFAULT_MAX_SNAPSHOT_SIZE

    # Restore policy
    sync_stores: bool = True

    # Normalization
    max_party_depth: int = 8

    log_level: str = "INFO"

    class Config:
        env_prefix = ""
        case_sensitive = False
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def effective_max_snapshot_size(self) -> int:
        """Test environments run with a smaller size cap"""
        if self.snapshot_env == "test":
            return min(self.max_snapshot_size, TEST_MAX_SNAPSHOT_SIZE)
        return self.max_snapshot_size

    def validate_config(self) -> List[str]:
        """Validate configuration, return list of warnings"""
        warnings = []

        if self.snapshot_env not in ("development", "test", "production"):
            warnings.append(f"SNAPSHOT_ENV={self.snapshot_env} is not a known environment")

        if self.snapshot_env == "production" and not self.strict_validation:
            warnings.append("STRICT_VALIDATION=false in production: malformed snapshots will be persisted")

        if self.max_snapshot_size <= 0:
            warnings.append("MAX_SNAPSHOT_SIZE must be positive")

        if self.max_party_depth < 1:
            warnings.append("MAX_PARTY_DEPTH must be at least 1")

        return warnings


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Apply the configured log level to the package logger"""
    level = (level or get_settings().log_level).upper()
    logging.getLogger("teaching_snapshots").setLevel(getattr(logging, level, logging.INFO))


@dataclass
class ConversionOptions:
    """
    Per-call conversion options.

    strict defaults to the configured policy; lenient writes and skipped
    validation have to be requested explicitly by the caller.
    """
    strict: bool = True
    skip_validation: bool = False
    sync_stores: bool = True
    save_type: SaveType = SaveType.MANUAL

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **overrides) -> "ConversionOptions":
        settings = settings or get_settings()
        options = cls(strict=settings.strict_validation, sync_stores=settings.sync_stores)
        for key, value in overrides.items():
            if not hasattr(options, key):
                raise TypeError(f"Unknown conversion option: {key}")
            setattr(options, key, value)
        return options
