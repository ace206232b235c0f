"""
postscan Configuration Management
Handles application settings, environment variables and the runtime scan config
"""

import json
import threading
from pathlib import Path
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings
import structlog

from postscan.utils.constants import SCAN

logger = structlog.get_logger(__name__)


class ScanConfig(BaseModel):
    """Batch scan configuration settings."""
    default_batch_size: int = Field(SCAN.DEFAULT_BATCH_SIZE, ge=1)
    max_batch_size: int = Field(SCAN.MAX_BATCH_SIZE, ge=1)
    default_categories: List[str] = list(SCAN.DEFAULT_CATEGORIES)

    active_status: str = SCAN.ACTIVE_STATUS
    processed_meta_key: str = SCAN.PROCESSED_META_KEY

    batch_delay_seconds: float = Field(SCAN.BATCH_DELAY_SECONDS, ge=0)
    retry_delay_seconds: float = Field(SCAN.RETRY_DELAY_SECONDS, ge=0)
    stale_after_seconds: int = Field(SCAN.STALE_AFTER_SECONDS, ge=1)

    # Daily maintenance scan
    scheduled_scan_enabled: bool = False
    scheduled_scan_cron: str = "0 3 * * *"

    @field_validator("default_categories")
    @classmethod
    def _require_categories(cls, value: List[str]) -> List[str]:
        cleaned = [v.strip() for v in value if v and v.strip()]
        return cleaned or list(SCAN.DEFAULT_CATEGORIES)

    @property
    def effective_default_batch_size(self) -> int:
        """Default batch size, kept inside [1, max_batch_size]."""
        return min(self.default_batch_size, self.max_batch_size)


class Settings(BaseSettings):
    """Main application settings from environment."""
    app_name: str = "postscan"
    app_env: str = "production"
    debug: bool = False

    database_url: str = ""

    data_dir: Path = Path("./data")
    log_dir: Path = Path("./data/logs")
    log_level: str = "INFO"

    # Empty keeps scheduled batches in memory only
    scheduler_jobstore_url: str = ""

    class Config:
        env_file = ".env"
        extra = "ignore"


class AppConfig(BaseModel):
    """Complete application configuration (stored in JSON)."""
    scan: ScanConfig = ScanConfig()


# Thread-safe singleton
_settings_instance: Optional[Settings] = None
_settings_lock = threading.Lock()

_config_instance: Optional[AppConfig] = None
_config_lock = threading.RLock()


def get_settings() -> Settings:
    """Get cached application settings from environment (thread-safe)."""
    global _settings_instance

    if _settings_instance is None:
        with _settings_lock:
            if _settings_instance is None:
                _settings_instance = Settings()

    return _settings_instance


def get_config_path() -> Path:
    """Get path to config file."""
    settings = get_settings()
    return settings.data_dir / "config.json"


def load_config() -> AppConfig:
    """Load application configuration from file."""
    config_path = get_config_path()

    if config_path.exists():
        try:
            with open(config_path, "r") as f:
                data = json.load(f)
            return AppConfig(**data)
        except Exception as e:
            logger.warning("Invalid config file, using defaults", path=str(config_path), error=str(e))

    return AppConfig()


def save_config(config: AppConfig) -> None:
    """Save application configuration to file."""
    config_path = get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w") as f:
        json.dump(config.model_dump(), f, indent=2, default=str)


def get_config() -> AppConfig:
    """Get current application configuration (thread-safe)."""
    global _config_instance

    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = load_config()

    return _config_instance


def update_config(updates: Dict[str, Any]) -> AppConfig:
    """Update configuration with new values (thread-safe)."""
    global _config_instance

    with _config_lock:
        config = get_config()

        config_dict = config.model_dump()
        _deep_merge(config_dict, updates)

        _config_instance = AppConfig(**config_dict)
        save_config(_config_instance)

    return _config_instance


def reload_config() -> AppConfig:
    """Force reload configuration from disk."""
    global _config_instance

    with _config_lock:
        _config_instance = load_config()

    return _config_instance


def _deep_merge(base: dict, updates: dict) -> None:
    """Deep merge updates into base dict."""
    for key, value in updates.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
