"""
Configuration management.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_list(name: str) -> list[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Config:
    """
    Application configuration.

    Loads from environment variables with sensible defaults.
    """

    # Server
    host: str = field(default_factory=lambda: os.getenv("HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8000")))
    debug: bool = field(default_factory=lambda: _env_bool("DEBUG", "false"))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    # Fetching
    request_timeout: float = field(default_factory=lambda: float(os.getenv("REQUEST_TIMEOUT", "10")))
    max_retries: int = field(default_factory=lambda: int(os.getenv("MAX_RETRIES", "2")))
    retry_delay: float = field(default_factory=lambda: float(os.getenv("RETRY_DELAY", "1.0")))

    # Batch processing
    batch_size: int = field(default_factory=lambda: int(os.getenv("BATCH_SIZE", "50")))
    item_delay: float = field(default_factory=lambda: float(os.getenv("ITEM_DELAY", "0.5")))
    lease_timeout: int = field(default_factory=lambda: int(os.getenv("LEASE_TIMEOUT", "1800")))
    max_error_retries: int = field(default_factory=lambda: int(os.getenv("MAX_ERROR_RETRIES", "3")))

    # Risk scoring
    risk_scoring_enabled: bool = field(
        default_factory=lambda: _env_bool("RISK_SCORING_ENABLED", "true")
    )
    photo_match_distance: int = field(
        default_factory=lambda: int(os.getenv("PHOTO_MATCH_DISTANCE", "4"))
    )

    # Admin access
    admin_ids: list[str] = field(default_factory=lambda: _env_list("ADMIN_IDS"))
    admin_token: str = field(default_factory=lambda: os.getenv("ADMIN_TOKEN", ""))

    # Data
    data_dir: str = field(default_factory=lambda: os.getenv("DATA_DIR", "./data"))

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from environment."""
        return cls()

    @property
    def inventory_path(self) -> Path:
        return Path(self.data_dir) / "inventory.json"

    @property
    def queue_path(self) -> Path:
        return Path(self.data_dir) / "url_queue.json"

    @property
    def audit_path(self) -> Path:
        return Path(self.data_dir) / "audit.jsonl"

    def configure_logging(self) -> None:
        """Configure root logging for an entrypoint."""
        logging.basicConfig(
            level=getattr(logging, self.log_level.upper(), logging.INFO),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    def to_dict(self) -> dict:
        """Convert config to dictionary (secrets omitted)."""
        return {
            "host": self.host,
            "port": self.port,
            "debug": self.debug,
            "log_level": self.log_level,
            "request_timeout": self.request_timeout,
            "max_retries": self.max_retries,
            "retry_delay": self.retry_delay,
            "batch_size": self.batch_size,
            "item_delay": self.item_delay,
            "lease_timeout": self.lease_timeout,
            "max_error_retries": self.max_error_retries,
            "risk_scoring_enabled": self.risk_scoring_enabled,
            "photo_match_distance": self.photo_match_distance,
            "admin_ids": list(self.admin_ids),
            "data_dir": self.data_dir,
        }
