"""
Runtime configuration read from the environment (and an optional .env file).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_MASTER_PASSWORD = "default-master-password-change-me"
DEFAULT_STORAGE_LIMIT = 100 * 1024 * 1024  # 100 MB
MIN_KDF_ITERATIONS = 100_000

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    storage_path: Path = Path("storage/files")
    data_path: Path = Path("storage/data")
    master_password: str = DEFAULT_MASTER_PASSWORD
    master_key_version: str = "v1"
    kdf_iterations: int = MIN_KDF_ITERATIONS
    default_limit_bytes: int = DEFAULT_STORAGE_LIMIT
    link_ttl_minutes: int = 5
    public_base_url: str = "http://localhost:3000"
    log_level: str = "INFO"

    def __post_init__(self):
        if self.kdf_iterations < MIN_KDF_ITERATIONS:
            raise ValueError(f"KDF_ITERATIONS must be at least {MIN_KDF_ITERATIONS}")
        if self.default_limit_bytes < 0:
            raise ValueError("DEFAULT_STORAGE_LIMIT cannot be negative")
        if self.link_ttl_minutes <= 0:
            raise ValueError("LINK_TTL_MINUTES must be positive")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Build Settings from environment variables, loading .env first."""
    load_dotenv(env_file)

    settings = Settings(
        storage_path=Path(os.getenv("STORAGE_PATH", "storage/files")),
        data_path=Path(os.getenv("DATA_PATH", "storage/data")),
        master_password=os.getenv("MASTER_PASSWORD", DEFAULT_MASTER_PASSWORD),
        master_key_version=os.getenv("MASTER_KEY_VERSION", "v1"),
        kdf_iterations=_int_env("KDF_ITERATIONS", MIN_KDF_ITERATIONS),
        default_limit_bytes=_int_env("DEFAULT_STORAGE_LIMIT", DEFAULT_STORAGE_LIMIT),
        link_ttl_minutes=_int_env("LINK_TTL_MINUTES", 5),
        public_base_url=os.getenv("PUBLIC_BASE_URL", "http://localhost:3000").rstrip("/"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
    if settings.master_password == DEFAULT_MASTER_PASSWORD:
        logger.warning("MASTER_PASSWORD is not set; using the built-in default")
    return settings


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
