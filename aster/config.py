"""Configuration management for Aster.

Loads environment variables (and a .env file) and provides centralized
config access.
"""
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

__version__ = "0.3.0"

STALE_POLICIES = ('warn', 'rebuild', 'fail')


class Config:
    """Configuration loader with environment variable support."""

    def __init__(self, env_file: Optional[str | Path] = None):
        """Initialize config by loading .env file.

        Args:
            env_file: Explicit .env path (default: .env in the working directory)
        """
        load_dotenv(env_file or Path.cwd() / ".env")
        self._validate()

    def _validate(self):
        """Validate the enumerated and numeric settings.

        Raises:
            ValueError: If ASTER_STALE_POLICY or ASTER_WORKERS is invalid
        """
        if self.stale_policy not in STALE_POLICIES:
            raise ValueError(
                f"ASTER_STALE_POLICY must be one of {', '.join(STALE_POLICIES)}, "
                f"got '{self.stale_policy}'"
            )
        workers = os.getenv("ASTER_WORKERS")
        if workers is not None and (not workers.isdigit() or int(workers) < 1):
            raise ValueError(f"ASTER_WORKERS must be a positive integer, got '{workers}'")

    @property
    def cache_dir(self) -> Optional[str]:
        """Directory holding index.db; None means <scan root>/.aster_cache."""
        return os.getenv("ASTER_CACHE_DIR") or None

    @property
    def trash_dir(self) -> str:
        """Trash directory for backups and removed files.

        Relative paths are resolved against the scan root.
        """
        return os.getenv("ASTER_TRASH_DIR", ".aster_trash")

    @property
    def ignore_patterns(self) -> List[str]:
        """Name substrings that never show up as unused.

        ASTER_IGNORE is comma-separated; an empty value disables filtering.
        """
        raw = os.getenv("ASTER_IGNORE", "")
        return [p.strip() for p in raw.split(",") if p.strip()]

    @property
    def stale_policy(self) -> str:
        """What read commands do with a stale index: warn, rebuild or fail."""
        return os.getenv("ASTER_STALE_POLICY", "warn").lower()

    @property
    def workers(self) -> Optional[int]:
        workers = os.getenv("ASTER_WORKERS")
        return int(workers) if workers else None

    @property
    def protected_types(self) -> List[str]:
        """Resource types rm-unused only removes when asked for by name (-t)."""
        raw = os.getenv("ASTER_PROTECTED_TYPES", "id")
        return [t.strip() for t in raw.split(",") if t.strip()]


# Singleton instance
_config = None


def get_config() -> Config:
    """Get or create singleton Config instance.

    Returns:
        Config instance
    """
    global _config
    if _config is None:
        _config = Config()
    return _config


def reset_config():
    """Drop the cached instance so the environment is read again."""
    global _config
    _config = None
