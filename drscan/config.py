"""
Runtime configuration, read from environment variables (and a `.env` file).

Variables:
  - GEMINI_API_KEY (falls back to GOOGLE_API_KEY)
  - GEMINI_MODEL
  - DRSCAN_DATA_DIR
  - DRSCAN_TIMEOUT_SECONDS
  - DRSCAN_LOG_LEVEL
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

ALLOWED_MIME_TYPES = ('image/jpeg', 'image/png')
MAX_UPLOAD_BYTES = 4 * 1024 * 1024  # 4 MiB
HISTORY_LIMIT = 10
DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_TIMEOUT_SECONDS = 30.0

DARK_MODE_KEY = "darkMode"
HISTORY_KEY = "analysisHistory"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class Settings:
    """Settings for one application process."""

    api_key: Optional[str] = None
    model_name: str = DEFAULT_MODEL
    data_dir: Path = Path.home() / ".drscan"
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    log_level: str = "INFO"

    @property
    def store_path(self) -> Path:
        return self.data_dir / "store.json"

    @classmethod
    def from_env(cls, *, dotenv: bool = True) -> "Settings":
        """Build settings from the environment, loading `.env` first when asked."""
        if dotenv:
            load_dotenv()

        timeout_raw = os.getenv("DRSCAN_TIMEOUT_SECONDS")
        try:
            timeout = float(timeout_raw) if timeout_raw else DEFAULT_TIMEOUT_SECONDS
        except ValueError:
            logging.getLogger(__name__).warning(
                "Ignoring invalid DRSCAN_TIMEOUT_SECONDS=%r", timeout_raw
            )
            timeout = DEFAULT_TIMEOUT_SECONDS

        data_dir = os.getenv("DRSCAN_DATA_DIR")
        return cls(
            api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or None,
            model_name=os.getenv("GEMINI_MODEL", DEFAULT_MODEL),
            data_dir=Path(data_dir).expanduser() if data_dir else cls.data_dir,
            timeout_seconds=timeout,
            log_level=os.getenv("DRSCAN_LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    """Install the process-wide logging format."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )
