# crew_engine/settings.py
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .load_rules import DEFAULT_RULES_DIR

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass(frozen=True)
class Settings:
    rules_dir: Path = DEFAULT_RULES_DIR
    data_file: Optional[Path] = None
    log_level: str = "INFO"
    log_format: str = DEFAULT_LOG_FORMAT
    alert_days_before_expiry: int = 60
    default_currency: str = "USD"

    @classmethod
    def from_env(cls) -> "Settings":
        """Read settings from the environment (a .env file is loaded first if present)."""
        load_dotenv()
        data_file = os.getenv("CREW_DATA_FILE")
        return cls(
            rules_dir=Path(os.getenv("CREW_RULES_DIR") or DEFAULT_RULES_DIR),
            data_file=Path(data_file) if data_file else None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("LOG_FORMAT", DEFAULT_LOG_FORMAT),
            alert_days_before_expiry=int(os.getenv("ALERT_DAYS_BEFORE_EXPIRY", "60")),
            default_currency=os.getenv("DEFAULT_CURRENCY", "USD"),
        )


def configure_logging(settings: Settings) -> None:
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(settings.log_format))
        root.addHandler(handler)
    root.setLevel(settings.log_level)
