"""
config.py
Environment settings (.env via python-dotenv) and logging setup.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent / ".env"
load_dotenv(dotenv_path=env_path)

DB_FILE = Path(os.getenv("STUDIO_DB_FILE", str(Path(__file__).with_name("studio.db"))))

# Deactivation scan cadence (minutes); first scan runs immediately on start
SCAN_INTERVAL_MINUTES = float(os.getenv("SCAN_INTERVAL_MINUTES", "5"))

# Live annotation refresh
TICK_SECONDS = float(os.getenv("TICK_SECONDS", "1"))
UPCOMING_WINDOW_MINUTES = int(os.getenv("UPCOMING_WINDOW_MINUTES", "30"))

# Used when an appointment points at a service we don't know
DEFAULT_SERVICE_DURATION = int(os.getenv("DEFAULT_SERVICE_DURATION", "60"))

# Remaining sessions at or below this mark a package as almost completed
ALMOST_COMPLETED_THRESHOLD = int(os.getenv("ALMOST_COMPLETED_THRESHOLD", "3"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def setup_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # Streamlit's watcher is chatty at INFO
    logging.getLogger("watchdog").setLevel(logging.WARNING)
