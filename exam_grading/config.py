"""
Configuration - env vars, constants, logging setup.
"""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / ".env")

# Logging
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("exam_grading")

# Database
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./exam_grading.db")
DB_TIMEOUT_SECONDS = float(os.environ.get("DB_TIMEOUT_SECONDS", "10"))

# Session cookie signing
SESSION_SECRET = os.environ.get("SESSION_SECRET")
if not SESSION_SECRET:
    logger.warning("No SESSION_SECRET set - using an insecure development secret")
    SESSION_SECRET = "dev-only-change-me"

# Batch work (regrade-all, scheduled release sweep, bulk delete)
BATCH_CHUNK_SIZE = int(os.environ.get("BATCH_CHUNK_SIZE", "100"))

# Admin listing
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200
