# store_audit/config.py
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

logger = logging.getLogger("store_audit")

# --- Google Cloud ---
PROJECT_ID = os.getenv("GOOGLE_CLOUD_PROJECT", "")
REGION = os.getenv("GOOGLE_CLOUD_REGION", "us-central1")

# --- Database ---
# DATABASE_URL wins; otherwise the URL is assembled from the DB_* block.
DATABASE_URL        = os.getenv("DATABASE_URL", "")
DB_HOST             = os.getenv("DB_HOST", "")
DB_PORT             = int(os.getenv("DB_PORT", "5432"))
DB_NAME             = os.getenv("DB_NAME", "")
DB_USER             = os.getenv("DB_USER", "")
DB_PASSWORD         = os.getenv("DB_PASSWORD", "")
DB_SECRET_ID        = os.getenv("DB_SECRET_ID", "")

# --- Action plan drafting ---
ACTION_PLAN_MODEL   = os.getenv("ACTION_PLAN_MODEL", "")
ACTION_PLAN_TIMEOUT = float(os.getenv("ACTION_PLAN_TIMEOUT", "60"))

# --- Reports ---
REPORT_BUCKET       = os.getenv("REPORT_BUCKET", "")
SIGNED_URL_SECONDS  = int(os.getenv("SIGNED_URL_SECONDS", "604800"))

# --- App ---
ADMIN_PASSPHRASE    = os.getenv("ADMIN_PASSPHRASE", "")
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", str(12 * 3600)))
RUBRIC_PATH         = Path(os.getenv("RUBRIC_PATH") or Path(__file__).with_name("rubric.jsonc"))
HOST                = os.getenv("HOST", "0.0.0.0")
PORT                = int(os.getenv("PORT", "8000"))
