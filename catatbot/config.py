"""
Configuration module. Loads environment variables and defines constants.

Keyword sets for the chat workflow and the approval thresholds live here so
the handlers and the scoring rules never hardcode them.
"""

import os
from decimal import Decimal
from pathlib import Path
from dotenv import load_dotenv

# Load .env from project root (one level up from catatbot/)
_project_root = Path(__file__).resolve().parent.parent
load_dotenv(_project_root / ".env")


def _id_set(raw: str) -> set[int]:
    """Parse a comma-separated list of Telegram user IDs."""
    return {int(part) for part in raw.split(",") if part.strip()}


# --- Telegram ---
TELEGRAM_BOT_TOKEN: str = os.environ.get("TELEGRAM_BOT_TOKEN", "")

# --- Database ---
DATABASE_URL: str = os.environ.get("DATABASE_URL", "postgresql://localhost:5432/catatbot_dev")
DB_TIMEOUT_SECONDS: float = float(os.environ.get("DB_TIMEOUT_SECONDS", "10"))

# --- Webhook ---
WEBHOOK_SECRET: str = os.environ.get("WEBHOOK_SECRET", "")
WEBHOOK_URL: str = os.environ.get("WEBHOOK_URL", "")

# --- Logging ---
LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")

# --- Authorization ---
# Only these users may record transactions. Removing an ID deactivates the
# account; its session is dropped on the next message.
ALLOWED_USER_IDS: set[int] = _id_set(os.environ.get("ALLOWED_USER_IDS", ""))
# Users allowed to approve or reject pending transactions.
APPROVER_USER_IDS: set[int] = _id_set(os.environ.get("APPROVER_USER_IDS", ""))

# --- Time ---
TIMEZONE: str = os.environ.get("TIMEZONE", "Asia/Makassar")

# --- Session lifetime ---
SESSION_TIMEOUT_MINUTES: int = int(os.environ.get("SESSION_TIMEOUT_MINUTES", "10"))
PARTIAL_DATA_TTL_MINUTES: int = int(os.environ.get("PARTIAL_DATA_TTL_MINUTES", "60"))

# ---------------------------------------------------------------------------
# Workflow keywords (compared against lower-cased, trimmed input)
# ---------------------------------------------------------------------------

CANCEL_WORDS = {"batal", "cancel", "/batal", "/cancel"}
CONFIRM_WORDS = {"ya", "yes", "y", "simpan", "ok"}
RETRY_WORDS = {"coba lagi", "retry", "/retry"}
RECOVERY_CONTINUE_WORDS = {"lanjutkan", "lanjut", "continue"}
RECOVERY_DISCARD_WORDS = {"buang", "hapus", "discard"}
START_WORDS = {"catat", "/catat", "mulai", "record", "1"}
BACK_WORDS = {"kembali", "back", "3"}

# Transaction type selection: input -> type
TRANSACTION_TYPE_MAP = {
    "1": "income",
    "penjualan": "income",
    "pemasukan": "income",
    "sale": "income",
    "income": "income",
    "2": "expense",
    "pengeluaran": "expense",
    "expense": "expense",
}

# One-shot shortcuts from the main menu
QUICK_START_MAP = {
    "catat penjualan": "income",
    "catat pemasukan": "income",
    "record sale": "income",
    "catat pengeluaran": "expense",
    "record expense": "expense",
}

# "edit <word>" -> editable field
EDIT_FIELD_MAP = {
    "amount": "amount",
    "jumlah": "amount",
    "category": "category",
    "kategori": "category",
    "description": "description",
    "keterangan": "description",
    "catatan": "description",
}

# ---------------------------------------------------------------------------
# Amount validation
# ---------------------------------------------------------------------------

MAX_INPUT_AMOUNT = Decimal("1000000000")
MAX_AMOUNT_DECIMAL_PLACES = 2   # NUMERIC(18, 2) in the transactions table
AMOUNT_EXAMPLES = ["500000", "500.000", "500,000"]
MAX_DESCRIPTION_LENGTH = 100

# ---------------------------------------------------------------------------
# Approval scoring
# ---------------------------------------------------------------------------

MAX_AUTO_APPROVE_AMOUNT = Decimal("10000000")
UNREALISTIC_AMOUNT_THRESHOLD = Decimal("100000000")

DUPLICATE_WINDOW_MINUTES = 5
AMOUNT_SIMILARITY_THRESHOLD = Decimal("0.95")

MAX_DAILY_TRANSACTIONS_PER_USER = 50
MAX_DAILY_AMOUNT_PER_USER = Decimal("50000000")

RAPID_WINDOW_MINUTES = 5
RAPID_TRANSACTION_THRESHOLD = 3

MIN_DESCRIPTION_LENGTH = 3
SUSPICIOUS_KEYWORDS = ("test", "testing", "dummy", "coba", "tes")

# Signal weights
WEIGHT_DUPLICATE = 30
WEIGHT_UNREALISTIC_AMOUNT = 40
WEIGHT_DAILY_LIMIT = 20
WEIGHT_DAILY_AMOUNT_LIMIT = 25
WEIGHT_RAPID_SUCCESSION = 15
WEIGHT_SUSPICIOUS_KEYWORDS = 10
WEIGHT_LACKS_DESCRIPTION = 5

# ---------------------------------------------------------------------------
# Recovery
# ---------------------------------------------------------------------------

MAX_RETRY_COUNT = 3
