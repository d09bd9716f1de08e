"""Runtime settings read from the environment (and ``.env``)."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent

DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite+aiosqlite:///{BASE_DIR / 'database.db'}")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Upper bound for each step of the approval saga (entitlement grant, quota priming)
STEP_TIMEOUT_SECONDS = float(os.getenv("STEP_TIMEOUT_SECONDS", "10"))

UPGRADE_URL = os.getenv("UPGRADE_URL", "/upgrade-pro")

# Daily caps per tier
TIER_LIMITS = {
    "free": {
        "frame_upload": int(os.getenv("FREE_FRAME_UPLOAD_LIMIT", "3")),
        "ai_generation": int(os.getenv("FREE_AI_GENERATION_LIMIT", "0")),
    },
    "pro": {
        "frame_upload": int(os.getenv("PRO_FRAME_UPLOAD_LIMIT", "999999")),
        "ai_generation": int(os.getenv("PRO_AI_GENERATION_LIMIT", "999999")),
    },
}

# Package display name -> package type accepted for new manual payments
PACKAGE_CATALOG = {
    os.getenv("PRO_PACKAGE_NAME", "KaryaKlik Pro"): "pro",
}

# Retired package types. Payments carrying one of these may always be
# cancelled by their owner and are migrated by the legacy cleanup.
LEGACY_PACKAGE_TYPES = frozenset({"basic", "plus", "enterprise"})

BANK_NAME = os.getenv("BANK_NAME", "Bank BCA")
BANK_ACCOUNT_NUMBER = os.getenv("BANK_ACCOUNT_NUMBER", "1234567890")
BANK_ACCOUNT_NAME = os.getenv("BANK_ACCOUNT_NAME", "PT KaryaKlik Indonesia")

# Longest duration a single payment may buy
MAX_DURATION_MONTHS = int(os.getenv("MAX_DURATION_MONTHS", "120"))

# Checkout plans without a gateway subscription; None means no expiry
CHECKOUT_PLAN_MONTHS = {
    "monthly": 1,
    "yearly": 12,
    "lifetime": None,
}

# Shared token the upstream signature verifier sends with each forwarded event
GATEWAY_WEBHOOK_TOKEN = os.getenv("GATEWAY_WEBHOOK_TOKEN", "")

TELEGRAM_BOT_TOKEN = (
    os.getenv("TELEGRAM_BOT_TOKEN")
    or os.getenv("BOT_TOKEN")
    or ""
).strip().strip("'\"")
ADMIN_CHAT_ID = int(os.getenv("ADMIN_CHAT_ID")) if os.getenv("ADMIN_CHAT_ID") else None
