"""
Application configuration from environment variables.

All settings have sensible defaults for local development.
A .env file in the project root is loaded automatically (if present).
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file before reading any env vars
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

# ── Environment ───────────────────────────────────────────────────────────

ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "info")
APP_NAME: str = os.getenv("APP_NAME", "CAprep")

# ── Paths ─────────────────────────────────────────────────────────────────

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = PROJECT_ROOT / "data"

# ── One-time passcodes ────────────────────────────────────────────────────

OTP_LENGTH: int = int(os.getenv("OTP_LENGTH", "6"))
OTP_TTL_SECONDS: float = float(os.getenv("OTP_TTL_SECONDS", "900"))
OTP_MAX_FAILED_ATTEMPTS: int = int(os.getenv("OTP_MAX_FAILED_ATTEMPTS", "5"))

# At most OTP_ISSUE_LIMIT codes per identity in any trailing window.
OTP_ISSUE_LIMIT: int = int(os.getenv("OTP_ISSUE_LIMIT", "3"))
OTP_ISSUE_WINDOW_SECONDS: float = float(os.getenv("OTP_ISSUE_WINDOW_SECONDS", "900"))

# How long a successful verification stays usable by the registration flow.
VERIFIED_RETENTION_SECONDS: float = float(os.getenv("VERIFIED_RETENTION_SECONDS", "7200"))

# How often the reaper sweeps expired state (seconds).
REAPER_INTERVAL: float = float(os.getenv("REAPER_INTERVAL", "60"))

# ── Login attempts ────────────────────────────────────────────────────────

LOGIN_MAX_FAILURES: int = int(os.getenv("LOGIN_MAX_FAILURES", "5"))
LOGIN_BLOCK_SECONDS: float = float(os.getenv("LOGIN_BLOCK_SECONDS", "900"))
LOGIN_WARN_AFTER: int = int(os.getenv("LOGIN_WARN_AFTER", "3"))

# Enable only behind a proxy that overwrites X-Forwarded-For.
TRUST_PROXY_HEADERS: bool = os.getenv("TRUST_PROXY_HEADERS", "false").lower() == "true"

# ── Verified-identity snapshot ────────────────────────────────────────────

# "json" writes a flat file, "sqlite" keeps one row per identity.
SNAPSHOT_BACKEND: str = os.getenv("SNAPSHOT_BACKEND", "json")
VERIFIED_EMAILS_PATH: str = os.getenv(
    "VERIFIED_EMAILS_PATH", str(DATA_DIR / "verified_emails.json")
)
DB_PATH: str = os.getenv("DB_PATH", str(DATA_DIR / "otp_service.db"))

# ── SMTP ──────────────────────────────────────────────────────────────────

SMTP_HOST: str = os.getenv("SMTP_HOST", "")
SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME: str = os.getenv("SMTP_USERNAME", "")
SMTP_PASSWORD: str = os.getenv("SMTP_PASSWORD", "")
SMTP_FROM_EMAIL: str = os.getenv("SMTP_FROM_EMAIL", "noreply@caprep.local")
SMTP_USE_TLS: bool = os.getenv("SMTP_USE_TLS", "true").lower() == "true"
SMTP_TIMEOUT: float = float(os.getenv("SMTP_TIMEOUT", "15"))

# Set to "false" to force console-only mode even when SMTP credentials are present.
# Handy for local development to avoid burning real SMTP quota.
_SMTP_ENABLED_OVERRIDE: str = os.getenv("SMTP_ENABLED", "auto")


def smtp_enabled() -> bool:
    """True when SMTP should actually send emails.

    Controlled by SMTP_ENABLED env var:
      • "auto" (default) — send if credentials are configured
      • "true"  — always send (will fail if credentials are missing)
      • "false" — never send, print to console instead
    """
    if _SMTP_ENABLED_OVERRIDE.lower() == "false":
        return False
    if _SMTP_ENABLED_OVERRIDE.lower() == "true":
        return True
    # "auto": send only when credentials are fully configured
    return bool(SMTP_HOST and SMTP_USERNAME and SMTP_PASSWORD)
