"""
Flutterwave Bridge -- Configuration

All configuration values with sensible defaults.
Override via environment variables (or an EnvironmentFile in the systemd unit).
"""

import os


def _env_flag(name, default):
  raw_value = os.environ.get(name)
  if raw_value is None or raw_value.strip() == "":
    return default
  return raw_value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name):
  raw_value = os.environ.get(name, "")
  return [entry.strip() for entry in raw_value.split(",") if entry.strip()]


# --- Flutterwave credentials ---
# SECURITY: No hardcoded defaults -- must be set via environment variable or systemd unit
FLUTTERWAVE_PUBLIC_KEY = os.environ.get("FLUTTERWAVE_PUBLIC_KEY", "")
FLUTTERWAVE_SECRET_KEY = os.environ.get("FLUTTERWAVE_SECRET_KEY", "")
FLUTTERWAVE_ENCRYPTION_KEY = os.environ.get("FLUTTERWAVE_ENCRYPTION_KEY", "")
FLUTTERWAVE_WEBHOOK_SECRET_HASH = os.environ.get("FLUTTERWAVE_WEBHOOK_SECRET_HASH", "")

# --- Flutterwave API ---
FLUTTERWAVE_ENVIRONMENT = os.environ.get("FLUTTERWAVE_ENVIRONMENT", "test")
FLUTTERWAVE_API_VERSION = os.environ.get("FLUTTERWAVE_API_VERSION", "v3")
# Unset means https://api.flutterwave.com/{api_version}/
FLUTTERWAVE_BASE_URL = os.environ.get("FLUTTERWAVE_BASE_URL") or None
FLUTTERWAVE_OAUTH_TOKEN_URL = os.environ.get(
  "FLUTTERWAVE_OAUTH_TOKEN_URL",
  "https://idp.flutterwave.com/realms/flutterwave/protocol/openid-connect/token",
)
FLUTTERWAVE_DEFAULT_CURRENCY = os.environ.get("FLUTTERWAVE_DEFAULT_CURRENCY", "NGN")
FLUTTERWAVE_DEFAULT_COUNTRY = os.environ.get("FLUTTERWAVE_DEFAULT_COUNTRY", "NG")
FLUTTERWAVE_TIMEOUT_SECONDS = float(os.environ.get("FLUTTERWAVE_TIMEOUT", "30"))
FLUTTERWAVE_CONNECT_TIMEOUT_SECONDS = float(os.environ.get("FLUTTERWAVE_CONNECT_TIMEOUT", "10"))
FLUTTERWAVE_LOG_REQUESTS = _env_flag("FLUTTERWAVE_LOG_REQUESTS", False)

# --- Inbound webhooks ---
# Empty allow-list means every source IP is accepted. Not recommended for production.
FLUTTERWAVE_WEBHOOK_ALLOWED_IPS = _env_list("FLUTTERWAVE_WEBHOOK_ALLOWED_IPS")
FLUTTERWAVE_WEBHOOK_RATE_LIMIT = int(os.environ.get("FLUTTERWAVE_WEBHOOK_RATE_LIMIT", "60"))  # per minute, 0 disables
FLUTTERWAVE_WEBHOOK_MAX_SIZE = int(os.environ.get("FLUTTERWAVE_WEBHOOK_MAX_SIZE", "1048576"))  # bytes
FLUTTERWAVE_WEBHOOK_VALIDATE_TIMESTAMP = _env_flag("FLUTTERWAVE_WEBHOOK_VALIDATE_TIMESTAMP", True)
# Only enable behind a reverse proxy that overwrites X-Forwarded-For.
FLUTTERWAVE_WEBHOOK_TRUST_PROXY_HEADERS = _env_flag("FLUTTERWAVE_WEBHOOK_TRUST_PROXY_HEADERS", False)
FLUTTERWAVE_WEBHOOK_DEDUPLICATION_TTL_SECONDS = int(
  os.environ.get("FLUTTERWAVE_WEBHOOK_DEDUPLICATION_TTL", "86400")
)  # 0 disables

FLUTTERWAVE_WEBHOOK_SIGNATURE_HEADER = "verif-hash"
FLUTTERWAVE_WEBHOOK_TIMESTAMP_HEADER = "x-flutterwave-timestamp"

# --- Transaction records (MySQL) ---
FLUTTERWAVE_RECORD_TRANSACTIONS = _env_flag("FLUTTERWAVE_RECORD_TRANSACTIONS", False)
MYSQL_HOST = os.environ.get("BRIDGE_DB_HOST", "127.0.0.1")
MYSQL_PORT = int(os.environ.get("BRIDGE_DB_PORT", "3306"))
MYSQL_USER = os.environ.get("BRIDGE_DB_USER", "fwbridge")
# SECURITY: No hardcoded default -- must be set via environment variable or systemd unit
MYSQL_PASSWORD = os.environ.get("BRIDGE_DB_PASSWORD", "")
MYSQL_DATABASE = os.environ.get("BRIDGE_DB_NAME", "fwbridge")

# --- API Settings ---
API_VERSION = "0.1.0"
API_HOST = os.environ.get("BRIDGE_API_HOST", "127.0.0.1")
API_PORT = int(os.environ.get("BRIDGE_API_PORT", "8190"))
