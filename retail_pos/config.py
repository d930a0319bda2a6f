import os


def _bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


DB_URL = os.getenv("DB_URL", "sqlite:///./retail_pos.db")

SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_ME_SECRET")
ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = _bool("LOG_JSON")

# FEFO or FIRST_SEEN
ALLOCATION_POLICY = os.getenv("ALLOCATION_POLICY", "FEFO").upper()
# expired lots stay sellable (FEFO sells them first) unless this is set
EXCLUDE_EXPIRED_STOCK = _bool("EXCLUDE_EXPIRED_STOCK")
EXPIRY_WARNING_DAYS = int(os.getenv("EXPIRY_WARNING_DAYS", "30"))

BILL_PREFIX = os.getenv("BILL_PREFIX", "BILL")
BILL_NO_ATTEMPTS = int(os.getenv("BILL_NO_ATTEMPTS", "10"))

RECEIPT_DIR = os.getenv("RECEIPT_DIR", "generated")
