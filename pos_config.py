"""
Till configuration, read from the environment (and an optional .env file).

Every value has a working default so the till starts in mock mode with a
local SQLite database and no printer.
"""
import os
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_string(name: str, default: Optional[str] = None) -> Optional[str]:
    """Return trimmed string-valued env vars, normalizing empty strings to None."""
    raw = os.getenv(name, default)
    if raw is None:
        return default
    if isinstance(raw, str):
        clean = raw.strip()
        return clean if clean else default
    return raw


def _env_int(name: str, default: int) -> int:
    try:
        return int(_env_string(name, str(default)))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(_env_string(name, str(default)))
    except (TypeError, ValueError):
        return default


def _env_flag(name: str, default: bool = False) -> bool:
    raw = _env_string(name)
    if raw is None:
        return default
    return raw.lower() in ("1", "true", "yes")


POS_LOG_LEVEL = (_env_string("POS_LOG_LEVEL", "INFO") or "INFO").upper()

# Behavior flags
USE_MOCK = _env_flag("USE_MOCK", True)  # default to the in-process mock back office
POS_OPERATOR = _env_string("POS_OPERATOR", "default")

# Back-office REST API (used only if USE_MOCK is False)
POS_API_URL = _env_string("POS_API_URL")
POS_API_TOKEN = _env_string("POS_API_TOKEN")
POS_API_TIMEOUT = _env_float("POS_API_TIMEOUT", 20.0)

# Local state
POS_DB_PATH = _env_string("POS_DB_PATH", "pos.db")
POS_CART_BACKEND = (_env_string("POS_CART_BACKEND", "sqlite") or "sqlite").lower()
POS_CART_DIR = _env_string("POS_CART_DIR", "cart_state")

# Receipt identity
RECEIPT_BUSINESS_NAME = _env_string("RECEIPT_BUSINESS_NAME", "NITRO STORE")
RECEIPT_BUSINESS_ADDRESS = _env_string("RECEIPT_BUSINESS_ADDRESS", "Av. Principal #123")
RECEIPT_BUSINESS_PHONE = _env_string("RECEIPT_BUSINESS_PHONE", "+1 234 567 8900")
RECEIPT_BUSINESS_TAX_ID = _env_string("RECEIPT_BUSINESS_TAX_ID", "TAX-123456789")
RECEIPT_ATTRIBUTION = _env_string("RECEIPT_ATTRIBUTION", "Powered by RedFox POS")
RECEIPT_LOGO_BASE_URL = _env_string("RECEIPT_LOGO_BASE_URL")
RECEIPT_LOGO_PATH = _env_string("RECEIPT_LOGO_PATH")

# Local receipt helper configuration
RECEIPT_AGENT_HOST = _env_string("RECEIPT_AGENT_HOST")
RECEIPT_AGENT_PORT = _env_string("RECEIPT_AGENT_PORT")
RECEIPT_AGENT_PATH = _env_string("RECEIPT_AGENT_PATH", "/print")
RECEIPT_AGENT_USE_HTTPS = _env_flag("RECEIPT_AGENT_USE_HTTPS")
RECEIPT_AGENT_URL = _env_string("RECEIPT_AGENT_URL")
if not RECEIPT_AGENT_URL and RECEIPT_AGENT_HOST and RECEIPT_AGENT_PORT:
    scheme = "https" if RECEIPT_AGENT_USE_HTTPS else "http"
    path = RECEIPT_AGENT_PATH if RECEIPT_AGENT_PATH.startswith("/") else f"/{RECEIPT_AGENT_PATH}"
    RECEIPT_AGENT_URL = f"{scheme}://{RECEIPT_AGENT_HOST}:{RECEIPT_AGENT_PORT}{path}"
RECEIPT_AGENT_TIMEOUT = _env_float("RECEIPT_AGENT_TIMEOUT", 10.0)
RECEIPT_AGENT_AUTO_START = _env_flag("RECEIPT_AGENT_AUTO_START")
RECEIPT_OUTPUT_DIR = _env_string("RECEIPT_OUTPUT_DIR")  # save tickets as text files when no agent is set

# Printer (receipt agent side)
RECEIPT_SERIAL_PORT = _env_string("RECEIPT_SERIAL_PORT", "COM3")
RECEIPT_SERIAL_BAUD = _env_int("RECEIPT_SERIAL_BAUD", 9600)
RECEIPT_LINE_FEEDS = _env_int("RECEIPT_LINE_FEEDS", 2)
RECEIPT_CUT_AFTER_PRINT = _env_flag("RECEIPT_CUT_AFTER_PRINT", True)

# HTTP server
HOST = _env_string("HOST", "0.0.0.0")
PORT = _env_int("PORT", 5000)
FLASK_DEBUG = _env_flag("FLASK_DEBUG")
