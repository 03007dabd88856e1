# quotefeed/config.py
from dotenv import load_dotenv, find_dotenv
import os
import logging

# Load nearest .env from project tree, don't override existing process env
load_dotenv(find_dotenv(usecwd=True), override=False)

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() == "true"


class Settings:
    """Unified configuration with deprecation mapping."""

    # Market data provider (Alpha Vantage)
    ALPHA_VANTAGE_API_KEY = (os.getenv("ALPHA_VANTAGE_API_KEY") or os.getenv("REACT_APP_ALPHA_VANTAGE_API_KEY") or "").strip()
    ALPHA_VANTAGE_BASE_URL = (os.getenv("ALPHA_VANTAGE_BASE_URL") or "https://www.alphavantage.co/query").strip()
    API_RATE_LIMIT_DELAY_S = float(os.getenv("API_RATE_LIMIT_DELAY_S", "12"))  # free tier: 5 calls/min
    API_TIMEOUT_S = float(os.getenv("API_TIMEOUT_S", "10"))
    QUOTE_CACHE_MAX_ENTRIES = int(os.getenv("QUOTE_CACHE_MAX_ENTRIES", "256"))
    BATCH_REQUEST_DELAY_S = float(os.getenv("BATCH_REQUEST_DELAY_S", "0.1"))

    # Real-time polling
    REALTIME_UPDATE_INTERVAL_S = float(os.getenv("REALTIME_UPDATE_INTERVAL_S", "30"))
    REALTIME_HEARTBEAT_INTERVAL_S = float(os.getenv("REALTIME_HEARTBEAT_INTERVAL_S", "60"))
    REALTIME_MAX_RECONNECT_ATTEMPTS = int(os.getenv("REALTIME_MAX_RECONNECT_ATTEMPTS", "5"))
    REALTIME_RECONNECT_BASE_DELAY_S = float(os.getenv("REALTIME_RECONNECT_BASE_DELAY_S", "1"))
    REALTIME_RECONNECT_SCHEDULE_DELAY_S = float(os.getenv("REALTIME_RECONNECT_SCHEDULE_DELAY_S", "1"))
    REALTIME_ONLINE_RECONNECT_DELAY_S = float(os.getenv("REALTIME_ONLINE_RECONNECT_DELAY_S", "1"))
    REALTIME_PROBE_TIMEOUT_S = float(os.getenv("REALTIME_PROBE_TIMEOUT_S", "15"))
    REALTIME_AUTOCONNECT = _env_bool("REALTIME_AUTOCONNECT", "true")
    REALTIME_SUBSCRIBE_WATCHLIST = _env_bool("REALTIME_SUBSCRIBE_WATCHLIST", "true")

    # Network reachability
    NETWORK_PROBE_ENABLED = _env_bool("NETWORK_PROBE_ENABLED", "true")
    NETWORK_PROBE_URL = (os.getenv("NETWORK_PROBE_URL") or "https://www.alphavantage.co").strip()
    NETWORK_PROBE_INTERVAL_S = float(os.getenv("NETWORK_PROBE_INTERVAL_S", "15"))

    # Local storage
    WATCHLIST_PATH = (os.getenv("WATCHLIST_PATH") or ".run/watchlist.json").strip()

    # HTTP server
    HOST = (os.getenv("HOST") or "0.0.0.0").strip()
    PORT = int(os.getenv("PORT", "8000"))

    # Logging
    LOG_LEVEL = (os.getenv("LOG_LEVEL") or "INFO").strip().upper()
    LOG_FILE = (os.getenv("LOG_FILE") or ".run/quotefeed.log").strip()

    def __init__(self):
        # Check for deprecated env vars
        if os.getenv("REACT_APP_ALPHA_VANTAGE_API_KEY"):
            logger.warning("DEPRECATED: REACT_APP_ALPHA_VANTAGE_API_KEY is deprecated, use ALPHA_VANTAGE_API_KEY instead")

    @property
    def api_key_configured(self) -> bool:
        return bool(self.ALPHA_VANTAGE_API_KEY)


settings = Settings()
