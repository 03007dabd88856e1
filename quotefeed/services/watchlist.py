"""
Local watchlist persistence.
A JSON file acts as a small key-value store; the watchlist lives under a
fixed key as a JSON array of symbols.
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional

from quotefeed.config import settings

logger = logging.getLogger(__name__)

WATCHLIST_KEY = "tsx_watchlist"


class LocalStore:
    """JSON-file key-value store with string values."""

    def __init__(self, path: str):
        self.path = path

    def _read_all(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"store root must be an object, got {type(data).__name__}")
        return data

    def _write_all(self, data: Dict[str, Any]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self.path)

    def get_item(self, key: str) -> Optional[str]:
        return self._read_all().get(key)

    def set_item(self, key: str, value: str) -> None:
        try:
            data = self._read_all()
        except (OSError, ValueError) as e:
            logger.warning(f"Local store unreadable, rewriting {self.path}: {e}")
            data = {}
        data[key] = value
        self._write_all(data)

    def remove_item(self, key: str) -> None:
        data = self._read_all()
        if key in data:
            del data[key]
            self._write_all(data)


class Watchlist:
    """User-curated symbols, loaded at startup and saved on every mutation."""

    def __init__(self, store: Optional[LocalStore] = None, key: str = WATCHLIST_KEY):
        self.store = store or LocalStore(settings.WATCHLIST_PATH)
        self.key = key
        self._symbols: Dict[str, None] = {}
        self.load()

    @staticmethod
    def _normalize(symbol: str) -> str:
        return symbol.strip().upper()

    def load(self) -> List[str]:
        """Read the saved list; corrupt or missing data yields an empty list."""
        self._symbols = {}
        try:
            saved = self.store.get_item(self.key)
            if saved:
                symbols = json.loads(saved)
                if not isinstance(symbols, list):
                    raise ValueError("watchlist entry is not a JSON array")
                for symbol in symbols:
                    if isinstance(symbol, str) and symbol.strip():
                        self._symbols[self._normalize(symbol)] = None
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load watchlist: {e}")
            self._symbols = {}
        return self.symbols

    def save(self) -> None:
        try:
            self.store.set_item(self.key, json.dumps(self.symbols))
        except (OSError, TypeError) as e:
            logger.error(f"Failed to save watchlist: {e}")

    @property
    def symbols(self) -> List[str]:
        return list(self._symbols)

    def add(self, symbol: str) -> bool:
        """Add a symbol; returns False if it was already present."""
        normalized = self._normalize(symbol)
        if not normalized or normalized in self._symbols:
            return False
        self._symbols[normalized] = None
        self.save()
        return True

    def remove(self, symbol: str) -> bool:
        normalized = self._normalize(symbol)
        if normalized not in self._symbols:
            return False
        del self._symbols[normalized]
        self.save()
        return True

    def clear(self) -> None:
        self._symbols = {}
        self.save()

    def __contains__(self, symbol: str) -> bool:
        return self._normalize(symbol) in self._symbols

    def __len__(self) -> int:
        return len(self._symbols)
