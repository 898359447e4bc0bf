# storefront/client/storage.py
import os
import json
import logging
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_FILE = os.getenv(
    "STOREFRONT_STORAGE_FILE",
    str(Path.home() / ".storefront" / "storage.json"),
)

TOKEN_KEY = "authToken"
GUEST_CART_KEY = "guest_cart"


class LocalStorage:
    """Small key/value store persisted as one JSON file.

    ``path=None`` keeps everything in memory.
    """

    def __init__(self, path: Optional[str] = DEFAULT_STORAGE_FILE):
        self.path = Path(path) if path else None
        self._data = self._load()

    def _load(self) -> dict:
        if not self.path or not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("[STORAGE] could not read %s, starting empty: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self):
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(self._data, f, ensure_ascii=False, indent=2)

    def get_item(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set_item(self, key: str, value: Any):
        if value is None:
            self.remove_item(key)
            return
        self._data[key] = value
        self._save()

    def remove_item(self, key: str):
        if self._data.pop(key, None) is not None:
            self._save()
