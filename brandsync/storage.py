"""
Key/value stores for cache snapshots and resolution entries.

All stores share one contract: ``get(key)``, ``set(key, value,
ttl_seconds=None)``, ``set_many(mapping, ttl_seconds=None)`` and
``delete(key)``. ``set_many`` writes every key or none of them, which is
how a snapshot and its timestamp are replaced together.
"""

import json
import os
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .errors import CorruptCacheEntry, StoreError


def diff_dict(old: Dict[str, Any], new: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    changed = {}
    keys = set(old.keys()) | set(new.keys())
    for k in keys:
        ov = old.get(k)
        nv = new.get(k)
        if ov != nv:
            changed[k] = {"old": ov, "new": nv}
    return changed


def _expiry(ttl_seconds: Optional[float], now: float) -> Optional[float]:
    return now + ttl_seconds if ttl_seconds is not None else None


class MemoryStore:
    """In-process store. Useful for tests and single-run CLI work."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            if entry["expires_at"] is not None and entry["expires_at"] <= self._clock():
                del self._data[key]
                return None
            return json.loads(entry["value"])

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        self.set_many({key: value}, ttl_seconds=ttl_seconds)

    def set_many(self, items: Dict[str, Any], ttl_seconds: Optional[float] = None) -> None:
        try:
            encoded = {k: json.dumps(v) for k, v in items.items()}
        except (TypeError, ValueError) as e:
            raise StoreError(f"Value is not JSON serializable: {e}") from e
        expires_at = _expiry(ttl_seconds, self._clock())
        with self._lock:
            for k, v in encoded.items():
                self._data[k] = {"value": v, "expires_at": expires_at}

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._data.items() if e["expires_at"] is not None and e["expires_at"] <= now]
            for k in expired:
                del self._data[k]
        return len(expired)


class JsonFileStore:
    """
    Single JSON file holding every key.

    Writes go to a temporary file that replaces the original, so readers
    never see a half-written store. An unreadable file raises
    ``CorruptCacheEntry`` on read and ``StoreError`` on write; it is never
    overwritten.
    """

    def __init__(self, path: Path, clock: Callable[[], float] = time.time):
        self.path = Path(path)
        self._clock = clock
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {"entries": {}}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                content = f.read().strip()
                if not content:
                    return {"entries": {}}
                store = json.loads(content)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise CorruptCacheEntry(f"Store file {self.path} is not valid JSON") from e
        except OSError as e:
            raise StoreError(f"Failed to read store {self.path}: {e}") from e
        if not isinstance(store, dict) or not isinstance(store.get("entries", {}), dict):
            raise CorruptCacheEntry(f"Store file {self.path} has an unexpected layout")
        return store

    def _load_for_write(self) -> Dict[str, Any]:
        try:
            return self._load()
        except CorruptCacheEntry as e:
            raise StoreError(f"Refusing to overwrite unreadable store {self.path}") from e

    def _save(self, store: Dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(store, f, indent=2, ensure_ascii=False)
            os.replace(tmp, self.path)
        except (IOError, OSError, TypeError, ValueError) as e:
            raise StoreError(f"Failed to write store {self.path}: {e}") from e

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._load().get("entries", {}).get(key)
        if entry is None:
            return None
        if entry.get("expires_at") is not None and entry["expires_at"] <= self._clock():
            return None
        return entry.get("value")

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        self.set_many({key: value}, ttl_seconds=ttl_seconds)

    def set_many(self, items: Dict[str, Any], ttl_seconds: Optional[float] = None) -> None:
        expires_at = _expiry(ttl_seconds, self._clock())
        with self._lock:
            store = self._load_for_write()
            entries = store.setdefault("entries", {})
            for k, v in items.items():
                entries[k] = {"value": v, "expires_at": expires_at}
            self._save(store)

    def delete(self, key: str) -> None:
        with self._lock:
            store = self._load_for_write()
            if store.get("entries", {}).pop(key, None) is not None:
                self._save(store)

    def purge_expired(self) -> int:
        """Drop expired entries from the file. Returns the number removed."""
        now = self._clock()
        with self._lock:
            store = self._load_for_write()
            entries = store.get("entries", {})
            expired = [
                k for k, e in entries.items()
                if isinstance(e, dict) and e.get("expires_at") is not None and e["expires_at"] <= now
            ]
            for k in expired:
                del entries[k]
            if expired:
                self._save(store)
        return len(expired)
