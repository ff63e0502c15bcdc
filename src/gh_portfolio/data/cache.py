from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = Path(".cache/portfolio")


def cache_key(username: str, *, authenticated: bool) -> str:
    return f"portfolio-{username}-{'auth' if authenticated else 'public'}"


class ResultCache(Protocol):
    def get(self, key: str, max_age_s: float) -> list[dict[str, Any]] | None: ...

    def set(self, key: str, data: list[dict[str, Any]]) -> None: ...

    def clear(self) -> int: ...


class MemoryCache:
    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[list[dict[str, Any]], float]] = {}

    def get(self, key: str, max_age_s: float) -> list[dict[str, Any]] | None:
        if max_age_s <= 0:
            return None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            data, ts = entry
            if self._clock() - ts > max_age_s:
                del self._entries[key]
                return None
            return data

    def set(self, key: str, data: list[dict[str, Any]]) -> None:
        with self._lock:
            self._entries[key] = (data, self._clock())

    def clear(self) -> int:
        with self._lock:
            n = len(self._entries)
            self._entries.clear()
            return n


class FileCache:
    """One ``{key}.json`` per entry holding ``{"data": ..., "timestamp": ...}`` (epoch ms)."""

    def __init__(self, cache_dir: Path = DEFAULT_CACHE_DIR, *, clock: Callable[[], float] = time.time) -> None:
        self.cache_dir = Path(cache_dir)
        self._clock = clock

    def _path(self, key: str) -> Path:
        safe = "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in key)
        return self.cache_dir / f"{safe}.json"

    def get(self, key: str, max_age_s: float) -> list[dict[str, Any]] | None:
        if max_age_s <= 0:
            return None
        path = self._path(key)
        try:
            obj = json.loads(path.read_text(encoding="utf-8"))
            data = obj["data"]
            ts_ms = float(obj["timestamp"])
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.debug("cache entry unreadable key=%s err=%s", key, exc)
            return None
        if self._clock() * 1000 - ts_ms > max_age_s * 1000:
            path.unlink(missing_ok=True)
            return None
        if not isinstance(data, list):
            return None
        return data

    def set(self, key: str, data: list[dict[str, Any]]) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(
                json.dumps({"data": data, "timestamp": int(self._clock() * 1000)}, ensure_ascii=False),
                encoding="utf-8",
            )
            tmp.replace(path)
        except OSError as exc:
            logger.warning("failed to write cache key=%s err=%s", key, exc)

    def clear(self) -> int:
        if not self.cache_dir.exists():
            return 0
        n = 0
        for path in self.cache_dir.glob("*.json"):
            path.unlink(missing_ok=True)
            n += 1
        return n
