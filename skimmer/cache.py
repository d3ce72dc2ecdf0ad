"""On-disk memoization of analysis results keyed by media identity and config."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import shutil
from pathlib import Path
from typing import Awaitable, Callable

from skimmer.config import AnalysisConfig
from skimmer.models import AnalysisResult
from skimmer.propose.exporter import result_from_payload, result_to_payload

logger = logging.getLogger(__name__)

RESULTS_SUBDIR = "results"


def media_identity(path: str | Path) -> str:
    return str(Path(path).expanduser().resolve())


def media_fingerprint(path: str | Path) -> str:
    """Size and modification time; changes whenever the file is replaced."""

    stat = Path(path).expanduser().resolve().stat()
    return f"{stat.st_size}:{stat.st_mtime_ns}"


class ResultCache:
    def __init__(self, cache_dir: str | Path) -> None:
        self.root = Path(cache_dir).expanduser() / RESULTS_SUBDIR
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    def key_for(self, media_id: str, config: AnalysisConfig, fingerprint: str = "") -> str:
        material = "\n".join((media_id, fingerprint, config.cache_key()))
        return hashlib.sha256(material.encode("utf-8")).hexdigest()

    def path_for(self, media_id: str, key: str) -> Path:
        return self._media_dir(media_id) / f"{key}.json"

    def get(self, media_id: str, config: AnalysisConfig, fingerprint: str = "") -> AnalysisResult | None:
        path = self.path_for(media_id, self.key_for(media_id, config, fingerprint))
        if not path.exists():
            return None
        try:
            return result_from_payload(json.loads(path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, ValueError) as exc:
            logger.warning("Discarding unreadable cache entry %s: %s", path, exc)
            path.unlink(missing_ok=True)
            return None

    def put(
        self,
        media_id: str,
        config: AnalysisConfig,
        result: AnalysisResult,
        fingerprint: str = "",
    ) -> Path:
        path = self.path_for(media_id, self.key_for(media_id, config, fingerprint))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(result_to_payload(result), sort_keys=True), encoding="utf-8")
        return path

    def invalidate(self, media_id: str) -> int:
        """Drop every cached result for ``media_id``; returns how many entries were removed."""

        media_dir = self._media_dir(media_id)
        if not media_dir.exists():
            return 0
        removed = len(list(media_dir.glob("*.json")))
        shutil.rmtree(media_dir)
        logger.info("Invalidated %d cached result(s) for %s", removed, media_id)
        return removed

    async def get_or_compute(
        self,
        media_id: str,
        config: AnalysisConfig,
        compute: Callable[[], Awaitable[AnalysisResult]],
        fingerprint: str = "",
    ) -> AnalysisResult:
        """Return the cached result, or run ``compute`` with at most one run per key at a time."""

        key = self.key_for(media_id, config, fingerprint)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                cached = self.get(media_id, config, fingerprint)
                if cached is not None:
                    logger.info("Cache hit for %s", media_id)
                    return cached

                result = await compute()
                # A failed run comes back without scenes and is not worth keeping.
                if result.scenes:
                    self.put(media_id, config, result, fingerprint)
                return result
        finally:
            self._release_lock(key)

    @property
    def active_keys(self) -> int:
        return len(self._locks)

    def _release_lock(self, key: str) -> None:
        remaining = self._lock_users[key] - 1
        if remaining:
            self._lock_users[key] = remaining
            return
        del self._lock_users[key]
        del self._locks[key]

    def _media_dir(self, media_id: str) -> Path:
        return self.root / hashlib.sha256(media_id.encode("utf-8")).hexdigest()[:16]
