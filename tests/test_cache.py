from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from skimmer.cache import ResultCache, media_fingerprint, media_identity
from skimmer.config import AnalysisConfig
from skimmer.models import AnalysisResult, AudioScore, Scene


def _result() -> AnalysisResult:
    return AnalysisResult(scenes=(Scene(0, 30_000),), audio_scores=(AudioScore(0, 0.25),))


def test_put_then_get_returns_equal_result(tmp_path: Path) -> None:
    cache = ResultCache(tmp_path)
    config = AnalysisConfig()

    cache.put("video.mp4", config, _result())

    assert cache.get("video.mp4", config) == _result()


def test_key_depends_on_config_and_fingerprint(tmp_path: Path) -> None:
    cache = ResultCache(tmp_path)
    config = AnalysisConfig()
    cache.put("video.mp4", config, _result(), fingerprint="10:1")

    assert cache.get("video.mp4", AnalysisConfig(quick_mode=True), fingerprint="10:1") is None
    assert cache.get("video.mp4", config, fingerprint="10:2") is None
    assert cache.get("other.mp4", config, fingerprint="10:1") is None
    assert cache.get("video.mp4", config, fingerprint="10:1") is not None


def test_invalidate_removes_every_entry_for_media(tmp_path: Path) -> None:
    cache = ResultCache(tmp_path)
    cache.put("video.mp4", AnalysisConfig(), _result())
    cache.put("video.mp4", AnalysisConfig(quick_mode=True), _result())
    cache.put("other.mp4", AnalysisConfig(), _result())

    assert cache.invalidate("video.mp4") == 2
    assert cache.get("video.mp4", AnalysisConfig()) is None
    assert cache.get("other.mp4", AnalysisConfig()) is not None
    assert cache.invalidate("video.mp4") == 0


def test_corrupt_entry_is_discarded(tmp_path: Path) -> None:
    cache = ResultCache(tmp_path)
    config = AnalysisConfig()
    path = cache.put("video.mp4", config, _result())
    path.write_text("{not json", encoding="utf-8")

    assert cache.get("video.mp4", config) is None
    assert not path.exists()


def test_get_or_compute_runs_once_for_concurrent_callers(tmp_path: Path) -> None:
    cache = ResultCache(tmp_path)
    calls = {"count": 0}

    async def _compute() -> AnalysisResult:
        calls["count"] += 1
        await asyncio.sleep(0)
        return _result()

    async def _run() -> list[AnalysisResult]:
        return await asyncio.gather(
            cache.get_or_compute("video.mp4", AnalysisConfig(), _compute),
            cache.get_or_compute("video.mp4", AnalysisConfig(), _compute),
        )

    first, second = asyncio.run(_run())

    assert calls["count"] == 1
    assert first == second == _result()
    assert cache.active_keys == 0


def test_failed_results_are_not_cached(tmp_path: Path) -> None:
    cache = ResultCache(tmp_path)
    calls = {"count": 0}

    async def _compute() -> AnalysisResult:
        calls["count"] += 1
        return AnalysisResult.empty()

    async def _run() -> None:
        await cache.get_or_compute("video.mp4", AnalysisConfig(), _compute)
        await cache.get_or_compute("video.mp4", AnalysisConfig(), _compute)

    asyncio.run(_run())

    assert calls["count"] == 2


def test_media_identity_and_fingerprint_track_the_file(tmp_path: Path) -> None:
    video = tmp_path / "clip.mp4"
    video.write_bytes(b"abc")
    before = media_fingerprint(video)
    video.write_bytes(b"abcdef")

    assert media_identity(video) == str(video.resolve())
    assert before.startswith("3:")
    assert media_fingerprint(video).startswith("6:")


def test_key_locks_are_dropped_after_compute_fails(tmp_path: Path) -> None:
    cache = ResultCache(tmp_path)
    seen: list[int] = []

    async def _compute() -> AnalysisResult:
        seen.append(cache.active_keys)
        raise RuntimeError("decoder crashed")

    async def _run() -> None:
        for name in ("a.mp4", "b.mp4", "c.mp4"):
            with pytest.raises(RuntimeError):
                await cache.get_or_compute(name, AnalysisConfig(), _compute)

    asyncio.run(_run())

    assert seen == [1, 1, 1]
    assert cache.active_keys == 0
