"""Message-passing progress reporting.

Each stage writes fractions into its own queue through a ``StageProgress``
reporter. A ``ProgressMerger`` owned by the coordinator drains every queue and
is the only place where per-stage values are combined, so no float is shared
between concurrently running stages.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, Protocol

from skimmer.models import AnalysisProgress

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[AnalysisProgress], None]

_CLOSED = object()


class ProgressReporter(Protocol):
    def report(self, fraction: float) -> None: ...

    def close(self) -> None: ...


class StageProgress:
    """Write end of one stage's progress channel."""

    def __init__(self, name: str, queue: asyncio.Queue[object] | None = None) -> None:
        self.name = name
        self._queue: asyncio.Queue[object] = queue if queue is not None else asyncio.Queue()

    def report(self, fraction: float) -> None:
        self._queue.put_nowait(min(max(float(fraction), 0.0), 1.0))

    def close(self) -> None:
        self._queue.put_nowait(_CLOSED)

    async def receive(self) -> float | None:
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return float(item)  # type: ignore[arg-type]


class ProgressMerger:
    """Blends several stage channels into one overall progress value.

    The blended value is ``offset + scale * mean(stage fractions)``.
    """

    def __init__(
        self,
        phase: str,
        stages: Iterable[StageProgress],
        callback: ProgressCallback | None,
        *,
        offset: float = 0.0,
        scale: float = 1.0,
    ) -> None:
        self.phase = phase
        self.stages = list(stages)
        self.callback = callback
        self.offset = offset
        self.scale = scale
        self._latest = {stage.name: 0.0 for stage in self.stages}

    @property
    def overall(self) -> float:
        if not self._latest:
            return self.offset + self.scale
        return self.offset + self.scale * (sum(self._latest.values()) / len(self._latest))

    async def run(self) -> None:
        """Drain every stage channel until all of them are closed."""

        await asyncio.gather(*(self._drain(stage) for stage in self.stages))

    async def _drain(self, stage: StageProgress) -> None:
        while True:
            fraction = await stage.receive()
            if fraction is None:
                self._latest[stage.name] = 1.0
                self._emit()
                return
            self._latest[stage.name] = fraction
            self._emit()

    def _emit(self) -> None:
        emit_progress(self.callback, self.phase, self.overall)


def emit_progress(callback: ProgressCallback | None, phase: str, fraction: float) -> None:
    if callback is None:
        return
    try:
        callback(AnalysisProgress(phase=phase, fraction=min(max(fraction, 0.0), 1.0)))
    except Exception:
        # Observer errors are logged, never propagated.
        logger.warning("Progress callback raised for phase %s", phase, exc_info=True)


class ScaledProgress:
    """Forwards a single stage's fraction straight to the callback within a phase band."""

    def __init__(self, phase: str, callback: ProgressCallback | None, *, offset: float, scale: float) -> None:
        self.name = phase
        self.phase = phase
        self.callback = callback
        self.offset = offset
        self.scale = scale

    def report(self, fraction: float) -> None:
        emit_progress(self.callback, self.phase, self.offset + self.scale * min(max(fraction, 0.0), 1.0))

    def close(self) -> None:
        self.report(1.0)
