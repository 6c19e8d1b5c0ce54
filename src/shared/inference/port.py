"""
Capability interface for the external video analysis engine.

The upload pipeline only depends on AnalysisEngine, so the real inference
script can be swapped for a fake in tests, or wrapped to limit concurrency.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from src.shared.analysis.schemas import AnalysisOutcome, AnalyzerMode

logger = logging.getLogger(__name__)

DEFAULT_VIDEO_NAME = "video"


class AnalysisEngine(ABC):
    """
    Base class for analysis engines.

    Implementations hand the video to the engine, wait for it to finish and
    report the result as an AnalysisOutcome. Crashes, timeouts and malformed
    output are either returned as ``AnalysisOutcome.crash()`` or raised as
    EngineCrash; the invoker treats both the same way.
    """

    @abstractmethod
    async def invoke(
        self,
        video: bytes,
        mode: AnalyzerMode,
        *,
        video_name: str = DEFAULT_VIDEO_NAME
    ) -> AnalysisOutcome:
        """
        Analyze one video.

        Args:
            video: Raw bytes of the uploaded file
            mode: Validated analysis mode
            video_name: Name hint passed on to the engine (no extension)

        Returns:
            AnalysisOutcome with the suggestions, or the crash marker
        """
        pass


class BoundedEngine(AnalysisEngine):
    """
    Limits how many invocations of the wrapped engine run at once.

    Requests over the limit wait for a free slot; the per-request pipeline is
    unchanged. A limit of 1 processes analyses one after another. The
    timeout, if any, starts once a slot is held, so time spent queueing is
    never charged to the analysis.
    """

    def __init__(self, engine: AnalysisEngine, max_concurrent: int = 1, timeout: Optional[float] = None):
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
        self.engine = engine
        self.max_concurrent = max_concurrent
        self.timeout = timeout
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _slots(self) -> asyncio.Semaphore:
        # A semaphore binds to the loop it is first contended on
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._loop is not loop:
            self._semaphore = asyncio.Semaphore(self.max_concurrent)
            self._loop = loop
        return self._semaphore

    async def invoke(
        self,
        video: bytes,
        mode: AnalyzerMode,
        *,
        video_name: str = DEFAULT_VIDEO_NAME
    ) -> AnalysisOutcome:
        slots = self._slots()
        if slots.locked():
            logger.info("All analysis slots are busy; waiting for a free slot")
        async with slots:
            return await asyncio.wait_for(
                self.engine.invoke(video, mode, video_name=video_name),
                timeout=self.timeout
            )
