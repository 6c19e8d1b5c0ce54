import asyncio
import logging

import pytest

from src.shared.analysis.exceptions import ResourceError, UnsupportedMode
from src.shared.analysis.schemas import AnalyzerMode, DecodedUpload, Suggestion, UploadMetadata
from src.shared.inference.invoker import InferenceInvoker
from src.shared.inference.port import BoundedEngine


def _upload(mode=AnalyzerMode.MULTI, content=b"video bytes"):
    return DecodedUpload(file_name="video.mp4", content=content, metadata=UploadMetadata(mode=mode))


def test_success_passes_suggestions_through(fake_engine):
    engine = fake_engine(suggestions=[(30, 60, "sorrow"), (300, 330, "anger")])
    outcome = asyncio.run(InferenceInvoker(engine).invoke(_upload()))

    assert not outcome.crashed
    assert outcome.suggestions == [
        Suggestion(start=30, end=60, suggestion="sorrow"),
        Suggestion(start=300, end=330, suggestion="anger"),
    ]
    assert engine.calls == [(b"video bytes", AnalyzerMode.MULTI, "video.mp4")]


def test_binary_mode_never_reaches_engine(fake_engine):
    engine = fake_engine()
    with pytest.raises(UnsupportedMode):
        asyncio.run(InferenceInvoker(engine).invoke(_upload(mode=AnalyzerMode.BINARY)))
    assert engine.calls == []


def test_crash_outcome_is_logged(fake_engine, caplog):
    engine = fake_engine(crash=True)
    with caplog.at_level(logging.ERROR):
        outcome = asyncio.run(InferenceInvoker(engine).invoke(_upload()))

    assert outcome.crashed
    assert "crashed" in caplog.text


def test_raised_engine_crash_becomes_crash_marker(fake_engine, caplog):
    engine = fake_engine(raise_crash=True)
    with caplog.at_level(logging.ERROR):
        outcome = asyncio.run(InferenceInvoker(engine).invoke(_upload()))

    assert outcome.crashed
    assert outcome.suggestions is None
    assert "crashed" in caplog.text


def test_timeout_becomes_crash_marker(fake_engine, caplog):
    engine = fake_engine(delay=5.0)
    with caplog.at_level(logging.ERROR):
        outcome = asyncio.run(InferenceInvoker(engine, timeout=0.05).invoke(_upload()))

    assert outcome.crashed
    assert engine.cancelled
    assert "timed out" in caplog.text


def test_single_attempt_per_upload(fake_engine):
    engine = fake_engine(raise_crash=True)
    asyncio.run(InferenceInvoker(engine).invoke(_upload()))
    assert len(engine.calls) == 1


def test_bounded_engine_limits_concurrency(fake_engine):
    class CountingEngine(fake_engine):
        active = 0
        peak = 0

        async def invoke(self, video, mode, *, video_name="video"):
            CountingEngine.active += 1
            CountingEngine.peak = max(CountingEngine.peak, CountingEngine.active)
            try:
                return await super().invoke(video, mode, video_name=video_name)
            finally:
                CountingEngine.active -= 1

    async def run_many():
        invoker = InferenceInvoker(BoundedEngine(CountingEngine(delay=0.02), max_concurrent=2))
        return await asyncio.gather(*(invoker.invoke(_upload()) for _ in range(6)))

    outcomes = asyncio.run(run_many())

    assert all(not o.crashed for o in outcomes)
    assert CountingEngine.peak == 2


def test_bounded_engine_rejects_zero_limit(fake_engine):
    with pytest.raises(ValueError):
        BoundedEngine(fake_engine(), max_concurrent=0)


def test_queued_upload_is_not_charged_for_waiting(fake_engine):
    engine = fake_engine(delay=0.3)

    async def run_two():
        invoker = InferenceInvoker(BoundedEngine(engine, max_concurrent=1, timeout=0.5))
        return await asyncio.gather(invoker.invoke(_upload()), invoker.invoke(_upload()))

    first, second = asyncio.run(run_two())

    assert not first.crashed
    assert not second.crashed
    assert len(engine.calls) == 2


def test_bounded_engine_timeout_becomes_crash_marker(fake_engine, caplog):
    engine = fake_engine(delay=5.0)
    with caplog.at_level(logging.ERROR):
        outcome = asyncio.run(InferenceInvoker(BoundedEngine(engine, timeout=0.05)).invoke(_upload()))

    assert outcome.crashed
    assert engine.cancelled
    assert "timed out" in caplog.text


def test_bounded_engine_survives_a_new_event_loop(fake_engine):
    bounded = BoundedEngine(fake_engine(delay=0.01), max_concurrent=1)

    async def run_many():
        invoker = InferenceInvoker(bounded)
        return await asyncio.gather(*(invoker.invoke(_upload()) for _ in range(3)))

    assert all(not o.crashed for o in asyncio.run(run_many()))
    assert all(not o.crashed for o in asyncio.run(run_many()))


def test_unexpected_engine_error_becomes_crash_marker(fake_engine, caplog):
    class BuggyEngine(fake_engine):
        async def invoke(self, video, mode, *, video_name="video"):
            raise ValueError("embedded null byte")

    with caplog.at_level(logging.ERROR):
        outcome = asyncio.run(InferenceInvoker(BuggyEngine()).invoke(_upload()))

    assert outcome.crashed
    assert "Unexpected engine error" in caplog.text
    assert "embedded null byte" in caplog.text


def test_resource_error_propagates(fake_engine):
    class BrokenStorageEngine(fake_engine):
        async def invoke(self, video, mode, *, video_name="video"):
            raise ResourceError("disk full")

    with pytest.raises(ResourceError):
        asyncio.run(InferenceInvoker(BrokenStorageEngine()).invoke(_upload()))
