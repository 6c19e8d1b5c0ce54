import asyncio
import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from src.app import create_app
from src.shared.analysis.exceptions import EngineCrash
from src.shared.analysis.schemas import AnalysisOutcome, Suggestion
from src.shared.config.settings import Settings
from src.shared.inference.port import AnalysisEngine

BOUNDARY = "streameme-test-boundary"


def encode_multipart(parts, boundary=BOUNDARY) -> bytes:
    """
    Encodes parts given as (name, filename, content_type, payload) tuples.
    filename and content_type may be None to leave the header out.
    """
    body = bytearray()
    for name, filename, content_type, payload in parts:
        body += f"--{boundary}\r\n".encode()
        disposition = f'Content-Disposition: form-data; name="{name}"'
        if filename is not None:
            disposition += f'; filename="{filename}"'
        body += disposition.encode() + b"\r\n"
        if content_type is not None:
            body += f"Content-Type: {content_type}\r\n".encode()
        body += b"\r\n"
        body += payload if isinstance(payload, bytes) else payload.encode()
        body += b"\r\n"
    body += f"--{boundary}--\r\n".encode()
    return bytes(body)


def upload_parts(mode=1, file_name="video.mp4", video=b"\x00\x00\x00\x20ftypisom fake video"):
    metadata = mode if isinstance(mode, (str, bytes)) else json.dumps({"mode": mode})
    return [
        ("metadata", None, "application/json", metadata),
        ("file", file_name, "video/mp4", video),
    ]


class FakeEngine(AnalysisEngine):
    """Deterministic engine: returns suggestions, crashes, raises or hangs."""

    def __init__(self, suggestions=None, crash=False, raise_crash=False, delay=0.0):
        self.suggestions = suggestions or []
        self.crash = crash
        self.raise_crash = raise_crash
        self.delay = delay
        self.calls = []
        self.cancelled = False

    async def invoke(self, video, mode, *, video_name="video"):
        self.calls.append((video, mode, video_name))
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.raise_crash:
            raise EngineCrash("fake engine exploded")
        if self.crash:
            return AnalysisOutcome.crash()
        return AnalysisOutcome.success([Suggestion(start=s, end=e, suggestion=l) for s, e, l in self.suggestions])


@pytest.fixture
def multipart():
    return encode_multipart


@pytest.fixture
def parts():
    return upload_parts


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        engine_dir=tmp_path / "engine",
        engine_timeout=5.0,
        max_upload_bytes=1024 * 1024,
        temp_dir=tmp_path
    )


@pytest.fixture
def make_client(settings):
    def _make(engine, **overrides):
        app = create_app(settings.with_overrides(**overrides), engine=engine)
        return TestClient(app)
    return _make


@pytest.fixture
def post_upload():
    def _post(client, parts, boundary=BOUNDARY, content_type=None):
        return client.post(
            "/upload",
            content=encode_multipart(parts, boundary),
            headers={"Content-Type": content_type or f"multipart/form-data; boundary={boundary}"}
        )
    return _post


@pytest.fixture
def fake_engine():
    return FakeEngine
