from __future__ import annotations

import asyncio
import base64
import io
import sys
from pathlib import Path
from typing import List

import pytest
from PIL import Image

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from models.capture_models import BoundingBox, RecognizedWord
from services.recognition.engine import RecognitionEngine, RecognitionResult


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeEngine(RecognitionEngine):
    """Records calls and returns canned text with one box per word."""

    name = "fake"

    def __init__(self, text: str = "Hello World", delay: float = 0.0, fail: bool = False) -> None:
        self.text = text
        self.delay = delay
        self.fail = fail
        self.calls: List[tuple] = []
        self.active = 0
        self.max_active = 0

    async def recognize(self, image_png: bytes, width: int, height: int) -> RecognitionResult:
        self.calls.append((width, height))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail:
                raise RuntimeError("backend unavailable")
            words = []
            for i, token in enumerate(self.text.split()):
                x0 = 10 + i * 60
                words.append(RecognizedWord(text=token, bbox=BoundingBox(x0, 10, x0 + 50, 30)))
            return RecognitionResult(text=self.text, words=words)
        finally:
            self.active -= 1


def _encode(width: int, height: int, fmt: str, color) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def make_png():
    def _make(width: int = 40, height: int = 30, color=(200, 30, 30)) -> bytes:
        return _encode(width, height, "PNG", color)

    return _make


@pytest.fixture
def make_jpeg():
    def _make(width: int = 40, height: int = 30, color=(30, 200, 30)) -> bytes:
        return _encode(width, height, "JPEG", color)

    return _make


@pytest.fixture
def to_data_url():
    def _to(data: bytes, mime: str = "image/png") -> str:
        return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"

    return _to


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_engine():
    return FakeEngine()
