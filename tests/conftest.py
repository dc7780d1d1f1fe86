
import io
import time

import pytest
from PIL import Image

from ingredient_ocr.config import load_tables

_PIL_FORMATS = {"png": "PNG", "jpeg": "JPEG", "bmp": "BMP", "tiff": "TIFF"}


def make_image(fmt: str = "png", size=(40, 20), mode: str = "RGB") -> bytes:
    """Small white image encoded in `fmt`."""
    buf = io.BytesIO()
    Image.new(mode, size, "white").save(buf, format=_PIL_FORMATS[fmt])
    return buf.getvalue()


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeEngine:
    """
    Stand-in for TesseractEngine. `script` is shared by every engine a
    factory builds: each recognize() pops one entry, an exception class is
    raised, anything else is returned as text.
    """
    name = "fake"

    def __init__(self, key, script: list, delay: float = 0.0):
        self.key = key
        self.script = script
        self.delay = delay
        self.calls = 0

    def recognize(self, image_bytes: bytes, timeout: float) -> str:
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        outcome = self.script.pop(0) if self.script else "ok"
        if isinstance(outcome, type) and issubclass(outcome, BaseException):
            raise outcome("engine failure")
        return outcome


class FakeFactory:
    def __init__(self, script: list | None = None, delay: float = 0.0):
        self.script = script if script is not None else []
        self.delay = delay
        self.engines: list[FakeEngine] = []

    def __call__(self, key) -> FakeEngine:
        engine = FakeEngine(key, self.script, self.delay)
        self.engines.append(engine)
        return engine

    @property
    def created(self) -> int:
        return len(self.engines)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tables():
    return load_tables()


@pytest.fixture
def sleeps():
    """Recorded retry delays; pass `record` as the controller's sleep."""
    delays: list[float] = []

    async def record(seconds: float) -> None:
        delays.append(seconds)

    record.delays = delays  # type: ignore[attr-defined]
    return record
