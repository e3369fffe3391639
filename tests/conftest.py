import io
import json

import pytest
from PIL import Image


class ScriptedPrompt:
    """Prompt port that replays canned answers and records everything shown."""

    def __init__(self, answers):
        self.answers = list(answers)
        self.shown = []
        self.asked = []

    def show(self, text):
        self.shown.append(text)

    def ask(self, label):
        self.asked.append(label)
        if not self.answers:
            raise AssertionError(f"Unexpected prompt: {label}")
        return self.answers.pop(0)


class FakeWriter:
    """Stands in for ExifToolWriter; records batches instead of running exiftool."""

    def __init__(self, failures_per_batch=0):
        self.failures_per_batch = failures_per_batch
        self.started = False
        self.closed = False
        self.batches = []

    def start(self):
        self.started = True

    def close(self):
        self.closed = True

    def write_batch(self, items):
        self.batches.append(list(items))
        return self.failures_per_batch


def jpeg_bytes(color=(200, 30, 30), size=(8, 8)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="JPEG")
    return buf.getvalue()


def png_bytes(color=(30, 200, 30), size=(8, 8)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def make_jpeg():
    """Writes a genuine JPEG (parents created) and returns its path."""
    def _make(path, color=(200, 30, 30), data=None):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data if data is not None else jpeg_bytes(color))
        return path
    return _make


@pytest.fixture
def write_sidecar():
    """Writes a Takeout-style sidecar JSON and returns its path."""
    def _write(path, title, taken=None, **extra):
        payload = {"title": title}
        if taken is not None:
            payload["photoTakenTime"] = {"timestamp": str(taken)}
        payload.update(extra)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path
    return _write


@pytest.fixture
def prompt():
    """Factory: prompt('APPLY', '1') -> ScriptedPrompt."""
    return lambda *answers: ScriptedPrompt(answers)


@pytest.fixture
def fake_writer():
    return FakeWriter()
