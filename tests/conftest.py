import asyncio
import io
from typing import List, Optional, Tuple

import pytest
from PIL import Image

from drscan.history import HistoryCache
from drscan.storage import MemoryStore


class FakeUploadedFile:
    """Stand-in for streamlit's UploadedFile."""

    def __init__(self, data: bytes, mime_type: str = 'image/png', name: str = 'scan.png',
                 size: Optional[int] = None, fail_read: bool = False):
        self._data = data
        self.type = mime_type
        self.name = name
        self.size = len(data) if size is None else size
        self._fail_read = fail_read
        self.reads = 0

    def getvalue(self) -> bytes:
        self.reads += 1
        if self._fail_read:
            raise OSError("disk went away")
        return self._data


class ScriptedBackend:
    """Classifier backend that answers from a script of (delay, text-or-exception)."""

    def __init__(self, *answers):
        self._answers = list(answers)
        self.calls: List[Tuple[str, bytes, str]] = []
        self.cancelled = 0
        self.finished = 0

    async def __call__(self, prompt, data, mime_type):
        self.calls.append((prompt, data, mime_type))
        delay, answer = self._answers.pop(0) if self._answers else (0, "0")
        try:
            if delay:
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        self.finished += 1
        if isinstance(answer, BaseException):
            raise answer
        return answer


def make_image_bytes(fmt: str = 'PNG', size=(16, 12), color=(180, 40, 30)) -> bytes:
    buffer = io.BytesIO()
    Image.new('RGB', size, color).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def png_bytes():
    return make_image_bytes('PNG')


@pytest.fixture
def png_upload(png_bytes):
    return FakeUploadedFile(png_bytes)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def history(store):
    return HistoryCache(store)
