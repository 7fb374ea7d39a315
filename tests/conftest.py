# tests/conftest.py
import io
import random
import struct

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from main import app
from rate_limiter import limiter


def make_image_bytes(size=(40, 30), color=(200, 40, 40), fmt="PNG", mode="RGB") -> bytes:
    """Creates an in-memory image of a single solid colour."""
    img = Image.new(mode, size, color)
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


def make_broken_png() -> bytes:
    """
    A PNG whose second IDAT chunk has a garbled chunk type. The header parses,
    so the damage only shows up while the pixel data is being loaded.
    """
    # Noise doesn't compress, so the pixel data spans several IDAT chunks.
    noise = random.Random(0).randbytes(256 * 256 * 3)
    buffer = io.BytesIO()
    Image.frombytes("RGB", (256, 256), noise).save(buffer, format="PNG")
    data = bytearray(buffer.getvalue())

    pos, idat_seen = 8, 0
    while pos < len(data):
        length = struct.unpack(">I", data[pos:pos + 4])[0]
        if data[pos + 4:pos + 8] == b"IDAT":
            idat_seen += 1
            if idat_seen == 2:
                data[pos + 5] = 0xC8
                return bytes(data)
        pos += 12 + length
    raise AssertionError("expected the PNG to hold at least two IDAT chunks")


def open_png(content: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(content))
    img.load()
    return img


@pytest.fixture(scope="function")
def client():
    # Each test starts with an empty rate limit window.
    limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
