import io
from typing import AsyncGenerator

import pytest
from httpx import AsyncClient, ASGITransport
from PIL import Image

from src.main import app
from src.engines.imaging.schemas import ImageBlob


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    # Trigger lifespan events (startup/shutdown)
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac


def encode(image: Image.Image, fmt: str = "PNG", **options) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format=fmt, **options)
    return buffer.getvalue()


@pytest.fixture
def make_image():
    """Factory for solid-colour image bytes."""
    def _make(color=(30, 60, 90), size=(40, 30), fmt="PNG", mode="RGB", **options) -> bytes:
        return encode(Image.new(mode, size, color), fmt, **options)
    return _make


@pytest.fixture
def make_blob(make_image):
    """Factory for ImageBlobs wrapping solid-colour images."""
    def _make(filename="photo.png", mime_type="image/png", **kwargs) -> ImageBlob:
        return ImageBlob(data=make_image(**kwargs), filename=filename, mime_type=mime_type)
    return _make


@pytest.fixture
def product_on_white() -> ImageBlob:
    """40x40 white studio shot with a dark 20x20 product in the middle."""
    image = Image.new("RGB", (40, 40), (255, 255, 255))
    image.paste((20, 20, 20), (10, 10, 30, 30))
    return ImageBlob(data=encode(image), filename="Product Shot.png", mime_type="image/png")


@pytest.fixture
def broken_blob() -> ImageBlob:
    return ImageBlob(data=b"definitely not an image", filename="broken.jpg", mime_type="image/jpeg")


def open_image(data: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


@pytest.fixture
def decode():
    return open_image
