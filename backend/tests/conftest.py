"""Shared fixtures: isolated staging dir and database, generated image fixtures, API client."""
import io
import os
import tempfile
import uuid
from pathlib import Path

# Point the app at throwaway locations BEFORE any webpix import reads the environment.
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="webpix_uploads_")
os.environ["DATABASE_URL"] = f"sqlite:///{tempfile.mkdtemp(prefix='webpix_db_')}/test.db"
os.environ["REDIS_URL"] = ""
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from PIL import Image

from webpix.conversion.models import StagedFile
from webpix.counters import SqlCounterStore, UsageCounters, get_usage_counters
from webpix.db import ensure_tables, make_engine

VERBOSE_SVG = """<?xml version="1.0" encoding="UTF-8" standalone="no"?>
<!-- Created with a vector editor -->
<svg
   xmlns="http://www.w3.org/2000/svg"
   xmlns:dc="http://purl.org/dc/elements/1.1/"
   xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#"
   xmlns:cc="http://creativecommons.org/ns#"
   width="100"
   height="100"
   version="1.1">
  <metadata>
    <rdf:RDF>
      <cc:Work rdf:about="">
        <dc:format>image/svg+xml</dc:format>
        <dc:title>Test drawing</dc:title>
      </cc:Work>
    </rdf:RDF>
  </metadata>
  <!-- A red square -->
  <g id="layer1">
    <rect
       style="fill:#ff0000;fill-opacity:1.000000;stroke:none"
       x="10.000000"
       y="10.000000"
       width="80.000000"
       height="80.000000" />
  </g>
  <!-- A blue circle -->
  <circle cx="50.000000" cy="50.000000" r="20.000000" fill="#0000ff" />
</svg>
"""


def _save(img: Image.Image, fmt: str, **kw) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format=fmt, **kw)
    return buf.getvalue()


def _noise(width: int, height: int) -> Image.Image:
    return Image.frombytes("RGB", (width, height), os.urandom(width * height * 3))


@pytest.fixture
def png_bytes() -> bytes:
    """Roughly 50 KB of incompressible PNG."""
    return _save(_noise(128, 128), "PNG")


@pytest.fixture
def jpeg_bytes() -> bytes:
    return _save(_noise(160, 120), "JPEG", quality=90)


@pytest.fixture
def truncated_jpeg_bytes(jpeg_bytes) -> bytes:
    return jpeg_bytes[: len(jpeg_bytes) // 2]


@pytest.fixture
def animated_gif_bytes() -> bytes:
    """Three distinct frames, looping forever."""
    frames = [Image.new("RGB", (32, 32), color) for color in ((255, 0, 0), (0, 255, 0), (0, 0, 255))]
    return _save(frames[0], "GIF", save_all=True, append_images=frames[1:], duration=[100, 200, 300], loop=0)


@pytest.fixture
def svg_text() -> str:
    return VERBOSE_SVG


@pytest.fixture
def make_staged(tmp_path):
    """Factory writing bytes to tmp_path and returning a StagedFile for them."""

    def _make(name: str, mime_type: str, data: bytes) -> StagedFile:
        path = tmp_path / f"{uuid.uuid4()}{Path(name).suffix}"
        path.write_bytes(data)
        return StagedFile(original_name=name, mime_type=mime_type, size=len(data), path=path)

    return _make


@pytest.fixture
def counters(tmp_path) -> UsageCounters:
    """Usage counters backed by a fresh SQLite database."""
    engine = make_engine(f"sqlite:///{tmp_path / 'counters.db'}")
    ensure_tables(engine)
    yield UsageCounters(SqlCounterStore(engine))
    engine.dispose()


@pytest.fixture
def upload_dir() -> Path:
    from webpix.config import UPLOAD_DIR
    return UPLOAD_DIR


@pytest_asyncio.fixture
async def test_client(counters):
    """httpx AsyncClient talking to the app, with counters on a temporary database."""
    from webpix.main import app
    app.dependency_overrides[get_usage_counters] = lambda: counters
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
