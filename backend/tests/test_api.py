"""HTTP endpoints, including the end-to-end conversion scenarios."""
import base64
import io

import pytest
from PIL import Image

from webpix.counters import UsageCounters, UsageTotals, get_usage_counters
from webpix.exceptions import StoreError
from webpix.main import app


def part(name: str, data: bytes, mime: str):
    return ("images", (name, data, mime))


class FailingStore:
    def increment(self, key, delta=1):
        raise StoreError("store down")

    def get(self, key):
        raise StoreError("store down")


@pytest.mark.asyncio
async def test_root_liveness(test_client):
    response = await test_client.get("/")
    assert response.status_code == 200
    assert response.text == "Hello World from Webpix API"


@pytest.mark.asyncio
async def test_health(test_client):
    response = await test_client.get("/health")
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_logs_null_before_first_conversion(test_client):
    response = await test_client.get("/logs")
    assert response.status_code == 200
    assert response.json() == {"totalRequests": None, "totalFilesTransformed": None}


@pytest.mark.asyncio
async def test_convert_png_and_jpeg(test_client, counters, upload_dir, png_bytes, jpeg_bytes):
    counters.increment_usage(1, 1)
    before = counters.read_totals()

    response = await test_client.post(
        "/convert",
        files=[part("photo.png", png_bytes, "image/png"), part("shot.jpg", jpeg_bytes, "image/jpeg")],
    )

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Conversion successful"
    assert [f["originalName"] for f in body["files"]] == ["photo.png", "shot.jpg"]
    for f in body["files"]:
        assert f["mimeType"] == "image/webp"
        assert f["convertedName"].endswith(".webp")
        data = base64.b64decode(f["convertedBuffer"])
        assert len(data) == f["size"]
        with Image.open(io.BytesIO(data)) as img:
            assert img.format == "WEBP"

    after = counters.read_totals()
    assert after.total_requests == before.total_requests + 1
    assert after.total_files == before.total_files + 2
    assert list(upload_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_convert_gif_and_svg(test_client, animated_gif_bytes, svg_text):
    response = await test_client.post(
        "/convert",
        files=[
            part("anim.gif", animated_gif_bytes, "image/gif"),
            part("logo.svg", svg_text.encode(), "image/svg+xml"),
        ],
    )
    assert response.status_code == 200
    gif, svg = response.json()["files"]
    assert gif["mimeType"] == "image/gif"
    with Image.open(io.BytesIO(base64.b64decode(gif["convertedBuffer"]))) as img:
        assert img.n_frames == 3
    assert svg["mimeType"] == "image/svg+xml"
    assert svg["convertedName"].endswith(".svg")
    assert b"<svg" in base64.b64decode(svg["convertedBuffer"])


@pytest.mark.asyncio
async def test_unsupported_type_rejected(test_client, counters, upload_dir):
    response = await test_client.post("/convert", files=[part("pic.bmp", b"BM" + b"\x00" * 64, "image/bmp")])
    assert response.status_code == 400
    assert "image/bmp" in response.json()["error"]
    assert counters.read_totals() == UsageTotals(None, None)
    assert list(upload_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_one_bad_type_rejects_whole_batch(test_client, counters, png_bytes):
    response = await test_client.post(
        "/convert",
        files=[part("ok.png", png_bytes, "image/png"), part("doc.pdf", b"%PDF", "application/pdf")],
    )
    assert response.status_code == 400
    assert response.json() == {"error": "Unsupported file types: application/pdf"}
    assert counters.read_totals().total_requests is None


@pytest.mark.asyncio
async def test_no_files(test_client):
    response = await test_client.post("/convert", data={"other": "field"})
    assert response.status_code == 400
    assert response.json() == {"error": "No files uploaded"}


@pytest.mark.asyncio
async def test_too_many_files(test_client, upload_dir):
    files = [part(f"{i}.png", b"x", "image/png") for i in range(11)]
    response = await test_client.post("/convert", files=files)
    assert response.status_code == 400
    assert "max 10" in response.json()["error"]
    assert list(upload_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_corrupt_jpeg_fails_batch_and_cleans_up(test_client, counters, upload_dir, truncated_jpeg_bytes, png_bytes):
    response = await test_client.post(
        "/convert",
        files=[part("broken.jpg", truncated_jpeg_bytes, "image/jpeg"), part("fine.png", png_bytes, "image/png")],
    )
    assert response.status_code == 500
    assert "broken.jpg" in response.json()["error"]
    assert list(upload_dir.iterdir()) == []
    assert counters.read_totals().total_files is None


@pytest.mark.asyncio
async def test_counter_failure_does_not_fail_conversion(test_client, png_bytes):
    app.dependency_overrides[get_usage_counters] = lambda: UsageCounters(FailingStore())
    response = await test_client.post("/convert", files=[part("a.png", png_bytes, "image/png")])
    assert response.status_code == 200
    assert len(response.json()["files"]) == 1


@pytest.mark.asyncio
async def test_logs_null_when_store_unavailable(test_client):
    app.dependency_overrides[get_usage_counters] = lambda: UsageCounters(FailingStore())
    response = await test_client.get("/logs")
    assert response.status_code == 200
    assert response.json() == {"totalRequests": None, "totalFilesTransformed": None}


@pytest.mark.asyncio
async def test_logs_report_totals(test_client, png_bytes):
    for _ in range(2):
        await test_client.post("/convert", files=[part("a.png", png_bytes, "image/png")] * 3)
    response = await test_client.get("/logs")
    assert response.json() == {"totalRequests": 2, "totalFilesTransformed": 6}


@pytest.mark.asyncio
async def test_very_long_extension_converts(test_client, upload_dir, png_bytes):
    name = "photo." + "a" * 300
    response = await test_client.post("/convert", files=[part(name, png_bytes, "image/png")])
    assert response.status_code == 200
    assert response.json()["files"][0]["originalName"] == name
    assert list(upload_dir.iterdir()) == []
