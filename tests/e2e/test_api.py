import io
import json
import zipfile

import pytest

from src.api.v1.process import normalize_filename
from src.core.config import settings as app_settings

SETTINGS = json.dumps({
    "outputFormat": "png",
    "resize": {"usePreset": False, "preset": "none", "width": None, "height": None,
               "keepAspectRatio": True, "mode": "fit"},
    "compression": {"level": "medium"},
    "background": {"enabled": False, "mode": "none", "color": "#ffffff"},
    "fileNaming": {"suffix": "_out", "toLowercase": True, "replaceSpaces": True},
})


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_single_upload_returns_image(client, make_image):
    response = await client.post(
        "/api/v1/process",
        data={"settings": SETTINGS},
        files=[("files", ("Blue Mug.jpg", make_image(fmt="JPEG"), "image/jpeg"))],
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/octet-stream"
    assert response.headers["content-disposition"] == 'attachment; filename="blue-mug_out.png"'
    assert response.headers["x-skipped-count"] == "0"
    assert response.content.startswith(b"\x89PNG")


@pytest.mark.asyncio
async def test_multiple_uploads_return_zip(client, make_image):
    response = await client.post(
        "/api/v1/process",
        data={"settings": SETTINGS},
        files=[
            ("files", ("a.png", make_image(), "image/png")),
            ("files", ("b.webp", make_image(fmt="WEBP"), "image/webp")),
            ("files", ("c.png", b"garbage", "image/png")),
        ],
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    assert response.headers["content-disposition"] == 'attachment; filename="processed_images.zip"'
    assert response.headers["x-skipped-count"] == "1"
    with zipfile.ZipFile(io.BytesIO(response.content)) as archive:
        assert archive.namelist() == ["a_out.png", "b_out.png"]


@pytest.mark.asyncio
async def test_missing_settings_is_rejected(client, make_image):
    response = await client.post(
        "/api/v1/process",
        files=[("files", ("a.png", make_image(), "image/png"))],
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Missing settings"


@pytest.mark.asyncio
async def test_invalid_settings_are_rejected(client, make_image):
    response = await client.post(
        "/api/v1/process",
        data={"settings": json.dumps({"outputFormat": "gif"})},
        files=[("files", ("a.png", make_image(), "image/png"))],
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid settings"
    assert body["details"]["errors"]


@pytest.mark.asyncio
async def test_no_files_is_rejected(client):
    response = await client.post("/api/v1/process", data={"settings": SETTINGS})

    assert response.status_code == 400
    assert response.json()["error"] == "No files uploaded"


@pytest.mark.asyncio
async def test_unsupported_mime_type_is_rejected(client):
    response = await client.post(
        "/api/v1/process",
        data={"settings": SETTINGS},
        files=[("files", ("notes.txt", b"hello", "text/plain"))],
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Unsupported file type: text/plain"


@pytest.mark.asyncio
async def test_too_many_files_is_rejected(client, make_image, monkeypatch):
    monkeypatch.setattr(app_settings, "MAX_FILES", 1)

    response = await client.post(
        "/api/v1/process",
        data={"settings": SETTINGS},
        files=[
            ("files", ("a.png", make_image(), "image/png")),
            ("files", ("b.png", make_image(), "image/png")),
        ],
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Too many files. Maximum is 1."


@pytest.mark.asyncio
async def test_total_size_limit_is_enforced(client, make_image, monkeypatch):
    monkeypatch.setattr(app_settings, "MAX_TOTAL_BYTES", 16)

    response = await client.post(
        "/api/v1/process",
        data={"settings": SETTINGS},
        files=[("files", ("a.png", make_image(), "image/png"))],
    )

    assert response.status_code == 400
    assert response.json()["error"].startswith("Total size exceeds")


@pytest.mark.asyncio
async def test_metrics_endpoint(client, make_image):
    await client.post(
        "/api/v1/process",
        data={"settings": SETTINGS},
        files=[("files", ("a.png", make_image(), "image/png"))],
    )

    response = await client.get("/api/v1/metrics")

    assert response.status_code == 200
    assert "images_processed_total" in response.text
    assert "pipeline_latency_seconds" in response.text


@pytest.mark.parametrize("name, expected", [
    ("shoe.jpg", "shoe.jpg"),
    ("Prödukt Foto.jpg", "Pr_dukt Foto.jpg"),
    ('say "cheese"\\.png', "say _cheese__.png"),
    ("", "file"),
])
def test_normalize_filename(name, expected):
    assert normalize_filename(name) == expected


@pytest.mark.asyncio
async def test_capabilities_lists_formats_and_limits(client):
    response = await client.get("/api/v1/capabilities")

    assert response.status_code == 200
    body = response.json()
    assert body["output_formats"] == ["jpg", "png", "webp", "avif", "original"]
    assert body["encoders"]["jpg"] == "JPEG"
    assert body["presets"]["square"] == {"width": 1000, "height": 1000}
    assert body["compression_levels"] == {"low": 40, "medium": 70, "high": 90}
    assert body["limits"]["max_files"] == app_settings.MAX_FILES
    assert "image/heic" in body["supported_mime_types"]
    assert isinstance(body["codecs"]["avif"], bool)


@pytest.mark.asyncio
async def test_request_metrics_use_route_template(client):
    await client.get("/health")
    await client.get("/no/such/page")

    response = await client.get("/api/v1/metrics")

    assert 'endpoint="/health"' in response.text
    assert 'endpoint="unmatched"' in response.text
    assert "/no/such/page" not in response.text
