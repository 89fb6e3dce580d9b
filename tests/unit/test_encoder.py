import io

import pytest
from PIL import Image, features

from src.core.exceptions import DecodeError
from src.engines.imaging import encoder
from src.engines.imaging.encoder import (
    build_save_options,
    encode_image,
    map_compression_to_quality,
    select_output_format,
)
from src.engines.imaging.schemas import (
    BackgroundSettings,
    CompressionSettings,
    FitPolicy,
    ImageBlob,
    OutputFormat,
    ResizePlan,
)

MEDIUM = CompressionSettings(level="medium")
NO_BACKGROUND = BackgroundSettings()


@pytest.mark.parametrize("level, quality", [
    ("low", 40),
    ("medium", 70),
    ("high", 90),
    ("ultra", 70),
    ("", 70),
    (None, 70),
])
def test_compression_level_mapping(level, quality):
    assert map_compression_to_quality(level) == quality


@pytest.mark.parametrize("fmt, pil_format", [
    (OutputFormat.JPG, "JPEG"),
    (OutputFormat.WEBP, "WEBP"),
    (OutputFormat.AVIF, "AVIF"),
])
@pytest.mark.parametrize("quality", [40, 70, 90])
def test_lossy_formats_carry_quality(fmt, pil_format, quality):
    name, options = build_save_options(fmt, quality)

    assert name == pil_format
    assert options["quality"] == quality


def test_png_is_lossless_at_max_compression():
    name, options = build_save_options(OutputFormat.PNG, 40)

    assert name == "PNG"
    assert "quality" not in options
    assert options["compress_level"] == 9


@pytest.mark.parametrize("requested, source, expected", [
    ("jpg", None, OutputFormat.JPG),
    ("png", "JPEG", OutputFormat.PNG),
    ("original", "PNG", OutputFormat.JPG),
    ("bmp", "PNG", OutputFormat.JPG),
    (OutputFormat.WEBP, None, OutputFormat.WEBP),
])
def test_format_selection_falls_back_to_jpeg(requested, source, expected):
    assert select_output_format(requested, source, preserve_original=False) == expected


def test_original_can_preserve_source_codec():
    assert select_output_format("original", "PNG", preserve_original=True) == OutputFormat.PNG
    assert select_output_format("original", "GIF", preserve_original=True) == OutputFormat.JPG


def test_every_output_format_is_encodable():
    for fmt in OutputFormat:
        assert select_output_format(fmt, None, preserve_original=False) in encoder.ENCODER_PROFILES


@pytest.mark.parametrize("fmt", ["jpg", "png", "webp", "original"])
@pytest.mark.parametrize("level, quality", [("low", 40), ("medium", 70), ("high", 90), ("weird", 70)])
def test_quality_reaches_the_encoder(make_blob, monkeypatch, fmt, level, quality):
    calls = []
    original_save = Image.Image.save

    def spy_save(self, fp, format=None, **params):
        calls.append((format, params))
        return original_save(self, fp, format=format, **params)

    monkeypatch.setattr(Image.Image, "save", spy_save)

    encode_image(make_blob(), None, fmt, CompressionSettings(level=level), NO_BACKGROUND)

    pil_format, params = calls[-1]
    if fmt == "png":
        assert pil_format == "PNG"
        assert "quality" not in params
    else:
        assert pil_format in ("JPEG", "WEBP")
        assert params["quality"] == quality


def test_jpeg_output_flattens_alpha_onto_white(make_blob, decode):
    blob = make_blob(color=(0, 0, 0, 0), mode="RGBA")

    data = encode_image(blob, None, "jpg", MEDIUM, NO_BACKGROUND)

    image = decode(data)
    assert image.format == "JPEG"
    assert image.mode == "RGB"
    r, g, b = image.getpixel((5, 5))
    assert min(r, g, b) > 245


def test_png_output_keeps_alpha(make_blob, decode):
    blob = make_blob(color=(10, 20, 30, 0), mode="RGBA")

    data = encode_image(blob, None, "png", MEDIUM, NO_BACKGROUND)

    image = decode(data)
    assert image.format == "PNG"
    assert image.mode == "RGBA"
    assert image.getpixel((0, 0))[3] == 0


def test_webp_output(make_blob, decode):
    data = encode_image(make_blob(), None, "webp", MEDIUM, NO_BACKGROUND)

    assert decode(data).format == "WEBP"


@pytest.mark.skipif(not features.check("avif"), reason="Pillow built without AVIF support")
def test_avif_output(make_blob, decode):
    data = encode_image(make_blob(), None, "avif", MEDIUM, NO_BACKGROUND)

    assert decode(data).format == "AVIF"


def test_original_format_re_encodes_as_jpeg(make_blob, decode, monkeypatch):
    monkeypatch.setattr(encoder.app_settings, "PRESERVE_ORIGINAL_FORMAT", False)

    data = encode_image(make_blob(fmt="PNG"), None, "original", MEDIUM, NO_BACKGROUND)

    assert decode(data).format == "JPEG"


def test_resize_plan_is_applied(make_blob, decode):
    plan = ResizePlan(1000, 1000, FitPolicy.CONTAIN, background=(255, 255, 255, 255))

    data = encode_image(make_blob(size=(400, 200)), plan, "png", MEDIUM, NO_BACKGROUND)

    assert decode(data).size == (1000, 1000)


def test_exif_orientation_is_applied_before_resize(decode):
    exif = Image.Exif()
    exif[0x0112] = 6  # rotate 90 CW on display
    buffer = io.BytesIO()
    Image.new("RGB", (40, 20), (90, 90, 90)).save(buffer, format="JPEG", exif=exif)
    blob = ImageBlob(data=buffer.getvalue(), filename="rotated.jpg", mime_type="image/jpeg")

    data = encode_image(blob, None, "png", MEDIUM, NO_BACKGROUND)

    assert decode(data).size == (20, 40)


def test_solid_background_flattens_resize_padding(make_blob, decode):
    background = BackgroundSettings(enabled=True, mode="solid", color="#00ff00")
    plan = ResizePlan(60, 60, FitPolicy.CONTAIN, background=(0, 0, 0, 0))
    blob = make_blob(color=(0, 0, 0, 0), mode="RGBA", size=(60, 30))

    data = encode_image(blob, plan, "png", MEDIUM, background)

    image = decode(data)
    assert image.mode == "RGB"
    assert image.getpixel((30, 2)) == (0, 255, 0)
    assert image.getpixel((30, 30)) == (0, 255, 0)


def test_garbage_input_raises_decode_error(broken_blob):
    with pytest.raises(DecodeError) as exc_info:
        encode_image(broken_blob, None, "jpg", MEDIUM, NO_BACKGROUND)

    assert exc_info.value.details["filename"] == "broken.jpg"
    assert exc_info.value.stage == "decode"
