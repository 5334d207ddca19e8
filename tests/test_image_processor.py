import io

import pytest
from PIL import Image

from payproof.input_handler import ImageNormalizer, VariantKind, pick_variant
from payproof.utils.exceptions import ImageError, ImageErrorKind
from payproof.utils.helpers import compute_content_hash

from conftest import make_png


def test_normalize_produces_all_variants():
    raw = make_png()
    variants = ImageNormalizer().normalize(raw, "image/png")

    assert [v.kind for v in variants] == [VariantKind.PRIMARY, VariantKind.HIGH_CONTRAST, VariantKind.THUMBNAIL]
    assert all(v.content_hash == compute_content_hash(raw) for v in variants)
    assert variants[1].to_pil().mode == "L"
    assert max(variants[2].width, variants[2].height) <= 320


def test_large_image_is_downscaled():
    raw = make_png(size=(4000, 1000))
    primary = ImageNormalizer(max_width=2048, max_height=2048).normalize(raw, "image/png")[0]
    assert primary.width == 2048
    assert primary.height == 512


def test_transparent_png_flattened_on_white():
    buffer = io.BytesIO()
    Image.new("RGBA", (50, 50), (0, 0, 0, 0)).save(buffer, format="PNG")
    primary = ImageNormalizer().normalize(buffer.getvalue(), "image/png")[0]
    image = primary.to_pil()
    assert image.mode == "RGB"
    assert image.getpixel((10, 10)) == (255, 255, 255)


def test_jpg_alias_is_accepted():
    buffer = io.BytesIO()
    Image.new("RGB", (40, 40), (200, 10, 10)).save(buffer, format="JPEG")
    variants = ImageNormalizer().normalize(buffer.getvalue(), "image/jpg")
    assert variants[0].kind == VariantKind.PRIMARY


def test_unsupported_mime_type():
    with pytest.raises(ImageError) as excinfo:
        ImageNormalizer().normalize(make_png(), "application/pdf")
    assert excinfo.value.kind == ImageErrorKind.UNSUPPORTED


def test_too_large_payload():
    with pytest.raises(ImageError) as excinfo:
        ImageNormalizer(max_bytes=100).normalize(make_png(), "image/png")
    assert excinfo.value.kind == ImageErrorKind.TOO_LARGE


@pytest.mark.parametrize("payload", [b"", b"definitely not an image"])
def test_corrupt_payload(payload):
    with pytest.raises(ImageError) as excinfo:
        ImageNormalizer().normalize(payload, "image/png")
    assert excinfo.value.kind == ImageErrorKind.CORRUPT


def test_optional_variants_can_be_disabled():
    variants = ImageNormalizer(high_contrast=False, thumbnail=False).normalize(make_png(), "image/png")
    assert [v.kind for v in variants] == [VariantKind.PRIMARY]
    # Falls back to the primary variant when the preferred one is missing
    assert pick_variant(variants, VariantKind.HIGH_CONTRAST).kind == VariantKind.PRIMARY
