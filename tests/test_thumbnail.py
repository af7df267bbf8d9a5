import io
import pytest
from PIL import Image

from thumbnail_server.image_service import thumbnail
from thumbnail_server.exceptions import DecodeException, DecodeErrorReason, ImageTooLargeException
from conftest import make_image_bytes, make_gradient_png


# ------------------------------
# thumbnail_size
# ------------------------------

@pytest.mark.parametrize("size, expected", [
    ((4000, 3000), (200, 150)),
    ((3000, 4000), (150, 200)),
    ((200, 100), (200, 100)),
    ((50, 20), (50, 20)),
    ((10000, 1), (200, 1)),
    ((333, 1000), (67, 200)),
])
def test_thumbnail_size(size, expected):
    assert thumbnail.thumbnail_size(*size, max_edge=200) == expected


# ------------------------------
# generate
# ------------------------------

def test_generate_landscape_jpeg():
    data = make_image_bytes((4000, 3000), fmt="JPEG", color="orange")
    thumb = thumbnail.generate(data, max_edge=200, output_format="PNG")

    assert (thumb.width, thumb.height) == (200, 150)
    assert (thumb.source_width, thumb.source_height) == (4000, 3000)
    assert thumb.source_content_type == "image/jpeg"
    assert thumb.content_type == "image/png"

    img = Image.open(io.BytesIO(thumb.data))
    assert img.format == "PNG"
    assert img.size == (200, 150)


def test_generate_preserves_aspect_ratio():
    for size in [(640, 480), (479, 1201), (1024, 1024), (1500, 301)]:
        thumb = thumbnail.generate(make_image_bytes(size), max_edge=128)
        assert max(thumb.width, thumb.height) <= 128
        original_ratio = size[0] / size[1]
        thumb_ratio = thumb.width / thumb.height
        # one pixel of rounding on the short edge
        tolerance = original_ratio / min(thumb.width, thumb.height)
        assert abs(original_ratio - thumb_ratio) <= tolerance


def test_generate_does_not_upscale():
    thumb = thumbnail.generate(make_image_bytes((40, 30)), max_edge=200)
    assert (thumb.width, thumb.height) == (40, 30)


def test_generate_is_deterministic():
    data = make_gradient_png((900, 600))
    first = thumbnail.generate(data, max_edge=100)
    second = thumbnail.generate(data, max_edge=100)
    assert first.data == second.data


def test_generate_keeps_alpha_for_png_output():
    data = make_image_bytes((300, 300), mode="RGBA", color=(255, 0, 0, 128))
    thumb = thumbnail.generate(data, max_edge=100, output_format="PNG")
    assert Image.open(io.BytesIO(thumb.data)).mode == "RGBA"


def test_generate_jpeg_output_drops_alpha():
    data = make_image_bytes((300, 300), mode="RGBA", color=(0, 0, 255, 10))
    thumb = thumbnail.generate(data, max_edge=100, output_format="JPEG")
    assert thumb.content_type == "image/jpeg"
    assert Image.open(io.BytesIO(thumb.data)).mode == "RGB"


def test_generate_multi_picture_jpeg():
    # phone cameras embed an MP extension; Pillow reports these as MPO
    first = Image.new("RGB", (640, 480), color="navy")
    second = Image.new("RGB", (160, 120), color="white")
    buf = io.BytesIO()
    first.save(buf, format="MPO", save_all=True, append_images=[second])
    data = buf.getvalue()
    assert data[:2] == b"\xff\xd8"

    thumb = thumbnail.generate(data, max_edge=200)
    assert thumb.source_content_type == "image/jpeg"
    assert (thumb.source_width, thumb.source_height) == (640, 480)
    assert (thumb.width, thumb.height) == (200, 150)


def test_generate_palette_gif():
    data = make_image_bytes((400, 200), fmt="GIF", color="green")
    thumb = thumbnail.generate(data, max_edge=100)
    assert thumb.source_content_type == "image/gif"
    assert (thumb.width, thumb.height) == (100, 50)


# ------------------------------
# decode failures
# ------------------------------

def test_garbage_bytes_are_unsupported():
    with pytest.raises(DecodeException) as exc:
        thumbnail.generate(b"notanimage")
    assert exc.value.reason == DecodeErrorReason.UNSUPPORTED


def test_format_outside_allow_list_is_unsupported():
    data = make_image_bytes((20, 20), fmt="PPM")
    with pytest.raises(DecodeException) as exc:
        thumbnail.generate(data)
    assert exc.value.reason == DecodeErrorReason.UNSUPPORTED


def test_truncated_png_is_malformed():
    data = make_gradient_png()
    with pytest.raises(DecodeException) as exc:
        thumbnail.generate(data[: len(data) // 2])
    assert exc.value.reason == DecodeErrorReason.MALFORMED


def test_pixel_cap_rejects_large_image():
    data = make_image_bytes((100, 100))
    with pytest.raises(ImageTooLargeException) as exc:
        thumbnail.generate(data, max_pixels=5000)
    assert exc.value.reason == DecodeErrorReason.TOO_LARGE


def test_pixel_cap_checked_before_pixel_data():
    # truncated pixel data would be MALFORMED if it were decoded
    data = make_gradient_png()
    with pytest.raises(ImageTooLargeException):
        thumbnail.generate(data[: len(data) // 2], max_pixels=1000)
