"""
    Thumbnail generation.

    Pure functions over bytes: nothing here touches a store or the network.
    ``decode`` sniffs and loads the source image under a pixel cap,
    ``render`` turns a decoded image into thumbnail bytes, and ``generate``
    does both.
"""
from dataclasses import dataclass
from io import BytesIO
from typing import Iterable, Optional, Tuple
import warnings

from PIL import Image, UnidentifiedImageError

from thumbnail_server.exceptions import DecodeException, DecodeErrorReason, ImageTooLargeException
from thumbnail_server.settings import settings

MIME_MAP = {
    "JPEG": "image/jpeg",
    # JPEGs carrying a multi-picture extension (most phone cameras)
    "MPO": "image/jpeg",
    "PNG": "image/png",
    "GIF": "image/gif",
    "WEBP": "image/webp",
    "BMP": "image/bmp",
    "TIFF": "image/tiff",
}

@dataclass(frozen=True)
class Thumbnail:
    data: bytes
    content_type: str
    width: int
    height: int
    source_content_type: str
    source_width: int
    source_height: int

def thumbnail_size(width: int, height: int, max_edge: int) -> Tuple[int, int]:
    """Scales ``(width, height)`` so the longest edge is at most ``max_edge``."""
    longest = max(width, height)
    if longest <= max_edge:
        return width, height
    # integer round-half-up keeps results identical across platforms
    new_w = max(1, (width * max_edge * 2 + longest) // (2 * longest))
    new_h = max(1, (height * max_edge * 2 + longest) // (2 * longest))
    return new_w, new_h

def decode(
    data: bytes,
    formats: Optional[Iterable[str]] = None,
    max_pixels: Optional[int] = None,
) -> Image.Image:
    """
        Opens and fully loads ``data``.

        Only ``formats`` are tried. The pixel cap is checked against the
        header before any pixel data is decoded.
    """
    formats = [f.upper() for f in (formats or settings.supported_formats)]
    max_pixels = max_pixels or settings.max_image_pixels

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", Image.DecompressionBombWarning)
            img = Image.open(BytesIO(data), formats=formats)
    except Image.DecompressionBombError as e:
        raise ImageTooLargeException(f"Image exceeds pixel limit: {e}")
    except UnidentifiedImageError:
        raise DecodeException("Unsupported or unrecognised image format", reason=DecodeErrorReason.UNSUPPORTED)
    except (OSError, SyntaxError, ValueError, EOFError) as e:
        raise DecodeException(f"Invalid image file: {e}")

    if img.format not in MIME_MAP:
        img.close()
        raise DecodeException(f"Unsupported image type: {img.format}", reason=DecodeErrorReason.UNSUPPORTED)

    width, height = img.size
    if width <= 0 or height <= 0:
        img.close()
        raise DecodeException("Image has no pixels")
    if width * height > max_pixels:
        img.close()
        raise ImageTooLargeException(
            f"Image is {width}x{height} ({width * height} pixels), limit is {max_pixels}"
        )

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", Image.DecompressionBombWarning)
            img.load()
    except Image.DecompressionBombError as e:
        img.close()
        raise ImageTooLargeException(f"Image exceeds pixel limit: {e}")
    except (OSError, SyntaxError, ValueError, EOFError) as e:
        img.close()
        raise DecodeException(f"Invalid image file: {e}")
    return img

def _normalize_mode(img: Image.Image, output_format: str) -> Image.Image:
    if output_format == "JPEG":
        return img if img.mode in ("RGB", "L") else img.convert("RGB")
    if img.mode in ("RGB", "RGBA", "L", "LA"):
        return img
    has_alpha = img.mode in ("PA", "RGBa", "La") or "transparency" in img.info
    return img.convert("RGBA" if has_alpha else "RGB")

def render(
    img: Image.Image,
    max_edge: Optional[int] = None,
    output_format: Optional[str] = None,
) -> Thumbnail:
    """Resizes a decoded image with Lanczos resampling and encodes it."""
    max_edge = max_edge or settings.thumbnail_max_edge
    output_format = (output_format or settings.thumbnail_format).upper()
    source_width, source_height = img.size
    size = thumbnail_size(source_width, source_height, max_edge)

    try:
        frame = _normalize_mode(img, output_format)
        if size != frame.size:
            frame = frame.resize(size, resample=Image.Resampling.LANCZOS)
        buf = BytesIO()
        save_kwargs = {"quality": 85} if output_format == "JPEG" else {}
        frame.save(buf, format=output_format, **save_kwargs)
    except (OSError, ValueError, KeyError) as e:
        raise DecodeException(f"Could not render thumbnail: {e}")

    return Thumbnail(
        data=buf.getvalue(),
        content_type=MIME_MAP.get(output_format, "application/octet-stream"),
        width=size[0],
        height=size[1],
        source_content_type=MIME_MAP[img.format],
        source_width=source_width,
        source_height=source_height,
    )

def generate(
    original_bytes: bytes,
    max_edge: Optional[int] = None,
    max_pixels: Optional[int] = None,
    output_format: Optional[str] = None,
    formats: Optional[Iterable[str]] = None,
) -> Thumbnail:
    """
        Decodes ``original_bytes`` and returns a bounded-size thumbnail.

        Raises DecodeException for unsupported or corrupt data and
        ImageTooLargeException when the source exceeds ``max_pixels``.
        Output is deterministic for identical input.
    """
    img = decode(original_bytes, formats=formats, max_pixels=max_pixels)
    try:
        return render(img, max_edge=max_edge, output_format=output_format)
    finally:
        img.close()
