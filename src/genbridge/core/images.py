"""
Image References - Data URL helpers backed by Pillow.

Results travel through the system as "image refs": either an http(s) URL
or a ``data:<mime>;base64,...`` URL. Pillow is only used to inspect and
normalize bytes; encoding/decoding of the formats is left to it.
"""

from __future__ import annotations

import base64
import binascii
import mimetypes
from io import BytesIO
from pathlib import Path

from PIL import Image, UnidentifiedImageError


DATA_URL_PREFIX = "data:"


def is_data_url(ref: str) -> bool:
    return ref.startswith(DATA_URL_PREFIX)


def is_remote_url(ref: str) -> bool:
    return ref.startswith("http://") or ref.startswith("https://")


def encode_data_url(data: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode()}"


def split_data_url(ref: str) -> tuple[str, str]:
    """
    Split a data URL into ``(mime_type, base64_payload)``.

    A bare base64 string (no ``data:`` header) is accepted and assumed PNG.
    """
    if not is_data_url(ref):
        return "image/png", ref
    header, _, payload = ref.partition(",")
    mime_type = header[len(DATA_URL_PREFIX):].split(";")[0] or "image/png"
    return mime_type, payload


def decode_data_url(ref: str) -> tuple[str, bytes]:
    """
    Decode a data URL (or bare base64) into ``(mime_type, raw_bytes)``.

    Raises:
        ValueError: If the payload is not valid base64
    """
    mime_type, payload = split_data_url(ref)
    try:
        return mime_type, base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 image data: {e}") from e


def mime_to_extension(mime_type: str) -> str:
    ext = mimetypes.guess_extension(mime_type) or ".png"
    return ".jpg" if ext in (".jpe", ".jpeg") else ext


def image_size(data: bytes) -> tuple[int, int]:
    """Pixel size of encoded image bytes."""
    try:
        with Image.open(BytesIO(data)) as img:
            return img.size
    except UnidentifiedImageError as e:
        raise ValueError("Unrecognized image data") from e


def to_png_data_url(data: bytes) -> str:
    """Re-encode arbitrary image bytes as a PNG data URL."""
    try:
        with Image.open(BytesIO(data)) as img:
            if img.mode not in ("RGB", "RGBA", "L", "LA"):
                img = img.convert("RGBA")
            buf = BytesIO()
            img.save(buf, format="PNG")
    except UnidentifiedImageError as e:
        raise ValueError("Unrecognized image data") from e
    return encode_data_url(buf.getvalue(), "image/png")


def blob_to_data_url(data: bytes, mime_type: str) -> str:
    """Data URL for an output blob; non-image payloads are rejected."""
    if not mime_type.startswith("image/"):
        raise ValueError(f"Not an image output: {mime_type}")
    if mime_type == "image/png":
        return encode_data_url(data, mime_type)
    return to_png_data_url(data)


def load_image_file(path: str | Path) -> str:
    """Read an image file from disk into a data URL, keeping its format."""
    path = Path(path)
    data = path.read_bytes()
    with Image.open(BytesIO(data)) as img:
        fmt = (img.format or "PNG").lower()
    mime_type = Image.MIME.get(fmt.upper(), f"image/{fmt}")
    return encode_data_url(data, mime_type)
