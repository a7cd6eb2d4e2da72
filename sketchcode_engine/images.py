"""Reference image helpers: files and data URLs."""

from __future__ import annotations

import base64
import binascii
import io
import mimetypes
from pathlib import Path

from PIL import Image, UnidentifiedImageError


def is_data_url(value: str) -> bool:
    return isinstance(value, str) and value.startswith("data:") and "," in value


def encode_data_url(data: bytes, mime: str = "image/png") -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime};base64,{encoded}"


def decode_data_url(value: str) -> tuple[bytes, str]:
    if not is_data_url(value):
        raise ValueError("Not a data URL.")
    header, payload = value.split(",", 1)
    mime = header[5:].split(";", 1)[0] or "application/octet-stream"
    if ";base64" not in header:
        raise ValueError("Only base64 data URLs are supported.")
    try:
        return base64.b64decode(payload, validate=True), mime
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Invalid base64 payload: {exc}") from exc


def image_size(data: bytes) -> tuple[int, int]:
    try:
        with Image.open(io.BytesIO(data)) as image:
            return image.size
    except UnidentifiedImageError as exc:
        raise ValueError("Unrecognized image data.") from exc


def load_image_data_url(source: str | Path) -> str:
    """Return ``source`` as a validated image data URL.

    ``source`` may already be a data URL or a path to an image file.
    """
    if isinstance(source, str) and is_data_url(source):
        data, _ = decode_data_url(source)
        image_size(data)
        return source
    path = Path(source)
    if not path.exists():
        raise FileNotFoundError(f"Image not found: {path}")
    data = path.read_bytes()
    image_size(data)
    mime, _ = mimetypes.guess_type(str(path))
    return encode_data_url(data, mime or "image/png")


def data_url_size(value: str) -> tuple[int, int] | None:
    try:
        data, _ = decode_data_url(value)
        return image_size(data)
    except ValueError:
        return None
