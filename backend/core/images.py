"""Floor-plan image handling: binary normalisation, decoding and handles."""

import base64
import binascii
import io
import logging
import re
import xml.etree.ElementTree as ET
from typing import Any

from PIL import Image, UnidentifiedImageError

from core.errors import ImageDecodeError
from core.models import ImageDimensions

logger = logging.getLogger(__name__)

_SVG_LENGTH = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*(px)?\s*$")


def normalize_binary(downloaded: Any) -> bytes:
    """Coerce whatever the binary store returned into raw bytes.

    Handles raw bytes, buffers, file-like objects and base64 text
    (optionally as a ``data:`` URI).
    """
    match downloaded:
        case bytes():
            return downloaded
        case bytearray() | memoryview():
            return bytes(downloaded)
        case str():
            payload = downloaded.split(",", 1)[1] if downloaded.startswith("data:") else downloaded
            try:
                return base64.b64decode(payload, validate=True)
            except binascii.Error as exc:
                raise TypeError("Binary download returned text that is not base64") from exc
        case _ if hasattr(downloaded, "read"):
            return normalize_binary(downloaded.read())
    raise TypeError(f"Unsupported binary type returned from download: {type(downloaded).__name__}")


def _decode_raster(data: bytes) -> ImageDimensions:
    # Only the header is parsed; pixel data stays untouched.
    with Image.open(io.BytesIO(data)) as img:
        width, height = img.size
    return ImageDimensions(width=width, height=height)


def _svg_length(value: str | None) -> float | None:
    if value is None:
        return None
    match = _SVG_LENGTH.match(value)
    return float(match.group(1)) if match else None


def _decode_svg(data: bytes) -> ImageDimensions:
    root = ET.fromstring(data)
    if not root.tag.endswith("svg"):
        raise ValueError(f"Not an SVG document (root element {root.tag!r})")
    width = _svg_length(root.get("width"))
    height = _svg_length(root.get("height"))
    if width is None or height is None:
        view_box = (root.get("viewBox") or "").replace(",", " ").split()
        if len(view_box) != 4:
            raise ValueError("SVG has neither width/height nor a viewBox")
        width, height = float(view_box[2]), float(view_box[3])
    if width <= 0 or height <= 0:
        raise ValueError(f"SVG has non-positive size {width}x{height}")
    return ImageDimensions(width=round(width), height=round(height))


def read_dimensions(data: bytes) -> ImageDimensions:
    """Read pixel dimensions, trying the raster decoder before the SVG reader."""
    try:
        return _decode_raster(data)
    except (UnidentifiedImageError, OSError) as exc:
        logger.debug("Raster decode failed, trying SVG fallback: %s", exc)
    try:
        return _decode_svg(data)
    except (ET.ParseError, ValueError) as exc:
        raise ImageDecodeError("Failed to load image") from exc


def sniff_media_type(data: bytes) -> str:
    try:
        with Image.open(io.BytesIO(data)) as img:
            return Image.MIME.get(img.format or "", "application/octet-stream")
    except (UnidentifiedImageError, OSError):
        pass
    if b"<svg" in data[:1024]:
        return "image/svg+xml"
    return "application/octet-stream"


class ImageHandle:
    """A displayable reference to a level image (a ``data:`` URL).

    Must be released once the overlay that uses it is replaced.
    """

    def __init__(self, data: bytes) -> None:
        encoded = base64.b64encode(data).decode("ascii")
        self._url: str | None = f"data:{sniff_media_type(data)};base64,{encoded}"

    @property
    def url(self) -> str:
        if self._url is None:
            raise RuntimeError("Image handle has been released")
        return self._url

    @property
    def released(self) -> bool:
        return self._url is None

    def release(self) -> None:
        self._url = None
