"""Remote image download and resizing.

:class:`ImageFetcher` downloads an image with a hard byte cap, then shrinks
it to fit inside a bounding box (never enlarging).  Every failure (size,
network, decoding) is logged and reported as ``None`` so that a missing
image can never break a render.
"""

from __future__ import annotations

import io
import logging
from typing import Optional

import requests
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 2 * 1024 * 1024
MAX_IMAGE_BOX = (800, 600)

_CHUNK_SIZE = 64 * 1024

# Formats python-docx can embed; anything else is re-encoded as PNG.
_EMBEDDABLE_FORMATS = ("PNG", "JPEG", "GIF", "BMP")


class ImageFetcher:
    """Fetch-and-resize collaborator used by the content renderer.

    Parameters
    ----------
    max_bytes:
        Largest accepted download, in bytes.
    max_size:
        ``(width, height)`` box, in pixels, the image is fitted into.
    timeout:
        Connect/read timeout in seconds for the HTTP request.
    session:
        Optional :class:`requests.Session` (for connection reuse or tests).
    """

    def __init__(
        self,
        max_bytes: int = MAX_IMAGE_BYTES,
        max_size: tuple[int, int] = MAX_IMAGE_BOX,
        timeout: float = 15,
        user_agent: str = "wordgen/1.0",
        session: Optional[requests.Session] = None,
    ) -> None:
        self._max_bytes = max_bytes
        self._max_size = max_size
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers["User-Agent"] = user_agent

    @classmethod
    def from_settings(cls, images: dict) -> ImageFetcher:
        return cls(
            max_bytes=int(images.get("max_bytes", MAX_IMAGE_BYTES)),
            max_size=(
                int(images.get("max_width", MAX_IMAGE_BOX[0])),
                int(images.get("max_height", MAX_IMAGE_BOX[1])),
            ),
            timeout=float(images.get("timeout", 15)),
            user_agent=str(images.get("user_agent", "wordgen/1.0")),
        )

    def fetch_and_resize(self, url: str) -> Optional[bytes]:
        """Return the resized image bytes for *url*, or ``None`` on failure."""
        try:
            data = self._download(url)
        except requests.RequestException as exc:
            logger.error("Error fetching image %s: %s", url, exc)
            return None

        if data is None:
            logger.warning(
                "Image %s exceeds %d byte limit, skipping", url, self._max_bytes
            )
            return None

        try:
            return self.resize(data)
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            logger.error("Error processing image %s: %s", url, exc)
            return None

    def _download(self, url: str) -> Optional[bytes]:
        """Download *url*; ``None`` if it is larger than the byte cap."""
        with self._session.get(url, stream=True, timeout=self._timeout) as response:
            response.raise_for_status()

            declared = response.headers.get("Content-Length")
            if declared and declared.isdigit() and int(declared) > self._max_bytes:
                return None

            buffer = bytearray()
            for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                buffer.extend(chunk)
                if len(buffer) > self._max_bytes:
                    return None
            return bytes(buffer)

    def resize(self, data: bytes) -> bytes:
        """Shrink *data* to fit the bounding box, keeping the aspect ratio."""
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format if img.format in _EMBEDDABLE_FORMATS else "PNG"
            img.thumbnail(self._max_size)
            if fmt == "JPEG" and img.mode not in ("RGB", "L", "CMYK"):
                img = img.convert("RGB")
            elif fmt != "JPEG" and img.mode == "CMYK":
                img = img.convert("RGB")
            out = io.BytesIO()
            img.save(out, format=fmt)
        logger.debug("Resized image to fit %dx%d (%s)", *self._max_size, fmt)
        return out.getvalue()
