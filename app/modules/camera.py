"""Still-image capture for the diagnosis flow.

Photos arrive from the client (camera or gallery upload). They are verified and
downscaled with Pillow to a JPEG no larger than `MAX_IMAGE_SIDE` on either side
before being handed to the inference collaborator.
"""
from __future__ import annotations

import asyncio
import io
import logging
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

from config import config
from .errors import CaptureUnavailable

logger = logging.getLogger(__name__)


class ImagePreparer:
    """Normalize arbitrary uploaded image bytes into an RGB JPEG.

    Args:
        max_side: Longest allowed edge in pixels; larger images are shrunk.
        background: Color used to flatten transparent images.
    """

    def __init__(self, max_side: Optional[int] = None, background: Tuple[int, int, int] = (255, 255, 255)):
        self.max_side = max_side or config.MAX_IMAGE_SIDE
        self.background = background

    def prepare(self, raw: bytes) -> bytes:
        """Return JPEG bytes for `raw`.

        Raises:
            ValueError: If the bytes cannot be opened as an image.
        """
        if not raw:
            raise ValueError("Empty image payload")
        try:
            src = Image.open(io.BytesIO(raw))
            src.load()
        except (UnidentifiedImageError, OSError) as exc:
            raise ValueError("Uploaded bytes are not a supported image format") from exc

        src = src.convert("RGBA")
        src.thumbnail((self.max_side, self.max_side), Image.LANCZOS)

        flattened = Image.new("RGB", src.size, self.background)
        flattened.paste(src, mask=src.split()[3])

        out_io = io.BytesIO()
        flattened.save(out_io, format="JPEG", quality=85)
        return out_io.getvalue()


class PhotoCapture:
    """Camera collaborator for one session: `feed` a still, `capture_still` returns it."""

    def __init__(self, preparer: Optional[ImagePreparer] = None):
        self.preparer = preparer or ImagePreparer()
        self._stills: "asyncio.Queue[bytes]" = asyncio.Queue(maxsize=1)

    def feed(self, raw: bytes) -> None:
        """Validate and queue a still. Raises ValueError for undecodable images."""
        prepared = self.preparer.prepare(raw)
        if self._stills.full():
            self._stills.get_nowait()
        self._stills.put_nowait(prepared)
        logger.info(f"Queued still image ({len(prepared)} bytes)")

    async def capture_still(self) -> bytes:
        if self._stills.empty():
            raise CaptureUnavailable("No camera frame available")
        return self._stills.get_nowait()
