"""
Image preprocessing module for OCR submission.
Validates uploaded screenshots and normalizes them to the provider's limits.
"""
import base64
import binascii
import io
import logging
import re
from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from models.config import PreprocessConfig
from models.errors import InvalidImageError, UnsupportedFormatError


# Formats Pillow may decode for us, and the subset the provider accepts as-is
DECODABLE_FORMATS = {"JPEG", "PNG", "BMP", "GIF", "TIFF", "WEBP", "MPO"}
PROVIDER_FORMATS = {"JPEG": "image/jpeg", "PNG": "image/png", "BMP": "image/bmp", "TIFF": "image/tiff"}

_DATA_URL_RE = re.compile(r"^data:image/[a-zA-Z0-9.+-]+;base64,")


@dataclass
class PreparedImage:
    """A provider-compliant image plus the decoded pixels used for colour sampling."""
    data: bytes
    content_type: str
    width: int
    height: int
    # Ratio new_size / original_size applied during normalization
    scale: float
    pixels: np.ndarray
    original_format: str = ""

    @property
    def resized(self) -> bool:
        return self.scale != 1.0


def decode_base64_image(payload: str) -> bytes:
    """
    Decode a base64 image, optionally wrapped in a ``data:image/...;base64,`` URL.

    Raises:
        InvalidImageError: If the payload is empty or not valid base64
    """
    if not payload:
        raise InvalidImageError("No image data provided")
    clean = _DATA_URL_RE.sub("", payload.strip())
    clean = re.sub(r"\s+", "", clean)
    try:
        return base64.b64decode(clean, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidImageError("Invalid base64 image data", original_error=e)


class ImagePreprocessor:
    """
    Validates raw image bytes and rescales them into the provider's accepted bounds.
    """

    def __init__(self, config: Optional[PreprocessConfig] = None):
        self.config = config or PreprocessConfig()
        self.logger = logging.getLogger(__name__)
        cv2.setUseOptimized(True)

    def prepare(self, data: bytes, content_type: Optional[str] = None, logger=None) -> PreparedImage:
        """
        Validate and normalize an uploaded image.

        Args:
            data: Raw image bytes
            content_type: Declared MIME type, if any
            logger: Optional request-scoped logger

        Returns:
            PreparedImage: Bytes to submit plus RGB pixels in the same coordinate space

        Raises:
            InvalidImageError: Empty, truncated, corrupt, too large, or impossible to fit
            UnsupportedFormatError: Non-image MIME type or an image format we cannot read
        """
        log = logger or self.logger
        self._check_declared_type(content_type)
        self._check_byte_size(data)

        image, fmt = self._decode(data)
        width, height = image.size
        log.debug(f"Decoded {fmt} image {width}x{height} ({len(data)} bytes)")

        rgb = self._to_rgb(image)
        pixels = np.asarray(rgb, dtype=np.uint8)

        target = self.compute_target_size(width, height)
        if target != (width, height):
            new_w, new_h = target
            log.info(f"Resizing image {width}x{height} -> {new_w}x{new_h} to satisfy provider limits")
            pixels = self._resize(pixels, new_w, new_h)
            payload = self._encode_jpeg(pixels)
            return PreparedImage(
                data=payload,
                content_type="image/jpeg",
                width=new_w,
                height=new_h,
                scale=new_w / float(width),
                pixels=pixels,
                original_format=fmt,
            )

        if fmt not in PROVIDER_FORMATS:
            log.info(f"Re-encoding {fmt} image as JPEG for the provider")
            return PreparedImage(
                data=self._encode_jpeg(pixels),
                content_type="image/jpeg",
                width=width,
                height=height,
                scale=1.0,
                pixels=pixels,
                original_format=fmt,
            )

        return PreparedImage(
            data=data,
            content_type=PROVIDER_FORMATS[fmt],
            width=width,
            height=height,
            scale=1.0,
            pixels=pixels,
            original_format=fmt,
        )

    def _check_declared_type(self, content_type: Optional[str]) -> None:
        if not content_type:
            return
        mime = content_type.split(";", 1)[0].strip().lower()
        if mime.startswith("image/") or mime in ("application/octet-stream", ""):
            return
        raise UnsupportedFormatError(f"Unsupported content type: {mime}")

    def _check_byte_size(self, data: bytes) -> None:
        size = len(data or b"")
        if size < self.config.min_bytes:
            raise InvalidImageError(f"Image data too small to process ({size} bytes)")
        if size > self.config.max_bytes:
            raise InvalidImageError(f"Image too large for the OCR provider ({size} bytes > {self.config.max_bytes})")

    def _decode(self, data: bytes) -> Tuple[Image.Image, str]:
        try:
            image = Image.open(io.BytesIO(data))
            fmt = (image.format or "").upper()
            image.load()
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError, Image.DecompressionBombError) as e:
            raise InvalidImageError("Corrupt or unreadable image data", original_error=e)
        if fmt not in DECODABLE_FORMATS:
            raise UnsupportedFormatError(f"Unsupported image format: {fmt or 'unknown'}")
        if fmt == "MPO":
            fmt = "JPEG"
        if image.width <= 0 or image.height <= 0:
            raise InvalidImageError("Image has no pixels")
        return image, fmt

    @staticmethod
    def _to_rgb(image: Image.Image) -> Image.Image:
        """Convert to RGB, flattening transparency onto white."""
        if image.mode == "RGB":
            return image
        if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
            rgba = image.convert("RGBA")
            background = Image.new("RGB", rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.split()[3])
            return background
        return image.convert("RGB")

    def compute_target_size(self, width: int, height: int) -> Tuple[int, int]:
        """
        Return the nearest compliant size, preserving aspect ratio.

        Raises:
            InvalidImageError: If no size satisfies both bounds (extreme aspect ratio)
        """
        lo, hi = self.config.min_side, self.config.max_side
        new_w, new_h = float(width), float(height)

        if new_w < lo or new_h < lo:
            scale = max(lo / new_w, lo / new_h)
            new_w, new_h = new_w * scale, new_h * scale
        if new_w > hi or new_h > hi:
            scale = min(hi / new_w, hi / new_h)
            new_w, new_h = new_w * scale, new_h * scale

        target = (int(round(new_w)), int(round(new_h)))
        if min(target) < lo or max(target) > hi:
            raise InvalidImageError(
                f"Image {width}x{height} cannot be rescaled into {lo}..{hi} pixels per side"
            )
        return target

    @staticmethod
    def _resize(pixels: np.ndarray, new_w: int, new_h: int) -> np.ndarray:
        h, w = pixels.shape[:2]
        interpolation = cv2.INTER_AREA if (new_w * new_h) < (w * h) else cv2.INTER_CUBIC
        return cv2.resize(pixels, (new_w, new_h), interpolation=interpolation)

    def _encode_jpeg(self, pixels: np.ndarray) -> bytes:
        bgr = cv2.cvtColor(pixels, cv2.COLOR_RGB2BGR)
        ok, buf = cv2.imencode(".jpg", bgr, [int(cv2.IMWRITE_JPEG_QUALITY), int(self.config.jpeg_quality)])
        if not ok:
            raise InvalidImageError("Failed to re-encode image")
        return buf.tobytes()
