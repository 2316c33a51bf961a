"""Image decoding and model input preparation.

Decoding goes through Pillow (format detection, EXIF orientation, RGB
conversion). Resizing and color conversion for model inputs use OpenCV.
"""

from __future__ import annotations

import base64
import binascii
import io
from typing import TYPE_CHECKING

import cv2
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from facepulse.ml.face_detector import FaceBox


class ImageDecodeError(ValueError):
    """The payload is not a decodable image or exceeds the configured limits."""


def decode_base64(data: str, max_bytes: int) -> bytes:
    """Decode a base64 string (no data-URI prefix) into raw bytes.

    Raises:
        ImageDecodeError: If the string is not valid base64 or decodes to
            more than ``max_bytes`` bytes.
    """
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ImageDecodeError("Image is not valid base64") from exc
    if not raw:
        raise ImageDecodeError("Image is empty")
    if len(raw) > max_bytes:
        raise ImageDecodeError(f"Image exceeds {max_bytes} bytes")
    return raw


def decode_image(image_bytes: bytes, max_pixels: int) -> NDArray[np.uint8]:
    """Decode raw image bytes into an HxWx3 RGB uint8 array.

    Raises:
        ImageDecodeError: If the bytes cannot be decoded or the image has
            more than ``max_pixels`` pixels.
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            if img.width * img.height > max_pixels:
                raise ImageDecodeError(f"Image exceeds {max_pixels} pixels")
            img.load()
            rgb = ImageOps.exif_transpose(img).convert("RGB")
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise ImageDecodeError("Image could not be decoded") from exc
    return np.asarray(rgb, dtype=np.uint8)


def to_input_tensor(
    image: NDArray[np.uint8],
    size: tuple[int, int],
    mean: float = 127.0,
    scale: float = 1.0 / 128.0,
) -> NDArray[np.float32]:
    """Resize an RGB image to ``size`` (width, height) and return a 1x3xHxW tensor."""
    resized = cv2.resize(image, size, interpolation=cv2.INTER_LINEAR)
    tensor = (resized.astype(np.float32) - mean) * scale
    return np.ascontiguousarray(tensor.transpose(2, 0, 1)[np.newaxis, ...])


def square_crop_region(box: FaceBox, image_size: tuple[int, int], margin: float = 0.1) -> tuple[int, int, int, int]:
    """Return an (x0, y0, x1, y1) square region around ``box`` clipped to the image."""
    width, height = image_size
    side = max(box.width, box.height) * (1.0 + 2.0 * margin)
    cx = box.x + box.width / 2.0
    cy = box.y + box.height / 2.0
    x0 = int(min(max(0.0, round(cx - side / 2.0)), width - 1))
    y0 = int(min(max(0.0, round(cy - side / 2.0)), height - 1))
    x1 = int(min(float(width), round(cx + side / 2.0)))
    y1 = int(min(float(height), round(cy + side / 2.0)))
    return x0, y0, max(x1, x0 + 1), max(y1, y0 + 1)


def crop(image: NDArray[np.uint8], region: tuple[int, int, int, int]) -> NDArray[np.uint8]:
    x0, y0, x1, y1 = region
    return image[y0:y1, x0:x1]


def to_grayscale(image: NDArray[np.uint8]) -> NDArray[np.uint8]:
    return cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
