"""Image decoding and padded face crops for indexing."""
from typing import Optional, Tuple

import cv2
import numpy as np

from src.models.enums import AnalysisErrorCode
from src.services.analysis.errors import AnalysisError
from src.services.face.face_index import BoundingBox


DEFAULT_FACE_PADDING = 0.4  # of box width/height, on each side
DEFAULT_MIN_CROP_PIXELS = 20
JPEG_QUALITY = 85


def decode_image(image_bytes: bytes) -> np.ndarray:
    """Decode image bytes to a BGR array; undecodable input is an IMAGE_ERROR."""
    if not image_bytes:
        raise AnalysisError("Empty image payload", AnalysisErrorCode.IMAGE_ERROR)

    nparr = np.frombuffer(image_bytes, np.uint8)
    image = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
    if image is None:
        raise AnalysisError("Failed to decode image", AnalysisErrorCode.IMAGE_ERROR)
    return image


def padded_crop_rect(
    box: BoundingBox,
    image_width: int,
    image_height: int,
    padding: float = DEFAULT_FACE_PADDING,
) -> Tuple[int, int, int, int]:
    """
    Pixel rectangle (left, top, right, bottom) for a normalized box grown by
    ``padding`` of its size on every side, clamped to the image.
    """
    pad_w = box.width * padding
    pad_h = box.height * padding

    left = max(0, int(round((box.x - pad_w) * image_width)))
    top = max(0, int(round((box.y - pad_h) * image_height)))
    right = min(image_width, int(round((box.x + box.width + pad_w) * image_width)))
    bottom = min(image_height, int(round((box.y + box.height + pad_h) * image_height)))

    return left, top, right, bottom


def crop_face(
    image: np.ndarray,
    box: BoundingBox,
    padding: float = DEFAULT_FACE_PADDING,
    min_pixels: int = DEFAULT_MIN_CROP_PIXELS,
) -> Optional[bytes]:
    """
    JPEG bytes of the padded face region, or None when the crop is too small
    to be indexed.
    """
    height, width = image.shape[:2]
    left, top, right, bottom = padded_crop_rect(box, width, height, padding)

    if right - left < min_pixels or bottom - top < min_pixels:
        return None

    crop = image[top:bottom, left:right]
    success, buffer = cv2.imencode('.jpg', crop, [cv2.IMWRITE_JPEG_QUALITY, JPEG_QUALITY])
    if not success:
        return None
    return buffer.tobytes()
