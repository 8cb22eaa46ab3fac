"""Image cleanup for uploaded voter documents before extraction.

Phone photos of EPIC cards and forms are often tilted, unevenly lit and far
larger than the vision model needs. Steps, each falling back to its input:
1. Decode bytes (undecodable input is passed through untouched)
2. Deskew from the dominant text angle
3. CLAHE lighting normalization
4. Downscale so the long side fits MAX_LONG_SIDE, keeping aspect ratio
5. Encode as JPEG
"""

import logging

import cv2
import numpy as np

logger = logging.getLogger(__name__)

MAX_LONG_SIDE = 1600
MIN_SKEW_DEGREES = 1.0
MAX_SKEW_DEGREES = 30.0
JPEG_QUALITY = 90


def prepare_document_image(image_bytes: bytes, mime_type: str) -> tuple[bytes, str]:
    """Return (bytes, mime type) ready for the vision model."""
    img = _decode(image_bytes)
    if img is None:
        logger.warning("preprocessing: could not decode %s image, sending original", mime_type)
        return image_bytes, mime_type

    img = _deskew(img)
    img = _normalize_lighting(img)
    img = _downscale(img)

    encoded = _encode_jpeg(img)
    if encoded is None:
        return image_bytes, mime_type
    return encoded, "image/jpeg"


def _decode(image_bytes: bytes) -> np.ndarray | None:
    arr = np.frombuffer(image_bytes, dtype=np.uint8)
    if arr.size == 0:
        return None
    return cv2.imdecode(arr, cv2.IMREAD_COLOR)


def _skew_angle(gray: np.ndarray) -> float | None:
    """Angle of the minimum-area rectangle around dark (ink) pixels."""
    _, mask = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY_INV | cv2.THRESH_OTSU)
    ys, xs = np.where(mask > 0)
    coords = np.column_stack((xs, ys))
    if len(coords) < 50:
        return None

    angle = cv2.minAreaRect(coords.astype(np.float32))[-1]
    # Reported range differs across OpenCV versions; fold into [-45, 45]
    if angle > 45:
        angle -= 90
    elif angle < -45:
        angle += 90
    return float(angle)


def _deskew(img: np.ndarray) -> np.ndarray:
    try:
        angle = _skew_angle(cv2.cvtColor(img, cv2.COLOR_BGR2GRAY))
        if angle is None or not MIN_SKEW_DEGREES <= abs(angle) <= MAX_SKEW_DEGREES:
            return img

        logger.debug("preprocessing: deskewing by %.1f degrees", angle)
        h, w = img.shape[:2]
        matrix = cv2.getRotationMatrix2D((w / 2, h / 2), angle, 1.0)
        return cv2.warpAffine(img, matrix, (w, h), flags=cv2.INTER_CUBIC, borderMode=cv2.BORDER_REPLICATE)
    except cv2.error as e:
        logger.warning("preprocessing: deskew failed: %s", e)
        return img


def _normalize_lighting(img: np.ndarray) -> np.ndarray:
    """CLAHE on the lightness channel only, so ink colors are preserved."""
    try:
        lab = cv2.cvtColor(img, cv2.COLOR_BGR2LAB)
        lightness, a, b = cv2.split(lab)
        lightness = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8)).apply(lightness)
        return cv2.cvtColor(cv2.merge([lightness, a, b]), cv2.COLOR_LAB2BGR)
    except cv2.error as e:
        logger.warning("preprocessing: lighting normalization failed: %s", e)
        return img


def _downscale(img: np.ndarray) -> np.ndarray:
    h, w = img.shape[:2]
    long_side = max(h, w)
    if long_side <= MAX_LONG_SIDE:
        return img

    scale = MAX_LONG_SIDE / long_side
    size = (max(1, round(w * scale)), max(1, round(h * scale)))
    try:
        return cv2.resize(img, size, interpolation=cv2.INTER_AREA)
    except cv2.error as e:
        logger.warning("preprocessing: downscale failed: %s", e)
        return img


def _encode_jpeg(img: np.ndarray) -> bytes | None:
    try:
        ok, buf = cv2.imencode(".jpg", img, [cv2.IMWRITE_JPEG_QUALITY, JPEG_QUALITY])
    except cv2.error as e:
        logger.warning("preprocessing: JPEG encode failed: %s", e)
        return None
    return buf.tobytes() if ok else None
