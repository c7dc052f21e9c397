"""
Image preparation for lab-report OCR.

Provides:
- Decoding uploaded image bytes
- Upscaling small phone photos and screenshots
- Deskewing, denoising, contrast enhancement and binarization
- A quick quality check for blurry or dark images
"""

import logging
from dataclasses import dataclass, field
from typing import List, Tuple

import numpy as np

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class PreparedImage:
    """Grayscale image ready for recognition."""
    image: np.ndarray
    original_shape: Tuple[int, int]
    deskew_angle: float = 0.0
    transformations: List[str] = field(default_factory=list)


@dataclass
class ImageQuality:
    """Rough legibility indicators."""
    sharpness: float
    mean_intensity: float
    is_blurry: bool
    is_dark: bool

    @property
    def acceptable(self) -> bool:
        return not (self.is_blurry or self.is_dark)


# ============================================================================
# Decoding
# ============================================================================

def decode_image(data: bytes) -> np.ndarray:
    """
    Decode PNG/JPEG bytes into a BGR array.

    Raises:
        ValueError: If the bytes are not a decodable image
    """
    import cv2

    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError("Could not decode image bytes")
    return image


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """Convert a BGR or BGRA image to grayscale; grayscale passes through."""
    import cv2

    if len(image.shape) == 2:
        return image
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    if image.shape[2] == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    if image.shape[2] == 1:
        return image.squeeze()
    raise ValueError(f"Unexpected image shape: {image.shape}")


# ============================================================================
# Preprocessing Steps
# ============================================================================

def upscale_to_height(image: np.ndarray, min_height: int = 1000, max_scale: float = 3.0) -> np.ndarray:
    """Upscale images shorter than ``min_height`` (small text hurts recognition)."""
    import cv2

    h = image.shape[0]
    if h >= min_height:
        return image
    scale = min(max_scale, min_height / h)
    resized = cv2.resize(image, None, fx=scale, fy=scale, interpolation=cv2.INTER_CUBIC)
    logger.debug(f"Upscaled image {image.shape[:2]} -> {resized.shape[:2]}")
    return resized


def deskew(gray: np.ndarray, max_angle: float = 15.0) -> Tuple[np.ndarray, float]:
    """
    Rotate a grayscale page so that table rules and text lines are level.

    Uses the median angle of near-horizontal Hough lines.

    Returns:
        Tuple of (image, angle in degrees)
    """
    import cv2

    edges = cv2.Canny(gray, 50, 150, apertureSize=3)
    lines = cv2.HoughLinesP(
        edges, rho=1, theta=np.pi / 180, threshold=100,
        minLineLength=100, maxLineGap=10
    )
    if lines is None:
        return gray, 0.0

    angles = []
    # (N, 1, 4) on OpenCV 4, (N, 4) on OpenCV 5
    for x1, y1, x2, y2 in lines.reshape(-1, 4):
        if x2 != x1:
            angle = np.degrees(np.arctan2(y2 - y1, x2 - x1))
            if abs(angle) < max_angle:
                angles.append(angle)
    if not angles:
        return gray, 0.0

    angle = float(np.median(angles))
    if abs(angle) < 0.5:
        return gray, angle

    h, w = gray.shape[:2]
    matrix = cv2.getRotationMatrix2D((w // 2, h // 2), angle, 1.0)
    rotated = cv2.warpAffine(
        gray, matrix, (w, h),
        flags=cv2.INTER_CUBIC,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=255,
    )
    logger.info(f"Deskewed page by {angle:.2f}°")
    return rotated, angle


def denoise(gray: np.ndarray, strength: int = 10) -> np.ndarray:
    """Non-local means denoising for grayscale photos."""
    import cv2

    return cv2.fastNlMeansDenoising(gray, None, strength, 7, 21)


def enhance_contrast(gray: np.ndarray, clip_limit: float = 2.0, grid_size: int = 8) -> np.ndarray:
    """CLAHE contrast enhancement."""
    import cv2

    clahe = cv2.createCLAHE(clipLimit=clip_limit, tileGridSize=(grid_size, grid_size))
    return clahe.apply(gray)


def binarize(gray: np.ndarray, method: str = "adaptive", block_size: int = 31, c: int = 10) -> np.ndarray:
    """
    Convert a grayscale image to black and white.

    Args:
        gray: Grayscale image
        method: 'adaptive' for uneven lighting (phone photos) or 'otsu'
        block_size: Neighbourhood size for adaptive thresholding (odd)
        c: Constant subtracted from the neighbourhood mean

    Returns:
        Binary image
    """
    import cv2

    if method == "adaptive":
        return cv2.adaptiveThreshold(
            gray, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY, block_size, c
        )
    if method == "otsu":
        _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
        return binary
    raise ValueError(f"Unknown binarization method: {method}")


# ============================================================================
# Pipeline
# ============================================================================

def prepare_for_ocr(
    image: np.ndarray,
    min_height: int = 1000,
    deskew_enabled: bool = True,
    denoise_enabled: bool = True,
    binarize_method: str = "adaptive",
) -> PreparedImage:
    """
    Turn a decoded page or photo into a clean binary image.

    Args:
        image: BGR or grayscale image
        min_height: Upscale images shorter than this
        deskew_enabled: Whether to straighten the page
        denoise_enabled: Whether to remove sensor noise
        binarize_method: 'adaptive', 'otsu' or '' to skip

    Returns:
        PreparedImage
    """
    original_shape = image.shape[:2]
    transformations = []

    gray = to_grayscale(image)
    if gray.shape[0] < min_height:
        gray = upscale_to_height(gray, min_height)
        transformations.append("upscale")

    angle = 0.0
    if deskew_enabled:
        gray, angle = deskew(gray)
        if abs(angle) >= 0.5:
            transformations.append(f"deskew_{angle:.1f}deg")

    if denoise_enabled:
        gray = denoise(gray)
        transformations.append("denoise")

    gray = enhance_contrast(gray)
    transformations.append("enhance_contrast")

    if binarize_method:
        gray = binarize(gray, method=binarize_method)
        transformations.append(f"binarize_{binarize_method}")

    logger.debug(f"Prepared image: {' -> '.join(transformations)}")
    return PreparedImage(
        image=gray,
        original_shape=original_shape,
        deskew_angle=angle,
        transformations=transformations,
    )


def assess_quality(image: np.ndarray, blur_threshold: float = 100.0, dark_threshold: float = 60.0) -> ImageQuality:
    """Variance of the Laplacian as a sharpness score, plus mean brightness."""
    import cv2

    gray = to_grayscale(image)
    sharpness = float(cv2.Laplacian(gray, cv2.CV_64F).var())
    mean_intensity = float(np.mean(gray))
    return ImageQuality(
        sharpness=sharpness,
        mean_intensity=mean_intensity,
        is_blurry=sharpness < blur_threshold,
        is_dark=mean_intensity < dark_threshold,
    )
