"""
Upload format detection and validation.

Handles:
- Magic-byte detection of PDF and raster image formats
- Cross-checking declared MIME type and filename extension
- Size limits
- Conversion of exotic image formats to PNG
"""

import io
import logging
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Protocol

from .errors import (
    EmptyFileError,
    FileTooLargeError,
    ImageConversionError,
    InvalidFormatError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE_BYTES = 10 * 1024 * 1024

GENERIC_MIME_TYPES = {"", "application/octet-stream", "binary/octet-stream"}


# ============================================================================
# Format Table
# ============================================================================

@dataclass(frozen=True)
class FormatInfo:
    """Detected format of an upload."""
    category: str               # "pdf" or "image"
    canonical_mime_type: str
    display_name: str
    extension: str
    needs_conversion: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


FORMATS: Dict[str, FormatInfo] = {
    "application/pdf": FormatInfo("pdf", "application/pdf", "PDF", "pdf"),
    "image/png": FormatInfo("image", "image/png", "PNG", "png"),
    "image/jpeg": FormatInfo("image", "image/jpeg", "JPEG", "jpg"),
    "image/webp": FormatInfo("image", "image/webp", "WebP", "webp", True),
    "image/tiff": FormatInfo("image", "image/tiff", "TIFF", "tiff", True),
    "image/bmp": FormatInfo("image", "image/bmp", "BMP", "bmp", True),
    "image/gif": FormatInfo("image", "image/gif", "GIF", "gif", True),
    "image/heic": FormatInfo("image", "image/heic", "HEIC", "heic", True),
    "image/avif": FormatInfo("image", "image/avif", "AVIF", "avif", True),
}

# Alternate MIME spellings seen from browsers and phones
MIME_ALIASES: Dict[str, str] = {
    "application/x-pdf": "application/pdf",
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
    "image/x-png": "image/png",
    "image/tif": "image/tiff",
    "image/x-tiff": "image/tiff",
    "image/x-ms-bmp": "image/bmp",
    "image/x-bmp": "image/bmp",
    "image/heif": "image/heic",
    "image/heic-sequence": "image/heic",
    "image/heif-sequence": "image/heic",
}

EXTENSION_TO_MIME: Dict[str, str] = {
    "pdf": "application/pdf",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "jpe": "image/jpeg",
    "jfif": "image/jpeg",
    "webp": "image/webp",
    "tif": "image/tiff",
    "tiff": "image/tiff",
    "bmp": "image/bmp",
    "dib": "image/bmp",
    "gif": "image/gif",
    "heic": "image/heic",
    "heif": "image/heic",
    "avif": "image/avif",
}

_HEIC_BRANDS = {b"heic", b"heix", b"hevc", b"hevx", b"heim", b"heis", b"mif1", b"msf1"}
_AVIF_BRANDS = {b"avif", b"avis"}

# Formats that may lose quality when flattened to a single PNG frame
_LOSSY_WARNINGS = {
    "image/gif": "GIF images have a limited palette; text may be less legible.",
}


# ============================================================================
# Detection
# ============================================================================

def detect_from_magic_bytes(data: bytes) -> Optional[str]:
    """
    Identify a file's canonical MIME type from its leading bytes.

    Returns:
        Canonical MIME type, or None if the signature is not supported
    """
    if data.startswith(b"%PDF"):
        return "application/pdf"
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    if data.startswith((b"II*\x00", b"MM\x00*")):
        return "image/tiff"
    if data.startswith(b"BM") and len(data) >= 14:
        return "image/bmp"
    if data[4:8] == b"ftyp":
        brand = data[8:12]
        if brand in _HEIC_BRANDS:
            return "image/heic"
        if brand in _AVIF_BRANDS:
            return "image/avif"
    return None


def canonical_mime(mime_type: Optional[str]) -> Optional[str]:
    """Map a declared MIME type to its canonical spelling (None if generic)."""
    if mime_type is None:
        return None
    mime = mime_type.split(";")[0].strip().lower()
    if mime in GENERIC_MIME_TYPES:
        return None
    return MIME_ALIASES.get(mime, mime)


def get_file_extension(filename: Optional[str]) -> str:
    """Lowercase extension without the dot ("" if there is none)."""
    if not filename or "." not in filename:
        return ""
    return filename.rsplit(".", 1)[1].strip().lower()


def supported_formats_display() -> str:
    """Human-readable list of accepted formats."""
    return ", ".join(info.display_name for info in FORMATS.values())


# ============================================================================
# Validation
# ============================================================================

def validate_upload(
    data: bytes,
    declared_mime: Optional[str],
    filename: Optional[str],
    max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES,
) -> FormatInfo:
    """
    Check an upload before any processing.

    The magic bytes decide the format. A declared MIME type or a filename
    extension that names a different format is a rejection; generic MIME
    types and missing extensions are ignored.

    Args:
        data: Raw file bytes
        declared_mime: MIME type claimed by the client
        filename: Original filename
        max_size_bytes: Size limit

    Returns:
        FormatInfo for the detected format

    Raises:
        EmptyFileError: For a zero-byte upload
        FileTooLargeError: When the upload exceeds ``max_size_bytes``
        InvalidFormatError: For unsupported or mislabeled files
    """
    size = len(data)
    if size == 0:
        raise EmptyFileError(f"'{filename or 'upload'}' is empty")
    if size > max_size_bytes:
        raise FileTooLargeError(
            f"{size / (1024 * 1024):.1f} MB exceeds the "
            f"{max_size_bytes / (1024 * 1024):.0f} MB limit"
        )

    detected = detect_from_magic_bytes(data)
    if detected is None:
        raise InvalidFormatError(
            f"unrecognized file signature; supported formats: {supported_formats_display()}"
        )

    declared = canonical_mime(declared_mime)
    if declared is not None and declared != detected:
        raise InvalidFormatError(
            f"declared type {declared_mime} does not match file content ({detected})"
        )

    extension = get_file_extension(filename)
    if extension:
        by_extension = EXTENSION_TO_MIME.get(extension)
        if by_extension is None:
            raise InvalidFormatError(f"unsupported file extension .{extension}")
        if by_extension != detected:
            raise InvalidFormatError(
                f"extension .{extension} does not match file content ({detected})"
            )

    info = FORMATS[detected]
    logger.debug(f"Validated upload {filename!r}: {info.display_name}, {size} bytes")
    return info


def format_warnings(info: FormatInfo) -> List[str]:
    """Processing notes for formats that need conversion."""
    notes = []
    if info.needs_conversion:
        notes.append(f"{info.display_name} image converted to PNG for processing")
    warning = _LOSSY_WARNINGS.get(info.canonical_mime_type)
    if warning:
        notes.append(warning)
    return notes


# ============================================================================
# Conversion
# ============================================================================

class ImageCodec(Protocol):
    def to_canonical_bitmap(self, data: bytes, source_format: FormatInfo) -> bytes:
        ...


class PillowImageCodec:
    """Converts any supported raster format to PNG bytes with Pillow."""

    def to_canonical_bitmap(self, data: bytes, source_format: FormatInfo) -> bytes:
        from PIL import Image

        if source_format.canonical_mime_type == "image/heic":
            self._register_heif()

        try:
            with Image.open(io.BytesIO(data)) as img:
                # First frame only for animated GIF/WebP and multi-page TIFF
                img.seek(0)
                frame = img.convert("RGB") if img.mode not in ("RGB", "L") else img.copy()
            buffer = io.BytesIO()
            frame.save(buffer, format="PNG")
        except Exception as e:
            raise ImageConversionError(
                f"could not convert {source_format.display_name} to PNG: {e}"
            ) from e

        logger.info(f"Converted {source_format.display_name} image to PNG")
        return buffer.getvalue()

    @staticmethod
    def _register_heif():
        try:
            from pillow_heif import register_heif_opener
        except ImportError:
            raise ImageConversionError(
                "HEIC support requires pillow-heif. Install with: pip install pillow-heif"
            )
        register_heif_opener()
