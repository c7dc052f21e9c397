"""
Tests for upload validation and image conversion.
"""

import io
import pytest
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
JPEG = b"\xff\xd8\xff\xe0" + b"\x00" * 32
PDF = b"%PDF-1.7\n" + b"\x00" * 32
HEIC = b"\x00\x00\x00\x18ftypheic" + b"\x00" * 32
AVIF = b"\x00\x00\x00\x1cftypavif" + b"\x00" * 32
WEBP = b"RIFF\x24\x00\x00\x00WEBPVP8 " + b"\x00" * 32


def pillow_bytes(fmt, size=(40, 20)):
    from PIL import Image

    buffer = io.BytesIO()
    Image.new("RGB", size, (255, 255, 255)).save(buffer, format=fmt)
    return buffer.getvalue()


class TestMagicBytes:
    """Test format detection from file content."""

    @pytest.mark.parametrize("data,expected", [
        (PDF, "application/pdf"),
        (PNG, "image/png"),
        (JPEG, "image/jpeg"),
        (HEIC, "image/heic"),
        (AVIF, "image/avif"),
        (WEBP, "image/webp"),
        (b"GIF89a" + b"\x00" * 16, "image/gif"),
        (b"II*\x00" + b"\x00" * 16, "image/tiff"),
        (b"BM" + b"\x00" * 16, "image/bmp"),
    ])
    def test_detect(self, data, expected):
        from phenoage_ocr.utils.formats import detect_from_magic_bytes

        assert detect_from_magic_bytes(data) == expected

    def test_unknown_signature(self):
        from phenoage_ocr.utils.formats import detect_from_magic_bytes

        assert detect_from_magic_bytes(b"hello world, not a file") is None
        assert detect_from_magic_bytes(b"BM") is None

    def test_canonical_mime(self):
        from phenoage_ocr.utils.formats import canonical_mime

        assert canonical_mime("image/jpg") == "image/jpeg"
        assert canonical_mime("IMAGE/HEIF") == "image/heic"
        assert canonical_mime("application/pdf; charset=binary") == "application/pdf"
        assert canonical_mime("application/octet-stream") is None
        assert canonical_mime(None) is None


class TestValidateUpload:
    """Test upload validation rules."""

    def test_valid_pdf(self):
        from phenoage_ocr.utils.formats import validate_upload

        info = validate_upload(PDF, "application/pdf", "report.pdf")

        assert info.category == "pdf"
        assert info.needs_conversion is False

    def test_heic_needs_conversion(self):
        from phenoage_ocr.utils.formats import validate_upload

        info = validate_upload(HEIC, "image/heif", "IMG_0001.HEIC")

        assert info.canonical_mime_type == "image/heic"
        assert info.needs_conversion is True

    def test_generic_mime_accepted(self):
        """A generic MIME type defers to the magic bytes."""
        from phenoage_ocr.utils.formats import validate_upload

        info = validate_upload(PNG, "application/octet-stream", "scan.png")

        assert info.canonical_mime_type == "image/png"

    def test_missing_name_and_type(self):
        from phenoage_ocr.utils.formats import validate_upload

        info = validate_upload(JPEG, None, None)

        assert info.canonical_mime_type == "image/jpeg"

    def test_declared_type_mismatch(self):
        """PNG bytes declared as PDF are rejected."""
        from phenoage_ocr.utils.errors import ErrorCode, InvalidFormatError
        from phenoage_ocr.utils.formats import validate_upload

        with pytest.raises(InvalidFormatError) as exc_info:
            validate_upload(PNG, "application/pdf", "report.pdf")

        assert exc_info.value.code == ErrorCode.INVALID_FORMAT

    def test_extension_mismatch(self):
        from phenoage_ocr.utils.errors import InvalidFormatError
        from phenoage_ocr.utils.formats import validate_upload

        with pytest.raises(InvalidFormatError):
            validate_upload(PNG, "image/png", "scan.jpg")

    def test_unsupported_extension(self):
        from phenoage_ocr.utils.errors import InvalidFormatError
        from phenoage_ocr.utils.formats import validate_upload

        with pytest.raises(InvalidFormatError):
            validate_upload(PNG, None, "scan.svg")

    def test_unrecognized_content(self):
        from phenoage_ocr.utils.errors import InvalidFormatError
        from phenoage_ocr.utils.formats import validate_upload

        with pytest.raises(InvalidFormatError):
            validate_upload(b"<svg xmlns='http://www.w3.org/2000/svg'/>", "image/svg+xml", "a.svg")

    def test_empty_file(self):
        from phenoage_ocr.utils.errors import EmptyFileError
        from phenoage_ocr.utils.formats import validate_upload

        with pytest.raises(EmptyFileError):
            validate_upload(b"", "application/pdf", "report.pdf")

    def test_too_large(self):
        """Size is checked before content."""
        from phenoage_ocr.utils.errors import FileTooLargeError
        from phenoage_ocr.utils.formats import validate_upload

        with pytest.raises(FileTooLargeError):
            validate_upload(PDF, "application/pdf", "report.pdf", max_size_bytes=10)

    def test_format_warnings(self):
        from phenoage_ocr.utils.formats import FORMATS, format_warnings

        assert format_warnings(FORMATS["image/png"]) == []
        assert len(format_warnings(FORMATS["image/webp"])) == 1
        assert len(format_warnings(FORMATS["image/gif"])) == 2


class TestPillowImageCodec:
    """Test conversion of exotic formats to PNG."""

    @pytest.mark.parametrize("fmt,mime", [
        ("GIF", "image/gif"),
        ("BMP", "image/bmp"),
        ("TIFF", "image/tiff"),
    ])
    def test_convert_to_png(self, fmt, mime):
        from phenoage_ocr.utils.formats import FORMATS, PillowImageCodec, detect_from_magic_bytes

        data = pillow_bytes(fmt)
        assert detect_from_magic_bytes(data) == mime

        png = PillowImageCodec().to_canonical_bitmap(data, FORMATS[mime])

        assert detect_from_magic_bytes(png) == "image/png"

    def test_corrupt_image(self):
        from phenoage_ocr.utils.errors import ImageConversionError
        from phenoage_ocr.utils.formats import FORMATS, PillowImageCodec

        with pytest.raises(ImageConversionError):
            PillowImageCodec().to_canonical_bitmap(WEBP, FORMATS["image/webp"])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
