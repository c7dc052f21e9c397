"""
I/O utilities for the lab-report pipeline.

Handles:
- Reading uploads from disk with a guessed MIME type
- JSON serialization of results
"""

import json
import logging
import mimetypes
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

import numpy as np

logger = logging.getLogger(__name__)

# Not every platform's mimetypes table knows these
mimetypes.add_type("image/heic", ".heic")
mimetypes.add_type("image/heic", ".heif")
mimetypes.add_type("image/avif", ".avif")
mimetypes.add_type("image/webp", ".webp")


# ============================================================================
# Uploads
# ============================================================================

@dataclass(frozen=True)
class Upload:
    """An upload as received: bytes, declared MIME type and filename."""
    data: bytes
    declared_mime: Optional[str]
    filename: str


def read_upload(path: Union[str, Path], declared_mime: Optional[str] = None) -> Upload:
    """
    Read a file from disk as if it had been uploaded.

    Args:
        path: File to read
        declared_mime: MIME type to declare (guessed from the extension if None)

    Returns:
        Upload

    Raises:
        FileNotFoundError: If the file doesn't exist
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Input file not found: {path}")

    if declared_mime is None:
        declared_mime, _ = mimetypes.guess_type(path.name)

    data = path.read_bytes()
    logger.debug(f"Read {len(data)} bytes from {path} ({declared_mime or 'unknown type'})")
    return Upload(data=data, declared_mime=declared_mime, filename=path.name)


# ============================================================================
# JSON Serialization
# ============================================================================

class EnhancedJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy scalars, enums and dataclasses."""

    def default(self, obj):
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if hasattr(obj, '__dataclass_fields__'):
            return asdict(obj)
        if isinstance(obj, Path):
            return str(obj)
        return super().default(obj)


def to_json(data: Any, indent: int = 2) -> str:
    return json.dumps(data, indent=indent, ensure_ascii=False, cls=EnhancedJSONEncoder)


def save_json(
    data: Any,
    output_path: Union[str, Path],
    indent: int = 2,
    ensure_ascii: bool = False
) -> Path:
    """
    Save data to a JSON file.

    Args:
        data: Data to serialize (dict, list, dataclass, etc.)
        output_path: Path to save the JSON file
        indent: Indentation level for pretty printing
        ensure_ascii: If True, escape non-ASCII characters

    Returns:
        Path to the saved file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=indent, ensure_ascii=ensure_ascii, cls=EnhancedJSONEncoder)

    logger.debug(f"Saved JSON: {output_path}")
    return output_path


def load_json(json_path: Union[str, Path]) -> Any:
    """Load data from a JSON file."""
    json_path = Path(json_path)
    if not json_path.exists():
        raise FileNotFoundError(f"JSON file not found: {json_path}")

    with open(json_path, 'r', encoding='utf-8') as f:
        return json.load(f)
