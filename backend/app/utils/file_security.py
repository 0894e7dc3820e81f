"""
File Security Utilities
Filename sanitization, archive member screening and path containment checks
for untrusted plugin bundles
"""

import os
import re
import unicodedata
from pathlib import Path, PurePosixPath
from typing import Union

WINDOWS_DRIVE_PATTERN = re.compile(r"^[a-zA-Z]:")


def sanitize_filename(filename: str, max_length: int = 255) -> str:
    """
    Sanitize an uploaded filename before it is logged or recorded

    Security measures:
    - Removes path separators (/, \\)
    - Removes null bytes and control characters
    - Removes directory traversal patterns (../)
    - Normalizes unicode characters
    - Limits length

    Args:
        filename: Original filename from upload
        max_length: Maximum allowed filename length (default: 255)

    Returns:
        Sanitized filename

    Raises:
        ValueError: If filename is empty or becomes empty after sanitization
    """
    if not filename:
        raise ValueError("Filename cannot be empty")

    filename = unicodedata.normalize("NFKD", filename)

    # Handle both Unix and Windows paths
    filename = filename.replace("\\", "/")
    filename = os.path.basename(filename)

    filename = "".join(char for char in filename if ord(char) >= 32)
    filename = filename.replace("..", "")
    filename = filename.strip(". ")

    # Keep: alphanumeric, dash, underscore, period
    filename = re.sub(r"[^a-zA-Z0-9._-]", "_", filename)

    if filename.startswith("."):
        filename = "file" + filename

    if len(filename) > max_length:
        name, ext = os.path.splitext(filename)
        name = name[: max_length - len(ext) - 1]
        filename = name + ext

    if not filename or filename in ("", ".", ".."):
        raise ValueError("Invalid filename after sanitization")

    return filename


def validate_file_extension(filename: str, allowed_extensions: list[str]) -> bool:
    """
    Validate that filename has an allowed extension

    Args:
        filename: Filename to validate
        allowed_extensions: List of allowed extensions (e.g., ['.zip'])

    Returns:
        True if extension is allowed, False otherwise
    """
    filename_lower = filename.lower()
    return any(filename_lower.endswith(ext.lower()) for ext in allowed_extensions)


def is_path_traversal(name: str) -> bool:
    """
    Check an archive member name for path traversal attempts

    Rejects absolute paths, home-relative paths, Windows drive paths,
    null bytes and any ``..`` segment, whichever separator is used.
    """
    if not name or "\x00" in name:
        return True

    normalized = name.replace("\\", "/")
    if normalized.startswith(("/", "~")) or WINDOWS_DRIVE_PATTERN.match(normalized):
        return True

    return ".." in PurePosixPath(normalized).parts


def validate_storage_path(base_path: Union[str, Path], file_path: Union[str, Path]) -> Path:
    """
    Validate that file_path is within base_path (prevent path traversal)

    Symlinks are resolved before the containment check.

    Args:
        base_path: Base directory that should contain the file
        file_path: File path to validate, absolute or relative to base_path

    Returns:
        Resolved absolute path if valid

    Raises:
        ValueError: If path is outside base_path
    """
    base = Path(base_path).resolve()
    target = (base / file_path).resolve()

    try:
        target.relative_to(base)
    except ValueError:
        raise ValueError(f"Path traversal detected: {file_path} is outside allowed directory")

    return target
