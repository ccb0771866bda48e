"""
Utility functions for file system operations and upload checks.

This module provides helper functions for:
- Sanitizing user-provided filenames for safe filesystem usage
- Ensuring directory creation
- Deciding whether an upload is of an accepted type
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable, Optional

# Pattern to match characters that are not safe for filesystem paths
# Allows: alphanumeric characters, dots, underscores, and hyphens
SANITIZE_PATTERN = re.compile(r"[^a-zA-Z0-9._-]+")

DEFAULT_ALLOWED_TYPES = ("pdf", "xml", "png", "jpg", "jpeg")


def sanitize_filename(filename: str, fallback: str = "document") -> str:
    """
    Generate a filesystem-safe filename, keeping the extension.

    Args:
        filename: The original filename, possibly with a client-side path
        fallback: Stem to use if sanitization leaves nothing

    Returns:
        A filesystem-safe filename

    Example:
        >>> sanitize_filename("../My Invoice (1).PDF")
        "My-Invoice-1.pdf"
        >>> sanitize_filename("@#$.xml")
        "document.xml"
    """
    stem, suffix = split_extension(Path(filename.replace("\\", "/")).name)
    cleaned = SANITIZE_PATTERN.sub("-", stem.strip()).strip("-_.")
    suffix = SANITIZE_PATTERN.sub("", suffix).lower()
    return f"{cleaned or fallback}{suffix}"


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Returns:
        The same path object for chaining
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def split_extension(filename: str) -> tuple[str, str]:
    """
    Split a filename into stem and extension components.

    Example:
        >>> split_extension("document.pdf")
        ("document", ".pdf")
    """
    path = Path(filename)
    return path.stem, path.suffix


def is_allowed_upload(
    filename: str,
    content_type: Optional[str],
    allowed_types: Iterable[str] = DEFAULT_ALLOWED_TYPES,
) -> bool:
    """
    Accept an upload when its MIME type or its extension names an allowed type.

    Example:
        >>> is_allowed_upload("scan.bin", "application/pdf")
        True
        >>> is_allowed_upload("notes.txt", "text/plain")
        False
    """
    allowed = {kind.lower() for kind in allowed_types}
    subtype = (content_type or "").split(";")[0].split("/")[-1].strip().lower()
    extension = split_extension(filename)[1].lstrip(".").lower()
    return subtype in allowed or extension in allowed


def guess_content_type(filename: str) -> str:
    extension = split_extension(filename)[1].lower()
    return {
        ".pdf": "application/pdf",
        ".xml": "application/xml",
        ".png": "image/png",
        ".jpg": "image/jpeg",
        ".jpeg": "image/jpeg",
    }.get(extension, "application/octet-stream")
