#!/usr/bin/env python3
"""
# ccbridge
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

paths.py

Package path utilities. Resolves relative and special-prefix references
found in manifests and HTML against the directory of the file that holds
them, and builds the normalized keys used to look files up in a package.

Everything here is pure: no I/O, no state.
"""

from __future__ import annotations

import html
import re
from typing import Iterable, Optional
from urllib.parse import unquote


# ============================================================================
# Constants
# ============================================================================

# Reference prefixes LMS exporters write instead of a real relative path.
# Longest first so "$IMS-CC-FILEBASE$" wins over "IMS-CC-FILEBASE".
SPECIAL_PREFIXES = (
    "$IMS-CC-FILEBASE$",
    "IMS-CC-FILEBASE",
    "$CANVAS_OBJECT_REFERENCE$",
    "CANVAS_OBJECT_REFERENCE",
    "$WIKI_REFERENCE$",
)

# Prefixes whose remainder is a path from the package root
ROOT_PREFIXES = ("$IMS-CC-FILEBASE$", "IMS-CC-FILEBASE")

# Some exporters emit a Cyrillic "с" (U+0441) in "content/"
CYRILLIC_CONTENT_PREFIX = "\u0441ontent/"

MIME_TYPES = {
    "txt": "text/plain",
    "html": "text/html",
    "htm": "text/html",
    "css": "text/css",
    "js": "application/javascript",
    "xml": "text/xml",
    "csv": "text/csv",
    "md": "text/markdown",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "bmp": "image/bmp",
    "svg": "image/svg+xml",
    "webp": "image/webp",
    "ico": "image/vnd.microsoft.icon",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "aac": "audio/aac",
    "mp4": "video/mp4",
    "webm": "video/webm",
    "avi": "video/x-msvideo",
    "mov": "video/quicktime",
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "ppt": "application/vnd.ms-powerpoint",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "odt": "application/vnd.oasis.opendocument.text",
    "ods": "application/vnd.oasis.opendocument.spreadsheet",
    "odp": "application/vnd.oasis.opendocument.presentation",
    "zip": "application/zip",
    "rar": "application/vnd.rar",
    "7z": "application/x-7z-compressed",
    "tar": "application/x-tar",
    "gz": "application/gzip",
    "json": "application/json",
    "rtf": "application/rtf",
}

DEFAULT_MIME_TYPE = "application/octet-stream"

_MAX_DECODE_ROUNDS = 5


# ============================================================================
# Decoding
# ============================================================================

def try_decode(value: Optional[str]) -> str:
    """
    Percent-decode a reference until stable (at most 5 rounds), then
    decode HTML entities.

    "+" is read as a space, matching form-encoded exports.
    """
    if not value:
        return ""
    decoded = value
    try:
        for _ in range(_MAX_DECODE_ROUNDS):
            previous = decoded
            decoded = unquote(decoded.replace("+", " "), errors="strict")
            if decoded == previous:
                break
    except UnicodeDecodeError:
        return html.unescape(value)
    return html.unescape(decoded)


def correct_cyrillic_path(path: Optional[str]) -> str:
    """Replace a Cyrillic-homoglyph 'content/' prefix with the Latin one."""
    if not path:
        return ""
    if path.startswith(CYRILLIC_CONTENT_PREFIX):
        return "content/" + path[len(CYRILLIC_CONTENT_PREFIX):]
    return path


def file_map_key(path: Optional[str]) -> str:
    """
    Normalized key for package file lookups.

    Decoded, slash-normalized, root-relative, homoglyph-corrected and
    case-folded so that references written by different tools agree.
    """
    key = try_decode(path).strip().replace("\\", "/").lstrip("/")
    return correct_cyrillic_path(key).lower()


# ============================================================================
# Resolution
# ============================================================================

def get_directory(path: Optional[str]) -> str:
    """
    Directory part of a package path.

    A trailing slash marks the path itself as a directory.
    """
    if not path:
        return ""
    normalized = path.strip().replace("\\", "/")
    if normalized.endswith("/"):
        return normalized[:-1]
    if "/" not in normalized:
        return ""
    return normalized.rsplit("/", 1)[0]


def _collapse(parts, segments) -> str:
    for part in segments:
        if part == "..":
            if parts:
                parts.pop()
        elif part not in (".", ""):
            parts.append(part)
    return "/".join(parts)


def resolve_relative_path(base_path: Optional[str], relative_path) -> Optional[str]:
    """
    Resolve a package reference against the file that contains it.

    Args:
        base_path: Path of the referencing file (or a directory ending in "/")
        relative_path: The reference as written in the source

    Returns:
        A root-relative package path with ".." collapsed (never above the
        root), the base directory for an empty reference, or None when the
        reference is not a string.
    """
    if not isinstance(relative_path, str):
        return None

    rel = try_decode(relative_path).strip().replace("\\", "/")
    base_dir = get_directory(base_path)

    for prefix in ROOT_PREFIXES:
        if rel.startswith(prefix):
            rel = "/" + rel[len(prefix):].lstrip("/")
            break

    if not rel:
        return base_dir or None

    if rel.startswith("/"):
        return _collapse([], rel[1:].split("/"))

    base_parts = [p for p in base_dir.split("/") if p] if base_dir else []
    return _collapse(base_parts, rel.split("/"))


# ============================================================================
# Reference helpers
# ============================================================================

def match_special_prefix(reference: Optional[str]) -> Optional[str]:
    """Return the special prefix the reference starts with, if any."""
    if not reference:
        return None
    for prefix in SPECIAL_PREFIXES:
        if reference.startswith(prefix):
            return prefix
    return None


def strip_special_prefixes(reference: str) -> str:
    """Remove every special prefix occurrence, for display."""
    cleaned = reference
    for prefix in SPECIAL_PREFIXES:
        cleaned = cleaned.replace(prefix, "")
    return cleaned


def is_external_url(reference: Optional[str]) -> bool:
    return bool(reference) and bool(re.match(r"^https?://", reference, re.IGNORECASE))


def file_name(path: str) -> str:
    """Last path segment."""
    return path.replace("\\", "/").rsplit("/", 1)[-1] or path


def extension(path: str) -> str:
    name = file_name(path)
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[-1].lower()


def mime_type_for(path: str) -> str:
    """MIME type from the file extension."""
    return MIME_TYPES.get(extension(path), DEFAULT_MIME_TYPE)


def is_text_mime(mime_type: str) -> bool:
    return (
        mime_type.startswith("text/")
        or mime_type in ("application/json", "application/javascript")
        or "xml" in mime_type
    )


def unique_file_name(name: str, taken: Iterable[str]) -> str:
    """
    name, or "stem (n).ext" with the lowest n >= 2 that no name in taken
    uses. Comparison ignores case.
    """
    used = {t.lower() for t in taken}
    if name.lower() not in used:
        return name

    stem, dot, ext = name.rpartition(".")
    if not dot or not stem:
        stem, ext = name, ""
    n = 2
    while True:
        candidate = f"{stem} ({n}).{ext}" if ext else f"{stem} ({n})"
        if candidate.lower() not in used:
            return candidate
        n += 1
