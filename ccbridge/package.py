#!/usr/bin/env python3
"""
# ccbridge
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

package.py

Load a course package into PackageFile objects.

Accepts an .imscc / .zip archive or an already extracted directory.
Nothing is written to disk: archive members are read straight into memory.

SECURITY: archive member names are validated before use so a crafted
package cannot smuggle absolute or parent-relative paths into the file map.
"""

from __future__ import annotations

import logging
import zipfile
from pathlib import Path
from typing import Dict, Iterable, List, Union

from ccbridge.errors import PackageLoadError
from ccbridge.models import PackageFile
from ccbridge.paths import file_map_key, is_text_mime, mime_type_for
from ccbridge.security_utils import is_safe_member_name

logger = logging.getLogger(__name__)

MANIFEST_NAME = "imsmanifest.xml"


def make_package_file(name: str, raw: bytes) -> PackageFile:
    """Build a PackageFile, decoding text types to str."""
    mime_type = mime_type_for(name)
    if is_text_mime(mime_type):
        return PackageFile(name=name, data=raw.decode("utf-8", errors="replace"), mime_type=mime_type)
    return PackageFile(name=name, data=raw, mime_type=mime_type)


def load_zip(archive_path: Path) -> List[PackageFile]:
    files: List[PackageFile] = []
    try:
        with zipfile.ZipFile(archive_path) as zf:
            for info in zf.infolist():
                if info.is_dir():
                    continue
                if not is_safe_member_name(info.filename):
                    logger.warning(f"[package] Skipping unsafe archive member: {info.filename!r}")
                    continue
                files.append(make_package_file(info.filename, zf.read(info)))
    except zipfile.BadZipFile as e:
        raise PackageLoadError(
            message=f"Not a valid zip archive: {archive_path.name}",
            suggestion="Course packages (.imscc) are zip files. Re-export the course.",
            context={"path": str(archive_path)},
            cause=e,
        )
    return files


def load_directory(root: Path) -> List[PackageFile]:
    files: List[PackageFile] = []
    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue
        rel = path.relative_to(root).as_posix()
        files.append(make_package_file(rel, path.read_bytes()))
    return files


def load_package(path: Union[str, Path]) -> List[PackageFile]:
    """
    Read every file of a course package.

    Raises:
        PackageLoadError: If the path does not exist or is not a readable archive
    """
    package_path = Path(path).expanduser()
    if not package_path.exists():
        raise PackageLoadError(
            message=f"Package not found: {package_path}",
            context={"path": str(package_path)},
        )

    if package_path.is_dir():
        files = load_directory(package_path)
    else:
        files = load_zip(package_path)

    logger.info(f"[package] Loaded {len(files)} files from {package_path.name}")
    return files


def build_file_map(files: Iterable[PackageFile]) -> Dict[str, PackageFile]:
    """Index files by their normalized lookup key. First file wins on collisions."""
    file_map: Dict[str, PackageFile] = {}
    for package_file in files:
        key = file_map_key(package_file.name)
        if key in file_map:
            logger.debug(f"[package] Duplicate file key {key!r}; keeping {file_map[key].name}")
            continue
        file_map[key] = package_file
    return file_map
