#!/usr/bin/env python3
"""
# ccbridge
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

materializer.py

Idempotent creation of Drive artifacts (folders, uploads, Docs, Forms).

Artifacts tied to a package item are tagged with a SHA-256 digest of the
item's stable identifier in Drive appProperties. A re-run searches for the
tag first and reuses what it finds, so nothing is created twice across
runs. Within a run, concurrent requests for the same (kind, parent, hash)
key share one in-flight creation.

Search failures degrade to "not found"; creation failures propagate.
"""

from __future__ import annotations

import logging
import re
import threading
from concurrent.futures import Future
from typing import Any, Callable, Dict, Optional, Tuple

from ccbridge.errors import ServiceAPIError
from ccbridge.google_client import (
    DOCUMENT_MIME,
    FOLDER_MIME,
    FORM_MIME,
    DocsClient,
    DriveClient,
)
from ccbridge.models import PendingUpload
from ccbridge.security_utils import get_content_hash

logger = logging.getLogger(__name__)

# appProperties keys
APP_PROPERTY_KEY = "imsccIdentifier"
FOLDER_PROPERTY_KEY = "itemIdHash"

DEFAULT_FOLDER_NAME = "Untitled"

CacheKey = Tuple[str, str, str]


def sanitize_folder_name(name: Optional[str]) -> str:
    if not name:
        return DEFAULT_FOLDER_NAME
    return re.sub(r"[\\/]", "-", name).strip() or DEFAULT_FOLDER_NAME


class ArtifactMaterializer:
    """
    Find-or-create for Drive artifacts with a per-run in-flight cache.

    Args:
        drive: Drive client
        docs: Docs client (only needed for find_or_create_document)
    """

    def __init__(self, drive: DriveClient, docs: Optional[DocsClient] = None):
        self.drive = drive
        self.docs = docs
        self._cache: Dict[CacheKey, Future] = {}
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # In-flight cache
    # -------------------------------------------------------------------------

    def _shared(self, key: CacheKey, create: Callable[[], Any]) -> Any:
        """
        Run create() once per key; concurrent and later callers get its result.

        A failed creation is evicted so a later call may try again; callers
        already waiting on it see the same exception.
        """
        with self._lock:
            future = self._cache.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._cache[key] = future

        if owner:
            try:
                future.set_result(create())
            except Exception as e:
                with self._lock:
                    self._cache.pop(key, None)
                future.set_exception(e)
        return future.result()

    def _search(self, parent_id: Optional[str], key: str, value: str, mime_type: Optional[str]) -> Optional[Dict[str, Any]]:
        try:
            found = self.drive.search_by_property(parent_id, key, value, mime_type)
        except ServiceAPIError as e:
            logger.warning(f"[materialize] Search for {key}={value[:12]}... failed; treating as not found ({e.message})")
            return None
        return found[0] if found else None

    # -------------------------------------------------------------------------
    # Folders
    # -------------------------------------------------------------------------

    def find_or_create_folder(self, name: str, parent_id: str, stable_id: Optional[str] = None) -> str:
        """
        Folder id for name under parent_id.

        With a stable_id the folder is matched by the hash of that id (so a
        renamed item keeps its folder); otherwise by name.
        """
        name = sanitize_folder_name(name)

        if stable_id:
            id_hash = get_content_hash(stable_id)

            def create_tagged() -> str:
                existing = self._search(parent_id, FOLDER_PROPERTY_KEY, id_hash, FOLDER_MIME)
                if existing:
                    logger.debug(f"[materialize] Reusing folder '{existing.get('name')}' ({existing['id']})")
                    return existing["id"]
                return self.drive.create_folder(name, parent_id, {FOLDER_PROPERTY_KEY: id_hash})["id"]

            return self._shared(("folder", parent_id, id_hash), create_tagged)

        def create_named() -> str:
            try:
                existing = self.drive.find_folder_by_name(name, parent_id)
            except ServiceAPIError as e:
                logger.warning(f"[materialize] Folder lookup '{name}' failed; creating ({e.message})")
                existing = None
            if existing:
                return existing["id"]
            return self.drive.create_folder(name, parent_id)["id"]

        return self._shared(("folder", parent_id, f"name:{name}"), create_named)

    def ensure_item_folder(
        self,
        root_name: str,
        course_name: str,
        topic: Optional[str],
        item_title: str,
        item_id: str,
    ) -> str:
        """Root / course / topic / item folder chain; returns the item folder id."""
        root_id = self.find_or_create_folder(root_name, "root")
        course_id = self.find_or_create_folder(course_name, root_id)
        parent_id = self.find_or_create_folder(topic, course_id) if topic else course_id
        return self.find_or_create_folder(item_title, parent_id, stable_id=item_id)

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    def upload_attachment(self, upload: PendingUpload, parent_id: str) -> Dict[str, Any]:
        """
        Upload a package file once per folder; fills and returns upload.drive_file.

        Uploads are tagged with the hash of the full package path, so two
        files sharing a base name stay distinct.
        """
        path_hash = get_content_hash(upload.source_file.name)

        def create() -> Dict[str, Any]:
            existing = self._search(parent_id, APP_PROPERTY_KEY, path_hash, None)
            if existing:
                logger.debug(f"[materialize] Reusing upload '{upload.target_name}' ({existing['id']})")
                return existing
            return self.drive.upload_file(
                name=upload.target_name,
                data=upload.source_file.as_bytes(),
                mime_type=upload.source_file.mime_type,
                parent_id=parent_id,
                app_properties={APP_PROPERTY_KEY: path_hash},
            )

        upload.drive_file = self._shared(("upload", parent_id, path_hash), create)
        return upload.drive_file

    def find_or_create_document(self, html: str, title: str, parent_id: str, stable_id: str) -> Dict[str, Any]:
        """Google Doc converted from html; returns {id, title, viewUrl}."""
        if self.docs is None:
            raise ValueError("Document creation needs a DocsClient")
        id_hash = get_content_hash(stable_id)

        def create() -> Dict[str, Any]:
            existing = self._search(parent_id, APP_PROPERTY_KEY, id_hash, DOCUMENT_MIME)
            if existing:
                return {
                    "id": existing["id"],
                    "title": existing.get("name", title),
                    "viewUrl": existing.get("webViewLink") or f"https://docs.google.com/document/d/{existing['id']}/edit",
                }
            return self.docs.create_from_html(html, title, parent_id, {APP_PROPERTY_KEY: id_hash})

        return self._shared(("document", parent_id, id_hash), create)

    def find_or_create_form(
        self,
        title: str,
        parent_id: str,
        stable_id: str,
        build: Callable[[], Dict[str, Any]],
    ) -> Dict[str, Any]:
        """
        Reuse a tagged form in parent_id or build a new one.

        build() must create the form and return {formId, formUrl, title};
        the form is then tagged and moved into parent_id.
        """
        id_hash = get_content_hash(stable_id)

        def create() -> Dict[str, Any]:
            existing = self._search(parent_id, APP_PROPERTY_KEY, id_hash, FORM_MIME)
            if existing:
                logger.info(f"[materialize] Reusing form '{existing.get('name')}' ({existing['id']})")
                return {
                    "formId": existing["id"],
                    "formUrl": existing.get("webViewLink") or f"https://docs.google.com/forms/d/{existing['id']}/viewform",
                    "title": existing.get("name", title),
                }
            form = build()
            try:
                self.drive.patch_file(
                    form["formId"],
                    app_properties={APP_PROPERTY_KEY: id_hash},
                    add_parents=parent_id,
                    remove_parents="root",
                )
            except ServiceAPIError as e:
                # Untagged forms are not found again on re-run
                logger.warning(f"[materialize] Could not tag/move form {form['formId']}: {e.message}")
            return form

        return self._shared(("form", parent_id, id_hash), create)
