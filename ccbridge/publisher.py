#!/usr/bin/env python3
"""
# ccbridge
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

publisher.py

Artifact stage: materializes the Drive side of each converted item.

Per item, in order:
    folders   root / course / topic / item folder
    uploads   attachments and question images into the item folder
    links     placeholder spans -> links to the uploaded files
    form      quiz form for assessment items
    document  Google Doc for rich HTML assignments

Items are processed concurrently but yielded in the order they were
received. A failing stage stops that item only; the failure is stored on
item.processing_error and the run goes on.
"""

from __future__ import annotations

import html
import logging
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, Iterator, List, Optional

from bs4 import BeautifulSoup

from ccbridge.errors import CcBridgeError
from ccbridge.form_images import QuizFormBuilder
from ccbridge.google_client import GoogleServices
from ccbridge.html_rewriter import ATTACHMENT_ATTR, VIDEO_PLACEHOLDER_CLASS, VIDEO_PLACEHOLDER_RE
from ccbridge.materializer import ArtifactMaterializer
from ccbridge.models import (
    ContentItem,
    Material,
    PendingUpload,
    ProcessingError,
    QuestionItemDef,
    StandaloneImageDef,
    WorkType,
)
from ccbridge.paths import file_name

logger = logging.getLogger(__name__)

STAGES = ("folders", "uploads", "links", "form", "document")


# ============================================================================
# Placeholder substitution
# ============================================================================

def _drive_link(drive_file: Dict) -> Optional[str]:
    if not drive_file:
        return None
    return drive_file.get("webViewLink") or (
        f"https://drive.google.com/file/d/{drive_file['id']}/view" if drive_file.get("id") else None
    )


def substitute_links(display_html: Optional[str], attachments: List[PendingUpload]) -> Optional[str]:
    """
    Replace attachment and video placeholder spans with links to the
    uploaded Drive files. Placeholders whose file was not uploaded stay.
    """
    if not display_html:
        return display_html

    links = {}
    for upload in attachments:
        url = _drive_link(upload.drive_file)
        if url:
            links[upload.target_name.lower()] = url
    if not links:
        return display_html

    soup = BeautifulSoup(display_html, "lxml")
    body = soup.body or soup
    replaced = 0

    for span in body.find_all("span", attrs={ATTACHMENT_ATTR: True}):
        if VIDEO_PLACEHOLDER_CLASS in (span.get("class") or []):
            continue
        url = links.get(span[ATTACHMENT_ATTR].lower())
        if not url:
            continue
        anchor = soup.new_tag("a", href=url, target="_blank")
        anchor.string = span.get_text()
        span.replace_with(anchor)
        replaced += 1

    for span in body.find_all("span", class_=VIDEO_PLACEHOLDER_CLASS):
        match = VIDEO_PLACEHOLDER_RE.search(span.get_text())
        if not match:
            continue
        url = links.get((span.get(ATTACHMENT_ATTR) or file_name(match.group("ref"))).lower())
        if not url:
            logger.debug(f"[links] No uploaded video for {match.group('ref')}")
            continue
        anchor = soup.new_tag("a", href=url, target="_blank")
        anchor.string = f"Watch video: {html.unescape(match.group('title'))}"
        span.replace_with(anchor)
        replaced += 1

    logger.debug(f"[links] Replaced {replaced} placeholder(s)")
    return body.decode_contents()


def question_uploads(item: ContentItem) -> List[PendingUpload]:
    """Package images referenced by an item's questions."""
    uploads = []
    for definition in item.assessment_questions or []:
        if isinstance(definition, (QuestionItemDef, StandaloneImageDef)) and definition.image:
            if definition.image.upload is not None:
                uploads.append(definition.image.upload)
    return uploads


# ============================================================================
# Publisher
# ============================================================================

class ArtifactPublisher:
    """
    Materializes converted items in Google Drive / Docs / Forms.

    Args:
        services: Google clients
        course_name: Course folder name
        root_folder_name: Top-level Drive folder
        max_workers: Items processed in parallel
    """

    def __init__(
        self,
        services: GoogleServices,
        course_name: str,
        root_folder_name: str = "LMS Import",
        max_workers: int = 4,
        materializer: Optional[ArtifactMaterializer] = None,
    ):
        self.services = services
        self.course_name = course_name
        self.root_folder_name = root_folder_name
        self.max_workers = max(1, max_workers)
        self.materializer = materializer or ArtifactMaterializer(services.drive, services.docs)
        self.form_builder = QuizFormBuilder(services.forms, services.script)

    def publish(self, items: Iterable[ContentItem]) -> Iterator[ContentItem]:
        """
        Yield each item after its artifacts exist, in input order.

        Closing the generator stops new work; items already running finish.
        """
        window = self.max_workers * 2
        pending = deque()
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            for item in items:
                pending.append(executor.submit(self.publish_item, item))
                if len(pending) >= window:
                    yield pending.popleft().result()
            while pending:
                yield pending.popleft().result()

    def publish_item(self, item: ContentItem) -> ContentItem:
        stage = STAGES[0]
        try:
            folder_id = self.materializer.ensure_item_folder(
                self.root_folder_name, self.course_name, item.topic, item.title, item.id
            )

            stage = "uploads"
            for upload in item.attachments:
                self.materializer.upload_attachment(upload, folder_id)
                url = _drive_link(upload.drive_file)
                if not any(m.drive_id == upload.drive_file.get("id") for m in item.materials):
                    item.materials.append(Material(
                        kind="drive_file", url=url, title=upload.target_name, drive_id=upload.drive_file.get("id"),
                    ))
            for upload in question_uploads(item):
                self.materializer.upload_attachment(upload, folder_id)

            stage = "links"
            item.display_html = substitute_links(item.display_html, item.attachments)

            stage = "form"
            if item.qti_file is not None and item.assessment_questions:
                questions = item.assessment_questions
                form = self.materializer.find_or_create_form(
                    item.title, folder_id, item.id,
                    lambda: self.form_builder.build(item.title, questions),
                )
                item.materials.append(Material(
                    kind="form", url=form["formUrl"], title=form.get("title", item.title), drive_id=form["formId"],
                ))

            stage = "document"
            if item.work_type == WorkType.ASSIGNMENT and item.rich and item.display_html and item.qti_file is None:
                doc = self.materializer.find_or_create_document(item.display_html, item.title, folder_id, item.id)
                item.materials.append(Material(
                    kind="drive_file", url=doc["viewUrl"], title=doc.get("title", item.title), drive_id=doc["id"],
                ))

            logger.info(f"[publish] '{item.title}': {len(item.materials)} material(s)")
        except CcBridgeError as e:
            item.processing_error = ProcessingError(message=e.message, stage=stage)
            logger.error(f"[publish] '{item.title}' failed at {stage}: {e.message.strip()}")
        except Exception as e:
            item.processing_error = ProcessingError(message=f"{type(e).__name__}: {e}", stage=stage)
            logger.exception(f"[publish] '{item.title}' failed at {stage}")
        return item
