#!/usr/bin/env python3
"""
# ccbridge
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

classifier.py

Resource classification and content extraction.

Given one manifest <resource> (as a ResourceDescriptor) and the package
file map, decide what kind of course work it is and build the ContentItem
for it. Classification order, first match wins:

    1. Assessment (QTI types, D2L quizzes, quiz-shaped XML)
    2. Web link XML
    3. Discussion topic
    4. HTML page
    5. External URL or special-prefix reference
    6. Any other local file
    7. Nothing resolvable -> skip

Dependencies are resolved afterwards. Anything that ends up with no
description, questions, materials or attachments is a skip.
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union
from xml.etree import ElementTree as ET

from ccbridge.html_rewriter import (
    HtmlRewriter,
    RewriteResult,
    preprocess_html_for_display,
    remove_comments,
)
from ccbridge.models import (
    ContentItem,
    PackageFile,
    ResourceDescriptor,
    SkipEntry,
    WorkType,
)
from ccbridge.paths import (
    file_map_key,
    file_name,
    is_external_url,
    match_special_prefix,
    resolve_relative_path,
    strip_special_prefixes,
)
from ccbridge.qti_parser import parse_qti
from ccbridge.xml_utils import (
    first_descendant,
    get_attr,
    local_name,
    text_content,
    try_parse_xml,
)

logger = logging.getLogger(__name__)

D2L_NS = "http://desire2learn.com/xsd/d2lcp_v2p0"

QTI_TYPES = (
    "imsqti_xmlv1p2/xml",
    "imsqti_xmlv1p2p1/imsqti_asiitem_xmlv1p2p1",
)
QTI_TYPE_PREFIXES = ("application/vnd.ims.qti", "assessment/x-bb-qti")

# Root elements that mark a document as an assessment
QUIZ_ROOTS = ("questestinterop", "assessmentItem", "assessmentTest")

HTML_TEXTTYPE = "text/html"


@dataclass
class ConversionContext:
    """
    Read-only lookup state shared by one conversion run, plus its skip log.

    The skip log is appended to by the walker only.
    """
    file_map: Dict[str, PackageFile]
    resources: Dict[str, ResourceDescriptor] = field(default_factory=dict)
    skip_log: List[SkipEntry] = field(default_factory=list)
    rewriter: Optional[HtmlRewriter] = None

    def __post_init__(self):
        if self.rewriter is None:
            self.rewriter = HtmlRewriter(self.file_map)

    def lookup(self, path: Optional[str]) -> Optional[PackageFile]:
        if not path:
            return None
        return self.file_map.get(file_map_key(path))

    def skip(self, title: str, reason: str, item_id: Optional[str] = None) -> SkipEntry:
        entry = SkipEntry(title=title, reason=reason, id=item_id)
        self.skip_log.append(entry)
        logger.warning(f"[walker] Skipping '{title}': {reason}")
        return entry


@dataclass
class _Primary:
    """What a resource's primary href resolved to."""
    reference: Optional[str] = None
    resolved: Optional[str] = None
    file: Optional[PackageFile] = None
    xml: Optional[ET.Element] = None


ClassifyResult = Union[ContentItem, SkipEntry]


# ============================================================================
# Primary reference
# ============================================================================

def _is_link_reference(reference: Optional[str]) -> bool:
    return is_external_url(reference) or match_special_prefix(reference) is not None


def resolve_primary(resource: ResourceDescriptor, ctx: ConversionContext) -> _Primary:
    """Find the file (or link) a resource points at and parse it if it is XML."""
    primary = _Primary(reference=resource.primary_href)
    reference = primary.reference
    if not reference:
        logger.debug(f"[classify] No primary href for resource {resource.identifier}")
        return primary

    if _is_link_reference(reference):
        primary.resolved = reference
        return primary

    primary.resolved = resolve_relative_path(resource.base_href, reference)
    if not primary.resolved:
        logger.warning(f"[classify] Could not resolve primary href: {reference}")
        return primary

    primary.file = ctx.lookup(primary.resolved)
    if primary.file is None:
        logger.warning(f"[classify] Referenced file not found in package: {reference} (resolved: {primary.resolved})")
        return primary

    package_file = primary.file
    if package_file.is_text and (package_file.name.lower().endswith(".xml") or "xml" in package_file.mime_type):
        primary.xml = try_parse_xml(package_file.data, package_file.name)
        if primary.xml is None:
            logger.warning(f"[classify] XML parsing failed for {package_file.name}")
    return primary


# ============================================================================
# Kind detection
# ============================================================================

def is_qti_resource(resource: ResourceDescriptor, primary: _Primary) -> bool:
    resource_type = resource.type or ""
    if resource_type in QTI_TYPES or resource_type.startswith(QTI_TYPE_PREFIXES):
        return True

    looks_xml = any(
        (path or "").lower().endswith(".xml")
        for path in (primary.file.name if primary.file else None, primary.resolved)
    )
    if looks_xml and "qti" in resource_type.lower():
        return True

    if get_attr(resource.element, "material_type", D2L_NS) == "d2lquiz":
        return True

    return primary.xml is not None and local_name(primary.xml.tag) in QUIZ_ROOTS


def _find_anywhere(root: Optional[ET.Element], name: str) -> Optional[ET.Element]:
    if root is None:
        return None
    if local_name(root.tag) == name:
        return root
    return first_descendant(root, name)


def web_link_url(root: Optional[ET.Element]) -> Optional[str]:
    url = _find_anywhere(root, "url")
    return get_attr(url, "href") or None


def is_web_link_xml(root: Optional[ET.Element]) -> bool:
    """A <webLink> document, or any XML carrying a <url href="..."> element."""
    return _find_anywhere(root, "webLink") is not None or web_link_url(root) is not None


def is_topic_xml(root: Optional[ET.Element]) -> bool:
    topic = _find_anywhere(root, "topic")
    return topic is not None and first_descendant(topic, "text") is not None


def extract_topic_html(root: ET.Element) -> Optional[str]:
    """HTML body of a discussion topic's <text texttype="text/html">, or None when blank."""
    topic = _find_anywhere(root, "topic")
    text = first_descendant(topic, "text")
    if text is None or get_attr(text, "texttype") != HTML_TEXTTYPE:
        return None

    content = remove_comments(html.unescape(text_content(text)).strip()).strip()
    if not re.sub(r"\s", "", content):
        return None
    return preprocess_html_for_display(content)


def is_discussion_resource(resource: ResourceDescriptor, primary: _Primary) -> bool:
    resource_type = (resource.type or "").lower()
    return (
        is_topic_xml(primary.xml)
        or "discussiontopic" in resource_type
        or resource_type.startswith("imsdt")
    )


def _is_html_file(package_file: Optional[PackageFile]) -> bool:
    return package_file is not None and (
        package_file.mime_type == "text/html" or package_file.name.lower().endswith(".html")
    )


# ============================================================================
# Branches
# ============================================================================

def _apply_rewrite(item: ContentItem, result: RewriteResult) -> None:
    item.display_html = result.display_html
    item.rich = result.rich
    for upload in result.attachments:
        item.add_attachment(upload.source_file, upload.target_name)
    for url in result.external_links:
        if url not in item.external_links:
            item.external_links.append(url)
        item.add_link(url)


def _classify_qti(item: ContentItem, primary: _Primary, ctx: ConversionContext) -> Optional[str]:
    item.work_type = WorkType.ASSIGNMENT
    package_file = primary.file
    if package_file is None:
        return "QTI/Assessment - No valid primary file"

    if primary.xml is not None:
        item.qti_file = package_file
        item.assessment_questions = parse_qti(primary.xml, package_file.name, ctx.file_map)
        logger.info(
            f"[classify] Assessment '{item.title}': {len(item.assessment_questions)} question(s) from {package_file.name}"
        )
        if not item.assessment_questions:
            logger.warning(f"[classify] No questions parsed from {package_file.name}; attaching the file")
            item.add_attachment(package_file)
    elif package_file.name.lower().endswith(".zip") or package_file.mime_type == "application/zip":
        logger.info(f"[classify] Assessment '{item.title}' is a zip; attaching it")
        item.add_attachment(package_file)
    else:
        logger.warning(f"[classify] Assessment file {package_file.name} is not parseable XML; attaching it")
        item.add_attachment(package_file)
    return None


def _classify_web_link(item: ContentItem, primary: _Primary) -> None:
    url = web_link_url(primary.xml)
    if url:
        item.work_type = WorkType.ASSIGNMENT
        item.add_link(url, item.title)
        item.plain_text_summary = f"Please follow this link: {item.title}"
        logger.info(f"[classify] Web link '{item.title}' -> {url}")
    else:
        logger.warning(f"[classify] Web link XML '{item.title}' has no URL; attaching the XML")
        item.add_attachment(primary.file)
        item.work_type = WorkType.MATERIAL


def _discussion_summary(title: str, plain: str, display_html: str) -> str:
    plain_length = len(re.sub(r"\s", "", plain))
    display_length = len(re.sub(r"<[^>]+>", "", display_html).strip())

    if plain_length < 10 and display_length > 0:
        return f'Discussion Prompt: "{title}". See details below.'
    if (
        plain_length > 0
        and plain.strip().lower() == title.strip().lower()
        and display_length > 0
        and display_length != len(title.strip())
    ):
        return f"Discussion Prompt: {title}. See details below."
    if not plain.strip() and display_length > 0:
        return f"Discussion Prompt: {title}. See formatted content below."
    return plain


def _classify_discussion(item: ContentItem, primary: _Primary, ctx: ConversionContext) -> None:
    item.work_type = WorkType.SHORT_ANSWER_QUESTION
    content_html = None
    source_path = ""

    if primary.file is not None and is_topic_xml(primary.xml):
        content_html = extract_topic_html(primary.xml)
        source_path = primary.file.name
    elif _is_html_file(primary.file) and primary.file.is_text:
        content_html = primary.file.data
        source_path = primary.file.name

    if content_html and content_html.strip():
        result = ctx.rewriter.rewrite(source_path, content_html)
        _apply_rewrite(item, result)
        item.plain_text_summary = _discussion_summary(item.title, result.plain_text, result.display_html)
        return

    logger.info(f"[classify] Discussion '{item.title}' has no extractable HTML")
    item.display_html = f"<p>{html.escape(item.title)}</p>"
    item.plain_text_summary = f"Discussion: {item.title}"
    item.rich = True
    if primary.file is not None:
        item.add_attachment(primary.file)


def _classify_html(item: ContentItem, primary: _Primary, ctx: ConversionContext) -> None:
    package_file = primary.file
    item.work_type = WorkType.ASSIGNMENT
    if package_file.is_text:
        result = ctx.rewriter.rewrite(package_file.name, package_file.data)
        _apply_rewrite(item, result)
        item.plain_text_summary = result.plain_text or f"Please review the content: {item.title}"
    else:
        item.add_attachment(package_file)
        item.plain_text_summary = f"Please see the attached HTML file: {package_file.base_name}"
        item.work_type = WorkType.MATERIAL


def _classify_link(item: ContentItem, reference: str) -> None:
    item.work_type = WorkType.MATERIAL
    item.add_link(reference, item.title)
    clean = strip_special_prefixes(reference)
    item.plain_text_summary = f"Link: {item.title} ({clean})" if clean else f"Link: {item.title}"


def _classify_file(item: ContentItem, package_file: PackageFile) -> None:
    item.work_type = WorkType.MATERIAL
    item.add_attachment(package_file)
    item.plain_text_summary = f"Please see the attached file: {package_file.base_name}"


# ============================================================================
# Dependencies
# ============================================================================

def _is_inline_media(package_file: PackageFile) -> bool:
    mime_type = package_file.mime_type
    return (
        mime_type.startswith(("image/", "video/", "text/"))
        or "xml" in mime_type
    )


def attach_dependencies(
    item: ContentItem,
    resource: ResourceDescriptor,
    primary_file: Optional[PackageFile],
    ctx: ConversionContext,
) -> None:
    """
    Attach a resource's dependency files.

    Images, video, text and XML are not re-attached: they are either
    already inline placeholders or part of the content itself.
    """
    for dep_ref in resource.dependencies:
        dependency = ctx.resources.get(dep_ref)
        if dependency is None:
            logger.warning(f"[classify] Dependency {dep_ref} does not reference a resource")
            continue

        href = dependency.href
        if not href:
            logger.warning(f"[classify] Dependency {dep_ref} has no href")
            continue

        if _is_link_reference(href):
            if item.add_link(href):
                logger.debug(f"[classify] Added dependency link {href}")
            continue

        resolved = resolve_relative_path(dependency.base_href or resource.base_href, href)
        dep_file = ctx.lookup(resolved)
        if dep_file is None:
            logger.warning(f"[classify] Dependency {dep_ref} could not be resolved to a file ({resolved})")
            continue

        if primary_file is not None and dep_file.name == primary_file.name:
            continue
        if _is_inline_media(dep_file):
            logger.debug(f"[classify] Not re-attaching {dep_file.name} ({dep_file.mime_type})")
            continue
        if item.add_attachment(dep_file, file_name(dep_file.name)):
            logger.debug(f"[classify] Added dependency file {dep_file.name}")


# ============================================================================
# Entry point
# ============================================================================

def classify_resource(
    resource: ResourceDescriptor,
    item_title: str,
    item_id: str,
    topic: Optional[str],
    ctx: ConversionContext,
) -> ClassifyResult:
    """
    Build the ContentItem for one resource.

    Args:
        resource: The manifest resource
        item_title: Title of the referring <item> (fallback title)
        item_id: Identifier of the referring <item>
        topic: Sanitized topic of the item's parent container
        ctx: Conversion context

    Returns:
        A ContentItem, or the SkipEntry recorded in ctx.skip_log
    """
    title = resource.title or item_title

    if get_attr(resource.element, "material_type", D2L_NS) == "orgunitconfig":
        return ctx.skip(title, "D2L orgunitconfig", item_id)

    item = ContentItem(id=item_id, title=title, work_type=WorkType.ASSIGNMENT, topic=topic)
    primary = resolve_primary(resource, ctx)

    if is_qti_resource(resource, primary):
        reason = _classify_qti(item, primary, ctx)
        if reason:
            return ctx.skip(title, reason, item_id)
    elif primary.file is not None and is_web_link_xml(primary.xml):
        _classify_web_link(item, primary)
    elif is_discussion_resource(resource, primary):
        _classify_discussion(item, primary, ctx)
    elif _is_html_file(primary.file):
        _classify_html(item, primary, ctx)
    elif primary.resolved and _is_link_reference(primary.resolved):
        _classify_link(item, primary.resolved)
    elif primary.file is not None:
        _classify_file(item, primary.file)
    else:
        return ctx.skip(
            title,
            f"Unhandled resource type or no primary file/link ({resource.type or 'N/A'})",
            item_id,
        )

    attach_dependencies(item, resource, primary.file, ctx)

    if not item.has_content():
        return ctx.skip(title, "No processable content found in resource", item_id)

    logger.debug(f"[classify] '{title}' -> {item.work_type.value}")
    return item
