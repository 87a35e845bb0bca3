#!/usr/bin/env python3
"""
# ccbridge
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

manifest.py

Manifest tree walker and the conversion entry point.

Walks organizations/organization depth-first in pre-order. Every <item>
that references a resource is classified with its parent's topic name;
items with children hand their own sanitized title down as the topic for
their descendants. Without an organization, each <resource> is processed
as a top-level item with no topic.

Items are produced lazily in traversal order. A node that fails is
recorded in the skip log and the walk continues.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, Iterator, List, Optional, Union
from xml.etree import ElementTree as ET

from defusedxml.common import DefusedXmlException

from ccbridge.classifier import ConversionContext, classify_resource
from ccbridge.errors import invalid_manifest_error, missing_manifest_error
from ccbridge.models import ContentItem, PackageFile, ResourceDescriptor, SkipEntry
from ccbridge.package import MANIFEST_NAME, build_file_map
from ccbridge.paths import file_map_key
from ccbridge.xml_utils import (
    XML_NS,
    child,
    children,
    extract_title_from_metadata,
    find_path,
    get_attr,
    get_text,
    parse_xml,
)

logger = logging.getLogger(__name__)

DEFAULT_COURSE_NAME = "Untitled Course"
DEFAULT_ITEM_TITLE = "Untitled Item"
DEFAULT_RESOURCE_TITLE = "Untitled Resource"
DEFAULT_TOPIC_NAME = "Untitled Topic"
MAX_TOPIC_LENGTH = 100


# ============================================================================
# Manifest parsing
# ============================================================================

def parse_manifest(text: Union[str, bytes]) -> ET.Element:
    """
    Parse imsmanifest.xml.

    Raises:
        ManifestError: If the document is not well-formed XML
    """
    try:
        return parse_xml(text)
    except (ET.ParseError, DefusedXmlException, ValueError) as e:
        raise invalid_manifest_error(e)


def find_manifest(file_map: Dict[str, PackageFile]) -> PackageFile:
    manifest = file_map.get(file_map_key(MANIFEST_NAME))
    if manifest is None:
        raise missing_manifest_error()
    return manifest


def build_resources(root: ET.Element) -> Dict[str, ResourceDescriptor]:
    """Index every <resource> by identifier. The first definition of an id wins."""
    resources: Dict[str, ResourceDescriptor] = {}
    for element in children(child(root, "resources"), "resource"):
        identifier = get_attr(element, "identifier")
        if not identifier:
            logger.debug("[walker] Ignoring <resource> without identifier")
            continue
        if identifier in resources:
            continue
        resources[identifier] = ResourceDescriptor(
            identifier=identifier,
            type=get_attr(element, "type") or "",
            href=get_attr(element, "href") or None,
            base_href=get_attr(element, "base", XML_NS),
            title=extract_title_from_metadata(element) or get_attr(element, "title") or None,
            file_hrefs=[h for h in (get_attr(f, "href") for f in children(element, "file")) if h],
            dependencies=[
                d for d in (get_attr(dep, "identifierref") for dep in children(element, "dependency")) if d
            ],
            element=element,
        )
    return resources


def sanitize_topic_name(name: Optional[str]) -> str:
    """Make a title usable as a course topic name."""
    if not name:
        return DEFAULT_TOPIC_NAME
    sanitized = name.replace("/", "-").replace("&", "and")
    sanitized = re.sub(r"[^a-zA-Z0-9\s\-_.,()']", "", sanitized).strip()
    if len(sanitized) > MAX_TOPIC_LENGTH:
        sanitized = sanitized[:MAX_TOPIC_LENGTH - 3] + "..."
    return sanitized or DEFAULT_TOPIC_NAME


def item_title(item: ET.Element) -> str:
    return get_text(child(item, "title")) or extract_title_from_metadata(item) or DEFAULT_ITEM_TITLE


# ============================================================================
# Converter
# ============================================================================

class PackageConverter:
    """
    One conversion run over a loaded package.

    Iterating yields ContentItems in manifest traversal order. skip_log is
    complete once iteration has finished.

    Raises:
        ManifestError: On construction, if the manifest is missing or unparseable
    """

    def __init__(self, files: Iterable[PackageFile]):
        file_map = build_file_map(files)
        manifest = find_manifest(file_map)
        self.root = parse_manifest(manifest.as_text())
        self.course_name = extract_title_from_metadata(self.root) or DEFAULT_COURSE_NAME
        self.ctx = ConversionContext(file_map=file_map, resources=build_resources(self.root))
        self.item_count = 0

    @property
    def skip_log(self) -> List[SkipEntry]:
        return self.ctx.skip_log

    def __iter__(self) -> Iterator[ContentItem]:
        return self.iter_items()

    def iter_items(self) -> Iterator[ContentItem]:
        organization = find_path(self.root, "organizations", "organization")
        if organization is not None:
            root_items = children(organization, "item")
            if not root_items:
                logger.warning("[walker] No <item> elements in the organization")
            logger.info(f"[walker] Converting '{self.course_name}' ({len(root_items)} top-level items)")
            items = self.walk_items(root_items, None)
        else:
            logger.info(f"[walker] No organization; converting {len(self.ctx.resources)} resources directly")
            items = self.walk_resources()

        for content_item in items:
            self.item_count += 1
            yield content_item

        logger.info(f"[walker] Done: {self.item_count} items, {len(self.skip_log)} skipped")

    def walk_items(self, items: List[ET.Element], parent_topic: Optional[str]) -> Iterator[ContentItem]:
        """
        Pre-order walk; a node's own item comes before its descendants'.

        A failure on one node is logged as a skip for that node only; its
        children are still walked.
        """
        for item in items:
            identifier = get_attr(item, "identifier") or ""
            title = DEFAULT_ITEM_TITLE
            child_items = children(item, "item")
            result = None
            try:
                title = item_title(item)
                resource_ref = get_attr(item, "identifierref")

                if resource_ref:
                    result = self.process_reference(resource_ref, title, identifier, parent_topic)
                elif not child_items:
                    self.ctx.skip(title, "No resource reference and no child items", identifier)
                    continue
            except Exception as e:
                logger.exception(f"[walker] Error processing item {identifier or '?'} ('{title}')")
                self.ctx.skip(title, f"Error during item processing: {e}", identifier or None)

            if result is not None:
                yield result
            if child_items:
                yield from self.walk_items(child_items, sanitize_topic_name(title))

    def process_reference(
        self,
        resource_ref: str,
        title: str,
        identifier: str,
        topic: Optional[str],
    ) -> Optional[ContentItem]:
        resource = self.ctx.resources.get(resource_ref)
        if resource is None:
            self.ctx.skip(title, f"Resource not found for ref: {resource_ref}", identifier)
            return None
        result = classify_resource(resource, title, identifier, topic, self.ctx)
        return result if isinstance(result, ContentItem) else None

    def walk_resources(self) -> Iterator[ContentItem]:
        for index, resource in enumerate(self.ctx.resources.values()):
            title = get_attr(resource.element, "title") or resource.title or DEFAULT_RESOURCE_TITLE
            identifier = resource.identifier or f"resource_{index}"
            try:
                result = classify_resource(resource, title, identifier, None, self.ctx)
            except Exception as e:
                logger.exception(f"[walker] Error processing resource {identifier}")
                self.ctx.skip(title, f"Error during item processing: {e}", identifier)
                continue
            if isinstance(result, ContentItem):
                yield result


def convert_package(files: Iterable[PackageFile]) -> PackageConverter:
    """
    Convert a loaded package.

    Returns a PackageConverter: iterate it for ContentItems (lazily, in
    traversal order) and read its skip_log afterwards.
    """
    return PackageConverter(files)
