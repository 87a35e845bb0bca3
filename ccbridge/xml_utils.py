#!/usr/bin/env python3
"""
xml_utils.py (ccbridge)

ElementTree helpers for package XML.

Cartridges mix several namespace versions (imscp v1.1, imscc v1.1/v1.3,
QTI 1.2 and 2.x) and some exporters omit namespaces entirely, so lookups
here match on local element names.

SECURITY: All parsing goes through defusedxml to block XXE and entity
expansion attacks.
"""

from __future__ import annotations

import logging
from typing import Iterator, List, Optional, Union
from xml.etree import ElementTree as ET

from defusedxml import ElementTree as DefusedET
from defusedxml.common import DefusedXmlException

logger = logging.getLogger(__name__)

XML_NS = "http://www.w3.org/XML/1998/namespace"
XML_BASE_ATTR = f"{{{XML_NS}}}base"

BOM = "\ufeff"


# ============================================================================
# Parsing
# ============================================================================

def strip_bom(text: Union[str, bytes]) -> Union[str, bytes]:
    if isinstance(text, bytes):
        return text[3:] if text.startswith(b"\xef\xbb\xbf") else text
    return text[1:] if text.startswith(BOM) else text


def parse_xml(text: Union[str, bytes]) -> ET.Element:
    """
    Parse an XML document and return its root element.

    Raises:
        ET.ParseError / DefusedXmlException on malformed or unsafe input
    """
    return DefusedET.fromstring(strip_bom(text))


def try_parse_xml(text: Union[str, bytes, None], source: str = "") -> Optional[ET.Element]:
    """Parse XML, returning None (and logging why) when it fails."""
    if not text:
        return None
    try:
        return parse_xml(text)
    except (ET.ParseError, DefusedXmlException, ValueError) as e:
        logger.debug(f"[xml] Could not parse {source or 'document'}: {e}")
        return None


# ============================================================================
# Namespace-agnostic lookups
# ============================================================================

def local_name(tag) -> str:
    """Element or attribute name without its namespace."""
    if not isinstance(tag, str):
        # Comments and processing instructions carry callables as tags
        return ""
    return tag.rsplit("}", 1)[-1]


def children(elem: Optional[ET.Element], name: str) -> List[ET.Element]:
    """Direct children with the given local name."""
    if elem is None:
        return []
    return [c for c in elem if local_name(c.tag) == name]


def child(elem: Optional[ET.Element], name: str) -> Optional[ET.Element]:
    """First direct child with the given local name."""
    for c in children(elem, name):
        return c
    return None


def find_path(elem: Optional[ET.Element], *names: str) -> Optional[ET.Element]:
    """Follow a chain of direct children, e.g. find_path(root, "organizations", "organization")."""
    current = elem
    for name in names:
        current = child(current, name)
        if current is None:
            return None
    return current


def descendants(elem: Optional[ET.Element], name: str) -> Iterator[ET.Element]:
    """All descendants (document order, excluding elem) with the local name."""
    if elem is None:
        return
    for node in elem.iter():
        if node is not elem and local_name(node.tag) == name:
            yield node


def first_descendant(elem: Optional[ET.Element], name: str) -> Optional[ET.Element]:
    for node in descendants(elem, name):
        return node
    return None


def get_attr(elem: Optional[ET.Element], name: str, namespace: Optional[str] = None) -> Optional[str]:
    """
    Attribute value by local name.

    With a namespace only that qualified attribute matches; without one an
    unqualified attribute wins over any namespaced attribute of that name.
    """
    if elem is None:
        return None
    if namespace:
        return elem.get(f"{{{namespace}}}{name}")
    value = elem.get(name)
    if value is not None:
        return value
    for key, value in elem.attrib.items():
        if local_name(key) == name:
            return value
    return None


def get_text(elem: Optional[ET.Element], default: str = "") -> str:
    """Safely get stripped text from an element."""
    if elem is not None and elem.text:
        return elem.text.strip()
    return default


def text_content(elem: Optional[ET.Element]) -> str:
    """All text below elem, like DOM textContent."""
    if elem is None:
        return ""
    return "".join(elem.itertext())


# ============================================================================
# LOM metadata
# ============================================================================

def extract_title_from_metadata(elem: Optional[ET.Element]) -> Optional[str]:
    """
    Title from an element's LOM metadata block.

    Reads metadata/lom/general/title/(string|langstring) for both the
    imsmd v1.2.1 and lomimscc v1.1/v1.3 flavours.
    """
    metadata = child(elem, "metadata")
    lom = first_descendant(metadata, "lom")
    title = find_path(lom, "general", "title")
    if title is None:
        return None
    for name in ("string", "langstring"):
        value = get_text(child(title, name))
        if value:
            return value
    return get_text(title) or None
