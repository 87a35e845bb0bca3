#!/usr/bin/env python3
"""
# ccbridge
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

html_rewriter.py

Rewrite package HTML for course work descriptions.

- External http(s) links are kept and collected.
- Local images and file links become styled placeholder spans; the files
  are queued as attachments.
- Local references that do not resolve become red strikethrough markers.
- <video> elements become VIDEO_PLACEHOLDER spans that the artifact stage
  later swaps for Drive links.

Produces a display form (HTML) and a plain-text summary capped at the
course service's description limit.
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from bs4 import BeautifulSoup, NavigableString, Tag

from ccbridge.models import PackageFile, PendingUpload
from ccbridge.paths import (
    file_map_key,
    file_name,
    match_special_prefix,
    resolve_relative_path,
    try_decode,
    unique_file_name,
)

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Placeholder styling
# -----------------------------------------------------------------------------

ATTACHMENT_STYLE = (
    "color: #555; border: 1px dashed #ccc; padding: 2px 5px; "
    "display: inline-block; font-style: italic;"
)
BROKEN_LINK_STYLE = (
    "color: red; border: 1px dashed red; padding: 2px 5px; "
    "display: inline-block; font-style: italic; text-decoration: line-through;"
)
VIDEO_STYLE = (
    "color: #333; border: 1px solid #bbb; background-color: #f0f0f0; "
    "padding: 10px; margin: 5px 0; font-weight: bold; display: block;"
)
VIDEO_MISSING_STYLE = (
    "color: #333; border: 1px solid #bbb; background-color: #f9f9f9; "
    "padding: 10px; margin: 5px 0; font-weight: normal; display: block; font-style: italic;"
)
VIDEO_PLACEHOLDER_CLASS = "imscc-video-placeholder-text"
# Attribute naming the attachment a placeholder span stands for
ATTACHMENT_ATTR = "data-attachment"

VIDEO_PLACEHOLDER_RE = re.compile(
    r'\[VIDEO_PLACEHOLDER REF_NAME="(?P<ref>[^"]*)" DISPLAY_TITLE="(?P<title>[^"]*)"\]'
)

MAX_DESCRIPTION_LENGTH = 25000

RICH_SELECTOR = (
    "img, table, ul, ol, h1, h2, h3, h4, h5, h6, blockquote, pre, code, "
    "strong, em, u, s, sub, sup, p, div, span[style], video"
)


@dataclass
class RewriteResult:
    display_html: str = ""
    plain_text: str = ""
    attachments: List[PendingUpload] = field(default_factory=list)
    external_links: List[str] = field(default_factory=list)
    rich: bool = False


# -----------------------------------------------------------------------------
# Pre-processing
# -----------------------------------------------------------------------------

_IMAGE_LINK_WRAPPER_RE = re.compile(
    r'<a\s+[^>]*?href=(["\'])([^"\']*?\.(png|jpe?g|gif|bmp|svg|webp))(?:\?[\s\S]*?)?\1[^>]*?>'
    r'(?:\s*<br\s*/?>\s*)?(<img\s+[^>]*?src=(["\'])(?:[^"\'>]*/)?\2\5[^>]*?>)(?:\s*<br\s*/?>\s*)?</a>',
    re.IGNORECASE,
)
_BLOCK_CLOSE = r'(?:div|p|h[1-6]|ul|ol|li|body|html|table|tbody|tr|td)'
_UNCLOSED_BEFORE_BLOCK_RE = re.compile(
    r'(<a\s+[^>]*?>[^<>]*(?:<br\s*/?>)?)(?=\s*</' + _BLOCK_CLOSE + r'>)', re.IGNORECASE
)
_UNCLOSED_BEFORE_ANCHOR_RE = re.compile(r'(<a\s+[^>]*?>[^<]*?)(?=\s*<a\s)', re.IGNORECASE)
_UNCLOSED_BEFORE_INPUT_RE = re.compile(r'(<a\s+[^>]*?>\s*(?:<br\s*/?>)?\s*)(<input\s)', re.IGNORECASE)
_UNCLOSED_AT_END_RE = re.compile(
    r'(<a\s+[^>]*?>[^<]*?)(?=\s*(?:</' + _BLOCK_CLOSE + r'>)?\s*$)', re.IGNORECASE
)
_EMPTY_ANCHOR_RE = re.compile(r'<a\s+[^>]*?>\s*</a>', re.IGNORECASE)
_BR_RE = re.compile(r'<br\s*(?!/)\s*>', re.IGNORECASE)
_EMPTY_P_RE = re.compile(r'<p>(?:\s|&nbsp;|\xa0)*</p>', re.IGNORECASE)
_EMPTY_DIV_RE = re.compile(r'<div>(?:\s|&nbsp;|\xa0)*</div>', re.IGNORECASE)
_COMMENT_RE = re.compile(r'<!--[\s\S]*?-->')


def preprocess_html_for_display(raw_html: str) -> str:
    """
    Clean LMS export artifacts before parsing.

    Unwraps <a> tags that only wrap the image they point at, closes <a>
    tags exporters leave open, drops empty anchors and empty blocks,
    normalizes <br> and removes zero-width spaces.
    """
    processed = _IMAGE_LINK_WRAPPER_RE.sub(lambda m: m.group(4), raw_html)

    processed = _UNCLOSED_BEFORE_BLOCK_RE.sub(r'\1</a>', processed)
    processed = _UNCLOSED_BEFORE_ANCHOR_RE.sub(r'\1</a>', processed)
    processed = _UNCLOSED_BEFORE_INPUT_RE.sub(r'\1</a>\2', processed)
    processed = _UNCLOSED_AT_END_RE.sub(r'\1</a>', processed)

    processed = _EMPTY_ANCHOR_RE.sub('', processed)
    processed = _BR_RE.sub('<br />', processed)
    processed = processed.replace('\u200b', '')
    processed = _EMPTY_P_RE.sub('', processed)
    processed = _EMPTY_DIV_RE.sub('', processed)
    return processed


def remove_comments(raw_html: str) -> str:
    return _COMMENT_RE.sub('', raw_html)


def strip_tags(fragment: str) -> str:
    """Text content of an HTML fragment."""
    return BeautifulSoup(fragment, "lxml").get_text()


def collapse_whitespace(text: str) -> str:
    return re.sub(r'\s+', ' ', text).strip()


def truncate_description(text: str, limit: int = MAX_DESCRIPTION_LENGTH) -> str:
    """Cap text at limit, preferring to cut after the last full sentence."""
    if len(text) <= limit:
        return text
    truncated = text[:limit - 20]
    last_period = truncated.rfind('.')
    if last_period > 0:
        truncated = truncated[:last_period + 1]
    else:
        truncated = text[:limit - 3]
    return truncated + "..."


# -----------------------------------------------------------------------------
# Rewriting
# -----------------------------------------------------------------------------

class HtmlRewriter:
    """Rewrites HTML from one package against its file map."""

    def __init__(self, file_map: Dict[str, PackageFile]):
        self.file_map = file_map

    def lookup(self, source_path: str, reference: str) -> Tuple[Optional[str], Optional[PackageFile]]:
        """
        Resolve a local reference written inside source_path.

        Returns (resolved_path, file); either may be None.
        """
        prefix = match_special_prefix(reference)
        path_part = reference
        base = source_path
        if prefix:
            path_part = reference[len(prefix):].lstrip("/")
            base = ""

        cut = re.search(r'[?#]', path_part)
        if cut:
            path_part = path_part[:cut.start()]

        resolved = resolve_relative_path(base, try_decode(path_part))
        if not resolved:
            return None, None
        return resolved, self.file_map.get(file_map_key(resolved))

    def rewrite(self, source_path: str, raw_html: Optional[str]) -> RewriteResult:
        if not raw_html:
            logger.debug(f"[html] No HTML provided for {source_path}")
            return RewriteResult()

        clean = raw_html[1:] if raw_html.startswith("\ufeff") else raw_html
        clean = preprocess_html_for_display(clean)

        soup = BeautifulSoup(clean, "lxml")
        body = soup.body or soup

        result = RewriteResult()
        rich = self._has_rich_elements(body)

        for el in list(body.find_all(["a", "img"])):
            if not _is_attached(el, body):
                continue
            self._rewrite_reference(soup, el, source_path, result)

        for video in list(body.find_all("video")):
            if self._rewrite_video(soup, video, source_path, result):
                rich = True

        display_html = html.unescape(body.decode_contents())
        plain = collapse_whitespace(strip_tags(display_html)) if display_html else ""

        result.display_html = display_html
        result.plain_text = truncate_description(plain)
        result.rich = rich or bool(result.attachments) or bool(result.external_links)
        return result

    # -------------------------------------------------------------------------

    @staticmethod
    def _has_rich_elements(body: Tag) -> bool:
        if body.select_one(RICH_SELECTOR) is not None:
            return True
        inner = body.decode_contents()
        if "<br" in inner:
            return True
        if body.find(True) is not None:
            text_length = len(re.sub(r'\s', '', body.get_text()))
            html_length = len(re.sub(r'\s', '', inner))
            return html_length > text_length + 10
        return False

    def _attach(self, result: RewriteResult, package_file: PackageFile) -> str:
        """Queue package_file once; returns its attachment name, unique within the result."""
        for upload in result.attachments:
            if upload.source_file.name == package_file.name:
                return upload.target_name
        target_name = unique_file_name(
            file_name(package_file.name), (a.target_name for a in result.attachments)
        )
        result.attachments.append(PendingUpload(package_file, target_name))
        return target_name

    def _rewrite_reference(self, soup: BeautifulSoup, el: Tag, source_path: str, result: RewriteResult) -> None:
        is_link = el.name == "a"
        ref = el.get("href" if is_link else "src")
        text = el.get_text()

        if not ref or not ref.strip() or ref == "#":
            if is_link and text.strip():
                el.replace_with(NavigableString(text))
            else:
                el.decompose()
            return

        if re.match(r'^https?://', ref, re.IGNORECASE):
            if is_link and ref not in result.external_links:
                result.external_links.append(ref)
            return

        if re.match(r'^(mailto|tel):', ref, re.IGNORECASE):
            return

        if re.match(r'^javascript:', ref, re.IGNORECASE):
            el.replace_with(NavigableString(text or "Removed Scripted Link"))
            return

        if ref.startswith("#"):
            el.replace_with(NavigableString(text or "Internal Link"))
            return

        if not is_link and re.match(r'^data:image', ref, re.IGNORECASE):
            return

        resolved, package_file = self.lookup(source_path, ref)
        if package_file is None:
            if resolved:
                logger.warning(f"[html] Local file not found: {ref} (resolved: {resolved})")
            else:
                logger.warning(f"[html] Could not resolve local path: {ref}")
            el.replace_with(_styled_span(soup, f"[Broken Link: {ref}]", BROKEN_LINK_STYLE))
            return

        target_name = self._attach(result, package_file)
        if is_link:
            link_text = text.strip() or target_name
            label = f"{html.unescape(link_text)} [Attached File: {target_name}]"
        else:
            alt_text = el.get("alt") or target_name or "image"
            label = f"[Image: {html.unescape(alt_text)} - will be attached separately]"
        span = _styled_span(soup, label, ATTACHMENT_STYLE)
        span[ATTACHMENT_ATTR] = target_name
        el.replace_with(span)

    def _rewrite_video(self, soup: BeautifulSoup, video: Tag, source_path: str, result: RewriteResult) -> bool:
        """Replace a <video> with a placeholder span. True when a local video was found."""
        title = html.unescape(video.get("title") or "Untitled Video")

        candidates = [s.get("src") for s in video.find_all("source")]
        if video.get("src"):
            candidates.insert(0, video.get("src"))

        found_ref = None
        target_name = None
        for src in candidates:
            if not src or re.match(r'^(https?://|data:)', src, re.IGNORECASE):
                continue
            resolved, package_file = self.lookup(source_path, src)
            if package_file is not None and package_file.mime_type.startswith("video/"):
                target_name = self._attach(result, package_file)
                found_ref = try_decode(src)
                break
            if package_file is not None:
                logger.warning(f"[html] Video source is not a video file: {package_file.name} ({package_file.mime_type})")
            else:
                logger.warning(f"[html] Local video not found: {src} (resolved: {resolved})")

        if found_ref:
            span = _styled_span(
                soup,
                f'[VIDEO_PLACEHOLDER REF_NAME="{found_ref}" DISPLAY_TITLE="{title}"]',
                VIDEO_STYLE,
            )
            span[ATTACHMENT_ATTR] = target_name
        else:
            span = _styled_span(
                soup,
                f"[Video: {title} - source not found or not a local video file]",
                VIDEO_MISSING_STYLE,
            )
        span["class"] = VIDEO_PLACEHOLDER_CLASS
        video.replace_with(span)
        return found_ref is not None


def _styled_span(soup: BeautifulSoup, text: str, style: str) -> Tag:
    span = soup.new_tag("span", style=style)
    span.string = text
    return span


def _is_attached(el: Tag, root: Tag) -> bool:
    return any(parent is root for parent in el.parents)


def rewrite_html(source_path: str, raw_html: Optional[str], file_map: Dict[str, PackageFile]) -> RewriteResult:
    """Functional wrapper around HtmlRewriter.rewrite."""
    return HtmlRewriter(file_map).rewrite(source_path, raw_html)
