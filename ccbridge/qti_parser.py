#!/usr/bin/env python3
"""
# ccbridge
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

qti_parser.py

Parse QTI assessment documents into question definitions and build the
Forms API createItem requests for them.

Handles QTI 1.2 (Canvas, Blackboard, D2L exports) and QTI 2.x items:

- Items with an interaction (choice / text entry) are parsed structurally:
  prompt, options, shuffle, single vs multiple answer, point weight and
  correct answers.
- Items that are only an HTML block (common in Blackboard exports) are
  split into one definition per top-level block: images become standalone
  image items or image questions, text blocks become numbered paragraph
  questions.

Point weight precedence: item metadata (qmd_weighting / points_possible),
then the highest "Set" score in response conditions, then the response
mapping's defaultValue, otherwise 1.
"""

from __future__ import annotations

import html
import logging
import math
import re
from typing import Any, Dict, Iterator, List, Optional, Tuple
from xml.etree import ElementTree as ET

from bs4 import BeautifulSoup, Tag

from ccbridge.models import (
    ChoiceOption,
    PackageFile,
    PendingUpload,
    QuestionDef,
    QuestionImage,
    QuestionItemDef,
    QuestionType,
    StandaloneImageDef,
)
from ccbridge.paths import file_map_key, file_name, resolve_relative_path, try_decode
from ccbridge.security_utils import is_likely_filename
from ccbridge.xml_utils import (
    child,
    children,
    descendants,
    first_descendant,
    get_attr,
    local_name,
    text_content,
)

logger = logging.getLogger(__name__)

HTML_TEXTTYPE = "text/html"
IMAGE_ROOT_PREFIX = "$IMS-CC-FILEBASE$"

# Subtrees that hold answer options rather than question text
_RESPONSE_TAGS = {
    "response_lid", "response_str", "response_num", "response_grp", "response_xy",
    "choiceInteraction", "simpleChoice", "response_label", "render_choice", "render_fib",
}
_INTERACTION_TAGS = {
    "choiceInteraction", "textEntryInteraction", "extendedTextInteraction",
    "response_lid", "response_str", "response_num",
}
_HTML_BLOCK_TAGS = {"p", "div", "span", "table", "ul", "ol"}
_NUMBERED_RE = re.compile(r'^\s*\d+[\.\)]\s*')
_THUMBNAIL_SIZE_RE = re.compile(r'=s\d+$')


# ============================================================================
# Text helpers
# ============================================================================

def _round_half_up(value: float) -> int:
    """Round half up, the way score exports expect (2.5 -> 3)."""
    return int(math.floor(value + 0.5))


def clean_text(text: str) -> str:
    """Entity-decode, drop stray tags and collapse whitespace."""
    decoded = html.unescape(text or "")
    plain = re.sub(r'<[^>]*>', ' ', decoded)
    return re.sub(r'\s+', ' ', plain).strip()


def element_text(elem: Optional[ET.Element]) -> str:
    return clean_text(text_content(elem))


def _html_text(tag: Tag) -> str:
    """Visible text of an HTML element; image alt text is never included."""
    return clean_text(tag.get_text())


def _walk_excluding(elem: ET.Element, excluded: set) -> Iterator[ET.Element]:
    for node in elem:
        if local_name(node.tag) in excluded:
            continue
        yield node
        yield from _walk_excluding(node, excluded)


def _metadata_field(item: ET.Element, label: str) -> Optional[str]:
    """Value of a qtimetadata field, matching the label as element text or attribute."""
    # D2L writes qti_metadatafield, Canvas and Blackboard qtimetadatafield
    fields = [n for n in item.iter() if local_name(n.tag) in ("qti_metadatafield", "qtimetadatafield")]
    for field_elem in fields:
        field_label = get_attr(field_elem, "fieldlabel") or element_text(child(field_elem, "fieldlabel"))
        if field_label.strip().lower() == label:
            entry = child(field_elem, "fieldentry")
            if entry is not None:
                return element_text(entry)
    return None


def _parse_float(value: Optional[str]) -> Optional[float]:
    try:
        return float((value or "").strip())
    except ValueError:
        return None


# ============================================================================
# Parser
# ============================================================================

class QtiParser:
    """
    Parses one QTI document.

    Args:
        source_path: Package path of the QTI file (for relative image refs)
        file_map: Normalized package file map
    """

    def __init__(self, source_path: str, file_map: Dict[str, PackageFile]):
        self.source_path = source_path
        self.file_map = file_map

    def parse(self, root: ET.Element) -> List[QuestionDef]:
        items = [
            node for node in root.iter()
            if local_name(node.tag) in ("item", "assessmentItem")
        ]
        if not items:
            bodies = list(descendants(root, "itemBody"))
            if local_name(root.tag) == "itemBody":
                bodies.insert(0, root)
            results: List[QuestionDef] = []
            for body in bodies:
                for mattext in self._html_blocks(body) or [body]:
                    results.extend(self.parse_html_block(text_content(mattext)))
            return results

        results = []
        for item in items:
            try:
                results.extend(self.parse_item(item))
            except (ValueError, TypeError, AttributeError) as e:
                ident = get_attr(item, "ident") or get_attr(item, "identifier") or "?"
                logger.warning(f"[qti] Dropping item {ident} in {self.source_path}: {e}")
        return results

    def parse_item(self, item: ET.Element) -> List[QuestionDef]:
        has_interaction = any(True for node in item.iter() if local_name(node.tag) in _INTERACTION_TAGS)
        if not has_interaction:
            html_blocks = self._html_blocks(item)
            if html_blocks:
                parsed = self.parse_html_block(text_content(html_blocks[0]))
                if parsed:
                    return parsed
        return self.parse_structured_item(item)

    # -------------------------------------------------------------------------
    # Rich-text strategy
    # -------------------------------------------------------------------------

    @staticmethod
    def _html_blocks(item: ET.Element) -> List[ET.Element]:
        """HTML-typed mattext under presentation/material or itemBody (optionally via a div)."""
        parents = {c: p for p in item.iter() for c in p}
        found = []
        for node in item.iter():
            if local_name(node.tag) != "mattext" or get_attr(node, "texttype") != HTML_TEXTTYPE:
                continue
            if not text_content(node).strip():
                continue
            parent = parents.get(node)
            grandparent = parents.get(parent) if parent is not None else None
            parent_name = local_name(parent.tag) if parent is not None else ""
            grand_name = local_name(grandparent.tag) if grandparent is not None else ""
            if (parent_name, grand_name) in (("material", "presentation"), ("div", "itemBody")) \
                    or parent_name == "itemBody":
                found.append(node)
        return found

    def parse_html_block(self, raw_html: str) -> List[QuestionDef]:
        results: List[QuestionDef] = []
        decoded = html.unescape((raw_html or "").strip())
        if not decoded:
            return results

        soup = BeautifulSoup(decoded, "lxml")
        body = soup.body or soup
        counter = 0

        for element in body.find_all(True, recursive=False):
            if element.name == "img":
                alt = element.get("alt")
                results.append(StandaloneImageDef(
                    title=alt if alt and not is_likely_filename(alt) else "Image",
                    image=self._image_for(element.get("src"), alt),
                ))
            elif element.name in _HTML_BLOCK_TAGS:
                images = element.find_all("img")
                surrounding = _html_text(element)
                if images:
                    for img in images:
                        counter += 1
                        alt = img.get("alt")
                        title = surrounding or (alt if alt and not is_likely_filename(alt) else f"Image Question {counter}")
                        if is_likely_filename(title):
                            title = f"Image Question {counter}"
                        description = alt if alt and not is_likely_filename(alt) and alt != title else None
                        results.append(QuestionItemDef(
                            title=title,
                            description=description,
                            question_type=QuestionType.SHORT_TEXT,
                            image=self._image_for(img.get("src"), alt),
                        ))
                elif surrounding:
                    counter += 1
                    title = surrounding if _NUMBERED_RE.match(surrounding) else f"{counter}. {surrounding}"
                    results.append(QuestionItemDef(title=title, question_type=QuestionType.PARAGRAPH))
        return results

    # -------------------------------------------------------------------------
    # Structured strategy
    # -------------------------------------------------------------------------

    def parse_structured_item(self, item: ET.Element) -> List[QuestionDef]:
        ident = get_attr(item, "ident") or get_attr(item, "identifier") or "item"
        item_title = get_attr(item, "title") or ""

        item_body = first_descendant(item, "itemBody")
        presentation = first_descendant(item, "presentation")
        container = item_body if item_body is not None else presentation

        question_text = ""
        prompt = first_descendant(item_body, "prompt")
        if prompt is None:
            prompt = first_descendant(presentation, "prompt")
        if prompt is not None:
            question_text = element_text(prompt)

        image: Optional[QuestionImage] = None
        alt_text: Optional[str] = None
        if container is not None:
            mattexts = [n for n in _walk_excluding(container, _RESPONSE_TAGS) if local_name(n.tag) == "mattext"]
            combined_html = ""
            for mat in mattexts:
                combined_html += text_content(mat)
                mat_text = element_text(mat)
                if not question_text and not is_likely_filename(mat_text):
                    question_text = mat_text

            if combined_html:
                img = BeautifulSoup(html.unescape(combined_html), "lxml").find("img")
                if img is not None:
                    alt_text = img.get("alt")
                    image = self._image_for(img.get("src"), alt_text)
                    if not question_text and alt_text and not is_likely_filename(alt_text):
                        question_text = alt_text

            if not question_text and item_body is not None:
                question_text = clean_text(" ".join(
                    text_content(n) for n in item_body
                    if local_name(n.tag) not in _INTERACTION_TAGS | {"rubricBlock"}
                ))

        if not question_text and item_title:
            question_text = item_title
        if not question_text and image is not None and image.upload is not None:
            question_text = alt_text if alt_text and not is_likely_filename(alt_text) else "Image-based question"

        if not question_text:
            logger.warning(f"[qti] Skipping item {ident}: no question text or title found")
            return []

        title = re.sub(r'\s\s+', ' ', re.sub(r'[\n\r\t]+', ' ', question_text)).strip()

        description = _metadata_field(item, "qmd_description")
        if not description:
            rubric = first_descendant(item_body, "rubricBlock")
            description = element_text(rubric) if rubric is not None else None

        question = self._interaction_question(item, presentation, title, description or None)
        if question is not None:
            question.image = image
            return [question]

        if image is not None and image.upload is not None:
            return [StandaloneImageDef(
                title=title or (alt_text if alt_text and not is_likely_filename(alt_text) else "Image"),
                description=description or None,
                image=image,
            )]

        logger.warning(f"[qti] Skipping item {ident}: no recognizable question structure")
        return []

    def _interaction_question(
        self,
        item: ET.Element,
        presentation: Optional[ET.Element],
        title: str,
        description: Optional[str],
    ) -> Optional[QuestionItemDef]:
        choice_interaction = first_descendant(item, "choiceInteraction")
        response_lid = first_descendant(presentation, "response_lid")
        render_choice = first_descendant(response_lid, "render_choice")

        if choice_interaction is not None or response_lid is not None:
            options = self._choice_options(choice_interaction, response_lid)
            if not options:
                return None
            question = QuestionItemDef(
                title=title,
                description=description,
                question_type=QuestionType.CHECKBOX if _is_multiple_answer(item, choice_interaction, response_lid) else QuestionType.RADIO,
                choices=options,
                shuffle=(
                    (get_attr(render_choice, "shuffle") or "").lower() == "yes"
                    or (get_attr(choice_interaction, "shuffle") or "").lower() == "true"
                ),
            )
            grading = parse_response_processing(item, "choice", options)
        else:
            text_entry = first_descendant(item, "textEntryInteraction")
            extended = first_descendant(item, "extendedTextInteraction")
            response_str = first_descendant(presentation, "response_str")
            if text_entry is None and extended is None and response_str is None:
                return None
            render_fib = first_descendant(response_str, "render_fib")
            paragraph = (
                extended is not None
                or (render_fib is not None and get_attr(render_fib, "rows") is not None)
                or _metadata_field(item, "question_type") == "essay_question"
            )
            question = QuestionItemDef(
                title=title,
                description=description,
                question_type=QuestionType.PARAGRAPH if paragraph else QuestionType.SHORT_TEXT,
            )
            grading = parse_response_processing(item, "text", [])

        if grading and question.question_type != QuestionType.PARAGRAPH:
            question.point_value, question.correct_answers = grading
            question.required = True
        return question

    @staticmethod
    def _choice_options(
        choice_interaction: Optional[ET.Element],
        response_lid: Optional[ET.Element],
    ) -> List[ChoiceOption]:
        options: List[ChoiceOption] = []
        if choice_interaction is not None:
            raw = [(get_attr(c, "identifier"), element_text(c)) for c in descendants(choice_interaction, "simpleChoice")]
        else:
            raw = []
            for label in descendants(response_lid, "response_label"):
                mattext = first_descendant(label, "mattext")
                raw.append((get_attr(label, "ident"), element_text(mattext if mattext is not None else label)))

        for choice_id, text in raw:
            if choice_id and text and not any(o.text == text for o in options):
                options.append(ChoiceOption(id=choice_id, text=text))
        return options

    # -------------------------------------------------------------------------
    # Images
    # -------------------------------------------------------------------------

    def resolve_image_path(self, src: str) -> Optional[str]:
        """Package path for an image src written inside the QTI file."""
        if not src:
            return None
        base = self.source_path
        relative = src
        if src.startswith(IMAGE_ROOT_PREFIX):
            relative = src[len(IMAGE_ROOT_PREFIX):].lstrip("/")
            base = ""
        elif src.startswith("/"):
            relative = src[1:]
            base = ""
        return resolve_relative_path(base, try_decode(relative))

    def _image_for(self, src: Optional[str], alt: Optional[str]) -> QuestionImage:
        image = QuestionImage(alt_text=alt or "")
        if not src:
            return image
        if re.match(r'^(https?://|data:image/)', src, re.IGNORECASE):
            image.source_uri = src
            return image

        path = self.resolve_image_path(src)
        package_file = self.file_map.get(file_map_key(path)) if path else None
        if package_file is None:
            logger.warning(f"[qti] Image not found for src: {src} (resolved: {path})")
            return image
        image.upload = PendingUpload(package_file, file_name(package_file.name))
        if not image.alt_text:
            image.alt_text = package_file.name
        return image


def _is_multiple_answer(
    item: ET.Element,
    choice_interaction: Optional[ET.Element],
    response_lid: Optional[ET.Element],
) -> bool:
    if choice_interaction is not None:
        max_choices = get_attr(choice_interaction, "maxChoices")
        if max_choices is not None:
            return max_choices != "1"
        for decl in descendants(item, "responseDeclaration"):
            if (get_attr(decl, "cardinality") or "").lower() == "multiple":
                return True
        return False
    cardinality = get_attr(response_lid, "rcardinality") or get_attr(response_lid, "cardinality") or ""
    return cardinality.lower() == "multiple"


# ============================================================================
# Grading
# ============================================================================

def _answer_values(
    values: List[str],
    kind: str,
    options: List[ChoiceOption],
    answers: List[str],
) -> None:
    for value in values:
        if not value:
            continue
        if kind == "choice":
            match = next((o for o in options if o.id == value), None)
            if match is not None and match.text not in answers:
                answers.append(match.text)
        elif value not in answers:
            answers.append(value)


def parse_response_processing(
    item: ET.Element,
    kind: str,
    options: List[ChoiceOption],
) -> Optional[Tuple[int, List[str]]]:
    """
    Extract (point_value, correct_answers) from an item's response processing.

    kind is "choice" (answers map option identifiers to option text) or
    "text" (answers are the literal values). Returns None when no correct
    answer can be found.
    """
    processing = first_descendant(item, "resprocessing")
    if processing is None:
        processing = first_descendant(item, "responseProcessing")
    if processing is None:
        return None

    answers: List[str] = []

    metadata_weight = _parse_float(_metadata_field(item, "qmd_weighting"))
    if metadata_weight is None:
        metadata_weight = _parse_float(_metadata_field(item, "points_possible"))

    condition_score: Optional[float] = None
    for condition in descendants(processing, "respcondition"):
        setvar = first_descendant(condition, "setvar")
        score = _parse_float(text_content(setvar)) if setvar is not None else None
        if setvar is None or get_attr(setvar, "action") != "Set" or not score or score <= 0:
            continue
        condition_score = score if condition_score is None else max(condition_score, score)

        conditionvar = child(condition, "conditionvar")
        if conditionvar is None:
            continue
        values = [
            element_text(node)
            for node in _walk_excluding(conditionvar, {"not"})
            if local_name(node.tag) == "varequal"
        ]
        _answer_values(values, kind, options, answers)

    mapping_default: Optional[float] = None
    if not answers:
        declarations = list(descendants(item, "responseDeclaration"))
        primary = (
            next((d for d in declarations if (get_attr(d, "identifier") or "").upper() == "RESPONSE"), None)
            or next((d for d in declarations
                     if child(d, "correctResponse") is not None or child(d, "mapping") is not None), None)
            or (declarations[0] if declarations else None)
        )
        if primary is not None:
            mapping = child(primary, "mapping")
            default_value = _parse_float(get_attr(mapping, "defaultValue")) if mapping is not None else None
            if default_value and default_value > 0:
                mapping_default = default_value
            correct = child(primary, "correctResponse")
            if correct is not None:
                _answer_values([element_text(v) for v in children(correct, "value")], kind, options, answers)

    if not answers:
        return None

    points = 1
    for candidate in (metadata_weight, condition_score, mapping_default):
        if candidate:
            points = _round_half_up(candidate)
            break
    return max(points, 1), answers


# ============================================================================
# Public API
# ============================================================================

def parse_qti(root: ET.Element, source_path: str, file_map: Dict[str, PackageFile]) -> List[QuestionDef]:
    """Parse a QTI document into an ordered list of question definitions."""
    return QtiParser(source_path, file_map).parse(root)


def image_uri(image: Optional[QuestionImage]) -> Optional[str]:
    """
    URI the Forms API should fetch for a question image.

    Uploaded Drive files use their thumbnail (size suffix removed) or a
    direct uc?id= link; external and data URIs are passed through.
    """
    if image is None:
        return None
    upload = image.upload
    if upload is not None:
        drive_file = upload.drive_file or {}
        if drive_file.get("thumbnailLink"):
            return _THUMBNAIL_SIZE_RE.sub("", drive_file["thumbnailLink"])
        if drive_file.get("id"):
            return f"https://drive.google.com/uc?id={drive_file['id']}"
        logger.warning(f"[qti] No Drive file for image {upload.source_file.name}; image will be omitted")
        return None
    return image.source_uri


def _image_payload(image: Optional[QuestionImage]) -> Optional[Dict[str, Any]]:
    uri = image_uri(image)
    if not uri:
        return None
    alt = image.alt_text if image.alt_text and not is_likely_filename(image.alt_text) else "Image"
    return {"sourceUri": uri, "altText": alt}


def build_question_payload(definition: QuestionItemDef) -> Dict[str, Any]:
    if definition.question_type in (QuestionType.RADIO, QuestionType.CHECKBOX):
        question: Dict[str, Any] = {
            "choiceQuestion": {
                "type": definition.question_type.value,
                "options": [{"value": o.text} for o in definition.choices],
                "shuffle": definition.shuffle,
            }
        }
    else:
        question = {"textQuestion": {"paragraph": definition.question_type == QuestionType.PARAGRAPH}}

    if definition.is_graded and definition.question_type != QuestionType.PARAGRAPH:
        question["required"] = definition.required
        question["grading"] = {
            "pointValue": definition.point_value or 1,
            "correctAnswers": {"answers": [{"value": v} for v in definition.correct_answers]},
        }
    return question


def build_form_requests(definitions: List[QuestionDef]) -> List[Dict[str, Any]]:
    """
    Build Forms batchUpdate createItem requests, in definition order.

    Standalone images without a usable URI are dropped; questions keep
    their text and lose only the image.
    """
    requests_out: List[Dict[str, Any]] = []
    for definition in definitions:
        image = _image_payload(definition.image)

        if isinstance(definition, QuestionItemDef):
            question_item: Dict[str, Any] = {"question": build_question_payload(definition)}
            if image:
                question_item["image"] = image
            item: Optional[Dict[str, Any]] = {"title": definition.title, "questionItem": question_item}
            if definition.description:
                item["description"] = definition.description
        elif isinstance(definition, StandaloneImageDef):
            if not image:
                logger.warning(f"[qti] Standalone image '{definition.title}' has no usable URI; skipping")
                continue
            title = definition.title
            if not title or is_likely_filename(title):
                title = "Image"
            item = {"title": title, "imageItem": {"image": image}}
            if definition.description and not is_likely_filename(definition.description):
                item["description"] = definition.description
        else:
            raise TypeError(f"Unknown question definition: {type(definition).__name__}")

        requests_out.append({"createItem": {"item": item, "location": {"index": len(requests_out)}}})
    return requests_out
