#!/usr/bin/env python3
"""
# ccbridge
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

models.py

Data model shared by the conversion pipeline and the artifact stage.

PackageFile is immutable once loaded. ContentItem and the question
definitions are built during one conversion pass and handed to the caller;
the artifact stage only fills in the Drive-side fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Union

from ccbridge.paths import unique_file_name


# ============================================================================
# Package content
# ============================================================================

@dataclass(frozen=True)
class PackageFile:
    """One file from the course package. Text files carry str data."""
    name: str
    data: Union[str, bytes]
    mime_type: str

    @property
    def is_text(self) -> bool:
        return isinstance(self.data, str)

    @property
    def base_name(self) -> str:
        return self.name.replace("\\", "/").rsplit("/", 1)[-1] or self.name

    def as_bytes(self) -> bytes:
        if isinstance(self.data, str):
            return self.data.encode("utf-8")
        return self.data

    def as_text(self) -> str:
        if isinstance(self.data, str):
            return self.data
        return self.data.decode("utf-8", errors="replace")


@dataclass
class ResourceDescriptor:
    """A manifest <resource> entry, reduced to what classification needs."""
    identifier: str
    type: str = ""
    href: Optional[str] = None
    base_href: Optional[str] = None
    title: Optional[str] = None
    file_hrefs: List[str] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)
    # The <resource> element itself, for metadata and vendor attributes
    element: Any = field(default=None, repr=False, compare=False)

    @property
    def primary_href(self) -> Optional[str]:
        if self.href:
            return self.href
        return self.file_hrefs[0] if self.file_hrefs else None


@dataclass
class ManifestNode:
    """Read-only view over one <item> of the organization tree."""
    identifier: str
    title: str
    resource_ref: Optional[str] = None
    children: List["ManifestNode"] = field(default_factory=list)


# ============================================================================
# Course work
# ============================================================================

class WorkType(str, Enum):
    ASSIGNMENT = "ASSIGNMENT"
    SHORT_ANSWER_QUESTION = "SHORT_ANSWER_QUESTION"
    MULTIPLE_CHOICE_QUESTION = "MULTIPLE_CHOICE_QUESTION"
    MATERIAL = "MATERIAL"


@dataclass
class PendingUpload:
    """A package file that must reach Drive before its item is submitted."""
    source_file: PackageFile
    target_name: str
    # Filled by the artifact stage: {id, name, webViewLink, thumbnailLink}
    drive_file: Optional[Dict[str, Any]] = None


@dataclass
class Material:
    """A link, Drive file or form attached to a content item."""
    kind: str  # "link" | "drive_file" | "form"
    url: Optional[str] = None
    title: Optional[str] = None
    drive_id: Optional[str] = None


@dataclass
class ProcessingError:
    message: str
    stage: str


@dataclass
class SkipEntry:
    """A manifest node or resource that produced no content item."""
    title: str
    reason: str
    id: Optional[str] = None


# ============================================================================
# Assessment questions
# ============================================================================

class QuestionType(str, Enum):
    RADIO = "RADIO"
    CHECKBOX = "CHECKBOX"
    SHORT_TEXT = "SHORT_TEXT"
    PARAGRAPH = "PARAGRAPH"


@dataclass
class ChoiceOption:
    id: str
    text: str


@dataclass
class QuestionImage:
    """An image for a question: a package file or an already usable URI."""
    alt_text: str = ""
    upload: Optional[PendingUpload] = None
    source_uri: Optional[str] = None


@dataclass
class QuestionItemDef:
    kind: ClassVar[str] = "question"

    title: str
    question_type: QuestionType
    description: Optional[str] = None
    choices: List[ChoiceOption] = field(default_factory=list)
    shuffle: bool = False
    correct_answers: List[str] = field(default_factory=list)
    point_value: Optional[int] = None
    required: bool = False
    image: Optional[QuestionImage] = None

    @property
    def is_graded(self) -> bool:
        return bool(self.correct_answers)


@dataclass
class StandaloneImageDef:
    kind: ClassVar[str] = "standalone_image"

    title: str
    image: QuestionImage
    description: Optional[str] = None


QuestionDef = Union[QuestionItemDef, StandaloneImageDef]


# ============================================================================
# Pipeline output
# ============================================================================

@dataclass
class ContentItem:
    """One course work item emitted by the conversion pass."""
    id: str
    title: str
    work_type: WorkType
    topic: Optional[str] = None
    plain_text_summary: str = ""
    display_html: Optional[str] = None
    rich: bool = False
    attachments: List[PendingUpload] = field(default_factory=list)
    external_links: List[str] = field(default_factory=list)
    materials: List[Material] = field(default_factory=list)
    qti_file: Optional[PackageFile] = None
    assessment_questions: Optional[List[QuestionDef]] = None
    state: str = "DRAFT"
    processing_error: Optional[ProcessingError] = None

    def has_content(self) -> bool:
        return bool(
            self.plain_text_summary
            or self.display_html
            or self.qti_file
            or self.assessment_questions
            or self.materials
            or self.attachments
        )

    def add_attachment(self, source_file: PackageFile, target_name: Optional[str] = None) -> bool:
        """
        Attach a package file once. Returns False when that file is already
        attached. A target name another attachment uses gets a " (n)" suffix.
        """
        if any(a.source_file.name == source_file.name for a in self.attachments):
            return False
        name = unique_file_name(target_name or source_file.base_name, (a.target_name for a in self.attachments))
        self.attachments.append(PendingUpload(source_file, name))
        return True

    def add_link(self, url: str, title: Optional[str] = None) -> bool:
        """Add a link material once per URL. Returns False on duplicates."""
        if any(m.kind == "link" and m.url == url for m in self.materials):
            return False
        self.materials.append(Material(kind="link", url=url, title=title))
        return True

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly summary; file bodies are reduced to names."""
        return {
            "id": self.id,
            "title": self.title,
            "topic": self.topic,
            "work_type": self.work_type.value,
            "state": self.state,
            "description": self.plain_text_summary,
            "rich": self.rich,
            "display_html": self.display_html,
            "attachments": [
                {
                    "source": a.source_file.name,
                    "target_name": a.target_name,
                    "mime_type": a.source_file.mime_type,
                    "drive_id": (a.drive_file or {}).get("id"),
                }
                for a in self.attachments
            ],
            "external_links": list(self.external_links),
            "materials": [
                {"kind": m.kind, "url": m.url, "title": m.title, "drive_id": m.drive_id}
                for m in self.materials
            ],
            "qti_file": self.qti_file.name if self.qti_file else None,
            "question_count": len(self.assessment_questions or []),
            "processing_error": (
                {"message": self.processing_error.message, "stage": self.processing_error.stage}
                if self.processing_error else None
            ),
        }
