#!/usr/bin/env python3
"""
icons.py - Centralized icon/emoji definitions for ccbridge CLI output

Usage:
    from ccbridge.icons import icons
    print(f"{icons.SUCCESS} Conversion finished")

Or import individual icons:
    from ccbridge.icons import SUCCESS, WARNING, ERROR

All unicode characters are defined here once. Other modules import them
from this module instead of embedding emoji literals.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Icons:
    """
    Centralized icon definitions.

    Categories:
    - Status: SUCCESS, ERROR, WARNING, INFO, SKIP, DEBUG, CRITICAL
    - Actions: SEARCH
    - Content: ASSIGNMENT, QUESTION, MATERIAL, QUIZ
    - Misc: FOLDER, FILE, LINK, PACKAGE, TOPIC
    """

    # =========================================================================
    # Status Icons
    # =========================================================================
    SUCCESS: str = "✅"
    ERROR: str = "❌"
    WARNING: str = "⚠️"
    INFO: str = "ℹ️"
    SKIP: str = "⏭️"
    DEBUG: str = "🔍"
    CRITICAL: str = "💥"

    # =========================================================================
    # Action Icons
    # =========================================================================
    SEARCH: str = "🔎"

    # =========================================================================
    # Content Type Icons
    # =========================================================================
    ASSIGNMENT: str = "📝"
    QUESTION: str = "💬"
    MATERIAL: str = "📚"
    QUIZ: str = "❓"

    # =========================================================================
    # Misc Icons
    # =========================================================================
    FOLDER: str = "📁"
    FILE: str = "📎"
    LINK: str = "🔗"
    PACKAGE: str = "📦"
    TOPIC: str = "📂"


# Global singleton instance
icons = Icons()

SUCCESS = icons.SUCCESS
ERROR = icons.ERROR
WARNING = icons.WARNING
INFO = icons.INFO
SKIP = icons.SKIP
DEBUG = icons.DEBUG
CRITICAL = icons.CRITICAL
SEARCH = icons.SEARCH
ASSIGNMENT = icons.ASSIGNMENT
QUESTION = icons.QUESTION
MATERIAL = icons.MATERIAL
QUIZ = icons.QUIZ
FOLDER = icons.FOLDER
FILE = icons.FILE
LINK = icons.LINK
PACKAGE = icons.PACKAGE
TOPIC = icons.TOPIC


# =========================================================================
# Helper Functions
# =========================================================================

def work_type_icon(work_type: str) -> str:
    """Return icon for a course work type name."""
    type_map = {
        "assignment": ASSIGNMENT,
        "short_answer_question": QUESTION,
        "multiple_choice_question": QUIZ,
        "material": MATERIAL,
    }
    return type_map.get(work_type.lower(), FILE)
