#!/usr/bin/env python3
"""
# ccbridge
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

logging_utils.py

Logging setup with icons. Output is message-only (no per-line timestamps);
each line is prefixed with an icon chosen by level.
"""

from __future__ import annotations

import logging

from ccbridge.icons import icons


# Message-only; no per-line timestamps
LOG_FORMAT = "%(message)s"

LEVEL_ICONS = {
    logging.DEBUG: icons.DEBUG,
    logging.INFO: icons.SUCCESS,
    logging.WARNING: icons.WARNING,
    logging.ERROR: icons.ERROR,
    logging.CRITICAL: icons.CRITICAL,
}


class IconLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        icon = LEVEL_ICONS.get(record.levelno, icons.INFO)
        base = super().format(record)
        return f"{icon} {base}"


def setup_logging(verbosity: int = 1, quiet: bool = False) -> None:
    """
    Configure the root logger.

    verbosity >= 2 enables DEBUG output; quiet limits output to warnings.
    """
    level = logging.INFO
    if verbosity >= 2:
        level = logging.DEBUG
    if quiet:
        level = logging.WARNING

    handler = logging.StreamHandler()
    formatter = IconLogFormatter(LOG_FORMAT)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(handler)

    # API client request logging drowns out per-item progress at DEBUG
    for noisy in ("googleapiclient", "google_auth_httplib2"):
        logging.getLogger(noisy).setLevel(max(level, logging.INFO))
