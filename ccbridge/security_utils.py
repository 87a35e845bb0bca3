#!/usr/bin/env python3
"""
security_utils.py (ccbridge)

Shared security utilities: safe token loading, secret masking for logs,
archive member validation, identifier hashing, image URL policy for
quiz forms, request timeouts and client-side rate limiting.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import stat
import time
import warnings
from collections import deque
from pathlib import Path
from threading import Lock
from typing import Optional, Union
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


# ============================================================================
# Token Loading
# ============================================================================

class CredentialError(Exception):
    """Raised when an access token cannot be loaded or is invalid."""
    pass


def load_token_file(token_path: Union[str, Path]) -> str:
    """
    Read an OAuth access token from a file.

    The file holds the bare token, optionally as ``ACCESS_TOKEN = "..."``.
    Blank lines and ``#`` comments are ignored.

    Raises:
        CredentialError: If the file is missing or holds no token
    """
    token_file = Path(token_path).expanduser()
    if not token_file.is_file():
        raise CredentialError(f"Token file not found: {token_file}")

    check_file_permissions(token_file)

    for line in token_file.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        match = re.match(r'ACCESS_TOKEN\s*[=:]\s*["\']?([^"\'\s]+)["\']?', line)
        if match:
            return match.group(1)
        return line

    raise CredentialError(f"Token file is empty: {token_file}")


def check_file_permissions(file_path: Path, warn_only: bool = True) -> bool:
    """
    Check if file has secure permissions (not readable by group/others).

    Args:
        file_path: Path to check
        warn_only: If True, warn but don't raise. If False, raise on insecure.

    Returns:
        True if permissions are secure, False otherwise
    """
    try:
        mode = os.stat(file_path).st_mode
    except OSError:
        # Can't check permissions (e.g., Windows)
        return True

    is_secure = not (mode & (stat.S_IRWXG | stat.S_IRWXO))
    if not is_secure:
        msg = (
            f"Token file has insecure permissions: {file_path}\n"
            f"Other users may be able to read your access token.\n"
            f"Fix with: chmod 600 {file_path}"
        )
        if not warn_only:
            raise CredentialError(msg)
        warnings.warn(msg, UserWarning)
    return is_secure


# ============================================================================
# Secret Masking for Logs
# ============================================================================

def mask_sensitive(value: str, visible_chars: int = 4) -> str:
    """
    Mask a sensitive value for safe logging.

    Returns:
        Masked string like "ya29****xyz9"
    """
    if not value or len(value) <= visible_chars * 2:
        return "****"
    return f"{value[:visible_chars]}****{value[-visible_chars:]}"


# ============================================================================
# Archive Member Validation
# ============================================================================

_DANGEROUS_MEMBER_CHARS = ('\0', '<', '>', '|', '?', '*')


def is_safe_member_name(member: str) -> bool:
    """
    Validate a zip member name for path traversal attempts.

    Blocks absolute paths, drive letters, parent directory references
    and characters that are invalid in file names.
    """
    if not member:
        return False

    if member.startswith('/') or member.startswith('\\'):
        return False

    # Windows drive letters: C:, D:, ...
    if len(member) >= 2 and member[1] == ':':
        return False

    parts = member.replace('\\', '/').split('/')
    if '..' in parts:
        return False

    return not any(char in member for char in _DANGEROUS_MEMBER_CHARS)


# ============================================================================
# Identifier Hashing
# ============================================================================

def get_content_hash(content: Union[str, bytes]) -> str:
    """
    Get SHA-256 hash of content string/bytes.

    Used to tag created artifacts with a one-way digest of the package's
    stable identifiers, so source-system ids never reach the target service.

    Returns:
        Hex string of SHA-256 hash
    """
    if isinstance(content, str):
        content = content.encode('utf-8')
    return hashlib.sha256(content).hexdigest()


# ============================================================================
# Image URL Policy
# ============================================================================

_IMAGE_EXTENSION_RE = re.compile(r'\.(jpeg|jpg|gif|png|bmp|webp)$', re.IGNORECASE)
_DATA_IMAGE_RE = re.compile(r'^data:image/(jpeg|jpg|gif|png|bmp|webp);base64,', re.IGNORECASE)
_FILENAME_RE = re.compile(r'\.(jpeg|jpg|gif|png|svg|bmp|webp|tif|tiff)$', re.IGNORECASE)

# Hosts (and their subdomains) serving Google-processed images
TRUSTED_IMAGE_HOSTS = ('googleusercontent.com', 'ggpht.com')


def is_secure_image_url(url: Optional[str]) -> bool:
    """
    Decide whether the Forms service may be handed this image URI.

    Accepts HTTPS URLs on Google content hosts or ending in an image
    extension, and base64 image data URIs.
    """
    if not url:
        return False

    if _DATA_IMAGE_RE.match(url):
        return True

    parsed = urlparse(url)
    if parsed.scheme.lower() != 'https' or not parsed.hostname:
        return False

    host = parsed.hostname.lower()
    if any(host == trusted or host.endswith('.' + trusted) for trusted in TRUSTED_IMAGE_HOSTS):
        return True

    return bool(_IMAGE_EXTENSION_RE.search(parsed.path))


def is_likely_filename(text: Optional[str]) -> bool:
    """True when text looks like an image file name rather than prose."""
    if not text:
        return False
    return bool(_FILENAME_RE.search(text.strip()))


# ============================================================================
# Request Timeout Constants
# ============================================================================

# Socket timeouts (seconds) for Google API calls
DEFAULT_TIMEOUT = 30.0
UPLOAD_TIMEOUT = 120.0  # Uploads and Apps Script runs


# ============================================================================
# Rate Limiting for Google APIs
# ============================================================================

class RateLimiter:
    """
    Sliding-window rate limiter shared by all worker threads.

    Google APIs enforce per-user quotas per minute.
    """

    def __init__(self, max_requests: int = 100, window_seconds: float = 60.0):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.timestamps: deque = deque()
        self.lock = Lock()
        self._slowdown_until = 0.0

    def _prune(self, now: float) -> float:
        cutoff = now - self.window_seconds
        while self.timestamps and self.timestamps[0] < cutoff:
            self.timestamps.popleft()
        return cutoff

    def wait_if_needed(self) -> None:
        """
        Wait if rate limit would be exceeded.

        Call this before making an API request.
        """
        with self.lock:
            now = time.time()

            if now < self._slowdown_until:
                sleep_time = self._slowdown_until - now
                logger.warning(f"[rate-limit] Waiting {sleep_time:.1f}s (rate limit cooldown)")
                time.sleep(sleep_time)
                now = time.time()

            cutoff = self._prune(now)

            if len(self.timestamps) >= self.max_requests:
                sleep_time = self.timestamps[0] - cutoff + 0.1
                if sleep_time > 0:
                    logger.warning(f"[rate-limit] Waiting {sleep_time:.1f}s to stay under limit")
                    time.sleep(sleep_time)
                    now = time.time()
                    self._prune(now)

            self.timestamps.append(now)

    def handle_rate_limit_response(self, retry_after: float = 30.0) -> None:
        """
        Enter cooldown after a 429 response.

        Args:
            retry_after: Seconds to wait (from the Retry-After header or default)
        """
        with self.lock:
            self._slowdown_until = time.time() + retry_after
            logger.warning(f"[rate-limit] Google rate limit hit, backing off for {retry_after}s")


_google_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter(max_requests: int = 100) -> RateLimiter:
    """Get the process-wide Google API rate limiter."""
    global _google_rate_limiter
    if _google_rate_limiter is None:
        _google_rate_limiter = RateLimiter(max_requests=max_requests, window_seconds=60.0)
    return _google_rate_limiter
