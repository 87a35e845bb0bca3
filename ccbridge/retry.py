#!/usr/bin/env python3
"""
# ccbridge
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

retry.py

Bounded exponential backoff for Google API calls.

Rate-limit and server-side failures are retried, as are dropped
connections and socket timeouts. Any other ServiceAPIError is a client
error and fails at once.
"""

from __future__ import annotations

import logging
import random
import socket
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, TypeVar

from ccbridge.errors import RetryExhaustedError, ServiceAPIError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Transport failures raised by httplib2 under the API client
TRANSIENT_ERRORS = (ConnectionError, TimeoutError, socket.timeout)


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    initial_delay: float = 1.5
    backoff_factor: float = 2.0
    max_jitter: float = 1.0
    retryable_status_codes: Tuple[int, ...] = (429, 500, 503, 504)

    @classmethod
    def from_config(cls, config) -> "RetryConfig":
        """Build from a CcBridgeConfig."""
        return cls(
            max_retries=config.max_retries,
            initial_delay=config.initial_delay,
            backoff_factor=config.backoff_factor,
        )

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before retry number `attempt` (1-based)."""
        delay = self.initial_delay * (self.backoff_factor ** (attempt - 1))
        return delay + random.uniform(0, self.max_jitter)


def is_retryable(error: BaseException, config: RetryConfig) -> bool:
    if isinstance(error, TRANSIENT_ERRORS):
        return True
    if isinstance(error, ServiceAPIError):
        return error.status_code in config.retryable_status_codes
    return False


def retry_call(
    func: Callable[[], T],
    config: Optional[RetryConfig] = None,
    description: str = "request",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call func, retrying transient failures with backoff.

    Args:
        func: Zero-argument callable performing one attempt
        config: Retry policy (defaults to RetryConfig())
        description: What the call does, for log lines
        sleep: Delay function (tests pass a stub)

    Raises:
        RetryExhaustedError: Transient failures outlasted max_retries
        ServiceAPIError: Non-retryable failure, raised unchanged
    """
    config = config or RetryConfig()
    attempt = 0
    while True:
        try:
            return func()
        except (ServiceAPIError,) + TRANSIENT_ERRORS as e:
            if not is_retryable(e, config):
                raise
            attempt += 1
            if attempt > config.max_retries:
                status = getattr(e, "status_code", None)
                raise RetryExhaustedError(
                    message=f"{description} failed after {config.max_retries} retries",
                    status_code=status,
                    operation=description,
                    cause=e,
                ) from e
            delay = config.delay_for(attempt)
            logger.warning(
                f"[retry] {description} failed ({_describe(e)}); "
                f"retry {attempt}/{config.max_retries} in {delay:.1f}s"
            )
            sleep(delay)


def _describe(error: BaseException) -> str:
    status = getattr(error, "status_code", None)
    if status:
        return f"HTTP {status}"
    return type(error).__name__
