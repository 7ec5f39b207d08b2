"""
Utilities
=========

This module provides utility functions that are used across the application
but do not belong to a more specific domain like the Dropbox client or the
batch pipeline.

It contains a `retry` decorator for handling transient network errors with
exponential backoff and jitter, a helper for detecting blank page images,
and small path helpers shared by the pipeline and the index renderer.
"""

from __future__ import annotations

import posixpath
import random
import re
import time
from functools import wraps
from typing import Callable, Type, TypeVar

import structlog
from PIL import Image

log = structlog.get_logger(__name__)
T = TypeVar("T")

_UNSAFE_ID_CHARS = re.compile(r"[:/\\ ]")


def retry(
    retryable_exceptions: tuple[Type[Exception], ...],
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    A decorator that retries a method call on specific exceptions.

    The decorated method's instance must expose ``settings.MAX_RETRIES`` and
    ``settings.MAX_RETRY_BACKOFF_SECONDS``.

    Args:
        retryable_exceptions: A tuple of exception types that should trigger a retry.
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(self, *args, **kwargs) -> T:
            settings = self.settings
            max_retries = max(1, settings.MAX_RETRIES)
            for attempt in range(1, max_retries + 1):
                try:
                    return func(self, *args, **kwargs)
                except retryable_exceptions as e:
                    if attempt == max_retries:
                        log.warning(
                            "Call failed after all attempts",
                            func=func.__name__,
                            attempts=attempt,
                            error=str(e),
                        )
                        raise
                    log.warning(
                        "Call failed; retrying",
                        func=func.__name__,
                        error=str(e),
                        attempt=attempt,
                        max_retries=max_retries,
                    )
                    _sleep_backoff(attempt, settings.MAX_RETRY_BACKOFF_SECONDS)
            # This part should be unreachable if MAX_RETRIES > 0
            raise RuntimeError("Retry loop exited unexpectedly.")

        return wrapper

    return decorator


def _sleep_backoff(attempt: int, max_backoff: float) -> None:
    """Sleep for a short duration with exponential backoff and jitter."""
    delay = min(max_backoff, (2**attempt) * random.uniform(0.8, 1.2))
    log.info("Sleeping before retry", delay=round(delay, 1), attempt=attempt)
    time.sleep(delay)


def is_blank(image: Image.Image, threshold: int = 5) -> bool:
    """
    Return True if the image is essentially blank (all white).
    """
    # Greyscale histogram - index 255 is pure white
    histogram = image.convert("L").histogram()
    return (sum(histogram) - histogram[255]) < threshold


def sanitize_id(remote_id: str) -> str:
    """Make a remote id safe to use as a local file name."""
    return _UNSAFE_ID_CHARS.sub("_", remote_id)


def join_remote(folder: str, name: str) -> str:
    """Join a remote folder and a file name with exactly one slash."""
    return posixpath.join(folder.rstrip("/") or "/", name.lstrip("/"))
