"""Retry utilities with exponential backoff for HTTP requests."""

import logging

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception,
    before_sleep_log,
)
import httpx
import structlog


logger = structlog.get_logger(__name__)


def is_transient_http_error(exc: BaseException) -> bool:
    """Network failures, timeouts, 429 and 5xx responses are worth retrying."""
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


# Reusable retry decorator for HTTP requests (httpx)
http_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=30),
    retry=retry_if_exception(is_transient_http_error),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
