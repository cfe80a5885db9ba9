"""
Retry Strategies using Tenacity.

Retry policy for idempotent daemon reads. Sends are never retried: a send
that timed out may still have gone through.
"""

from __future__ import annotations

import httpx
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from sialedger.core.exceptions import NetworkError
from sialedger.core.logging import get_logger

logger = get_logger("retry")


def is_transient_error(exception: BaseException) -> bool:
    """Check if exception is a transient network/infrastructure error."""
    if isinstance(exception, httpx.TransportError):
        return True
    if isinstance(exception, NetworkError):
        if exception.status_code is None:
            # Connection-level failure wrapped by the client
            return isinstance(exception.__cause__, httpx.TransportError)
        return exception.is_server_error() or exception.is_rate_limited()
    return False


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        f"Retrying daemon request after {exc!r} (attempt {retry_state.attempt_number})"
    )


# Standard Retry Policy
# 5 attempts with exponential backoff (1s, 2s, 4s, 8s, capped at 16s),
# only on transient errors.
retry_policy = retry(
    retry=retry_if_exception(is_transient_error),
    wait=wait_exponential(multiplier=1, min=1, max=16),
    stop=stop_after_attempt(5),
    reraise=True,
    before_sleep=_log_retry,
)
