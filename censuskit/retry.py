"""
Opt-in retries for callers.

The client never retries on its own. Wrap a call when transient network
failures are safe to repeat for your use:

    from censuskit.retry import with_retries

    fetch = with_retries(client.get_acs, attempts=3)
    df = fetch(geography="state", variables=["B01003_001"], year=2019)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from censuskit.exceptions import TransportError

logger = logging.getLogger(__name__)


def with_retries(
    func: Callable[..., Any],
    attempts: int = 3,
    multiplier: float = 1.0,
    max_wait: float = 10.0,
) -> Callable[..., Any]:
    """Retry ``func`` on TransportError with exponential backoff; re-raise the last error."""
    return retry(
        retry=retry_if_exception_type(TransportError),
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=multiplier, max=max_wait),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )(func)
