"""
Turns raw HTTP results from the Census API into either a RawResponse or a
typed CensusAPIError.

The API has no structured error codes: failures come back as a short
sentence ("error: unknown variable 'B01003_001X'"), sometimes as an HTML
page. Sub-kinds are recognized on a best-effort basis from that text; the
text itself is always preserved verbatim in the error's ``detail``.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass

from censuskit.exceptions import (
    AuthenticationError,
    CensusAPIError,
    UnknownVariableError,
    UnsupportedGeographyError,
)

logger = logging.getLogger(__name__)

_UNKNOWN_VARIABLE = re.compile(r"unknown (predicate )?variable|invalid variable", re.IGNORECASE)

# "heirarchy" is how the API spells it
_UNSUPPORTED_GEOGRAPHY = re.compile(
    r"unknown/unsupported geography|unsupported geography|hei?rarchy|ambiguous geography"
    r"|invalid '(for|in)'|geography .* not (supported|available)",
    re.IGNORECASE,
)

_AUTHENTICATION = re.compile(
    r"invalid key|key must be included|key is not valid|api key", re.IGNORECASE
)


@dataclass
class RawResponse:
    """An unprocessed, successful API response."""

    status: int
    text: str
    url: str | None = None

    def payload(self) -> list[list[str]]:
        """Decode the array-of-arrays body. An empty body means no rows."""
        if not self.text.strip():
            return []
        return json.loads(self.text)


def _error_class(status: int, body: str) -> type[CensusAPIError]:
    if status in (401, 403) or _AUTHENTICATION.search(body):
        return AuthenticationError
    if _UNKNOWN_VARIABLE.search(body):
        return UnknownVariableError
    if _UNSUPPORTED_GEOGRAPHY.search(body):
        return UnsupportedGeographyError
    return CensusAPIError


def classify(status: int, body: str | None, url: str | None = None) -> RawResponse:
    """
    Pass a 2xx response through as a RawResponse; raise a CensusAPIError
    subclass for anything else.

    ``url`` must already be redacted; it is attached to errors as-is.
    """
    body = body or ""
    if 200 <= status < 300:
        # Rejected keys come back as a 200 with an HTML explanation page
        if body.lstrip().startswith("<") and _AUTHENTICATION.search(body):
            raise AuthenticationError(status, body.strip(), url)
        return RawResponse(status=status, text=body, url=url)

    detail = body.strip()
    error_cls = _error_class(status, detail)
    logger.debug("Classified HTTP %d from %s as %s", status, url, error_cls.__name__)
    raise error_cls(status, detail, url)
