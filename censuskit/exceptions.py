from __future__ import annotations


class CensusError(Exception):
    """Base class for everything censuskit raises."""


class ValidationError(CensusError, ValueError):
    """A query failed a local check before any request was made."""


class MetadataFetchError(CensusError):
    """The bulk variable catalog for a dataset/year could not be fetched."""

    def __init__(self, dataset: str, year: int, reason: str):
        self.dataset = dataset
        self.year = year
        self.reason = reason
        super().__init__(f"Could not fetch variable catalog for {dataset}/{year}: {reason}")


class TransportError(CensusError):
    """Network-level failure: timeout, connection reset or cancellation."""


class CensusAPIError(CensusError):
    """
    The Census API answered with an error.

    ``detail`` holds the agency's diagnostic text exactly as it was returned.
    ``url`` has the credential redacted.
    """

    def __init__(self, status: int, detail: str, url: str | None = None):
        self.status = status
        self.detail = detail
        self.url = url
        super().__init__(f"Census API returned {status}: {detail}")


class UnknownVariableError(CensusAPIError):
    """The API does not know one of the requested variable codes."""


class UnsupportedGeographyError(CensusAPIError):
    """The geography hierarchy is not queryable for this dataset/year."""


class AuthenticationError(CensusAPIError):
    """The API key is missing, expired or rejected."""
