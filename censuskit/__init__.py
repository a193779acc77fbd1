from censuskit.client import CensusClient
from censuskit.exceptions import (
    AuthenticationError,
    CensusAPIError,
    CensusError,
    MetadataFetchError,
    TransportError,
    UnknownVariableError,
    UnsupportedGeographyError,
    ValidationError,
)
from censuskit.metadata import VariableCatalog, VariableDescriptor
from censuskit.spec import DATASETS, GEOGRAPHY_CONFIG, CensusQuery

__all__ = [
    "AuthenticationError",
    "CensusAPIError",
    "CensusClient",
    "CensusError",
    "CensusQuery",
    "DATASETS",
    "GEOGRAPHY_CONFIG",
    "MetadataFetchError",
    "TransportError",
    "UnknownVariableError",
    "UnsupportedGeographyError",
    "ValidationError",
    "VariableCatalog",
    "VariableDescriptor",
]
