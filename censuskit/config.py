from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

API_KEY_ENV = "CENSUS_API_KEY"
CACHE_DIR_ENV = "CENSUSKIT_CACHE_DIR"
DEFAULT_CACHE_DIR = Path.home() / ".cache" / "censuskit"


@dataclass
class ClientConfig:
    """
    Settings for a CensusClient.

    Attributes:
        api_key:              Census API key. None means requests go out
                              unauthenticated (the API allows a small daily quota).
        cache_dir:            Directory for the on-disk variable catalog cache.
                              None disables disk caching.
        timeout:              Per-request timeout in seconds.
        requests_per_second:  Pacing for outgoing requests. None disables it.
    """

    api_key: str | None = None
    cache_dir: Path | None = None
    timeout: float = 60.0
    requests_per_second: float | None = 5.0

    @classmethod
    def resolve(
        cls,
        api_key: str | None = None,
        cache_dir: str | Path | None = None,
        timeout: float = 60.0,
        requests_per_second: float | None = 5.0,
    ) -> ClientConfig:
        """
        Build a config using the resolution order
        explicit argument -> environment variable -> absent.
        """
        if api_key is None:
            api_key = os.environ.get(API_KEY_ENV) or None
        if cache_dir is None:
            cache_dir = os.environ.get(CACHE_DIR_ENV) or None
        return cls(
            api_key=api_key,
            cache_dir=Path(cache_dir).expanduser() if cache_dir else None,
            timeout=timeout,
            requests_per_second=requests_per_second,
        )

    def get_credential(self) -> str | None:
        return self.api_key
