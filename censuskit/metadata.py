"""
VariableCatalog lazily fetches, caches and searches the Census Bureau
variable dictionary for a (dataset, year).

Usage:
    from censuskit.metadata import VariableCatalog
    catalog = VariableCatalog(cache_dir="~/.cache/censuskit")

    # Everything published for a dataset + year
    catalog.lookup("acs5", 2022)

    # Search by keyword (code, label or concept) or with a predicate
    catalog.search("acs5", 2022, "median household income")
    catalog.search("acs5", 2022, lambda v: v.code.startswith("B19013"))

    # Member variables of a table, without wire suffixes
    catalog.table_variables("acs5", 2022, "B01001")

    # As a DataFrame for browsing in a notebook
    catalog.load_variables("acs5", 2022)
"""

from __future__ import annotations

import json
import logging
import re
import threading
from collections.abc import Callable
from dataclasses import asdict, dataclass
from pathlib import Path

import pandas as pd
import requests

from censuskit.cache import FileCacheStore
from censuskit.exceptions import MetadataFetchError, ValidationError
from censuskit.spec import DATASETS

logger = logging.getLogger(__name__)

# variables.json lists the query predicates alongside real variables
_PSEUDO_VARIABLES = {"for", "in", "ucgid"}


@dataclass(frozen=True)
class VariableDescriptor:
    code: str
    label: str
    concept: str


class VariableCatalog:
    """
    Process-lifetime cache of variable dictionaries keyed by (dataset, year).

    Entries are never mutated once loaded. Concurrent lookups of the same
    uncached key share a single upstream fetch.

    Parameters
    ----------
    session : requests.Session, optional
    store : FileCacheStore, optional
        On-disk store. Takes precedence over cache_dir.
    cache_dir : str | Path, optional
        Directory for an on-disk store. None disables disk caching.
    timeout : float
        Timeout for the bulk metadata request, in seconds.
    """

    BASE = "https://api.census.gov/data"

    def __init__(
        self,
        session: requests.Session | None = None,
        store: FileCacheStore | None = None,
        cache_dir: str | Path | None = None,
        timeout: float = 60.0,
    ):
        self._session = session or requests.Session()
        if store is None and cache_dir is not None:
            store = FileCacheStore(Path(cache_dir).expanduser())
        self.store = store
        self.timeout = timeout
        self.logger = logging.getLogger("census_catalog")

        self._entries: dict[tuple[str, int], tuple[VariableDescriptor, ...]] = {}
        self._key_locks: dict[tuple[str, int], threading.Lock] = {}
        self._guard = threading.Lock()

    # ------------------------------------------------------------------ #
    #  Internal helpers
    # ------------------------------------------------------------------ #

    def _lock_for(self, key: tuple[str, int]) -> threading.Lock:
        with self._guard:
            return self._key_locks.setdefault(key, threading.Lock())

    @staticmethod
    def _cache_key(dataset: str, year: int) -> str:
        return f"variables_{dataset}_{year}"

    def _url(self, dataset: str, year: int) -> str:
        return f"{self.BASE}/{year}/{DATASETS[dataset].path}/variables.json"

    def _read_store(self, dataset: str, year: int) -> tuple[VariableDescriptor, ...] | None:
        if self.store is None:
            return None
        raw = self.store.get(self._cache_key(dataset, year))
        if raw is None:
            return None
        try:
            return tuple(VariableDescriptor(**item) for item in json.loads(raw))
        except (ValueError, TypeError) as e:
            self.logger.warning(
                "Ignoring unreadable catalog cache for %s/%d: %s", dataset, year, e
            )
            return None

    def _fetch(self, dataset: str, year: int) -> tuple[VariableDescriptor, ...]:
        """Bulk-fetch variables.json and parse it into descriptors."""
        url = self._url(dataset, year)
        self.logger.info("Fetching variable catalog %s", url)
        try:
            resp = self._session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise MetadataFetchError(dataset, year, str(e)) from e
        if resp.status_code != 200:
            raise MetadataFetchError(
                dataset, year, f"HTTP {resp.status_code}: {resp.text.strip()[:200]}"
            )
        try:
            variables = json.loads(resp.text).get("variables", {})
        except (ValueError, AttributeError) as e:
            raise MetadataFetchError(dataset, year, f"unreadable response: {e}") from e

        descriptors = [
            VariableDescriptor(
                code=code,
                label=info.get("label", ""),
                concept=info.get("concept", "") or "",
            )
            for code, info in variables.items()
            if code not in _PSEUDO_VARIABLES
        ]
        return tuple(sorted(descriptors, key=lambda d: d.code))

    def _load(self, dataset: str, year: int) -> tuple[VariableDescriptor, ...]:
        cached = self._read_store(dataset, year)
        if cached is not None:
            self.logger.debug("Catalog %s/%d served from disk cache", dataset, year)
            return cached

        descriptors = self._fetch(dataset, year)
        if self.store is not None:
            payload = json.dumps([asdict(d) for d in descriptors]).encode("utf-8")
            self.store.put(self._cache_key(dataset, year), payload)
        self.logger.info(
            "Catalog %s/%d loaded with %d variables", dataset, year, len(descriptors)
        )
        return descriptors

    # ------------------------------------------------------------------ #
    #  Public methods
    # ------------------------------------------------------------------ #

    def lookup(self, dataset: str, year: int) -> tuple[VariableDescriptor, ...]:
        """Return every variable descriptor published for a dataset + year."""
        if dataset not in DATASETS:
            raise ValidationError(f"Unknown dataset {dataset!r}.")
        key = (dataset, int(year))
        entry = self._entries.get(key)
        if entry is not None:
            return entry
        with self._lock_for(key):
            entry = self._entries.get(key)
            if entry is None:
                entry = self._load(*key)
                self._entries[key] = entry
        return entry

    def search(
        self,
        dataset: str,
        year: int,
        predicate: Callable[[VariableDescriptor], bool] | str,
    ) -> list[VariableDescriptor]:
        """
        Filter the catalog.

        A string predicate is a case-insensitive substring match against the
        code, label and concept.
        """
        if isinstance(predicate, str):
            keyword = predicate.lower()

            def predicate(v: VariableDescriptor) -> bool:
                return keyword in f"{v.code} {v.label} {v.concept}".lower()

        return [v for v in self.lookup(dataset, year) if predicate(v)]

    def table_variables(self, dataset: str, year: int, table: str) -> list[str]:
        """
        Return the bare codes of every estimate variable in a table.

        B01001 matches B01001_001E but not B01001A_001E or the annotation
        and margin-of-error columns. Subject tables carry a column segment
        (S0101_C01_001E) and profile tables a percent form (DP05_0001PE);
        both are members.
        """
        variables = self.lookup(dataset, year)
        capability = DATASETS[dataset]
        percent = "P?" if capability.estimate_suffix else ""
        member = re.compile(
            rf"(?:_C\d+)?_?\d+{percent}{re.escape(capability.estimate_suffix)}"
        )
        codes = [
            v.code
            for v in variables
            if v.code.startswith(table) and member.fullmatch(v.code[len(table) :])
        ]
        if not codes:
            raise ValidationError(f"No variables found for table {table!r} in {dataset}/{year}.")
        return [capability.strip_suffix(c) for c in codes]

    def load_variables(self, dataset: str, year: int) -> pd.DataFrame:
        """Return the catalog as a DataFrame with columns: name, label, concept."""
        rows = [
            {"name": v.code, "label": v.label, "concept": v.concept}
            for v in self.lookup(dataset, year)
        ]
        return pd.DataFrame(rows, columns=["name", "label", "concept"])
