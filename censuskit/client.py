"""
Census data API client.

Classes:
    CensusClient  : builds, executes and normalizes Census API queries

Usage:
    from censuskit import CensusClient

    client = CensusClient(api_key="YOUR_KEY", cache_dir="~/.cache/censuskit")

    # Median household income for every tract in Cook County, IL
    income = client.get_acs(
        geography="tract",
        variables={"median_income": "B19013_001"},
        state="IL",
        county="031",
        year=2022,
        output="wide",
    )

    # A full table, with total population as the denominator
    age = client.get_acs(
        geography="county",
        table="B01001",
        state="AZ",
        summary_var="B01001_001",
    )

    # Inspect the request without sending it
    client.show_call(query)
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path

import pandas as pd
import requests

from censuskit.cache import FileCacheStore
from censuskit.classifier import RawResponse, classify
from censuskit.config import DEFAULT_CACHE_DIR, ClientConfig
from censuskit.exceptions import CensusAPIError, TransportError, ValidationError
from censuskit.metadata import VariableCatalog
from censuskit.normalize import merge_chunks, normalize_records
from censuskit.request import REDACTED, CensusRequest, RequestBuilder, RequestPlan
from censuskit.spec import CensusQuery

logger = logging.getLogger(__name__)

DEFAULT_FLOW_VARIABLES = ["MOVEDIN", "MOVEDOUT", "MOVEDNET"]


class CensusClient:
    """
    Makes Census Bureau API calls.

    Handles:
    - Resolving tables to their constituent variables
    - Chunking variable lists to stay within the per-call limit
    - Joining chunked results back together
    - Classifying API errors and normalizing payloads into DataFrames

    Parameters
    ----------
    api_key : str, optional
        Falls back to the CENSUS_API_KEY environment variable.
    cache_dir : str | Path, optional
        On-disk variable catalog cache. Falls back to CENSUSKIT_CACHE_DIR.
    timeout : float
        Default per-request timeout in seconds.
    requests_per_second : float | None
        Pacing for outgoing requests, shared across threads. None disables it.
    session : requests.Session, optional
    catalog : VariableCatalog, optional
        Share one catalog between clients.
    """

    def __init__(
        self,
        api_key: str | None = None,
        cache_dir: str | Path | None = None,
        timeout: float = 60.0,
        requests_per_second: float | None = 5.0,
        session: requests.Session | None = None,
        catalog: VariableCatalog | None = None,
    ):
        self.config = ClientConfig.resolve(
            api_key=api_key,
            cache_dir=cache_dir,
            timeout=timeout,
            requests_per_second=requests_per_second,
        )
        self._session = session or requests.Session()
        self._session.headers["Accept"] = "application/json"
        self.catalog = catalog or VariableCatalog(
            session=self._session,
            cache_dir=self.config.cache_dir,
            timeout=self.config.timeout,
        )
        self.builder = RequestBuilder(self.catalog)

        rps = self.config.requests_per_second
        self._min_interval = 1.0 / rps if rps else 0.0
        self._last_request_time = 0.0
        self._throttle_lock = threading.Lock()
        self.logger = logging.getLogger("census_client")

    # ------------------------------------------------------------------ #
    #  HTTP
    # ------------------------------------------------------------------ #

    def _throttle(self):
        """Simple rate limiter."""
        if not self._min_interval:
            return
        with self._throttle_lock:
            elapsed = time.time() - self._last_request_time
            if elapsed < self._min_interval:
                time.sleep(self._min_interval - elapsed)
            self._last_request_time = time.time()

    def _redact(self, text: str) -> str:
        credential = self.config.get_credential()
        return text.replace(credential, REDACTED) if credential else text

    def _get(
        self,
        request: CensusRequest,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> RawResponse:
        """Execute one request and classify the response."""
        shown = request.render()
        if cancel is not None and cancel.is_set():
            raise TransportError(f"Cancelled before requesting {shown}")

        self._throttle()
        self.logger.debug("GET %s", shown)
        try:
            resp = self._session.get(
                request.url,
                params=request.params,
                headers=request.headers or None,
                timeout=timeout or self.config.timeout,
            )
        except requests.RequestException as e:
            # requests embeds the full URL (and so the key) in its messages
            raise TransportError(
                f"{type(e).__name__} requesting {shown}: {self._redact(str(e))}"
            ) from None

        return classify(resp.status_code, resp.text, shown)

    def _payload(self, raw: RawResponse) -> list[list[str]]:
        try:
            return raw.payload()
        except ValueError:
            self.logger.error("Unreadable response from %s: %.200s", raw.url, raw.text)
            raise CensusAPIError(raw.status, raw.text.strip(), raw.url) from None

    # ------------------------------------------------------------------ #
    #  Queries
    # ------------------------------------------------------------------ #

    def plan(self, query: CensusQuery) -> RequestPlan:
        """Build the request plan for a query without executing it."""
        return self.builder.build(query, credential=self.config.get_credential())

    def show_call(self, query: CensusQuery) -> list[str]:
        """Return the request URLs for a query, with the API key redacted."""
        return self.plan(query).urls()

    def fetch(
        self,
        query: CensusQuery,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> pd.DataFrame:
        """
        Execute a query and return its canonical table.

        Each state scope in the plan is fetched chunk by chunk and joined on
        the entity key; scopes are then concatenated. ``cancel`` is checked
        before every request.
        """
        plan = self.plan(query)
        self.logger.info(
            "Fetching %d variables in %d request(s) for %s, %s/%d",
            len(plan.variables),
            len(plan.requests),
            query.geography,
            query.dataset,
            query.year,
        )

        records = []
        for group in plan.groups:
            payloads = [self._payload(self._get(req, timeout, cancel)) for req in group]
            records.extend(merge_chunks(payloads, plan.key_fields))

        table = normalize_records(records, plan)
        self.logger.info(
            "Fetched %d entities -> %d rows (%s) for %s/%d",
            len(records),
            len(table),
            query.output,
            query.dataset,
            query.year,
        )
        return table

    def _run(
        self,
        query: CensusQuery,
        show_call: bool,
        timeout: float | None,
        cancel: threading.Event | None = None,
    ) -> pd.DataFrame:
        if show_call:
            for url in self.show_call(query):
                self.logger.info("Census API call: %s", url)
        return self.fetch(query, timeout=timeout, cancel=cancel)

    def get_acs(
        self,
        geography: str,
        variables: list[str] | dict[str, str] | None = None,
        table: str | None = None,
        year: int = 2022,
        survey: str = "acs5",
        state: str | list[str] | None = None,
        county: str | list[str] | None = None,
        output: str = "tidy",
        summary_var: str | None = None,
        show_call: bool = False,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> pd.DataFrame:
        """
        American Community Survey estimates with margins of error.

        ``survey`` is one of acs1, acs5, acs1_subject, acs5_subject,
        acs1_profile or acs5_profile.
        """
        if not survey.startswith("acs") or survey == "acs_flows":
            raise ValidationError(f"{survey!r} is not an ACS survey.")
        query = CensusQuery(
            geography=geography,
            year=year,
            dataset=survey,
            variables=variables,
            table=table,
            state=state,
            county=county,
            output=output,
            summary_variable=summary_var,
        )
        return self._run(query, show_call, timeout, cancel)

    def get_decennial(
        self,
        geography: str,
        variables: list[str] | dict[str, str] | None = None,
        table: str | None = None,
        year: int = 2020,
        sumfile: str = "pl",
        state: str | list[str] | None = None,
        county: str | list[str] | None = None,
        output: str = "tidy",
        summary_var: str | None = None,
        show_call: bool = False,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> pd.DataFrame:
        """Decennial census counts (``sumfile`` is pl, dhc or sf1)."""
        query = CensusQuery(
            geography=geography,
            year=year,
            dataset=f"dec_{sumfile}",
            variables=variables,
            table=table,
            state=state,
            county=county,
            output=output,
            summary_variable=summary_var,
        )
        return self._run(query, show_call, timeout, cancel)

    def get_estimates(
        self,
        geography: str,
        variables: list[str] | dict[str, str] | None = None,
        product: str = "population",
        year: int = 2019,
        breakdown: list[str] | None = None,
        state: str | list[str] | None = None,
        county: str | list[str] | None = None,
        output: str = "tidy",
        show_call: bool = False,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> pd.DataFrame:
        """Population Estimates Program data (``product`` is population or charagegroups)."""
        query = CensusQuery(
            geography=geography,
            year=year,
            dataset=f"pep_{product}",
            variables=variables,
            state=state,
            county=county,
            output=output,
            breakdown=breakdown or [],
        )
        return self._run(query, show_call, timeout, cancel)

    def get_flows(
        self,
        geography: str,
        variables: list[str] | dict[str, str] | None = None,
        year: int = 2019,
        breakdown: list[str] | None = None,
        state: str | list[str] | None = None,
        county: str | list[str] | None = None,
        output: str = "tidy",
        show_call: bool = False,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> pd.DataFrame:
        """ACS migration flows between an origin (id/name) and destination (id2/name2)."""
        query = CensusQuery(
            geography=geography,
            year=year,
            dataset="acs_flows",
            variables=variables or list(DEFAULT_FLOW_VARIABLES),
            state=state,
            county=county,
            output=output,
            breakdown=breakdown or [],
        )
        return self._run(query, show_call, timeout, cancel)

    # ------------------------------------------------------------------ #
    #  Variable catalog
    # ------------------------------------------------------------------ #

    def load_variables(self, year: int, dataset: str, cache: bool = False) -> pd.DataFrame:
        """
        Return the variable dictionary for a dataset + year as a DataFrame.

        With cache=True and no cache directory configured, the catalog is
        persisted under DEFAULT_CACHE_DIR.
        """
        if cache and self.catalog.store is None:
            self.catalog.store = FileCacheStore(DEFAULT_CACHE_DIR)
        return self.catalog.load_variables(dataset, year)
