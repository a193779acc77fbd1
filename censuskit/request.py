from __future__ import annotations

import logging
from dataclasses import dataclass, field
from urllib.parse import quote, urlencode

from censuskit.exceptions import ValidationError
from censuskit.metadata import VariableCatalog
from censuskit.spec import CensusQuery

logger = logging.getLogger(__name__)

REDACTED = "REDACTED"


@dataclass
class CensusRequest:
    """A single GET against the data API. Building one never touches the network."""

    url: str
    params: dict[str, str]
    variables: list[str]
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)

    def render(self, redact: bool = True) -> str:
        """Return the full URL, with the API key masked unless redact=False."""
        params = dict(self.params)
        if redact and "key" in params:
            params["key"] = REDACTED
        return f"{self.url}?{urlencode(params, safe=':,*', quote_via=quote)}"


@dataclass
class RequestPlan:
    """
    Everything needed to execute and normalize a query.

    ``groups`` holds one list of chunked requests per state scope. Chunks in
    a group are joined on ``key_fields``; groups are concatenated.
    """

    query: CensusQuery
    variables: list[str]
    groups: list[list[CensusRequest]]
    leading_fields: list[str]
    key_fields: list[str]

    @property
    def requests(self) -> list[CensusRequest]:
        return [req for group in self.groups for req in group]

    def urls(self, redact: bool = True) -> list[str]:
        return [req.render(redact=redact) for req in self.requests]


class RequestBuilder:
    """
    Translates a CensusQuery into a RequestPlan.

    Handles:
    - Resolving a table to its member variables through the catalog
    - Appending the dataset's wire suffixes to bare variable codes
    - Chunking variable lists to stay within the per-call field limit
    - Building for/in clauses, one request set per state where needed
    """

    BASE = "https://api.census.gov/data"

    def __init__(self, catalog: VariableCatalog | None = None):
        self.catalog = catalog

    def resolve_variables(self, query: CensusQuery) -> list[str]:
        if query.variables:
            return list(query.variables)
        if self.catalog is None:
            raise ValidationError("Expanding a table requires a variable catalog.")
        variables = self.catalog.table_variables(query.dataset, query.year, query.table)
        logger.info(
            "Table %s resolved to %d variables for %s/%d",
            query.table,
            len(variables),
            query.dataset,
            query.year,
        )
        return variables

    def build(self, query: CensusQuery, credential: str | None = None) -> RequestPlan:
        capability = query.capability
        variables = self.resolve_variables(query)

        fetch_codes = list(variables)
        if query.summary_variable and query.summary_variable not in fetch_codes:
            fetch_codes.append(query.summary_variable)

        leading = [capability.name_field, *capability.id_fields]
        leading += [f for f in capability.extra_fields.values() if f not in leading]
        leading += [f for f in query.breakdown if f not in leading]

        geo_columns = list(query.geo_config["geo_columns"])
        key_fields = list(capability.id_fields) or geo_columns
        # foreign flow destinations have no GEOID2, only a name
        key_fields += [f for f in capability.extra_fields.values() if f not in key_fields]
        key_fields += list(query.breakdown)

        chunks = self._chunk(fetch_codes, query, len(leading))
        url = f"{self.BASE}/{query.year}/{capability.path}"

        groups = []
        for states in self._state_scopes(query):
            for_clause, in_clause = self._geo_clauses(query, states)
            group = []
            for chunk in chunks:
                wire = []
                for code in chunk:
                    wire.append(capability.wire_estimate(code))
                    if capability.has_moe:
                        wire.append(capability.wire_moe(code))
                params = {"get": ",".join(leading + wire), "for": for_clause}
                if in_clause:
                    params["in"] = in_clause
                if credential:
                    params["key"] = credential
                group.append(CensusRequest(url=url, params=params, variables=list(chunk)))
            groups.append(group)

        return RequestPlan(
            query=query,
            variables=variables,
            groups=groups,
            leading_fields=leading,
            key_fields=key_fields,
        )

    # ------------------------------------------------------------------ #
    #  Helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _chunk(codes: list[str], query: CensusQuery, n_leading: int) -> list[list[str]]:
        """Split codes so each request's wire fields stay within max_variables."""
        capability = query.capability
        per_variable = 2 if capability.has_moe else 1
        # NAME is already accounted for in max_variables
        available = capability.max_variables - max(0, n_leading - 1)
        size = max(1, available // per_variable)
        return [codes[i : i + size] for i in range(0, len(codes), size)]

    @staticmethod
    def _state_scopes(query: CensusQuery) -> list[list[str] | None]:
        """
        State-level queries can take a comma list of states in one call.
        Smaller geographies are fetched one state at a time.
        """
        if not query.state:
            return [None]
        if query.geography == "state":
            return [query.state]
        return [[s] for s in query.state]

    @staticmethod
    def _geo_clauses(query: CensusQuery, states: list[str] | None) -> tuple[str, str | None]:
        api_name = query.geo_config["api_name"]
        if query.geography == "state":
            return f"state:{','.join(states) if states else '*'}", None
        if query.geography == "county":
            counties = ",".join(query.county) if query.county else "*"
            in_clause = f"state:{','.join(states)}" if states else None
            return f"county:{counties}", in_clause

        in_parts = []
        if states:
            in_parts.append(f"state:{','.join(states)}")
        if query.county:
            in_parts.append(f"county:{','.join(query.county)}")
        return f"{api_name}:*", " ".join(in_parts) or None
