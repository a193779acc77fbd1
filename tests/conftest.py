from __future__ import annotations

import json

import pytest

from censuskit.client import CensusClient
from censuskit.fips import STATES

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

STATE_ENTITIES = [{"NAME": name, "state": fips} for fips, _, name in STATES]

COOK_TRACTS = [
    {"NAME": "Census Tract 101, Cook County, Illinois", "state": "17", "county": "031", "tract": "010100"},
    {"NAME": "Census Tract 102.01, Cook County, Illinois", "state": "17", "county": "031", "tract": "010201"},
    {"NAME": "Census Tract 102.02, Cook County, Illinois", "state": "17", "county": "031", "tract": "010202"},
]


def default_value(field: str, i: int) -> str:
    """Estimates count up in thousands, margins of error in tens."""
    return str((i + 1) * (10 if field.endswith("M") else 1000))


def payload_for(params: dict, entities: list[dict], value=default_value) -> list[list[str]]:
    """
    Build an API-style array-of-arrays response for the requested fields.

    Requested fields come first in the header, followed by the geography
    columns, the way the Census API orders them.
    """
    fields = params["get"].split(",")
    geo_columns = [k for k in entities[0] if k not in fields] if entities else []
    rows = [fields + geo_columns]
    for i, entity in enumerate(entities):
        row = [entity[f] if f in entity else value(f, i) for f in fields]
        rows.append(row + [entity[c] for c in geo_columns])
    return rows


def variables_json(codes: dict[str, tuple[str, str]]) -> str:
    """Build a variables.json body from {code: (label, concept)}."""
    variables = {
        "for": {"label": "Census API FIPS 'for' clause", "concept": "Census API Geography"},
        "in": {"label": "Census API FIPS 'in' clause", "concept": "Census API Geography"},
    }
    for code, (label, concept) in codes.items():
        variables[code] = {"label": label, "concept": concept, "predicateType": "int"}
    return json.dumps({"variables": variables})


class FakeResponse:
    def __init__(self, status_code: int = 200, body=None, text: str | None = None):
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(body)


class FakeSession:
    """
    Stand-in for requests.Session. ``responder(url, params)`` returns a
    FakeResponse or an exception instance to raise.
    """

    def __init__(self, responder):
        self.responder = responder
        self.headers: dict[str, str] = {}
        self.calls: list[dict] = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": dict(params or {}), "timeout": timeout})
        result = self.responder(url, dict(params or {}))
        if isinstance(result, Exception):
            raise result
        return result


def entities_responder(entities: list[dict], value=default_value):
    """Responder that answers every data request with the given entities."""

    def respond(url, params):
        return FakeResponse(200, payload_for(params, entities, value))

    return respond


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's own key and cache dir out of the tests."""
    monkeypatch.delenv("CENSUS_API_KEY", raising=False)
    monkeypatch.delenv("CENSUSKIT_CACHE_DIR", raising=False)


@pytest.fixture
def make_client():
    """Build a CensusClient over a FakeSession with pacing disabled."""

    def _make(responder, **kwargs) -> tuple[CensusClient, FakeSession]:
        session = FakeSession(responder)
        kwargs.setdefault("api_key", "test-key")
        client = CensusClient(requests_per_second=None, session=session, **kwargs)
        return client, session

    return _make
