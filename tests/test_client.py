from __future__ import annotations

import logging
import threading

import pandas as pd
import pytest
import requests

from censuskit.client import CensusClient
from censuskit.exceptions import (
    AuthenticationError,
    CensusAPIError,
    TransportError,
    UnknownVariableError,
    UnsupportedGeographyError,
    ValidationError,
)
from censuskit.spec import CensusQuery

from .conftest import (
    COOK_TRACTS,
    STATE_ENTITIES,
    FakeResponse,
    FakeSession,
    entities_responder,
    payload_for,
    variables_json,
)

INDIANA_TRACTS = [
    {"NAME": "Census Tract 1, Marion County, Indiana", "state": "18", "county": "097", "tract": "000100"},
    {"NAME": "Census Tract 2, Marion County, Indiana", "state": "18", "county": "097", "tract": "000200"},
]


def _error_responder(status: int, text: str):
    return lambda url, params: FakeResponse(status, text=text)


def _no_network(url, params):
    raise AssertionError(f"unexpected request to {url}")


# ---------------------------------------------------------------------------
# End-to-end queries
# ---------------------------------------------------------------------------


class TestGetAcs:
    def test_all_states_tidy(self, make_client):
        client, session = make_client(entities_responder(STATE_ENTITIES))

        df = client.get_acs(geography="state", variables=["B19013_001"], year=2019)

        assert len(session.calls) == 1
        assert list(df.columns) == ["id", "name", "variable", "estimate", "moe"]
        assert len(df) == 52
        assert df["variable"].unique().tolist() == ["B19013_001"]
        assert df["id"].is_unique

    def test_acs1_returns_only_what_the_api_returns(self, make_client):
        client, _ = make_client(entities_responder(STATE_ENTITIES[:23]))
        df = client.get_acs(
            geography="state", variables=["B01003_001"], year=2019, survey="acs1"
        )
        assert len(df) == 23

    def test_wide_with_aliases(self, make_client):
        client, session = make_client(entities_responder(COOK_TRACTS))

        df = client.get_acs(
            geography="tract",
            variables={"median_income": "B19013_001"},
            state="IL",
            county="031",
            year=2022,
            output="wide",
        )

        assert session.calls[0]["params"]["in"] == "state:17 county:031"
        assert list(df.columns) == ["id", "name", "median_incomeE", "median_incomeM"]
        assert df["id"].tolist() == ["17031010100", "17031010201", "17031010202"]

    def test_sentinel_becomes_missing(self, make_client):
        def value(field, i):
            return "-666666666" if (field == "B19013_001E" and i == 0) else "5"

        client, _ = make_client(entities_responder(STATE_ENTITIES[:3], value))
        df = client.get_acs(geography="state", variables=["B19013_001"], year=2019)

        assert df["estimate"].isna().tolist() == [True, False, False]
        assert df["moe"].notna().all()

    def test_chunks_joined_on_entity(self, make_client):
        codes = [f"B01001_{i:03d}" for i in range(1, 31)]

        def respond(url, params):
            fields = params["get"].split(",")
            # the second chunk comes back in a different row order
            entities = STATE_ENTITIES if "B01001_001E" in fields else STATE_ENTITIES[::-1]
            rows = [fields + ["state"]]
            for entity in entities:
                row = [entity["NAME"] if f == "NAME" else entity["state"] for f in fields]
                rows.append(row + [entity["state"]])
            return FakeResponse(200, rows)

        client, session = make_client(respond)
        df = client.get_acs(geography="state", variables=codes, year=2019, output="wide")

        assert len(session.calls) == 2
        assert len(df) == 52
        expected = [float(int(e["state"])) for e in STATE_ENTITIES]
        assert df["B01001_001E"].tolist() == expected
        assert df["B01001_030E"].tolist() == expected
        assert df["B01001_030M"].tolist() == expected

    def test_multi_state_tracts_concatenated(self, make_client):
        def respond(url, params):
            entities = COOK_TRACTS if params["in"] == "state:17" else INDIANA_TRACTS
            return FakeResponse(200, payload_for(params, entities))

        client, session = make_client(respond)
        df = client.get_acs(
            geography="tract", variables=["B01003_001"], state=["IL", "IN"], year=2019
        )

        assert [c["params"]["in"] for c in session.calls] == ["state:17", "state:18"]
        assert len(df) == len(COOK_TRACTS) + len(INDIANA_TRACTS)
        assert df["id"].str[:2].tolist() == ["17", "17", "17", "18", "18"]

    def test_table_expanded_through_catalog(self, make_client):
        catalog_body = variables_json(
            {
                "B01001_001E": ("Estimate!!Total:", "SEX BY AGE"),
                "B01001_001M": ("Margin of Error!!Total:", "SEX BY AGE"),
                "B01001_002E": ("Estimate!!Total:!!Male:", "SEX BY AGE"),
                "B01001_002M": ("Margin of Error!!Total:!!Male:", "SEX BY AGE"),
            }
        )
        data = entities_responder(STATE_ENTITIES[:2])

        def respond(url, params):
            if url.endswith("variables.json"):
                return FakeResponse(200, text=catalog_body)
            return data(url, params)

        client, session = make_client(respond)
        df = client.get_acs(geography="state", table="B01001", year=2019)

        assert session.calls[0]["url"].endswith("/2019/acs/acs5/variables.json")
        assert session.calls[1]["params"]["get"] == (
            "NAME,B01001_001E,B01001_001M,B01001_002E,B01001_002M"
        )
        assert df["variable"].tolist() == ["B01001_001", "B01001_002"] * 2

    def test_summary_variable(self, make_client):
        client, _ = make_client(entities_responder(STATE_ENTITIES[:2]))
        df = client.get_acs(
            geography="state",
            variables=["B01001_002"],
            summary_var="B01001_001",
            year=2019,
        )
        assert df["summary_est"].tolist() == [1000, 2000]

    def test_empty_response(self, make_client):
        client, _ = make_client(lambda url, params: FakeResponse(204, text=""))
        df = client.get_acs(geography="state", variables=["B01003_001"], year=2019)
        assert df.empty
        assert list(df.columns) == ["id", "name", "variable", "estimate", "moe"]

    def test_not_an_acs_survey(self, make_client):
        client, session = make_client(_no_network)
        with pytest.raises(ValidationError, match="not an ACS survey"):
            client.get_acs(geography="state", variables=["P1_001"], survey="dec_pl")
        assert session.calls == []


class TestOtherDatasets:
    def test_decennial(self, make_client):
        client, session = make_client(entities_responder(STATE_ENTITIES[:2]))
        df = client.get_decennial(geography="state", variables=["P1_001"])

        assert session.calls[0]["url"] == "https://api.census.gov/data/2020/dec/pl"
        assert session.calls[0]["params"]["get"] == "NAME,P1_001N"
        assert list(df.columns) == ["id", "name", "variable", "value"]

    def test_estimates_breakdown(self, make_client):
        def respond(url, params):
            return FakeResponse(
                200,
                [
                    ["NAME", "SEX", "POP", "state"],
                    ["Illinois", "0", "12671821", "17"],
                    ["Illinois", "1", "6232000", "17"],
                    ["Illinois", "2", "6439821", "17"],
                ],
            )

        client, session = make_client(respond)
        df = client.get_estimates(
            geography="state",
            variables=["POP"],
            product="charagegroups",
            breakdown=["SEX"],
            state="IL",
        )

        assert session.calls[0]["url"] == "https://api.census.gov/data/2019/pep/charagegroups"
        assert df["SEX"].tolist() == ["0", "1", "2"]
        assert df["value"].tolist() == [12671821, 6232000, 6439821]

    def test_flows_default_variables(self, make_client):
        def respond(url, params):
            return FakeResponse(200, [params["get"].split(",") + ["state", "county"]])

        client, session = make_client(respond)
        df = client.get_flows(geography="county", state="TX")

        fields = session.calls[0]["params"]["get"].split(",")
        assert fields[4:] == [
            "MOVEDIN",
            "MOVEDIN_M",
            "MOVEDOUT",
            "MOVEDOUT_M",
            "MOVEDNET",
            "MOVEDNET_M",
        ]
        assert df.empty
        assert list(df.columns) == ["id", "name", "id2", "name2", "variable", "estimate", "moe"]


# ---------------------------------------------------------------------------
# Validation happens before any I/O
# ---------------------------------------------------------------------------


class TestFailFast:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"geography": "block", "variables": ["B01003_001"], "state": "IL", "county": "031"},
            {"geography": "state", "variables": ["B01003_001"], "table": "B01001"},
            {"geography": "state"},
            {"geography": "tract", "variables": ["B01003_001"]},
            {"geography": "state", "variables": ["B01003_001"], "state": "Atlantis"},
            {"geography": "state", "variables": ["B01003_001"], "output": "long"},
        ],
    )
    def test_invalid_query_makes_no_calls(self, make_client, kwargs):
        client, session = make_client(_no_network)
        with pytest.raises(ValidationError):
            client.get_acs(year=2019, **kwargs)
        assert session.calls == []


# ---------------------------------------------------------------------------
# Credential handling
# ---------------------------------------------------------------------------


class TestCredential:
    def test_key_sent_as_parameter(self, make_client):
        client, session = make_client(entities_responder(STATE_ENTITIES[:1]))
        client.get_acs(geography="state", variables=["B01003_001"], year=2019)
        assert session.calls[0]["params"]["key"] == "test-key"

    def test_key_from_environment(self, make_client, monkeypatch):
        monkeypatch.setenv("CENSUS_API_KEY", "env-key")
        client, session = make_client(entities_responder(STATE_ENTITIES[:1]), api_key=None)
        client.get_acs(geography="state", variables=["B01003_001"], year=2019)
        assert session.calls[0]["params"]["key"] == "env-key"

    def test_no_key_at_all(self, make_client):
        client, session = make_client(entities_responder(STATE_ENTITIES[:1]), api_key=None)
        client.get_acs(geography="state", variables=["B01003_001"], year=2019)
        assert "key" not in session.calls[0]["params"]

    def test_show_call_is_redacted_and_offline(self, make_client):
        client, session = make_client(_no_network)
        query = CensusQuery(geography="state", year=2019, variables=["B19013_001"])

        urls = client.show_call(query)

        assert urls == [
            "https://api.census.gov/data/2019/acs/acs5"
            "?get=NAME,B19013_001E,B19013_001M&for=state:*&key=REDACTED"
        ]
        assert session.calls == []

    def test_key_never_logged(self, make_client, caplog):
        caplog.set_level(logging.DEBUG)
        client, _ = make_client(entities_responder(STATE_ENTITIES[:2]))

        client.get_acs(
            geography="state", variables=["B01003_001"], year=2019, show_call=True
        )

        assert "Census API call:" in caplog.text
        assert "key=REDACTED" in caplog.text
        assert "test-key" not in caplog.text

    def test_transport_error_is_redacted(self, make_client):
        def respond(url, params):
            return requests.ConnectionError(
                f"Max retries exceeded with url: /data/2019/acs/acs5?key={params['key']}"
            )

        client, _ = make_client(respond)
        with pytest.raises(TransportError) as exc_info:
            client.get_acs(geography="state", variables=["B01003_001"], year=2019)

        message = str(exc_info.value)
        assert "ConnectionError" in message
        assert "test-key" not in message
        assert exc_info.value.__cause__ is None

    def test_invalid_key_page(self, make_client):
        page = "<html><body>A valid <em>key</em> must be included with each request.</body></html>"
        client, _ = make_client(lambda url, params: FakeResponse(200, text=page))

        with pytest.raises(AuthenticationError) as exc_info:
            client.get_acs(geography="state", variables=["B01003_001"], year=2019)
        assert "test-key" not in str(exc_info.value.url)


# ---------------------------------------------------------------------------
# Error classification through the client
# ---------------------------------------------------------------------------


class TestErrors:
    def test_unknown_variable(self, make_client):
        text = "error: unknown variable 'B99999_999E'"
        client, _ = make_client(_error_responder(400, text))

        with pytest.raises(UnknownVariableError) as exc_info:
            client.get_acs(geography="state", variables=["B99999_999"], year=2019)
        assert exc_info.value.detail == text
        assert exc_info.value.status == 400

    def test_unsupported_geography(self, make_client):
        client, _ = make_client(
            _error_responder(400, "error: unknown/unsupported geography heirarchy")
        )
        with pytest.raises(UnsupportedGeographyError):
            client.get_acs(geography="state", variables=["B01003_001"], year=2019)

    def test_generic_error(self, make_client):
        client, _ = make_client(_error_responder(500, "Internal Server Error"))
        with pytest.raises(CensusAPIError) as exc_info:
            client.get_acs(geography="state", variables=["B01003_001"], year=2019)
        assert type(exc_info.value) is CensusAPIError

    def test_unreadable_success_body(self, make_client):
        client, _ = make_client(lambda url, params: FakeResponse(200, text="not json"))
        with pytest.raises(CensusAPIError, match="not json"):
            client.get_acs(geography="state", variables=["B01003_001"], year=2019)


# ---------------------------------------------------------------------------
# Timeouts and cancellation
# ---------------------------------------------------------------------------


class TestExecution:
    def test_default_timeout(self, make_client):
        client, session = make_client(entities_responder(STATE_ENTITIES[:1]), timeout=12.5)
        client.get_acs(geography="state", variables=["B01003_001"], year=2019)
        assert session.calls[0]["timeout"] == 12.5

    def test_per_call_timeout(self, make_client):
        client, session = make_client(entities_responder(STATE_ENTITIES[:1]))
        client.get_acs(geography="state", variables=["B01003_001"], year=2019, timeout=3)
        assert session.calls[0]["timeout"] == 3

    def test_cancelled_before_first_request(self, make_client):
        client, session = make_client(_no_network)
        cancel = threading.Event()
        cancel.set()
        query = CensusQuery(geography="state", year=2019, variables=["B01003_001"])

        with pytest.raises(TransportError, match="Cancelled"):
            client.fetch(query, cancel=cancel)
        assert session.calls == []

    @pytest.mark.parametrize(
        "method, kwargs",
        [
            ("get_acs", {"geography": "state", "variables": ["B01003_001"], "year": 2019}),
            ("get_decennial", {"geography": "state", "variables": ["P1_001"]}),
            ("get_estimates", {"geography": "state", "variables": ["POP"]}),
            ("get_flows", {"geography": "county", "state": "TX"}),
        ],
    )
    def test_wrappers_honor_cancel(self, make_client, method, kwargs):
        client, session = make_client(_no_network)
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(TransportError, match="Cancelled"):
            getattr(client, method)(cancel=cancel, **kwargs)
        assert session.calls == []

    def test_cancelled_between_chunks(self, make_client):
        cancel = threading.Event()
        data = entities_responder(STATE_ENTITIES[:2])

        def respond(url, params):
            cancel.set()
            return data(url, params)

        client, session = make_client(respond)
        codes = [f"B01001_{i:03d}" for i in range(1, 31)]
        query = CensusQuery(geography="state", year=2019, variables=codes)

        with pytest.raises(TransportError, match="Cancelled"):
            client.fetch(query, cancel=cancel)
        assert len(session.calls) == 1

    def test_concurrent_queries_share_a_client(self, make_client):
        client, session = make_client(entities_responder(STATE_ENTITIES[:3]))
        results = []

        def worker(code):
            results.append(client.get_acs(geography="state", variables=[code], year=2019))

        threads = [
            threading.Thread(target=worker, args=(f"B01001_{i:03d}",)) for i in range(1, 6)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert len(session.calls) == 5
        assert all(len(df) == 3 for df in results)


# ---------------------------------------------------------------------------
# Variable catalog
# ---------------------------------------------------------------------------


class TestLoadVariables:
    BODY = variables_json({"B01003_001E": ("Estimate!!Total", "TOTAL POPULATION")})

    def test_returns_dataframe(self, make_client):
        client, session = make_client(lambda url, params: FakeResponse(200, text=self.BODY))
        df = client.load_variables(2019, "acs5")

        assert isinstance(df, pd.DataFrame)
        assert df["name"].tolist() == ["B01003_001E"]
        assert session.calls[0]["url"].endswith("/2019/acs/acs5/variables.json")

    def test_cache_flag_persists_to_default_dir(self, make_client, tmp_path, monkeypatch):
        monkeypatch.setattr("censuskit.client.DEFAULT_CACHE_DIR", tmp_path)
        client, _ = make_client(lambda url, params: FakeResponse(200, text=self.BODY))

        client.load_variables(2019, "acs5", cache=True)

        assert (tmp_path / "variables_acs5_2019.json").exists()

    def test_cache_dir_shared_between_clients(self, tmp_path):
        first = CensusClient(
            cache_dir=tmp_path,
            requests_per_second=None,
            session=FakeSession(lambda url, params: FakeResponse(200, text=self.BODY)),
        )
        first.load_variables(2019, "acs5")

        second = CensusClient(
            cache_dir=tmp_path, requests_per_second=None, session=FakeSession(_no_network)
        )
        assert second.load_variables(2019, "acs5")["name"].tolist() == ["B01003_001E"]

    def test_cache_dir_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CENSUSKIT_CACHE_DIR", str(tmp_path))
        client = CensusClient(
            requests_per_second=None,
            session=FakeSession(lambda url, params: FakeResponse(200, text=self.BODY)),
        )
        client.load_variables(2019, "acs5")
        assert (tmp_path / "variables_acs5_2019.json").exists()
