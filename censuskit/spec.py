"""
Query definitions for the Census Bureau data API.

Classes:
    DatasetCapability  : static facts about one dataset (wire suffixes, limits)
    CensusQuery        : a validated description of what to fetch

Usage:
    from censuskit.spec import CensusQuery

    query = CensusQuery(
        geography="tract",
        year=2022,
        dataset="acs5",
        variables={"median_income": "B19013_001"},
        state="IL",
        county="031",
        output="wide",
    )
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from censuskit.exceptions import ValidationError
from censuskit.fips import county_fips, state_fips

logger = logging.getLogger(__name__)

# The Census API allows 50 variables per call, but NAME and the geography
# identifier columns count toward that limit. We reserve a few slots for
# those, giving us 48 user-specified variables per request.
MAX_VARIABLES_PER_CALL = 48

OUTPUT_SHAPES = ("tidy", "wide")

# Canonical table columns an alias may not shadow
RESERVED_COLUMNS = {
    "id",
    "name",
    "id2",
    "name2",
    "variable",
    "value",
    "estimate",
    "moe",
    "summary_est",
    "summary_moe",
    "summary_value",
}

# Geography tag -> API name, the geo ID columns returned (concatenated in
# order to form the GEOID), and which scoping filters are required/allowed.
GEOGRAPHY_CONFIG = {
    "us": {
        "api_name": "us",
        "geo_columns": ["us"],
        "required": (),
        "optional": (),
    },
    "region": {
        "api_name": "region",
        "geo_columns": ["region"],
        "required": (),
        "optional": (),
    },
    "division": {
        "api_name": "division",
        "geo_columns": ["division"],
        "required": (),
        "optional": (),
    },
    "state": {
        "api_name": "state",
        "geo_columns": ["state"],
        "required": (),
        "optional": ("state",),
    },
    "county": {
        "api_name": "county",
        "geo_columns": ["state", "county"],
        "required": (),
        "optional": ("state", "county"),
    },
    "county subdivision": {
        "api_name": "county subdivision",
        "geo_columns": ["state", "county", "county subdivision"],
        "required": ("state",),
        "optional": ("county",),
    },
    "tract": {
        "api_name": "tract",
        "geo_columns": ["state", "county", "tract"],
        "required": ("state",),
        "optional": ("county",),
    },
    "block group": {
        "api_name": "block group",
        "geo_columns": ["state", "county", "tract", "block group"],
        "required": ("state",),
        "optional": ("county",),
    },
    "block": {
        "api_name": "block",
        "geo_columns": ["state", "county", "tract", "block"],
        "required": ("state", "county"),
        "optional": (),
    },
    "place": {
        "api_name": "place",
        "geo_columns": ["state", "place"],
        "required": (),
        "optional": ("state",),
    },
    "zip code tabulation area": {
        "api_name": "zip code tabulation area",
        "geo_columns": ["zip code tabulation area"],
        "required": (),
        "optional": (),
    },
    "metropolitan statistical area/micropolitan statistical area": {
        "api_name": "metropolitan statistical area/micropolitan statistical area",
        "geo_columns": ["metropolitan statistical area/micropolitan statistical area"],
        "required": (),
        "optional": (),
    },
    "congressional district": {
        "api_name": "congressional district",
        "geo_columns": ["state", "congressional district"],
        "required": (),
        "optional": ("state",),
    },
    "public use microdata area": {
        "api_name": "public use microdata area",
        "geo_columns": ["state", "public use microdata area"],
        "required": (),
        "optional": ("state",),
    },
    "school district (unified)": {
        "api_name": "school district (unified)",
        "geo_columns": ["state", "school district (unified)"],
        "required": ("state",),
        "optional": (),
    },
}

GEOGRAPHY_ALIASES = {
    "cbsa": "metropolitan statistical area/micropolitan statistical area",
    "zcta": "zip code tabulation area",
    "puma": "public use microdata area",
}

_SMALL_AREAS = {"tract", "block group", "block", "zip code tabulation area"}
_COARSE_AREAS = {"us", "region", "division", "state", "county"}


@dataclass(frozen=True)
class DatasetCapability:
    """
    What the API looks like for one dataset.

    Parameters
    ----------
    path : str
        API path segment after the year (e.g. "acs/acs5").
    has_moe : bool
        Whether each variable comes with a margin of error.
    estimate_suffix, moe_suffix : str
        Wire-format suffixes appended to bare variable codes.
    max_variables : int
        Maximum user variables per request.
    geographies : frozenset[str] | None
        Supported geography tags. None means every tag in GEOGRAPHY_CONFIG.
    name_field : str
        Column holding the entity's display name.
    id_fields : tuple[str, ...]
        Columns forming the entity id. Empty means the geography's geo_columns.
    extra_fields : dict[str, str]
        Additional wire columns passed through, keyed by output column name.
    supports_breakdown : bool
        Whether breakdown dimension fields may be requested.
    """

    path: str
    has_moe: bool
    estimate_suffix: str = ""
    moe_suffix: str = ""
    max_variables: int = MAX_VARIABLES_PER_CALL
    geographies: frozenset[str] | None = None
    name_field: str = "NAME"
    id_fields: tuple[str, ...] = ()
    extra_fields: dict[str, str] = field(default_factory=dict)
    supports_breakdown: bool = False

    def wire_estimate(self, code: str) -> str:
        return f"{code}{self.estimate_suffix}"

    def wire_moe(self, code: str) -> str:
        return f"{code}{self.moe_suffix}"

    def strip_suffix(self, code: str) -> str:
        """
        Drop a caller-supplied estimate suffix ("B01003_001E" -> "B01003_001").

        Profile percent codes keep their P: "DP05_0001PE" -> "DP05_0001P".
        """
        if self.estimate_suffix and re.fullmatch(rf".+_\d+P?{self.estimate_suffix}", code):
            return code[: -len(self.estimate_suffix)]
        return code


_ACS1_GEOGRAPHIES = frozenset(set(GEOGRAPHY_CONFIG) - _SMALL_AREAS)

DATASETS: dict[str, DatasetCapability] = {
    "acs1": DatasetCapability(
        path="acs/acs1",
        has_moe=True,
        estimate_suffix="E",
        moe_suffix="M",
        geographies=_ACS1_GEOGRAPHIES,
    ),
    "acs5": DatasetCapability(
        path="acs/acs5",
        has_moe=True,
        estimate_suffix="E",
        moe_suffix="M",
        geographies=frozenset(set(GEOGRAPHY_CONFIG) - {"block"}),
    ),
    "acs1_subject": DatasetCapability(
        path="acs/acs1/subject",
        has_moe=True,
        estimate_suffix="E",
        moe_suffix="M",
        geographies=_ACS1_GEOGRAPHIES,
    ),
    "acs5_subject": DatasetCapability(
        path="acs/acs5/subject",
        has_moe=True,
        estimate_suffix="E",
        moe_suffix="M",
        geographies=frozenset(set(GEOGRAPHY_CONFIG) - {"block", "block group"}),
    ),
    "acs1_profile": DatasetCapability(
        path="acs/acs1/profile",
        has_moe=True,
        estimate_suffix="E",
        moe_suffix="M",
        geographies=_ACS1_GEOGRAPHIES,
    ),
    "acs5_profile": DatasetCapability(
        path="acs/acs5/profile",
        has_moe=True,
        estimate_suffix="E",
        moe_suffix="M",
        geographies=frozenset(set(GEOGRAPHY_CONFIG) - {"block", "block group"}),
    ),
    "dec_pl": DatasetCapability(
        path="dec/pl",
        has_moe=False,
        estimate_suffix="N",
    ),
    "dec_dhc": DatasetCapability(
        path="dec/dhc",
        has_moe=False,
        estimate_suffix="N",
    ),
    "dec_sf1": DatasetCapability(
        path="dec/sf1",
        has_moe=False,
    ),
    "pep_population": DatasetCapability(
        path="pep/population",
        has_moe=False,
        geographies=frozenset(
            _COARSE_AREAS | {"place", "metropolitan statistical area/micropolitan statistical area"}
        ),
        supports_breakdown=True,
    ),
    "pep_charagegroups": DatasetCapability(
        path="pep/charagegroups",
        has_moe=False,
        geographies=frozenset(_COARSE_AREAS),
        supports_breakdown=True,
    ),
    "acs_flows": DatasetCapability(
        path="acs/flows",
        has_moe=True,
        moe_suffix="_M",
        geographies=frozenset(
            {
                "county",
                "county subdivision",
                "metropolitan statistical area/micropolitan statistical area",
            }
        ),
        name_field="FULL1_NAME",
        id_fields=("GEOID1",),
        extra_fields={"id2": "GEOID2", "name2": "FULL2_NAME"},
        supports_breakdown=True,
    ),
}


# ------------------------------------------------------------------ #
#  Dataclass
# ------------------------------------------------------------------ #


@dataclass
class CensusQuery:
    """
    A request for census data, validated on construction.

    Parameters
    ----------
    geography : str
        A key of GEOGRAPHY_CONFIG, or one of the short aliases
        ("cbsa", "zcta", "puma").
    year : int
        Data vintage (e.g. 2022).
    dataset : str
        A key of DATASETS (e.g. "acs5", "acs1", "dec_pl").
    variables : list[str] | dict[str, str] | None
        Variable codes without wire suffixes. A dict maps display alias to code.
    table : str | None
        A table/group prefix (e.g. "B01001"), expanded via the variable catalog.
    state : str | list[str] | None
        States as FIPS codes, USPS abbreviations or names.
    county : str | list[str] | None
        3-digit county FIPS codes. Requires exactly one state.
    output : str
        "tidy" or "wide".
    breakdown : list[str]
        Product-specific dimension fields (e.g. ["AGEGROUP", "SEX"]).
    summary_variable : str | None
        A denominator variable joined onto every row of its entity.
    """

    geography: str
    year: int
    dataset: str = "acs5"
    variables: list[str] | dict[str, str] | None = None
    table: str | None = None
    state: str | list[str] | None = None
    county: str | list[str] | None = None
    output: str = "tidy"
    breakdown: list[str] = field(default_factory=list)
    summary_variable: str | None = None
    aliases: dict[str, str] = field(init=False, default_factory=dict)

    def __post_init__(self):
        if self.dataset not in DATASETS:
            raise ValidationError(
                f"Unknown dataset {self.dataset!r}. Supported: {sorted(DATASETS)}"
            )
        self.geography = GEOGRAPHY_ALIASES.get(self.geography, self.geography)
        if self.geography not in GEOGRAPHY_CONFIG:
            raise ValidationError(
                f"Unknown geography {self.geography!r}. Supported: {list(GEOGRAPHY_CONFIG)}"
            )
        capability = self.capability
        if capability.geographies is not None and self.geography not in capability.geographies:
            raise ValidationError(
                f"Geography {self.geography!r} is not available for dataset {self.dataset!r}."
            )
        if self.output not in OUTPUT_SHAPES:
            raise ValidationError(f"output must be one of {OUTPUT_SHAPES}, got {self.output!r}.")
        if not isinstance(self.year, int) or self.year < 1990:
            raise ValidationError(f"Invalid year {self.year!r}.")

        self._validate_variables()
        self._validate_filters()

        if self.breakdown and not capability.supports_breakdown:
            raise ValidationError(f"Dataset {self.dataset!r} does not support breakdown fields.")
        self.breakdown = list(self.breakdown)
        if self.breakdown and self.variables:
            stems = {self.aliases.get(code, code) for code in self.variables}
            clashes = stems & set(self.breakdown)
            if clashes:
                raise ValidationError(
                    f"Variable names clash with breakdown fields: {sorted(clashes)}"
                )

        if self.summary_variable is not None:
            self.summary_variable = capability.strip_suffix(self.summary_variable.strip())

    def _validate_variables(self) -> None:
        has_vars = bool(self.variables)
        has_table = bool(self.table)
        if has_vars and has_table:
            raise ValidationError("Specify either variables or table, not both.")
        if not has_vars and not has_table:
            raise ValidationError("Must specify variables or a table.")

        if has_table:
            self.table = self.table.strip().upper()
            return

        capability = self.capability
        if isinstance(self.variables, str):
            self.variables = [self.variables]

        if isinstance(self.variables, dict):
            pairs = list(self.variables.items())
        else:
            pairs = [(None, code) for code in self.variables]

        codes = []
        aliases = {}
        for alias, code in pairs:
            if not isinstance(code, str) or not code.strip() or "," in code:
                raise ValidationError(f"Invalid variable code {code!r}.")
            code = capability.strip_suffix(code.strip())
            if code in codes:
                raise ValidationError(f"Variable {code!r} requested more than once.")
            codes.append(code)
            if alias is not None:
                if not str(alias).strip():
                    raise ValidationError(f"Empty alias for variable {code!r}.")
                aliases[code] = str(alias)
        clashes = {a for c, a in aliases.items() if a != c and a in codes}
        clashes |= set(aliases.values()) & RESERVED_COLUMNS
        if clashes:
            raise ValidationError(f"Aliases clash with other column names: {sorted(clashes)}")

        self.variables = codes
        self.aliases = aliases

    def _validate_filters(self) -> None:
        geo = GEOGRAPHY_CONFIG[self.geography]
        allowed = set(geo["required"]) | set(geo["optional"])

        states = _as_list(self.state)
        counties = _as_list(self.county)

        for name, values in (("state", states), ("county", counties)):
            if name in geo["required"] and not values:
                raise ValidationError(
                    f"Geography {self.geography!r} requires a {name} filter."
                )
            if values and name not in allowed:
                raise ValidationError(
                    f"Geography {self.geography!r} does not accept a {name} filter."
                )

        self.state = [state_fips(s) for s in states] if states else None
        if counties:
            if not self.state or len(self.state) != 1:
                raise ValidationError("A county filter requires exactly one state.")
            self.county = [county_fips(c) for c in counties]
        else:
            self.county = None

    @property
    def capability(self) -> DatasetCapability:
        return DATASETS[self.dataset]

    @property
    def geo_config(self) -> dict:
        return GEOGRAPHY_CONFIG[self.geography]

    @property
    def has_moe(self) -> bool:
        return self.capability.has_moe


def _as_list(value) -> list:
    if value is None:
        return []
    if isinstance(value, (str, int)):
        return [value]
    return list(value)
