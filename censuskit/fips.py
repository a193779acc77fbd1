"""
State FIPS lookup.

Accepts the forms people actually type ("17", "7", "IL", "il", "Illinois")
and returns the 2-digit FIPS code the Census API expects.
"""

from __future__ import annotations

from censuskit.exceptions import ValidationError

# (fips, usps, name) for the 50 states, DC and Puerto Rico
STATES = [
    ("01", "AL", "Alabama"),
    ("02", "AK", "Alaska"),
    ("04", "AZ", "Arizona"),
    ("05", "AR", "Arkansas"),
    ("06", "CA", "California"),
    ("08", "CO", "Colorado"),
    ("09", "CT", "Connecticut"),
    ("10", "DE", "Delaware"),
    ("11", "DC", "District of Columbia"),
    ("12", "FL", "Florida"),
    ("13", "GA", "Georgia"),
    ("15", "HI", "Hawaii"),
    ("16", "ID", "Idaho"),
    ("17", "IL", "Illinois"),
    ("18", "IN", "Indiana"),
    ("19", "IA", "Iowa"),
    ("20", "KS", "Kansas"),
    ("21", "KY", "Kentucky"),
    ("22", "LA", "Louisiana"),
    ("23", "ME", "Maine"),
    ("24", "MD", "Maryland"),
    ("25", "MA", "Massachusetts"),
    ("26", "MI", "Michigan"),
    ("27", "MN", "Minnesota"),
    ("28", "MS", "Mississippi"),
    ("29", "MO", "Missouri"),
    ("30", "MT", "Montana"),
    ("31", "NE", "Nebraska"),
    ("32", "NV", "Nevada"),
    ("33", "NH", "New Hampshire"),
    ("34", "NJ", "New Jersey"),
    ("35", "NM", "New Mexico"),
    ("36", "NY", "New York"),
    ("37", "NC", "North Carolina"),
    ("38", "ND", "North Dakota"),
    ("39", "OH", "Ohio"),
    ("40", "OK", "Oklahoma"),
    ("41", "OR", "Oregon"),
    ("42", "PA", "Pennsylvania"),
    ("44", "RI", "Rhode Island"),
    ("45", "SC", "South Carolina"),
    ("46", "SD", "South Dakota"),
    ("47", "TN", "Tennessee"),
    ("48", "TX", "Texas"),
    ("49", "UT", "Utah"),
    ("50", "VT", "Vermont"),
    ("51", "VA", "Virginia"),
    ("53", "WA", "Washington"),
    ("54", "WV", "West Virginia"),
    ("55", "WI", "Wisconsin"),
    ("56", "WY", "Wyoming"),
    ("72", "PR", "Puerto Rico"),
]

ALL_STATE_FIPS = [fips for fips, _, _ in STATES]

_LOOKUP: dict[str, str] = {}
for _fips, _usps, _name in STATES:
    _LOOKUP[_fips] = _fips
    _LOOKUP[_usps.lower()] = _fips
    _LOOKUP[_name.lower()] = _fips


def state_fips(value: str | int) -> str:
    """Return the 2-digit FIPS code for a state given as FIPS, USPS code or name."""
    key = str(value).strip().lower()
    if key.isdigit():
        key = key.zfill(2)
    try:
        return _LOOKUP[key]
    except KeyError:
        raise ValidationError(f"Unknown state {value!r}.") from None


def county_fips(value: str | int) -> str:
    """Return a 3-digit county FIPS code. County names are not resolved."""
    key = str(value).strip()
    if not key.isdigit() or len(key) > 3:
        raise ValidationError(f"County must be a 3-digit FIPS code, got {value!r}.")
    return key.zfill(3)
