"""
Reshapes Census API payloads into canonical tables.

Wide:  one row per entity      -> id, name, [extras], [breakdown], <stem>E, <stem>M ...
Tidy:  one row per entity/var  -> id, name, [extras], [breakdown], variable, estimate, moe

Wide value columns carry the dataset's own wire suffixes, so migration
flows come out as <stem> and <stem>_M. Datasets without margins of error use
a single value column (<stem> in wide, ``value`` in tidy). Missing or
suppressed cells become pd.NA.
"""

from __future__ import annotations

import logging

import pandas as pd

from censuskit.request import RequestPlan

logger = logging.getLogger(__name__)

# ACS annotation values reported in place of an estimate or MOE, e.g.
# -666666666 when too few sample observations were available.
ACS_SENTINELS = [
    -111111111,
    -222222222,
    -333333333,
    -555555555,
    -666666666,
    -888888888,
    -999999999,
]

_ORDER = "__order"
_ROW = "__row"


def payload_to_records(payload: list[list[str]]) -> list[dict[str, str]]:
    """Convert an array-of-arrays payload (first row = header) into dicts."""
    if not payload or len(payload) < 2:
        return []
    header = payload[0]
    return [dict(zip(header, row)) for row in payload[1:]]


def merge_chunks(payloads: list[list[list[str]]], key_fields: list[str]) -> list[dict]:
    """
    Join chunked payloads for the same entities on the key fields.

    The first payload defines the row set. Entities missing from a later
    chunk get None for that chunk's columns.
    """
    if not payloads:
        return []
    merged = payload_to_records(payloads[0])
    if not merged:
        return []

    for payload in payloads[1:]:
        if not payload:
            continue
        header = payload[0]
        lookup = {tuple(row.get(c) for c in key_fields): row for row in payload_to_records(payload)}
        for row in merged:
            extra = lookup.get(tuple(row.get(c) for c in key_fields), {})
            for col in header:
                if col not in row:
                    row[col] = extra.get(col)
    return merged


def parse_numeric(values: pd.Series) -> pd.Series:
    """Parse API strings to numbers; placeholders and junk become pd.NA."""
    numbers = pd.to_numeric(values, errors="coerce")
    numbers = numbers.mask(numbers.isin(ACS_SENTINELS))
    return numbers.astype("Float64")


def _value_columns(
    stem: str, has_moe: bool, suffixes: tuple[str, str] = ("E", "M")
) -> list[str]:
    return [f"{stem}{suffixes[0]}", f"{stem}{suffixes[1]}"] if has_moe else [stem]


def _summary_columns(has_moe: bool) -> list[str]:
    return ["summary_est", "summary_moe"] if has_moe else ["summary_value"]


def wide_to_tidy(
    wide: pd.DataFrame,
    stems: list[str],
    has_moe: bool,
    entity_columns: list[str] | None = None,
    summary_columns: list[str] | None = None,
    suffixes: tuple[str, str] = ("E", "M"),
) -> pd.DataFrame:
    """
    Un-pivot a wide table into one row per (entity, variable).

    Rows come out entity-major: every variable for the first entity, then
    every variable for the second, and so on. ``suffixes`` are the estimate
    and MOE column suffixes of the wide table.
    """
    value_cols = {c for stem in stems for c in _value_columns(stem, has_moe, suffixes)}
    summary_columns = list(summary_columns or [])
    if entity_columns is None:
        entity_columns = [
            c for c in wide.columns if c not in value_cols and c not in summary_columns
        ]
    out_values = ["estimate", "moe"] if has_moe else ["value"]
    columns = entity_columns + ["variable"] + out_values + summary_columns

    if wide.empty or not stems:
        return pd.DataFrame(columns=columns)

    pieces = []
    for order, stem in enumerate(stems):
        piece = wide[entity_columns].copy()
        piece["variable"] = stem
        for out_col, wide_col in zip(out_values, _value_columns(stem, has_moe, suffixes)):
            piece[out_col] = wide[wide_col]
        for col in summary_columns:
            piece[col] = wide[col]
        piece[_ROW] = range(len(wide))
        piece[_ORDER] = order
        pieces.append(piece)

    tidy = pd.concat(pieces, ignore_index=True)
    tidy = tidy.sort_values([_ROW, _ORDER], kind="stable")
    return tidy[columns].reset_index(drop=True)


def normalize_records(records: list[dict], plan: RequestPlan) -> pd.DataFrame:
    """Build the canonical table for a plan from merged row dicts."""
    query = plan.query
    capability = query.capability
    has_moe = capability.has_moe
    suffixes = (capability.estimate_suffix, capability.moe_suffix)

    entity_columns = ["id", "name", *capability.extra_fields, *query.breakdown]
    stems = [query.aliases.get(code, code) for code in plan.variables]
    summary_cols = _summary_columns(has_moe) if query.summary_variable else []

    wide_columns = entity_columns + [
        c for stem in stems for c in _value_columns(stem, has_moe, suffixes)
    ] + summary_cols

    if not records:
        logger.info("No rows returned for %s %s/%d", query.geography, query.dataset, query.year)
        wide = pd.DataFrame(columns=wide_columns)
    else:
        raw = pd.DataFrame.from_records(records)
        id_fields = list(capability.id_fields) or query.geo_config["geo_columns"]

        def column(name: str) -> pd.Series:
            if name in raw.columns:
                return raw[name]
            return pd.Series([None] * len(raw), index=raw.index, dtype=object)

        wide = pd.DataFrame(index=raw.index)
        wide["id"] = raw[id_fields].astype(str).agg("".join, axis=1)
        wide["name"] = column(capability.name_field)
        for out_col, wire in capability.extra_fields.items():
            wide[out_col] = column(wire)
        for field_name in query.breakdown:
            wide[field_name] = column(field_name)

        for code, stem in zip(plan.variables, stems):
            targets = _value_columns(stem, has_moe, suffixes)
            wide[targets[0]] = parse_numeric(column(capability.wire_estimate(code)))
            if has_moe:
                wide[targets[1]] = parse_numeric(column(capability.wire_moe(code)))

        if query.summary_variable:
            code = query.summary_variable
            wide[summary_cols[0]] = parse_numeric(column(capability.wire_estimate(code)))
            if has_moe:
                wide[summary_cols[1]] = parse_numeric(column(capability.wire_moe(code)))

        wide = wide[wide_columns].reset_index(drop=True)

    if query.output == "wide":
        return wide
    return wide_to_tidy(
        wide,
        stems,
        has_moe,
        entity_columns=entity_columns,
        summary_columns=summary_cols,
        suffixes=suffixes,
    )


def normalize(payload: list[list[str]], plan: RequestPlan) -> pd.DataFrame:
    """Normalize a single array-of-arrays payload for a plan."""
    return normalize_records(payload_to_records(payload), plan)
