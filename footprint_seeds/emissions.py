from __future__ import annotations

import numpy as np
import pandas as pd

LAND_TYPE_FIELDS = {
    "carbon": "carbon",
    "cropLand": "crop_land",
    "grazingLand": "grazing_land",
    "forestLand": "forest_land",
    "fishingGround": "fishing_ground",
    "builtupLand": "builtup_land",
}

ENTRY_COLUMNS = ["country", "country_code", "isoa2", "year", *LAND_TYPE_FIELDS.values(), "total"]


def _safe_float(value) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        num = float(value)
    except Exception:
        return None
    if not np.isfinite(num):
        return None
    return num


def _latest_record(records: list[dict]) -> dict | None:
    rows = [r for r in records if isinstance(r, dict)]
    if not rows:
        return None
    years = pd.to_numeric(pd.Series([r.get("year") for r in rows], dtype=object), errors="coerce")
    years = years[np.isfinite(years.astype(float))]
    if years.empty:
        return None
    # Last occurrence wins when a year appears more than once.
    pos = years[years == years.max()].index[-1]
    return rows[pos]


def _entry_total(row: dict) -> float | None:
    total = _safe_float(row.get("value"))
    if total is not None:
        return total
    parts = [_safe_float(row.get(src)) for src in LAND_TYPE_FIELDS]
    parts = [p for p in parts if p is not None]
    if not parts:
        return None
    return float(sum(parts))


def transform_data(data_by_country: dict[str, list[dict]]) -> tuple[list[dict], list[str]]:
    """Collapse each country's yearly records into one summary entry.

    The entry describes the most recent year the provider reported. Returns the
    entries and the keys of countries left out for lacking a usable year or total.
    """
    entries: list[dict] = []
    skipped: list[str] = []
    for key, records in data_by_country.items():
        row = _latest_record(records or [])
        total = None if row is None else _entry_total(row)
        if total is None:
            skipped.append(key)
            continue

        name = row.get("countryName")
        if not isinstance(name, str) or not name.strip():
            name = key
        entry = {
            "country": name.strip(),
            "country_code": None if row.get("countryCode") is None else str(row["countryCode"]),
            "isoa2": row.get("isoa2") if isinstance(row.get("isoa2"), str) else None,
            "year": int(float(row["year"])),
        }
        for src, dst in LAND_TYPE_FIELDS.items():
            entry[dst] = _safe_float(row.get(src))
        entry["total"] = total
        entries.append(entry)
    return entries, skipped


def sort_by_highest_total(entries: list[dict]) -> list[dict]:
    """Rank entries by total descending; equal totals are ordered by country name."""
    if not entries:
        return []
    df = pd.DataFrame(entries)
    df["_name_sort"] = df["country"].astype(str).str.lower()
    df = df.sort_values(
        by=["total", "_name_sort"],
        ascending=[False, True],
        kind="mergesort",
    ).drop(columns=["_name_sort"])
    df = df.reset_index(drop=True)
    df.insert(0, "rank", range(1, len(df) + 1))
    # None instead of NaN so the snapshot survives a JSON round-trip unchanged.
    df = df.astype(object).where(df.notna(), None)
    return [_to_builtin(row) for row in df.to_dict(orient="records")]


def _to_builtin(row: dict) -> dict:
    out = {}
    for k, v in row.items():
        if isinstance(v, np.integer):
            v = int(v)
        elif isinstance(v, np.floating):
            v = float(v)
        out[k] = v
    return out
