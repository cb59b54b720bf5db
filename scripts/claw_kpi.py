"""Row filters and the group-by rollups behind the axis and composition KPIs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Mapping

import pandas as pd

from claw_values import clean_numeric, cost_rate, to_flag, to_text


CLAW_ALL = "全体"
ANY = "全て"

UNKNOWN_LABEL = "(不明)"
UNCLASSIFIED_LABEL = "未分類"
UNSET_SYMBOL_LABEL = "(未設定)"

FLAG_AXIS = "flag"
FLAG_KEYS = ["reservation", "movie", "original"]

AXES = {
    "genre": "genre",
    "sub_genre": "sub_genre",
    "target": "target",
    "age": "age",
    "character": "character",
    "claw_method": "claw_method",
    "price_band": "price_band",
    "machine": "machine_key",
    "updated_date": "updated_date",
    "symbol": "symbol_raw",
}

EXACT_FILTERS = ["genre", "character", "target", "age", "price_band"]

GROUP_SORT_KEYS = [
    "sales",
    "sales_ratio",
    "claw",
    "cost_rate",
    "booth_count",
    "booth_ratio",
    "plays",
    "plays_ratio",
    "machine_count",
    "avg_price",
]

AxisFunction = Callable[[pd.DataFrame], pd.Series]


class AggregationConfigError(ValueError):
    """Raised when an aggregation or sort is requested with invalid options."""


@dataclass(frozen=True)
class FilterState:
    machines: frozenset = frozenset()
    claw_method: str = CLAW_ALL
    genre: str = ANY
    character: str = ANY
    target: str = ANY
    age: str = ANY
    price_band: str = ANY
    min_sales: float | None = None
    max_sales: float | None = None
    min_cost_rate: float | None = None
    max_cost_rate: float | None = None
    flags: Mapping[str, bool] = field(default_factory=dict)


def as_row_frame(rows: pd.DataFrame | Iterable[Mapping]) -> pd.DataFrame:
    frame = rows.copy() if isinstance(rows, pd.DataFrame) else pd.DataFrame(list(rows))

    for column in ["sales", "claw", "plays"]:
        if column in frame.columns:
            frame[column] = clean_numeric(frame[column])
        else:
            frame[column] = 0.0

    if "machine_key" not in frame.columns:
        source = next((c for c in ["machine", "booth_id"] if c in frame.columns), None)
        frame["machine_key"] = frame[source] if source else ""
    frame["machine_key"] = frame["machine_key"].map(to_text)

    if "cost_rate" not in frame.columns:
        frame["cost_rate"] = [
            cost_rate(sales, claw) for sales, claw in zip(frame["sales"], frame["claw"])
        ]
    return frame


def _text_column(frame: pd.DataFrame, column: str) -> pd.Series:
    if column not in frame.columns:
        return pd.Series("", index=frame.index, dtype="object")
    return frame[column].map(to_text)


def _flag_column(frame: pd.DataFrame, flag: str) -> pd.Series:
    if flag not in frame.columns:
        return pd.Series(False, index=frame.index)
    return frame[flag].map(to_flag).astype(bool)


def filter_mask(rows: pd.DataFrame | Iterable[Mapping], state: FilterState) -> pd.Series:
    frame = as_row_frame(rows)
    mask = pd.Series(True, index=frame.index)

    if state.machines:
        mask &= frame["machine_key"].isin(set(state.machines))

    if state.claw_method and state.claw_method != CLAW_ALL:
        mask &= _text_column(frame, "claw_method").eq(state.claw_method)

    for name in EXACT_FILTERS:
        wanted = to_text(getattr(state, name))
        if not wanted or wanted == ANY:
            continue
        mask &= _text_column(frame, name).eq(wanted)

    sales = frame["sales"]
    if state.min_sales is not None:
        mask &= sales.ge(state.min_sales)
    if state.max_sales is not None:
        mask &= sales.le(state.max_sales)

    rates = pd.to_numeric(frame["cost_rate"], errors="coerce")
    if state.min_cost_rate is not None:
        mask &= rates.ge(state.min_cost_rate)
    if state.max_cost_rate is not None:
        mask &= rates.le(state.max_cost_rate)

    for flag, expected in state.flags.items():
        if expected is None:
            continue
        mask &= _flag_column(frame, flag).eq(bool(expected))

    return mask.astype(bool)


def passes_filters(row: Mapping, state: FilterState) -> bool:
    return bool(filter_mask([dict(row)], state).iloc[0])


def filter_rows(rows: pd.DataFrame | Iterable[Mapping], state: FilterState | None) -> pd.DataFrame:
    frame = as_row_frame(rows)
    if state is None:
        return frame
    return frame[filter_mask(frame, state)]


def axis_values(
    frame: pd.DataFrame, axis: str | AxisFunction, flag: str | None = None
) -> pd.Series:
    """Extract the group key of every row; absent values come back as None."""
    if callable(axis):
        values = axis(frame)
    elif axis == FLAG_AXIS:
        if not flag:
            raise AggregationConfigError("axis 'flag' requires a flag name")
        if flag not in FLAG_KEYS:
            raise AggregationConfigError(f"unknown flag: {flag!r} (expected one of {FLAG_KEYS})")
        on = _flag_column(frame, flag)
        return on.map({True: f"{flag}:ON", False: f"{flag}:OFF"}).astype("object")
    elif axis in AXES:
        values = _text_column(frame, AXES[axis])
    elif axis in frame.columns:
        values = frame[axis]
    else:
        raise AggregationConfigError(f"unknown axis: {axis!r}")

    text = pd.Series(values, index=frame.index).map(to_text).astype("object")
    return text.where(text.ne(""), None)


def _ratio(part: float, total: float) -> float:
    return part / total if total > 0 else 0.0


def aggregate(
    rows: pd.DataFrame | Iterable[Mapping],
    axis: str | AxisFunction,
    *,
    flag: str | None = None,
    include_unknown: bool = False,
    unknown_label: str = UNKNOWN_LABEL,
) -> list[dict]:
    """Group rows by one axis and annotate each group with its share.

    Ratios are shares of every row passed in. Rows without an axis value are
    dropped unless ``include_unknown`` buckets them under ``unknown_label``,
    so dropped rows leave the ratios summing below 1.0. Groups come back by
    sales descending; ties keep first-seen order.
    """
    frame = as_row_frame(rows)
    keys = axis_values(frame, axis, flag=flag)
    if include_unknown:
        keys = keys.where(keys.notna(), unknown_label)

    total_sales = float(frame["sales"].sum())
    total_booths = int(len(frame))
    total_plays = float(frame["plays"].sum())

    scope = frame.loc[keys.notna()].assign(axis_value=keys[keys.notna()])
    if scope.empty:
        return []

    grouped = (
        scope.groupby("axis_value", sort=False)
        .agg(
            sales=("sales", "sum"),
            claw=("claw", "sum"),
            booth_count=("sales", "size"),
            plays=("plays", "sum"),
            machine_count=("machine_key", lambda names: names[names.ne("")].nunique()),
        )
        .reset_index()
        .sort_values("sales", ascending=False, kind="stable")
    )

    axis_type = axis if isinstance(axis, str) else getattr(axis, "__name__", "custom")
    groups = []
    for record in grouped.to_dict(orient="records"):
        sales = float(record["sales"])
        plays = float(record["plays"])
        booth_count = int(record["booth_count"])
        groups.append(
            {
                "axis_type": axis_type,
                "axis_value": record["axis_value"],
                "sales": sales,
                "sales_ratio": _ratio(sales, total_sales),
                "claw": float(record["claw"]),
                "cost_rate": cost_rate(sales, float(record["claw"])),
                "booth_count": booth_count,
                "booth_ratio": _ratio(booth_count, total_booths),
                "plays": plays,
                "plays_ratio": _ratio(plays, total_plays),
                "machine_count": int(record["machine_count"]),
                "avg_price": sales / plays if plays > 0 else None,
            }
        )
    return groups


def sort_groups(groups: list[dict], key: str = "sales", direction: str = "desc") -> list[dict]:
    if key not in GROUP_SORT_KEYS:
        raise AggregationConfigError(f"unknown sort key: {key!r}")
    if direction not in ("asc", "desc"):
        raise AggregationConfigError(f"unknown sort direction: {direction!r}")

    return sorted(
        groups,
        key=lambda group: (group.get(key) or 0, str(group["axis_value"])),
        reverse=direction == "desc",
    )


def build_axis_kpi(
    rows: pd.DataFrame | Iterable[Mapping],
    axis: str | AxisFunction,
    state: FilterState | None = None,
    sort_key: str = "sales",
    direction: str = "desc",
) -> list[dict]:
    groups = aggregate(
        filter_rows(rows, state),
        axis,
        include_unknown=True,
        unknown_label=UNCLASSIFIED_LABEL,
    )
    return sort_groups(groups, sort_key, direction)


def build_composition_kpi(
    rows: pd.DataFrame | Iterable[Mapping],
    axis: str | AxisFunction,
    state: FilterState | None = None,
    *,
    flag: str | None = None,
    include_unknown: bool = False,
) -> list[dict]:
    return aggregate(
        filter_rows(rows, state),
        axis,
        flag=flag,
        include_unknown=include_unknown,
    )


def build_summary(rows: pd.DataFrame | Iterable[Mapping]) -> dict:
    frame = as_row_frame(rows)
    total_sales = float(frame["sales"].sum())
    total_claw = float(frame["claw"].sum())
    machines = frame["machine_key"]
    return {
        "updated_at": datetime.now().isoformat(timespec="seconds"),
        "row_count": int(len(frame)),
        "machine_count": int(machines[machines.ne("")].nunique()),
        "total_sales": total_sales,
        "total_claw": total_claw,
        "total_plays": float(frame["plays"].sum()),
        "cost_rate": cost_rate(total_sales, total_claw),
    }


def build_by_symbol(rows: pd.DataFrame | Iterable[Mapping]) -> list[dict]:
    groups = aggregate(rows, "symbol", include_unknown=True, unknown_label=UNSET_SYMBOL_LABEL)
    return [
        {
            "symbol": group["axis_value"],
            "sales": group["sales"],
            "claw": group["claw"],
            "count": group["booth_count"],
            "cost_rate": group["cost_rate"],
        }
        for group in groups
    ]
