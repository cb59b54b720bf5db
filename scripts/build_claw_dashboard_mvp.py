#!/usr/bin/env python3
"""Build axis-KPI and composition-KPI snapshots from the prepared booth rows."""

from __future__ import annotations

import argparse
import json
import math
from datetime import datetime
from pathlib import Path

import pandas as pd

from claw_kpi import (
    ANY,
    CLAW_ALL,
    FLAG_AXIS,
    FLAG_KEYS,
    FilterState,
    build_axis_kpi,
    build_composition_kpi,
    build_summary,
    filter_rows,
)


AXIS_KPI_AXES = ["genre", "claw_method", "character", "target", "age", "updated_date"]
COMPOSITION_AXES = ["genre", "target", "character", "claw_method", "price_band"]

AXIS_LABELS = {
    "genre": "景品ジャンル",
    "sub_genre": "サブジャンル",
    "claw_method": "投入法",
    "character": "キャラ",
    "target": "ターゲット",
    "age": "年代",
    "price_band": "料金帯",
    "updated_date": "更新日",
    "reservation": "予約",
    "movie": "映画",
    "original": "オリジナル",
}


def sanitize(obj):
    if isinstance(obj, dict):
        return {key: sanitize(value) for key, value in obj.items()}
    if isinstance(obj, list):
        return [sanitize(value) for value in obj]
    if isinstance(obj, float) and (math.isnan(obj) or math.isinf(obj)):
        return None
    if hasattr(obj, "item") and not isinstance(obj, (str, bytes)):
        return sanitize(obj.item())
    return obj


def write_json(path: Path, payload: object) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(sanitize(payload), ensure_ascii=False, indent=2),
        encoding="utf-8",
    )
    return path


def format_metric(value: float | int | None, as_pct: bool = False) -> str:
    if value is None or pd.isna(value):
        return "-"
    if as_pct:
        return f"{value * 100:.1f}%"
    return f"{value:,.0f}"


def format_yen(value: float | int | None) -> str:
    text = format_metric(value)
    return text if text == "-" else f"{text}円"


def load_rows(latest_root: Path) -> pd.DataFrame:
    rows_file = latest_root / "raw" / "rows.json"
    if not rows_file.exists():
        raise FileNotFoundError(f"Input not found: {rows_file}")
    payload = json.loads(rows_file.read_text(encoding="utf-8"))
    records = payload.get("rows", []) if isinstance(payload, dict) else payload
    return pd.DataFrame(records)


def describe_filters(state: FilterState, row_count: int) -> list[tuple[str, str]]:
    chips = []
    machines = sorted(state.machines)
    if not machines:
        chips.append(("マシン", "全体"))
    elif len(machines) <= 3:
        chips.append(("マシン", " / ".join(machines)))
    else:
        chips.append(("マシン", f"{machines[0]} ほか{len(machines) - 1}"))

    chips.append(("投入法", state.claw_method))
    for name in ["genre", "character", "target", "age", "price_band"]:
        value = getattr(state, name)
        if value and value != ANY:
            chips.append((AXIS_LABELS[name], value))

    if state.min_sales is not None:
        chips.append(("売上≥", format_metric(state.min_sales)))
    if state.max_sales is not None:
        chips.append(("売上≤", format_metric(state.max_sales)))
    if state.min_cost_rate is not None:
        chips.append(("原価率≥", format_metric(state.min_cost_rate, as_pct=True)))
    if state.max_cost_rate is not None:
        chips.append(("原価率≤", format_metric(state.max_cost_rate, as_pct=True)))
    for flag, expected in state.flags.items():
        chips.append((AXIS_LABELS.get(flag, flag), "ON" if expected else "OFF"))

    chips.append(("対象", f"{row_count}行"))
    return chips


def build_headline(rows: pd.DataFrame) -> dict:
    summary = build_summary(rows)
    machines = summary["machine_count"]
    summary["sales_per_machine"] = summary["total_sales"] / machines if machines else None
    return summary


def _composition_table(groups: list[dict], top_n: int) -> list[str]:
    lines = [
        "| 軸 | 売上 | 売上比 | 台数 | 台数比 | 回数 | 回数比 | 平均料金 |",
        "| --- | ---: | ---: | ---: | ---: | ---: | ---: | ---: |",
    ]
    for group in groups[:top_n]:
        lines.append(
            "| {axis} | {sales} | {sales_ratio} | {booths} | {booth_ratio} | {plays} | {plays_ratio} | {avg} |".format(
                axis=group["axis_value"],
                sales=format_yen(group["sales"]),
                sales_ratio=format_metric(group["sales_ratio"], as_pct=True),
                booths=group["booth_count"],
                booth_ratio=format_metric(group["booth_ratio"], as_pct=True),
                plays=format_metric(group["plays"]),
                plays_ratio=format_metric(group["plays_ratio"], as_pct=True),
                avg=format_yen(group["avg_price"]),
            )
        )
    return lines


def write_markdown_brief(
    path: Path,
    generated_at: str,
    headline: dict,
    chips: list[tuple[str, str]],
    axis_kpi: dict[str, list[dict]],
    composition: dict[str, list[dict]],
    top_n: int,
) -> None:
    lines = [
        "# Claw Dashboard Brief",
        "",
        f"- Generated at: `{generated_at}`",
        f"- Filters: {' / '.join(f'{key} {value}' for key, value in chips)}",
        f"- Sales: `{format_yen(headline['total_sales'])}`",
        f"- Consumption: `{format_yen(headline['total_claw'])}`",
        f"- Cost rate: `{format_metric(headline['cost_rate'], as_pct=True)}`",
        f"- Machines: `{headline['machine_count']}`"
        f" (sales per machine `{format_yen(headline['sales_per_machine'])}`)",
        "",
        "## Axis KPI",
        "",
    ]

    for axis, groups in axis_kpi.items():
        lines.append(f"### {AXIS_LABELS.get(axis, axis)}")
        lines.append("")
        for group in groups[:top_n]:
            lines.append(
                f"- {group['axis_value']}: {group['machine_count']}台"
                f" / 売上 {format_yen(group['sales'])}"
                f" / 消化額 {format_yen(group['claw'])}"
                f" / 原価率 {format_metric(group['cost_rate'], as_pct=True)}"
            )
        lines.append("")

    lines.extend(["## Composition KPI", ""])
    for name, groups in composition.items():
        lines.append(f"### {AXIS_LABELS.get(name, name)}")
        lines.append("")
        if groups:
            lines.extend(_composition_table(groups, top_n))
        else:
            lines.append("表示できるデータがありません")
        lines.append("")

    path.write_text("\n".join(lines), encoding="utf-8")


def generate_mvp_outputs(
    latest_root: Path,
    output_dir: Path,
    state: FilterState | None = None,
    include_unknown: bool = False,
    sort_key: str = "sales",
    direction: str = "desc",
    top_n: int = 20,
) -> dict:
    state = state or FilterState()
    output_dir.mkdir(parents=True, exist_ok=True)

    rows = load_rows(latest_root)
    filtered = filter_rows(rows, state)

    axis_kpi = {
        axis: build_axis_kpi(filtered, axis, sort_key=sort_key, direction=direction)
        for axis in AXIS_KPI_AXES
    }
    composition = {
        axis: build_composition_kpi(filtered, axis, include_unknown=include_unknown)
        for axis in COMPOSITION_AXES
    }
    for flag in FLAG_KEYS:
        composition[flag] = build_composition_kpi(filtered, FLAG_AXIS, flag=flag)

    outputs = {}
    for axis, groups in axis_kpi.items():
        outputs[f"axis_{axis}"] = str(write_json(output_dir / f"axis_{axis}.json", groups))
    for name, groups in composition.items():
        file_name = (
            f"composition_flag_{name}.json" if name in FLAG_KEYS else f"composition_{name}.json"
        )
        outputs[f"composition_{name}"] = str(write_json(output_dir / file_name, groups))

    generated_at = datetime.now().isoformat(timespec="seconds")
    headline = build_headline(filtered)
    chips = describe_filters(state, len(filtered))
    headline_file = write_json(
        output_dir / "headline.json",
        {**headline, "filters": [{"key": key, "value": value} for key, value in chips]},
    )
    outputs["headline"] = str(headline_file)

    brief_file = output_dir / "brief.md"
    write_markdown_brief(
        brief_file,
        generated_at=generated_at,
        headline=headline,
        chips=chips,
        axis_kpi=axis_kpi,
        composition=composition,
        top_n=top_n,
    )
    outputs["brief"] = str(brief_file)

    manifest = {
        "generated_at": generated_at,
        "latest_root": str(latest_root),
        "row_count": int(len(rows)),
        "filtered_row_count": int(len(filtered)),
        "include_unknown": include_unknown,
        "outputs": outputs,
        "kpi": headline,
    }
    manifest_file = write_json(output_dir / "manifest.json", manifest)
    manifest["outputs"]["manifest_file"] = str(manifest_file)
    return manifest


def build_filter_state(args: argparse.Namespace) -> FilterState:
    flags = {}
    for flag in FLAG_KEYS:
        value = getattr(args, flag)
        if value is not None:
            flags[flag] = value == "on"

    return FilterState(
        machines=frozenset(args.machine or []),
        claw_method=args.claw_method,
        genre=args.genre,
        character=args.character,
        target=args.target,
        age=args.age,
        price_band=args.price_band,
        min_sales=args.min_sales,
        max_sales=args.max_sales,
        min_cost_rate=None if args.min_cost_pct is None else args.min_cost_pct / 100,
        max_cost_rate=None if args.max_cost_pct is None else args.max_cost_pct / 100,
        flags=flags,
    )


def parse_args() -> argparse.Namespace:
    root = Path(__file__).resolve().parents[1]
    parser = argparse.ArgumentParser(
        description="Generate claw dashboard KPI snapshots from prepared rows."
    )
    parser.add_argument(
        "--latest-root",
        type=Path,
        default=root / "docs" / "data",
        help="Directory written by prepare_claw_dashboard_data.py.",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=root / "docs" / "data" / "kpi",
        help="Directory for KPI outputs.",
    )
    parser.add_argument("--machine", action="append", help="Machine name to keep (repeatable).")
    parser.add_argument("--claw-method", default=CLAW_ALL, help="Claw method to keep.")
    parser.add_argument("--genre", default=ANY)
    parser.add_argument("--character", default=ANY)
    parser.add_argument("--target", default=ANY)
    parser.add_argument("--age", default=ANY)
    parser.add_argument("--price-band", default=ANY)
    parser.add_argument("--min-sales", type=float)
    parser.add_argument("--max-sales", type=float)
    parser.add_argument("--min-cost-pct", type=float, help="Minimum cost rate in percent.")
    parser.add_argument("--max-cost-pct", type=float, help="Maximum cost rate in percent.")
    for flag in FLAG_KEYS:
        parser.add_argument(f"--{flag}", choices=["on", "off"])
    parser.add_argument(
        "--include-unknown",
        action="store_true",
        help="Bucket rows without an axis value into the unknown group.",
    )
    parser.add_argument("--sort-key", default="sales", help="Axis KPI sort key.")
    parser.add_argument("--sort-dir", choices=["asc", "desc"], default="desc")
    parser.add_argument(
        "--top-n",
        type=int,
        default=20,
        help="Groups to list per axis in the brief.",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress generated-file logs.",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    manifest = generate_mvp_outputs(
        latest_root=args.latest_root,
        output_dir=args.output_dir,
        state=build_filter_state(args),
        include_unknown=args.include_unknown,
        sort_key=args.sort_key,
        direction=args.sort_dir,
        top_n=args.top_n,
    )

    if args.quiet:
        return

    print("Generated claw dashboard KPI outputs:")
    for key, path in manifest["outputs"].items():
        print(f"- {key}: {path}")


if __name__ == "__main__":
    main()
