#!/usr/bin/env python3
"""Fetch the booth DB and symbol master CSVs and write dashboard-ready JSON snapshots."""

from __future__ import annotations

import argparse
import hashlib
import io
import os
import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import Mapping

import pandas as pd
import requests

from build_claw_dashboard_mvp import generate_mvp_outputs, sanitize, write_json
from claw_kpi import FLAG_KEYS, build_by_symbol, build_summary
from claw_symbols import (
    CATEGORY_KEYS,
    DECODED_COLUMNS,
    SymbolMaster,
    build_machine_map,
    build_symbol_master,
    decode_symbols,
)
from claw_values import (
    CHARACTER_OFF,
    CHARACTER_ON,
    CLAW_THREE,
    CLAW_TWO,
    normalize_character,
    normalize_claw_method,
    normalize_db_frame,
    normalize_key,
    price_band,
    to_flag,
)


DB_CSV_ENV = "DB_CSV_URL"
SYMBOL_MASTER_CSV_ENV = "SYMBOL_MASTER_CSV_URL"

REQUEST_TIMEOUT_S = 30

SUB_GENRE_BY_GENRE = {
    "食品": "food_genre_label",
    "ぬいぐるみ": "plush_genre_label",
    "雑貨": "goods_genre_label",
}

ROW_COLUMNS = [
    "booth_id",
    "item_name",
    "label_id",
    "machine",
    "machine_key",
    "w",
    "d",
    "symbol_raw",
    "plays",
    "updated_at",
    "updated_date",
    "sales",
    "claw",
    "cost_rate",
    "genre",
    "sub_genre",
    "target",
    "age",
    "character",
    "claw_method",
    "price_band",
    *FLAG_KEYS,
]


def normalize_header(header: object) -> str:
    text = str(header or "").replace("\ufeff", "").strip()
    return re.sub(r"\s+", " ", text)


def is_url(source: str) -> bool:
    return source.startswith(("http://", "https://"))


def read_source_text(source: str) -> str:
    if is_url(source):
        response = requests.get(source, timeout=REQUEST_TIMEOUT_S)
        response.raise_for_status()
        response.encoding = "utf-8"
        return response.text

    path = Path(source)
    if not path.exists():
        raise FileNotFoundError(f"Input not found: {path}")
    return path.read_text(encoding="utf-8-sig")


def text_fingerprint(source: str, text: str) -> dict:
    payload = text.encode("utf-8")
    return {
        "source": source,
        "size": len(payload),
        "sha256": hashlib.sha256(payload).hexdigest(),
    }


def read_csv_text(text: str) -> pd.DataFrame:
    frame = pd.read_csv(
        io.StringIO(text),
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
    )
    frame = frame.rename(columns=normalize_header)
    keep = [c for c in frame.columns if c and not c.startswith("Unnamed:")]
    frame = frame.loc[:, keep]
    for column in frame.columns:
        frame[column] = frame[column].str.strip()
    return frame[frame.ne("").any(axis=1)].reset_index(drop=True)


def resolve_sub_genre(row: Mapping) -> str:
    genre = row["prize_genre_label"]
    for keyword, column in SUB_GENRE_BY_GENRE.items():
        if keyword in genre and row[column]:
            return row[column]
    return next((row[c] for c in SUB_GENRE_BY_GENRE.values() if row[c]), "")


def resolve_claw_method(row: Mapping) -> str:
    method = normalize_claw_method(row["claw_method_label"])
    if method:
        return method
    if row["three_claw_label"]:
        return CLAW_THREE
    if row["two_claw_label"]:
        return CLAW_TWO
    return ""


def resolve_character(row: Mapping) -> str:
    character = normalize_character(row["character_label"])
    if character:
        return character
    if row["character_genre_label"]:
        return CHARACTER_ON
    if row["non_character_genre_label"]:
        return CHARACTER_OFF
    return ""


def resolve_machine_key(row: Mapping, machine_map: dict[str, str]) -> str:
    if row["machine"]:
        return row["machine"]
    return machine_map.get(normalize_key(row["booth_id"]), row["booth_id"])


def derive_dimensions(rows: pd.DataFrame, machine_map: dict[str, str]) -> pd.DataFrame:
    out = rows.copy()
    records = out.to_dict(orient="records")

    out["machine_key"] = [resolve_machine_key(row, machine_map) for row in records]
    out["genre"] = out["prize_genre_label"]
    out["sub_genre"] = [resolve_sub_genre(row) for row in records]
    out["target"] = out["target_label"]
    out["age"] = out["age_label"]
    out["character"] = [resolve_character(row) for row in records]
    out["claw_method"] = [resolve_claw_method(row) for row in records]
    out["price_band"] = [
        price_band(band, decoded_price) or price_band("", play_price) or ""
        for band, decoded_price, play_price in zip(
            out["price_band"], out["price_label"], out["play_price"]
        )
    ]
    for flag in FLAG_KEYS:
        out[flag] = out[f"{flag}_label"].map(to_flag).astype(bool)

    updated = pd.to_datetime(out["updated_at"], errors="coerce", format="mixed")
    out["updated_date"] = updated.dt.strftime("%Y-%m-%d").fillna("")
    return out


def build_rows(
    db_frame: pd.DataFrame,
    master: SymbolMaster,
    machine_map: dict[str, str] | None = None,
) -> pd.DataFrame:
    base = normalize_db_frame(db_frame)
    decoded = decode_symbols(base["symbol_raw"], master)
    rows = derive_dimensions(pd.concat([base, decoded], axis=1), machine_map or {})
    return rows[ROW_COLUMNS + DECODED_COLUMNS]


def decode_stats(rows: pd.DataFrame) -> dict:
    code_columns = [f"{key}_code" for key in CATEGORY_KEYS]
    matched = rows[code_columns].ne("").sum(axis=1)
    return {
        "distinct_symbols": int(rows["symbol_raw"].nunique()),
        "rows_without_symbol": int(rows["symbol_raw"].eq("").sum()),
        "rows_without_match": int(matched.eq(0).sum()),
        "matches_per_category": {
            key: int(rows[f"{key}_code"].ne("").sum()) for key in CATEGORY_KEYS
        },
    }


def rows_to_records(rows: pd.DataFrame) -> list[dict]:
    return sanitize(rows.astype("object").to_dict(orient="records"))


def build_outputs_from_texts(
    db_source: str,
    db_text: str,
    master_source: str,
    master_text: str,
    output_root: Path,
) -> dict:
    db_frame = read_csv_text(db_text)
    master_frame = read_csv_text(master_text)

    symbol_master = build_symbol_master(master_frame)
    machine_map = build_machine_map(master_frame)
    rows = build_rows(db_frame, symbol_master, machine_map)
    summary = build_summary(rows)
    by_symbol = build_by_symbol(rows)
    records = rows_to_records(rows)

    raw_dir = output_root / "raw"
    master_dir = output_root / "master"
    agg_dir = output_root / "agg"
    for path in [raw_dir, master_dir, agg_dir]:
        if path.exists():
            shutil.rmtree(path)
        path.mkdir(parents=True, exist_ok=True)

    master_file = write_json(master_dir / "symbol_master.json", symbol_master.to_json())
    machines_file = write_json(master_dir / "machines.json", machine_map)
    rows_file = write_json(raw_dir / "rows.json", records)
    summary_file = write_json(raw_dir / "summary.json", summary)
    by_symbol_file = write_json(agg_dir / "by_symbol.json", by_symbol)
    kpi_manifest = generate_mvp_outputs(latest_root=output_root, output_dir=output_root / "kpi")

    outputs = {
        "rows_file": str(rows_file),
        "summary_file": str(summary_file),
        "symbol_master_file": str(master_file),
        "machines_file": str(machines_file),
        "by_symbol_file": str(by_symbol_file),
    }
    manifest = {
        "generated_at": datetime.now().isoformat(timespec="seconds"),
        "sources": {
            "db": text_fingerprint(db_source, db_text),
            "symbol_master": text_fingerprint(master_source, master_text),
        },
        "db_columns": list(db_frame.columns),
        "master_columns": list(master_frame.columns),
        "row_count": int(len(rows)),
        "decode": decode_stats(rows),
        "kpi_outputs": kpi_manifest["outputs"],
        "outputs": outputs,
    }
    manifest_file = write_json(output_root / "manifest.json", manifest)

    return {
        "output_root": str(output_root),
        "manifest_file": str(manifest_file),
        **outputs,
        "summary": summary,
        "manifest": manifest,
    }


def build_latest_outputs(db_source: str, master_source: str, output_root: Path) -> dict:
    db_text = read_source_text(db_source)
    master_text = read_source_text(master_source)
    return build_outputs_from_texts(
        db_source, db_text, master_source, master_text, output_root
    )


def parse_args() -> argparse.Namespace:
    root = Path(__file__).resolve().parents[1]
    parser = argparse.ArgumentParser(
        description="Convert the booth DB and symbol master sheets to dashboard JSON."
    )
    parser.add_argument(
        "--db-csv",
        default=os.environ.get(DB_CSV_ENV),
        help=f"URL or path of the DB CSV (default: ${DB_CSV_ENV}).",
    )
    parser.add_argument(
        "--master-csv",
        default=os.environ.get(SYMBOL_MASTER_CSV_ENV),
        help=f"URL or path of the symbol master CSV (default: ${SYMBOL_MASTER_CSV_ENV}).",
    )
    parser.add_argument(
        "--output-root",
        type=Path,
        default=root / "docs" / "data",
        help="Root directory for generated JSON files.",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress generated-file logs.",
    )
    args = parser.parse_args()
    if not args.db_csv:
        parser.error(f"--db-csv or ${DB_CSV_ENV} is required")
    if not args.master_csv:
        parser.error(f"--master-csv or ${SYMBOL_MASTER_CSV_ENV} is required")
    return args


def main() -> None:
    args = parse_args()
    generated = build_latest_outputs(args.db_csv, args.master_csv, args.output_root)

    if args.quiet:
        return

    print(f"Generated claw dashboard data (rows={generated['manifest']['row_count']}):")
    print(f"- {generated['rows_file']}")
    print(f"- {generated['summary_file']}")
    print(f"- {generated['symbol_master_file']}")
    print(f"- {generated['by_symbol_file']}")
    print(f"- {generated['manifest']['kpi_outputs']['manifest_file']}")
    print(f"- {generated['manifest_file']}")


if __name__ == "__main__":
    main()
