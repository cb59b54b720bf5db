#!/usr/bin/env python3
"""Poll the booth DB and symbol master CSVs and refresh dashboard data on change."""

from __future__ import annotations

import argparse
import json
import os
import shutil
import time
from datetime import datetime
from pathlib import Path

from build_claw_dashboard_mvp import write_json
from prepare_claw_dashboard_data import (
    DB_CSV_ENV,
    SYMBOL_MASTER_CSV_ENV,
    build_outputs_from_texts,
    read_source_text,
    text_fingerprint,
)


SNAPSHOT_SOURCE_FILES = {
    "db": "db.csv",
    "symbol_master": "symbol_master.csv",
}


def load_state(state_file: Path) -> dict:
    """Last processed fingerprints and snapshot; empty before the first run."""
    if not state_file.is_file():
        return {}
    state = json.loads(state_file.read_text(encoding="utf-8"))
    return state if isinstance(state, dict) else {}


def snapshot_name(fingerprints: dict[str, dict], taken_at: datetime) -> str:
    db_digest = fingerprints.get("db", {}).get("sha256", "")
    return f"{taken_at:%H%M%S}_{db_digest[:8]}" if db_digest else f"{taken_at:%H%M%S}"


def make_snapshot_dir(history_root: Path, fingerprints: dict[str, dict]) -> Path:
    taken_at = datetime.now()
    day_dir = history_root / f"{taken_at:%Y-%m-%d}"
    day_dir.mkdir(parents=True, exist_ok=True)

    name = snapshot_name(fingerprints, taken_at)
    snapshot_dir = day_dir / name
    suffix = 1
    while snapshot_dir.exists():
        snapshot_dir = day_dir / f"{name}-{suffix}"
        suffix += 1
    snapshot_dir.mkdir()
    return snapshot_dir


def copy_latest_snapshot(
    latest_root: Path,
    snapshot_dir: Path,
    texts: dict[str, str],
    fingerprints: dict[str, dict],
) -> None:
    if latest_root.exists():
        shutil.copytree(
            latest_root,
            snapshot_dir / "latest",
            ignore=shutil.ignore_patterns("history"),
            dirs_exist_ok=False,
        )

    for name, text in texts.items():
        (snapshot_dir / SNAPSHOT_SOURCE_FILES[name]).write_text(text, encoding="utf-8")

    write_json(
        snapshot_dir / "snapshot_meta.json",
        {
            "created_at": datetime.now().isoformat(timespec="seconds"),
            "sources": fingerprints,
        },
    )


def fetch_sources(db_source: str, master_source: str) -> tuple[dict, dict]:
    texts = {
        "db": read_source_text(db_source),
        "symbol_master": read_source_text(master_source),
    }
    sources = {"db": db_source, "symbol_master": master_source}
    fingerprints = {name: text_fingerprint(sources[name], text) for name, text in texts.items()}
    return texts, fingerprints


def process_once(
    db_source: str,
    master_source: str,
    output_root: Path,
    history_root: Path,
    state_file: Path,
) -> bool:
    state = load_state(state_file)
    texts, current_fp = fetch_sources(db_source, master_source)
    if state.get("source_fingerprints") == current_fp:
        return False

    generated = build_outputs_from_texts(
        db_source, texts["db"], master_source, texts["symbol_master"], output_root
    )
    snapshot_dir = make_snapshot_dir(history_root, current_fp)
    copy_latest_snapshot(Path(generated["output_root"]), snapshot_dir, texts, current_fp)

    state.update(
        {
            "sources": {"db": db_source, "symbol_master": master_source},
            "source_fingerprints": current_fp,
            "last_processed_at": datetime.now().isoformat(timespec="seconds"),
            "last_snapshot_dir": str(snapshot_dir),
            "output_root": generated["output_root"],
            "row_count": generated["manifest"]["row_count"],
        }
    )
    write_json(state_file, state)

    print(f"Updated latest files in: {generated['output_root']}")
    print(f"Saved dated snapshot in: {snapshot_dir}")
    return True


def parse_args() -> argparse.Namespace:
    root = Path(__file__).resolve().parents[1]
    parser = argparse.ArgumentParser(
        description="Watch the booth DB and symbol master sheets and create dated snapshots."
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
        help="Root directory for the latest generated JSON files.",
    )
    parser.add_argument(
        "--history-root",
        type=Path,
        default=root / "data" / "history",
        help="Directory to store dated snapshots.",
    )
    parser.add_argument(
        "--state-file",
        type=Path,
        default=root / "data" / ".watch_state.json",
        help="State file path for change tracking.",
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=300,
        help="Polling interval in seconds.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one check and exit.",
    )
    args = parser.parse_args()
    if not args.db_csv:
        parser.error(f"--db-csv or ${DB_CSV_ENV} is required")
    if not args.master_csv:
        parser.error(f"--master-csv or ${SYMBOL_MASTER_CSV_ENV} is required")
    return args


def main() -> None:
    args = parse_args()
    while True:
        changed = process_once(
            db_source=args.db_csv,
            master_source=args.master_csv,
            output_root=args.output_root,
            history_root=args.history_root,
            state_file=args.state_file,
        )
        if not changed:
            print("No changes detected.")
        if args.once:
            return
        time.sleep(args.interval)


if __name__ == "__main__":
    main()
