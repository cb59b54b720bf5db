from __future__ import annotations

from pathlib import Path

import pytest


MASTER_CSV = """料金記号,料金,景品ジャンル記号,景品ジャンル,ターゲット記号,ターゲット,予約記号,予約,ブースID,対応マシン名
1,100円,F,食品,K,キッズ,R,予約,B-01,ラッキー1
2,200円,P,ぬいぐるみ,L,レディース,,,B-02,ラッキー2
"""

DB_CSV = """記号,総売上,消化額,消化数,ブースID,景品名,更新日時
1FKR,"10,000","3,000",100,B-01,チョコ,2026/10/01 10:00
2PL,5000,2500,25,B-02,くま,2026/10/02 11:00
,0,0,0,B-03,空き,
"""


@pytest.fixture
def sheet_files(tmp_path: Path) -> dict[str, Path]:
    db_file = tmp_path / "sheets" / "db.csv"
    master_file = tmp_path / "sheets" / "symbol_master.csv"
    db_file.parent.mkdir(parents=True)
    db_file.write_text(DB_CSV, encoding="utf-8")
    master_file.write_text(MASTER_CSV, encoding="utf-8")
    return {"db": db_file, "master": master_file}


@pytest.fixture
def booth_rows() -> list[dict]:
    return [
        {"machine_key": "X", "genre": "食品", "claw_method": "3本爪", "sales": 1000, "claw": 300, "plays": 10, "reservation": True},
        {"machine_key": "Y", "genre": "食品", "claw_method": "2本爪", "sales": 500, "claw": 100, "plays": 5, "reservation": False},
        {"machine_key": "X", "genre": "ぬいぐるみ", "claw_method": "3本爪", "sales": 2000, "claw": 600, "plays": 20, "reservation": True},
        {"machine_key": "Z", "genre": "", "claw_method": "", "sales": 300, "claw": 90, "plays": 3, "reservation": False},
        {"machine_key": "Z", "genre": "", "claw_method": "3本爪", "sales": 0, "claw": 50, "plays": 0, "reservation": False},
    ]
