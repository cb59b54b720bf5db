import json
from pathlib import Path

import pandas as pd
import pytest

import prepare_claw_dashboard_data as prepare
from claw_symbols import SymbolMaster, build_lookup_order


class FakeResponse:
    def __init__(self, text: str, status_code: int = 200) -> None:
        self.text = text
        self.status_code = status_code
        self.encoding = None

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise prepare.requests.HTTPError(f"status {self.status_code}")


def read_json(path: Path):
    return json.loads(path.read_text(encoding="utf-8"))


def test_read_source_text_fetches_urls(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = []

    def fake_get(url, timeout):
        calls.append((url, timeout))
        return FakeResponse("記号,総売上\n1F,100\n")

    monkeypatch.setattr(prepare.requests, "get", fake_get)

    text = prepare.read_source_text("https://example.com/db.csv")

    assert text.startswith("記号")
    assert calls == [("https://example.com/db.csv", prepare.REQUEST_TIMEOUT_S)]


def test_read_source_text_raises_on_http_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(prepare.requests, "get", lambda url, timeout: FakeResponse("", 500))

    with pytest.raises(prepare.requests.HTTPError):
        prepare.read_source_text("https://example.com/db.csv")


def test_read_source_text_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        prepare.read_source_text(str(tmp_path / "missing.csv"))


def test_read_csv_text_cleans_headers_and_blank_rows() -> None:
    text = "\ufeff 記号 ,総売上,\n 1F ,100,\n,,\n"

    frame = prepare.read_csv_text(text)

    assert list(frame.columns) == ["記号", "総売上"]
    assert frame.to_dict(orient="records") == [{"記号": "1F", "総売上": "100"}]


def test_text_fingerprint_tracks_content() -> None:
    first = prepare.text_fingerprint("db.csv", "a,b\n1,2\n")
    second = prepare.text_fingerprint("db.csv", "a,b\n1,3\n")

    assert first["size"] == 8
    assert first["sha256"] != second["sha256"]


def test_build_rows_derives_dimensions() -> None:
    dictionary = {
        "prize_genre": {"F": "食品"},
        "food_genre": {"s": "菓子"},
        "three_claw": {"3": "3本爪"},
        "character": {"C": "キャラ"},
        "movie": {"M": "映画"},
    }
    master = SymbolMaster(dictionary=dictionary, lookup_order=build_lookup_order(dictionary))
    db_frame = pd.DataFrame(
        [
            {"記号": "3FsCM", "総売上": "1000", "消化額": "300", "ブースID": "B-01", "料金": "200"},
            {"記号": "", "総売上": "0", "消化額": "0", "ブースID": "B-09", "料金": ""},
        ]
    )

    rows = prepare.build_rows(db_frame, master, {"b-01": "ラッキー1"})

    first = rows.iloc[0]
    assert first["claw_method"] == "3本爪"
    assert first["genre"] == "食品"
    assert first["sub_genre"] == "菓子"
    assert first["character"] == "キャラ"
    assert first["price_band"] == "200円"
    assert bool(first["movie"]) is True
    assert bool(first["reservation"]) is False
    assert first["machine_key"] == "ラッキー1"

    second = rows.iloc[1]
    assert second["machine_key"] == "B-09"
    assert second["genre"] == ""
    assert second["price_band"] == ""
    assert second["cost_rate"] is None


def test_build_latest_outputs_writes_snapshots(sheet_files: dict, tmp_path: Path) -> None:
    output_root = tmp_path / "out"

    generated = prepare.build_latest_outputs(
        str(sheet_files["db"]), str(sheet_files["master"]), output_root
    )

    manifest = generated["manifest"]
    assert manifest["row_count"] == 3
    assert manifest["decode"]["rows_without_symbol"] == 1
    assert manifest["decode"]["matches_per_category"]["price"] == 2
    assert manifest["sources"]["db"]["source"] == str(sheet_files["db"])

    rows = read_json(Path(generated["rows_file"]))
    assert rows[0]["genre"] == "食品"
    assert rows[0]["target"] == "キッズ"
    assert rows[0]["price_band"] == "100円"
    assert rows[0]["machine_key"] == "ラッキー1"
    assert rows[0]["reservation"] is True
    assert rows[0]["updated_date"] == "2026-10-01"
    assert rows[0]["cost_rate"] == pytest.approx(0.33)
    assert rows[1]["genre"] == "ぬいぐるみ"
    assert rows[1]["reservation"] is False
    assert rows[2]["machine_key"] == "B-03"
    assert rows[2]["cost_rate"] is None
    assert rows[2]["updated_date"] == ""

    summary = read_json(Path(generated["summary_file"]))
    assert summary["total_sales"] == pytest.approx(15000.0)
    assert summary["machine_count"] == 3

    symbol_master = read_json(Path(generated["symbol_master_file"]))
    assert symbol_master["dict"]["price"] == {"1": "100円", "2": "200円"}
    assert read_json(Path(generated["machines_file"])) == {
        "b-01": "ラッキー1",
        "b-02": "ラッキー2",
    }

    by_symbol = read_json(Path(generated["by_symbol_file"]))
    assert [group["symbol"] for group in by_symbol] == ["1FKR", "2PL", "(未設定)"]

    assert (output_root / "kpi" / "manifest.json").exists()
    assert (output_root / "kpi" / "composition_flag_reservation.json").exists()


def test_build_latest_outputs_keeps_previous_data_when_fetch_fails(
    sheet_files: dict, tmp_path: Path
) -> None:
    output_root = tmp_path / "out"
    prepare.build_latest_outputs(str(sheet_files["db"]), str(sheet_files["master"]), output_root)

    with pytest.raises(FileNotFoundError):
        prepare.build_latest_outputs(
            str(tmp_path / "missing.csv"), str(sheet_files["master"]), output_root
        )

    assert (output_root / "raw" / "rows.json").exists()


def test_build_latest_outputs_keeps_previous_data_when_build_fails(
    sheet_files: dict, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    output_root = tmp_path / "out"
    prepare.build_latest_outputs(str(sheet_files["db"]), str(sheet_files["master"]), output_root)

    def broken_rows(*args, **kwargs):
        raise ValueError("bad sheet")

    monkeypatch.setattr(prepare, "build_rows", broken_rows)

    with pytest.raises(ValueError):
        prepare.build_latest_outputs(
            str(sheet_files["db"]), str(sheet_files["master"]), output_root
        )

    assert len(read_json(output_root / "raw" / "rows.json")) == 3
    assert (output_root / "master" / "symbol_master.json").exists()


def test_price_band_falls_back_to_db_price() -> None:
    dictionary = {"price": {"1": "ワンコイン", "2": "150"}}
    master = SymbolMaster(dictionary=dictionary, lookup_order=build_lookup_order(dictionary))
    db_frame = pd.DataFrame(
        [
            {"記号": "1", "総売上": "100", "料金": "200"},
            {"記号": "2", "総売上": "100", "料金": "500"},
            {"記号": "1", "総売上": "100", "料金": ""},
        ]
    )

    rows = prepare.build_rows(db_frame, master)

    assert rows["price_band"].tolist() == ["200円", "200円", ""]
