import pandas as pd
import pytest

from claw_symbols import (
    CATEGORY_KEYS,
    DECODED_COLUMNS,
    UNMATCHED,
    SymbolMaster,
    build_lookup_order,
    build_machine_map,
    build_symbol_master,
    decode_symbols,
    matched_count,
    parse_symbol,
    resolve_master_columns,
    split_tokens,
)


def make_master(dictionary: dict) -> SymbolMaster:
    return SymbolMaster(dictionary=dictionary, lookup_order=build_lookup_order(dictionary))


@pytest.fixture
def master() -> SymbolMaster:
    return make_master(
        {
            "price": {"1": "100円", "12": "200円"},
            "play_count": {"3": "3回"},
            "claw_method": {"A": "3本爪"},
            "prize_genre": {"F": "食品"},
            "target": {"K": "キッズ"},
        }
    )


def test_lookup_order_is_longest_first_then_lexicographic() -> None:
    order = build_lookup_order({"price": {"1": "a", "12": "b", "2": "c", "10": "d"}})

    assert order["price"] == ("10", "12", "1", "2")


def test_positional_decoding_prefers_longest_code(master: SymbolMaster) -> None:
    decoded = parse_symbol("123", master)

    assert decoded["price"].code == "12"
    assert decoded["price"].label == "200円"
    assert decoded["play_count"].code == "3"

    decoded = parse_symbol("13", master)
    assert decoded["price"].code == "1"
    assert decoded["play_count"].label == "3回"


def test_unmatched_category_keeps_cursor(master: SymbolMaster) -> None:
    decoded = parse_symbol("1AFK", master)

    assert decoded["price"].code == "1"
    assert decoded["play_count"] == UNMATCHED
    assert decoded["claw_method"].label == "3本爪"
    assert decoded["prize_genre"].label == "食品"
    assert decoded["target"].label == "キッズ"
    assert matched_count(decoded) == 4


def test_leftover_characters_are_ignored(master: SymbolMaster) -> None:
    decoded = parse_symbol("1XYZ", master)

    assert decoded["price"].code == "1"
    assert matched_count(decoded) == 1


def test_positional_decoding_follows_category_order(master: SymbolMaster) -> None:
    # A target code ahead of the price code is not reordered.
    decoded = parse_symbol("K1", master)

    assert decoded["price"] == UNMATCHED
    assert decoded["target"].code == "K"


def test_delimited_symbol_uses_tokens(master: SymbolMaster) -> None:
    decoded = parse_symbol("1-A-K", master)

    assert decoded["price"].code == "1"
    assert decoded["claw_method"].code == "A"
    assert decoded["target"].code == "K"
    assert set(decoded) == set(CATEGORY_KEYS)


def test_single_token_hit_falls_back_to_positional(master: SymbolMaster) -> None:
    decoded = parse_symbol("1-Z", master)

    assert decoded["price"].code == "1"
    assert matched_count(decoded) == 1


def test_empty_symbol_matches_nothing(master: SymbolMaster) -> None:
    for raw in ["", None, float("nan")]:
        decoded = parse_symbol(raw, master)
        assert set(decoded) == set(CATEGORY_KEYS)
        assert matched_count(decoded) == 0


def test_split_tokens_keeps_japanese_runs() -> None:
    assert split_tokens("食品/キッズ 1") == ["食品", "キッズ", "1"]
    assert split_tokens("") == []


def test_resolve_master_columns_uses_adjacent_label() -> None:
    resolved = resolve_master_columns(["ターゲット記号", "対象", "年代記号", "キャラ記号"])

    assert resolved["target"] == ("ターゲット記号", "対象")
    assert "age" not in resolved
    assert "character" not in resolved


def test_build_symbol_master_first_writer_wins() -> None:
    master = build_symbol_master(
        [
            {"料金記号": "1", "料金": "100円"},
            {"料金記号": "1", "料金": "999円"},
            {"料金記号": "", "料金": "orphan"},
            {"料金記号": "12", "料金": ""},
            {"料金記号": "12", "料金": "200円"},
        ]
    )

    assert master.codes_for("price") == {"1": "100円", "12": "200円"}
    assert master.lookup_order["price"] == ("12", "1")
    assert master.codes_for("age") == {}


def test_symbol_master_json_restores_lookup_order(master: SymbolMaster) -> None:
    payload = master.to_json()
    restored = SymbolMaster.from_json(payload)

    assert payload["meta"]["price"]["keys"] == ["12", "1"]
    assert restored.dictionary == master.dictionary
    assert restored.lookup_order["price"] == ("12", "1")


def test_decode_symbols_keeps_index_and_columns(master: SymbolMaster) -> None:
    symbols = pd.Series(["12", "12", ""], index=[5, 6, 7])

    decoded = decode_symbols(symbols, master)

    assert list(decoded.columns) == DECODED_COLUMNS
    assert list(decoded.index) == [5, 6, 7]
    assert decoded["price_code"].tolist() == ["12", "12", ""]
    assert decoded["price_label"].tolist() == ["200円", "200円", ""]


def test_build_machine_map_normalizes_booth_ids() -> None:
    machines = build_machine_map(
        [
            {"ブースID": "B（1）", "対応マシン名": "ラッキー1"},
            {"ブースID": "", "対応マシン名": "orphan"},
        ]
    )

    assert machines == {"b(1)": "ラッキー1"}
    assert build_machine_map([{"料金記号": "1"}]) == {}
