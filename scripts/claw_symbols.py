"""Build the symbol master dictionaries and decode packed booth symbols."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Mapping, NamedTuple

import pandas as pd

from claw_values import normalize_key, to_text


class SymbolCategory(NamedTuple):
    key: str
    code_column: str
    label_column: str


# Positional decoding walks the symbol in exactly this order. The upstream
# sheet never states the packing order, so a reordered encoding would be
# mis-assigned silently instead of raising.
SYMBOL_CATEGORIES = [
    SymbolCategory("price", "料金記号", "料金"),
    SymbolCategory("play_count", "回数記号", "プレイ回数"),
    SymbolCategory("claw_method", "投入法記号", "投入法"),
    SymbolCategory("three_claw", "3本爪記号", "3本爪"),
    SymbolCategory("two_claw", "2本爪記号", "2本爪"),
    SymbolCategory("prize_genre", "景品ジャンル記号", "景品ジャンル"),
    SymbolCategory("food_genre", "食品記号", "食品ジャンル"),
    SymbolCategory("plush_genre", "ぬいぐるみ記号", "ぬいぐるみジャンル"),
    SymbolCategory("goods_genre", "雑貨記号", "雑貨ジャンル"),
    SymbolCategory("target", "ターゲット記号", "ターゲット"),
    SymbolCategory("age", "年代記号", "年代"),
    SymbolCategory("character", "キャラ記号", "キャラ"),
    SymbolCategory("character_genre", "キャラジャンル記号", "キャラジャンル"),
    SymbolCategory("non_character_genre", "ノンキャラジャンル記号", "ノンキャラジャンル"),
    SymbolCategory("movie", "映画記号", "映画"),
    SymbolCategory("reservation", "予約記号", "予約"),
    SymbolCategory("original", "WLオリジナル記号", "WLオリジナル"),
]

CATEGORY_KEYS = [category.key for category in SYMBOL_CATEGORIES]
DECODED_COLUMNS = [
    name for key in CATEGORY_KEYS for name in (f"{key}_label", f"{key}_code")
]

MASTER_BOOTH_COLUMNS = ["ブースID", "booth_id", "boothId"]
MASTER_MACHINE_COLUMNS = ["対応マシン名", "対応マシン", "machine_name", "machine"]

MIN_TOKEN_HITS = 2

_TOKEN_SPLIT = re.compile(r"[^0-9A-Za-z\u3041-\u3096\u30a1-\u30fa\u30fc\u4e00-\u9fff]+")


class SymbolMatch(NamedTuple):
    label: str
    code: str


UNMATCHED = SymbolMatch("", "")


@dataclass(frozen=True)
class SymbolMaster:
    dictionary: Mapping[str, Mapping[str, str]]
    lookup_order: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    def codes_for(self, key: str) -> Mapping[str, str]:
        return self.dictionary.get(key, {})

    def to_json(self) -> dict:
        return {
            "dict": {key: dict(codes) for key, codes in self.dictionary.items()},
            "meta": {
                key: {"keys": list(codes)} for key, codes in self.lookup_order.items()
            },
            "spec": [category._asdict() for category in SYMBOL_CATEGORIES],
        }

    @classmethod
    def from_json(cls, payload: Mapping) -> "SymbolMaster":
        dictionary = {
            key: dict(codes) for key, codes in (payload.get("dict") or {}).items()
        }
        return cls(dictionary=dictionary, lookup_order=build_lookup_order(dictionary))


def build_lookup_order(
    dictionary: Mapping[str, Mapping[str, str]]
) -> dict[str, tuple[str, ...]]:
    return {
        key: tuple(sorted(codes, key=lambda code: (-len(code), code)))
        for key, codes in dictionary.items()
    }


def resolve_master_columns(columns: Iterable[str]) -> dict[str, tuple[str, str]]:
    """Map each category to its (code column, label column) in a master sheet.

    The label column is looked up by name first and otherwise taken from the
    column immediately to the right of the code column.
    """
    header = [to_text(column) for column in columns]
    resolved: dict[str, tuple[str, str]] = {}
    for category in SYMBOL_CATEGORIES:
        if category.code_column not in header:
            continue
        if category.label_column in header:
            resolved[category.key] = (category.code_column, category.label_column)
            continue
        position = header.index(category.code_column)
        if position + 1 < len(header):
            neighbour = header[position + 1]
            if neighbour and not neighbour.endswith("記号"):
                resolved[category.key] = (category.code_column, neighbour)
    return resolved


def build_symbol_master(records: pd.DataFrame | Iterable[Mapping]) -> SymbolMaster:
    frame = records if isinstance(records, pd.DataFrame) else pd.DataFrame(list(records))
    columns = resolve_master_columns(frame.columns)

    dictionary: dict[str, dict[str, str]] = {key: {} for key in CATEGORY_KEYS}
    for record in frame.to_dict(orient="records"):
        for key, (code_column, label_column) in columns.items():
            code = to_text(record.get(code_column))
            label = to_text(record.get(label_column))
            if code and label and code not in dictionary[key]:
                dictionary[key][code] = label

    return SymbolMaster(dictionary=dictionary, lookup_order=build_lookup_order(dictionary))


def build_machine_map(records: pd.DataFrame | Iterable[Mapping]) -> dict[str, str]:
    """Booth id (normalized) -> canonical machine name from the master sheet."""
    frame = records if isinstance(records, pd.DataFrame) else pd.DataFrame(list(records))
    booth_column = next((c for c in MASTER_BOOTH_COLUMNS if c in frame.columns), None)
    machine_column = next((c for c in MASTER_MACHINE_COLUMNS if c in frame.columns), None)
    if booth_column is None or machine_column is None:
        return {}

    machines: dict[str, str] = {}
    for booth, machine in zip(frame[booth_column], frame[machine_column]):
        booth_key = normalize_key(booth)
        machine_name = to_text(machine)
        if booth_key and machine_name:
            machines[booth_key] = machine_name
    return machines


def split_tokens(raw: str) -> list[str]:
    return [token for token in _TOKEN_SPLIT.split(raw) if token]


def _parse_tokens(tokens: list[str], master: SymbolMaster) -> dict[str, SymbolMatch]:
    matches: dict[str, SymbolMatch] = {}
    for key in CATEGORY_KEYS:
        codes = master.codes_for(key)
        hit = next((token for token in tokens if token in codes), None)
        if hit is not None:
            matches[key] = SymbolMatch(codes[hit], hit)
    return matches


def _parse_positional(raw: str, master: SymbolMaster) -> dict[str, SymbolMatch]:
    matches: dict[str, SymbolMatch] = {}
    cursor = 0
    for key in CATEGORY_KEYS:
        codes = master.codes_for(key)
        found = next(
            (code for code in master.lookup_order.get(key, ()) if raw.startswith(code, cursor)),
            None,
        )
        if found is None:
            matches[key] = UNMATCHED
            continue
        matches[key] = SymbolMatch(codes[found], found)
        cursor += len(found)
    return matches


def parse_symbol(raw: object, master: SymbolMaster) -> dict[str, SymbolMatch]:
    """Decode one packed symbol into a match per category.

    Delimited symbols ("1-A-3") are read token by token; the result is used
    only when at least two categories hit. Everything else falls back to a
    greedy longest-code-first scan that walks ``SYMBOL_CATEGORIES`` in
    declared order from a single cursor. Categories that do not match leave
    the cursor where it is, and leftover characters are ignored.
    """
    text = to_text(raw)

    tokens = split_tokens(text)
    if len(tokens) >= MIN_TOKEN_HITS:
        matches = _parse_tokens(tokens, master)
        if len(matches) >= MIN_TOKEN_HITS:
            return {key: matches.get(key, UNMATCHED) for key in CATEGORY_KEYS}

    return _parse_positional(text, master)


def matched_count(decoded: Mapping[str, SymbolMatch]) -> int:
    return sum(1 for match in decoded.values() if match.code)


def decode_symbols(symbols: pd.Series, master: SymbolMaster) -> pd.DataFrame:
    """Decode a column of raw symbols, parsing each distinct symbol only once."""
    raw_symbols = symbols.map(to_text)
    decoded = {raw: parse_symbol(raw, master) for raw in raw_symbols.unique()}

    records = []
    for raw in raw_symbols:
        record = {}
        for key, match in decoded[raw].items():
            record[f"{key}_label"] = match.label
            record[f"{key}_code"] = match.code
        records.append(record)

    return pd.DataFrame(records, index=symbols.index, columns=DECODED_COLUMNS)
