"""Coerce raw spreadsheet cells into the canonical values used by the dashboard."""

from __future__ import annotations

import math
import re
from typing import Mapping, Sequence

import pandas as pd


FIELD_ALIASES = {
    "symbol_raw": ["記号", "symbol", "記号_raw", "記号ID"],
    "sales": ["総売上", "総売り上げ", "売上", "売上合計", "sales", "total_sales"],
    "claw": ["消化額", "消化金額", "原価", "claw", "consume"],
    "plays": ["消化数", "消化回数", "消化", "回数", "プレイ回数", "plays", "play_count", "count"],
    "updated_at": ["更新日時", "更新日", "updated_at", "updatedAt"],
    "booth_id": ["ブースID", "マシン名（ブースID）", "booth_id", "boothId"],
    "item_name": ["景品名", "item_name"],
    "label_id": ["ラベルID", "label_id"],
    "machine": ["対応マシン名", "対応マシン", "マシン名", "machine"],
    "w": ["幅", "w"],
    "d": ["奥行き", "奥行", "d"],
    "price_band": ["料金帯", "price_band", "priceBand"],
    "play_price": ["料金", "price", "fee", "play_price"],
}

NUMERIC_FIELDS = ["sales", "claw", "plays", "w", "d"]

COST_RATE_FACTOR = 1.1

CLAW_THREE = "3本爪"
CLAW_TWO = "2本爪"
CLAW_DROP = "投入法"

CHARACTER_ON = "キャラ"
CHARACTER_OFF = "ノンキャラ"

PRICE_BANDS = [
    (100, "100円"),
    (200, "200円"),
]
PRICE_BAND_TOP = "300円以上"

FALSE_WORDS = {"false", "0", "no", "off", "なし", "無", "無し", "×", "-", "ー"}

_NUMERIC_NOISE = re.compile(r"[,円%\s]")


def to_number(value: object, default: float = 0.0) -> float:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = _NUMERIC_NOISE.sub("", str(value))
        if not text:
            return default
        try:
            number = float(text)
        except ValueError:
            return default
    return number if math.isfinite(number) else default


def clean_numeric(series: pd.Series, default: float = 0.0) -> pd.Series:
    text = series.fillna("").astype(str).str.replace(_NUMERIC_NOISE, "", regex=True)
    numbers = pd.to_numeric(text, errors="coerce").astype(float)
    numbers = numbers.where(numbers.abs().ne(math.inf))
    return numbers.fillna(default)


def to_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    if value is pd.NA:
        return ""
    return str(value).strip()


def is_blank(value: object) -> bool:
    return to_text(value) == ""


def normalize_key(value: object) -> str:
    text = to_text(value).replace("　", " ")
    text = text.replace("（", "(").replace("）", ")")
    return re.sub(r"\s+", "", text).lower()


def normalize_claw_method(value: object) -> str | None:
    text = to_text(value)
    if not text:
        return None
    if "3" in text:
        return CLAW_THREE
    if "2" in text:
        return CLAW_TWO
    if "投入" in text:
        return CLAW_DROP
    return text


def normalize_character(value: object) -> str | None:
    if value is True:
        return CHARACTER_ON
    if value is False:
        return CHARACTER_OFF
    text = to_text(value)
    if not text:
        return None
    if text.lower() == "true":
        return CHARACTER_ON
    if text.lower() == "false":
        return CHARACTER_OFF
    return text


def price_band(band: object, price: object = None) -> str | None:
    """Bucket a play price, preferring an explicit band label when one exists.

    A missing, non-positive or unparsable price has no band at all rather
    than falling into the lowest bucket.
    """
    label = to_text(band)
    if label:
        return label

    amount = to_number(price, default=math.nan)
    if math.isnan(amount) or amount <= 0:
        return None
    for ceiling, bucket in PRICE_BANDS:
        if amount <= ceiling:
            return bucket
    return PRICE_BAND_TOP


def to_flag(value: object) -> bool:
    if isinstance(value, bool):
        return value
    text = to_text(value)
    if not text:
        return False
    return text.lower() not in FALSE_WORDS


def cost_rate(sales: float, claw: float) -> float | None:
    if not sales or sales <= 0:
        return None
    return claw * COST_RATE_FACTOR / sales


def pick(row: Mapping[str, object], aliases: Sequence[str], fallback: object = "") -> object:
    for alias in aliases:
        if alias in row and not is_blank(row[alias]):
            return row[alias]
    return fallback


def pick_column(
    frame: pd.DataFrame, aliases: Sequence[str], fallback: object = ""
) -> pd.Series:
    candidates = []
    for alias in aliases:
        if alias not in frame.columns:
            continue
        column = frame[alias].map(to_text).astype("object")
        candidates.append(column.where(column.ne(""), None).rename(alias))

    if not candidates:
        return pd.Series(fallback, index=frame.index, dtype="object")

    resolved = pd.concat(candidates, axis=1).bfill(axis=1).iloc[:, 0]
    return resolved.where(resolved.notna(), fallback)


def normalize_db_frame(frame: pd.DataFrame) -> pd.DataFrame:
    """Resolve aliased DB columns into one canonical frame of plain values."""
    out = pd.DataFrame(index=frame.index)
    for field, aliases in FIELD_ALIASES.items():
        out[field] = pick_column(frame, aliases, fallback="")

    for field in NUMERIC_FIELDS:
        out[field] = clean_numeric(out[field])

    text_fields = [field for field in FIELD_ALIASES if field not in NUMERIC_FIELDS]
    for field in text_fields:
        out[field] = out[field].map(to_text)

    out["cost_rate"] = pd.Series(
        [cost_rate(sales, claw) for sales, claw in zip(out["sales"], out["claw"])],
        index=out.index,
        dtype="object",
    )
    return out
