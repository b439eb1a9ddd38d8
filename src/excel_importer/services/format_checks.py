from __future__ import annotations

import re
import unicodedata
from collections.abc import Callable, Mapping, Sequence
from urllib.parse import urlparse

from ..models.column_mapping import ColumnMapping

"""Generic per-field format checks keyed by ``FieldSpec.format_check``.

Each checker takes a non-empty cell and raises ValueError when the cell does
not have the expected format. Empty cells are never checked.
"""

__all__ = [
    "FormatChecker",
    "DEFAULT_FORMAT_CHECKERS",
    "TagFormatChecker",
    "check_is_int",
    "check_is_float",
    "check_is_url",
    "check_is_image_url",
    "check_contains_chinese",
    "check_contains_latin",
    "check_is_pinyin",
    "check_is_hash",
]

FormatChecker = Callable[[str], None]

_IMAGE_RE = re.compile(r"\.(jpg|jpeg|png|gif|bmp)$", re.IGNORECASE)
_PINYIN_RE = re.compile(r"^[a-zA-Zāáǎàēéěèīíǐìōóǒòūúǔùǖǘǚǜü]+$")
_HASH_RE = re.compile(r"^(?:[a-f0-9]{32}|[a-f0-9]{40}|[a-f0-9]{64})$")
_INT_RE = re.compile(r"^[+-]?\d+$")


def check_is_int(value: str) -> None:
    if not _INT_RE.match(value):
        raise ValueError("invalid integer")


def check_is_float(value: str) -> None:
    try:
        float(value)
    except ValueError:
        raise ValueError("invalid float") from None


def check_is_url(value: str) -> None:
    parsed = urlparse(value)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError("invalid URL")


def check_is_image_url(value: str) -> None:
    check_is_url(value)
    if not _IMAGE_RE.search(urlparse(value).path):
        raise ValueError("invalid image URL")


def _is_han(ch: str) -> bool:
    return unicodedata.name(ch, "").startswith("CJK UNIFIED IDEOGRAPH")


def check_contains_chinese(value: str) -> None:
    if not any(_is_han(ch) for ch in value):
        raise ValueError("invalid Chinese")


def check_contains_latin(value: str) -> None:
    if not any(unicodedata.name(ch, "").startswith("LATIN") for ch in value):
        raise ValueError("invalid English")


def check_is_pinyin(value: str) -> None:
    if not _PINYIN_RE.match(value.replace(" ", "")):
        raise ValueError("invalid Pinyin")


def check_is_hash(value: str) -> None:
    """MD5, SHA-1 or SHA-256 hex digest (lower case)."""
    if not _HASH_RE.match(value):
        raise ValueError("invalid hash")


DEFAULT_FORMAT_CHECKERS: Mapping[str, FormatChecker] = {
    "int": check_is_int,
    "float": check_is_float,
    "url": check_is_url,
    "img": check_is_image_url,
    "cn": check_contains_chinese,
    "en": check_contains_latin,
    "pinyin": check_is_pinyin,
    "hash": check_is_hash,
}


class TagFormatChecker:
    """Applies the mapped format checks to one row of cells."""

    def __init__(self, checkers: Mapping[str, FormatChecker] | None = None) -> None:
        self.checkers = dict(DEFAULT_FORMAT_CHECKERS if checkers is None else checkers)

    def register(self, check_id: str, checker: FormatChecker) -> None:
        self.checkers[check_id] = checker

    def check_cells(self, cells: Sequence[str], mapping: ColumnMapping) -> list[str]:
        """Return one message per failing field (empty when the row is clean)."""
        problems: list[str] = []
        for spec in mapping:
            if not spec.format_check or spec.column_index >= len(cells):
                continue
            cell = cells[spec.column_index]
            if cell == "":
                continue
            checker = self.checkers.get(spec.format_check)
            if checker is None:
                continue
            try:
                checker(cell)
            except ValueError as e:
                problems.append(f"column {spec.column_index + 1} content {cell!r} error: {e}")
        return problems
