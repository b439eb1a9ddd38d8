from __future__ import annotations

from dataclasses import dataclass

import pytest

from excel_importer.models.column_mapping import column, resolve_column_mapping
from excel_importer.services.format_checks import (
    TagFormatChecker,
    check_contains_chinese,
    check_contains_latin,
    check_is_float,
    check_is_hash,
    check_is_image_url,
    check_is_int,
    check_is_pinyin,
    check_is_url,
)


@pytest.mark.parametrize(
    "checker, good, bad",
    [
        (check_is_int, "-12", "1.5"),
        (check_is_float, "1e3", "one"),
        (check_is_url, "https://example.com/a", "example.com"),
        (check_is_image_url, "http://x.org/p/a.PNG", "http://x.org/a.txt"),
        (check_contains_chinese, "abc中", "abc"),
        (check_contains_latin, "中a", "中文"),
        (check_is_pinyin, "nǐ hǎo", "ni3"),
        (check_is_hash, "d41d8cd98f00b204e9800998ecf8427e", "D41D8CD98F00B204E9800998ECF8427E"),
    ],
)
def test_checkers(checker, good, bad):
    checker(good)
    with pytest.raises(ValueError):
        checker(bad)


@dataclass
class Drink:
    name: str = column("", fcf="cn")
    volume: int = column(0, fcf="int")
    image: str = column("", fcf="img")
    note: str = column("", fcf="unknown-check")


def test_tag_checker_reports_each_failing_field():
    checker = TagFormatChecker()
    mapping = resolve_column_mapping(Drink)
    problems = checker.check_cells(["cola", "1.5", "http://x.org/a.jpg", "n"], mapping)
    assert problems == [
        "column 1 content 'cola' error: invalid Chinese",
        "column 2 content '1.5' error: invalid integer",
    ]


def test_tag_checker_skips_empty_cells():
    checker = TagFormatChecker()
    assert checker.check_cells(["", "", "", ""], resolve_column_mapping(Drink)) == []


def test_tag_checker_register_custom():
    checker = TagFormatChecker({})

    def no_spaces(value: str) -> None:
        if " " in value:
            raise ValueError("contains spaces")

    checker.register("cn", no_spaces)
    problems = checker.check_cells(["a b", "x", "", ""], resolve_column_mapping(Drink))
    assert problems == ["column 1 content 'a b' error: contains spaces"]
