from __future__ import annotations

from dataclasses import dataclass

import pytest

from excel_importer.models.column_mapping import column, resolve_column_mapping


@dataclass
class Product:
    name: str = column("", fcf="cn", chk="on")
    price: float = column(0.0, index=3, fcf="float", rewrite=True)
    stock: int = 0
    code: str | None = column(None, index=7, link="parent", db="product_code")


def test_indexes_follow_declaration_order():
    mapping = resolve_column_mapping(Product)
    assert [f.column_index for f in mapping] == [0, 3, 4, 7]
    assert mapping.min_column_count == 8


def test_field_metadata():
    mapping = resolve_column_mapping(Product)
    name, price, stock, code = mapping.fields
    assert name.format_check == "cn"
    assert name.matches_check_key("on")
    assert not name.matches_check_key("off")
    assert price.kind is float and price.rewrite
    assert stock.kind is int and stock.check_mode is None
    # Optional[str] unwraps to str; db name wins
    assert code.kind is str
    assert code.column_name == "product_code"
    assert name.column_name == "name"


def test_rewrite_and_link_lookup():
    mapping = resolve_column_mapping(Product)
    assert [(i, f.name) for i, f in mapping.rewrite_fields()] == [(1, "price")]
    assert mapping.by_link_id("parent").name == "code"
    assert mapping.by_link_id("missing") is None


def test_mapping_is_cached():
    assert resolve_column_mapping(Product) is resolve_column_mapping(Product)


def test_non_dataclass_rejected():
    class Plain:
        pass

    with pytest.raises(TypeError):
        resolve_column_mapping(Plain)


def test_default_factory_supported():
    @dataclass
    class Tags:
        tags: str = column(default_factory=lambda: "none")

    assert Tags().tags == "none"
    assert resolve_column_mapping(Tags)[0].column_index == 0
