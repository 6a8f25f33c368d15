"""Tests for product cache key builders."""

import pytest

from pos_backend.infrastructure.cache.keys import product_key, store_products_pattern


def test_product_key_format() -> None:
    assert product_key("shop-a", "6291041500213") == "product:shop-a:6291041500213"


def test_store_pattern_matches_only_that_store() -> None:
    assert store_products_pattern("shop-a") == "product:shop-a:*"


@pytest.mark.parametrize(
    ("store_id", "barcode"),
    [("", "1"), ("shop-a", ""), ("shop:a", "1"), ("shop-a", "1:2")],
)
def test_invalid_components_rejected(store_id: str, barcode: str) -> None:
    with pytest.raises(ValueError):
        product_key(store_id, barcode)
