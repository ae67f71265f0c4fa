"""
Inventory statistics tests - option classification, grouping and store loading
"""
from decimal import Decimal

import pytest

from ivy.models import ColorRule, InventoryLevel
from ivy.services.colors import ColorMappings, ColorMapping
from ivy.services.inventory_stats import (
    InventoryRow,
    TOP_COLORS,
    classify_option,
    compute_inventory_stats,
    load_inventory_rows,
)


def _row(variant_id, options, quantities, cost="5", price="12", title="Tee", product_type="T-shirt", option_names=()):
    return InventoryRow(
        variant_id=variant_id,
        sku=None,
        options=list(options),
        cost=Decimal(cost),
        price=Decimal(price),
        product_title=title,
        product_type=product_type,
        quantities=list(quantities),
        option_names=list(option_names),
    )


@pytest.mark.parametrize("value", ["M", "m", "3XL", "42", "xs", "2XL"])
def test_sizes(value):
    assert classify_option(value) == "size"


@pytest.mark.parametrize("value", ["French Navy", "Rouge", "Bleu Marine", "XL Navy"])
def test_colors(value):
    assert classify_option(value) == "color"


def test_color_option_name_wins_over_size_pattern():
    assert classify_option("5", "Couleur") == "color"
    assert classify_option("5", "Taille") == "size"
    assert classify_option("5") == "size"


class TestComputeStats:
    def test_totals_and_groups(self):
        rows = [
            _row("v1", ["M", "Rouge"], [3, 2]),
            _row("v2", ["l", "Rouge"], [4]),
            _row("v3", ["M", "French Navy"], [1], cost="10", price="30", title="Sweat", product_type=None),
        ]

        stats = compute_inventory_stats(rows)

        assert stats["totalVariants"] == 3
        assert stats["totalStock"] == 10
        assert stats["totalStockValue"] == 55.0
        assert stats["totalSaleValue"] == 138.0
        assert stats["profit"] == 83.0
        assert stats["byProductType"]["T-shirt"] == {"count": 2, "stock": 9, "value": 45.0}
        assert stats["byProductType"]["Non défini"] == {"count": 1, "stock": 1, "value": 10.0}
        assert stats["bySize"] == {"M": {"count": 2, "stock": 6}, "L": {"count": 1, "stock": 4}}
        assert list(stats["byColor"]) == ["Rouge", "French Navy"]
        assert stats["topProducts"][0] == {"title": "Tee", "stock": 9, "value": 45.0}

    def test_colors_are_truncated_to_top_entries(self):
        rows = [_row(f"v{i}", [f"Couleur {i}"], [i]) for i in range(1, TOP_COLORS + 6)]
        stats = compute_inventory_stats(rows)
        assert len(stats["byColor"]) == TOP_COLORS
        assert next(iter(stats["byColor"])) == f"Couleur {TOP_COLORS + 5}"

    def test_negative_levels_are_summed_as_reported(self):
        stats = compute_inventory_stats([_row("v1", ["S"], [5, -2])])
        assert stats["totalStock"] == 3

    def test_color_display_names(self):
        colors = ColorMappings([ColorMapping("French Navy", "Bleu marine", "#1F2A44")])
        stats = compute_inventory_stats([_row("v1", ["French Navy"], [2])], colors)
        assert stats["byColor"]["French Navy"]["displayName"] == "Bleu marine"
        assert stats["byColor"]["French Navy"]["hex"] == "#1F2A44"

    def test_numeric_color_under_a_color_option(self):
        stats = compute_inventory_stats([_row("v1", ["M", "5"], [4], option_names=["Taille", "Couleur"])])
        assert stats["bySize"] == {"M": {"count": 1, "stock": 4}}
        assert stats["byColor"] == {"5": {"count": 1, "stock": 4}}

    def test_empty(self):
        stats = compute_inventory_stats([])
        assert stats["totalVariants"] == 0
        assert stats["byColor"] == {}
        assert stats["topProducts"] == []


class TestLoadRows:
    def test_variants_without_levels_are_excluded(self, db_session, shop, variant_factory):
        stocked = variant_factory(quantities=(3, 4))
        variant_factory(variant_shopify_id="1001", inventory_item_id="5001", sku="TEE-L", options=("L", "Navy"))

        rows = load_inventory_rows(db_session, shop.id)

        assert [r.variant_id for r in rows] == [stocked.id]
        assert rows[0].quantity == 7
        assert rows[0].options == ["M", "Navy"]

    def test_option_names_come_from_the_product(self, db_session, shop, variant):
        product = variant.product
        product.option1_name, product.option2_name = "Taille", "Couleur"
        db_session.add(InventoryLevel(variant_id=variant.id, location_id="loc-1", quantity=1))
        db_session.commit()

        rows = load_inventory_rows(db_session, shop.id)

        assert rows[0].option_names == ["Taille", "Couleur"]

    def test_location_filter(self, db_session, shop, variant_factory):
        variant_factory(quantities=(3, 4))
        rows = load_inventory_rows(db_session, shop.id, location_id="loc-2")
        assert rows[0].quantity == 4


class TestStatsEndpoint:
    def test_requires_shop(self, client):
        response = client.get("/api/inventory/stats")
        assert response.status_code == 400

    def test_returns_stats_with_color_mappings(self, client, db_session, shop, variant_factory):
        variant_factory(quantities=(2,))
        db_session.add(ColorRule(shop_id=shop.id, reception_name="navy", display_name="Marine", hex_value="#000080"))
        db_session.commit()

        response = client.get("/api/inventory/stats", params={"shopId": shop.id})

        assert response.status_code == 200
        data = response.json()
        assert data["totalStock"] == 2
        assert data["totalStockValue"] == 15.0
        assert data["byColor"]["Navy"]["displayName"] == "Marine"
        assert data["bySize"] == {"M": {"count": 1, "stock": 2}}
