"""
Supplier order pipeline tests - totals, per-unit rows, repricing and status workflow
"""
import asyncio
from decimal import Decimal

import httpx
import pytest

from ivy.models import SupplierOrderItem, SupplierOrderStatus
from ivy.services import supplier_orders
from ivy.services.shopify_service import ShopifyClient
from ivy.services.supplier_orders import (
    InvalidStatusTransition,
    ItemNotFound,
    NewItem,
    OrderNotFound,
)


@pytest.fixture
def order(db_session, shop):
    return supplier_orders.create_order(db_session, shop.id, note="Réassort printemps")


def _add_item(db, order, line_total, validated, variant_id=None):
    item = SupplierOrderItem(
        order_id=order.id,
        variant_id=variant_id,
        quantity=1,
        unit_price=Decimal(line_total),
        line_total=Decimal(line_total),
        is_validated=validated,
    )
    db.add(item)
    db.commit()
    return item


class FakeShopifyClient:
    """Only what the order pipeline calls."""

    def __init__(self, metafields):
        self.metafields = metafields
        self.calls = []

    async def fetch_variant_metafields(self, variant_ids, configs):
        self.calls.append(sorted(variant_ids))
        return self.metafields


class TestOrderTotals:
    def test_only_validated_items_count(self, db_session, order):
        _add_item(db_session, order, "10.00", True)
        _add_item(db_session, order, "15.00", True)
        _add_item(db_session, order, "99.00", False)
        order.balance_adjustment = Decimal("-5.00")

        supplier_orders.recompute_order_totals(db_session, order)
        db_session.commit()

        assert order.subtotal == Decimal("25.00")
        assert order.total_ht == Decimal("20.00")
        assert order.total_ttc == Decimal("24.00")

    def test_empty_order_totals_are_zero(self, db_session, order):
        supplier_orders.recompute_order_totals(db_session, order)
        db_session.commit()
        assert order.subtotal == Decimal("0")
        assert order.total_ht == Decimal("0")
        assert order.total_ttc == Decimal("0")

    def test_ttc_is_rounded_to_cents(self, db_session, order):
        _add_item(db_session, order, "3.33", True)
        supplier_orders.recompute_order_totals(db_session, order)
        db_session.commit()
        assert order.total_ttc == Decimal("4.00")

    def test_update_order_balance_adjustment_recomputes(self, db_session, order):
        _add_item(db_session, order, "40.00", True)
        order = supplier_orders.update_order(db_session, order, balance_adjustment="10")
        assert order.total_ht == Decimal("50.00")
        assert order.total_ttc == Decimal("60.00")


class TestAddItems:
    def test_one_row_per_unit_at_variant_cost(self, db_session, order, variant):
        entries = [NewItem(variant_id=variant.id, product_title="Tee Bio", variant_title="M / Navy", sku=variant.sku, quantity=3)]

        inserted = asyncio.run(supplier_orders.add_items(db_session, order, entries))

        assert len(inserted) == 3
        for item in inserted:
            assert item.quantity == 1
            assert item.unit_price == Decimal("7.50")
            assert item.line_total == Decimal("7.50")
            assert item.is_validated is False
            assert item.metafields == {}
        assert order.subtotal == Decimal("0")
        assert order.status == SupplierOrderStatus.IN_PROGRESS

    def test_unknown_variant_is_priced_zero(self, db_session, order):
        inserted = asyncio.run(supplier_orders.add_items(db_session, order, [NewItem(variant_id=None)]))
        assert len(inserted) == 1
        assert inserted[0].unit_price == Decimal("0")

    def test_configured_metafields_are_copied(self, db_session, order, variant, metafield_config):
        client = FakeShopifyClient({"1000": {"Tissu": "Coton bio"}})

        inserted = asyncio.run(
            supplier_orders.add_items(db_session, order, [NewItem(variant_id=variant.id, quantity=2)], client=client)
        )

        assert client.calls == [["1000"]]
        assert [i.metafields for i in inserted] == [{"Tissu": "Coton bio"}, {"Tissu": "Coton bio"}]

    def test_requested_order_keeps_status(self, db_session, order, variant):
        order.status = SupplierOrderStatus.REQUESTED
        db_session.commit()
        asyncio.run(supplier_orders.add_items(db_session, order, [NewItem(variant_id=variant.id)]))
        assert order.status == SupplierOrderStatus.REQUESTED

    def test_unreadable_metafield_response_still_inserts_rows(self, db_session, shop, order, variant, metafield_config):
        maintenance = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>maintenance</html>"))
        client = ShopifyClient(shop.shopify_url, "token", transport=maintenance)

        inserted = asyncio.run(
            supplier_orders.add_items(db_session, order, [NewItem(variant_id=variant.id, quantity=2)], client=client)
        )

        assert len(inserted) == 2
        assert [i.metafields for i in inserted] == [{}, {}]

    def test_undecryptable_token_skips_metafields(self, db_session, shop, order, variant, metafield_config):
        shop.shopify_token = "not-a-fernet-token"
        db_session.commit()

        inserted = asyncio.run(supplier_orders.add_items(db_session, order, [NewItem(variant_id=variant.id)]))

        assert len(inserted) == 1
        assert inserted[0].metafields == {}
        assert order.status == SupplierOrderStatus.IN_PROGRESS


class TestItemUpdates:
    def test_quantity_change_recomputes_line_total(self, db_session, order, variant):
        item = asyncio.run(supplier_orders.add_items(db_session, order, [NewItem(variant_id=variant.id)]))[0]

        item = supplier_orders.update_item(db_session, order, item.id, quantity=2)

        assert item.line_total == Decimal("15.00")
        assert item.unit_price == Decimal("7.50")

    def test_unit_price_change_uses_stored_quantity(self, db_session, order, variant):
        item = asyncio.run(supplier_orders.add_items(db_session, order, [NewItem(variant_id=variant.id)]))[0]
        supplier_orders.update_item(db_session, order, item.id, quantity=4)

        item = supplier_orders.update_item(db_session, order, item.id, unit_price="2.5")

        assert item.line_total == Decimal("10.00")

    def test_validation_stamps_and_counts(self, db_session, order, variant):
        item = asyncio.run(supplier_orders.add_items(db_session, order, [NewItem(variant_id=variant.id)]))[0]

        item = supplier_orders.update_item(db_session, order, item.id, is_validated=True)
        assert item.validated_at is not None
        assert order.subtotal == Decimal("7.50")
        assert order.total_ttc == Decimal("9.00")

        item = supplier_orders.update_item(db_session, order, item.id, is_validated=False)
        assert item.validated_at is None
        assert order.subtotal == Decimal("0")

    def test_printing_stamps(self, db_session, order, variant):
        item = asyncio.run(supplier_orders.add_items(db_session, order, [NewItem(variant_id=variant.id)]))[0]
        item = supplier_orders.update_item(db_session, order, item.id, is_printed=True)
        assert item.is_printed is True
        assert item.printed_at is not None

    def test_unknown_item(self, db_session, order):
        with pytest.raises(ItemNotFound):
            supplier_orders.update_item(db_session, order, "missing", is_printed=True)

    def test_delete_recomputes_totals(self, db_session, order):
        kept = _add_item(db_session, order, "10.00", True)
        removed = _add_item(db_session, order, "15.00", True)
        supplier_orders.recompute_order_totals(db_session, order)
        db_session.commit()
        assert order.subtotal == Decimal("25.00")

        supplier_orders.delete_item(db_session, order, removed.id)

        assert order.subtotal == Decimal("10.00")
        remaining = db_session.query(SupplierOrderItem).filter(SupplierOrderItem.order_id == order.id).all()
        assert [i.id for i in remaining] == [kept.id]


class TestRecalculatePrices:
    def test_reprices_validated_items_and_is_idempotent(self, db_session, order, variant):
        item = asyncio.run(supplier_orders.add_items(db_session, order, [NewItem(variant_id=variant.id)]))[0]
        supplier_orders.update_item(db_session, order, item.id, is_validated=True, quantity=2)
        variant.cost = Decimal("8.00")
        db_session.commit()

        assert supplier_orders.recalculate_prices(db_session, order) == 1
        first = (item.unit_price, item.line_total, order.subtotal)
        supplier_orders.recalculate_prices(db_session, order)
        second = (item.unit_price, item.line_total, order.subtotal)

        assert first == (Decimal("8.00"), Decimal("16.00"), Decimal("16.00"))
        assert first == second

    def test_empty_order(self, db_session, order):
        assert supplier_orders.recalculate_prices(db_session, order) == 0


class TestRefreshMetafields:
    def test_without_configuration(self, db_session, order, variant):
        asyncio.run(supplier_orders.add_items(db_session, order, [NewItem(variant_id=variant.id)]))
        client = FakeShopifyClient({})

        result = asyncio.run(supplier_orders.refresh_metafields(db_session, order, client=client))

        assert result["updatedCount"] == 0
        assert result["message"] == "Aucun métachamp configuré"
        assert client.calls == []

    def test_overwrites_every_item_of_the_variant(self, db_session, order, variant, metafield_config):
        asyncio.run(
            supplier_orders.add_items(
                db_session, order, [NewItem(variant_id=variant.id, quantity=2)],
                client=FakeShopifyClient({"1000": {"Tissu": "Lin"}}),
            )
        )

        result = asyncio.run(
            supplier_orders.refresh_metafields(db_session, order, client=FakeShopifyClient({"1000": {"Tissu": "Coton"}}))
        )

        assert result["updatedCount"] == 2
        items = db_session.query(SupplierOrderItem).filter(SupplierOrderItem.order_id == order.id).all()
        assert {tuple(i.metafields.items()) for i in items} == {(("Tissu", "Coton"),)}


class TestStatusWorkflow:
    def test_forward_path(self, db_session, order):
        for status in ("requested", "produced", "completed"):
            order = supplier_orders.update_order(db_session, order, status=status)
        assert order.status == SupplierOrderStatus.COMPLETED

    def test_backward_steps(self, db_session, order):
        supplier_orders.update_order(db_session, order, status="requested")
        supplier_orders.update_order(db_session, order, status="draft")
        assert order.status == SupplierOrderStatus.DRAFT

        supplier_orders.update_order(db_session, order, status="requested")
        supplier_orders.update_order(db_session, order, status="produced")
        supplier_orders.update_order(db_session, order, status="requested")
        assert order.status == SupplierOrderStatus.REQUESTED

    def test_in_progress_moves_like_draft(self, db_session, order, variant):
        asyncio.run(supplier_orders.add_items(db_session, order, [NewItem(variant_id=variant.id)]))
        order = supplier_orders.update_order(db_session, order, status="requested")
        assert order.status == SupplierOrderStatus.REQUESTED

    def test_skipping_a_step_is_refused(self, db_session, order):
        with pytest.raises(InvalidStatusTransition):
            supplier_orders.update_order(db_session, order, status="produced")

    def test_completed_is_terminal(self, db_session, order):
        for status in ("requested", "produced", "completed"):
            supplier_orders.update_order(db_session, order, status=status)
        with pytest.raises(InvalidStatusTransition):
            supplier_orders.update_order(db_session, order, status="produced")

    def test_same_status_is_a_no_op(self, db_session, order):
        order = supplier_orders.update_order(db_session, order, status="draft")
        assert order.status == SupplierOrderStatus.DRAFT


class TestOrderLookup:
    def test_get_order_is_scoped_to_shop(self, db_session, order):
        assert supplier_orders.get_order(db_session, order.shop_id, order.id).id == order.id
        with pytest.raises(OrderNotFound):
            supplier_orders.get_order(db_session, "other-shop", order.id)

    def test_list_orders(self, db_session, shop, order):
        assert [o.id for o in supplier_orders.list_orders(db_session, shop.id)] == [order.id]
