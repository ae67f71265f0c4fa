"""
Supplier (production) orders: status workflow, per-unit line items and order totals.

Rules:
- one row per physical unit: adding N of a variant inserts N rows with quantity 1;
- unit_price / line_total are a snapshot of the variant cost, refreshed only by recalculate_prices;
- subtotal counts validated items only; total_ht = subtotal + balance_adjustment;
  total_ttc = total_ht * (1 + VAT). Totals are recomputed after every mutation.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional

from cryptography.fernet import InvalidToken
from sqlalchemy.orm import Session

from ivy.config import settings
from ivy.models import (
    MetafieldConfig,
    ProductVariant,
    Shop,
    SupplierOrder,
    SupplierOrderItem,
    SupplierOrderStatus,
)
from ivy.services.id_map import IdentifierMap
from ivy.services.shopify_service import ShopifyClient, client_for_shop

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

# in_progress is a draft that already has items; it moves like draft
ALLOWED_TRANSITIONS: dict[SupplierOrderStatus, set[SupplierOrderStatus]] = {
    SupplierOrderStatus.DRAFT: {SupplierOrderStatus.REQUESTED},
    SupplierOrderStatus.IN_PROGRESS: {SupplierOrderStatus.REQUESTED},
    SupplierOrderStatus.REQUESTED: {SupplierOrderStatus.DRAFT, SupplierOrderStatus.PRODUCED},
    SupplierOrderStatus.PRODUCED: {SupplierOrderStatus.REQUESTED, SupplierOrderStatus.COMPLETED},
    SupplierOrderStatus.COMPLETED: set(),
}


class OrderNotFound(LookupError):
    pass


class ItemNotFound(LookupError):
    pass


class InvalidStatusTransition(ValueError):
    pass


@dataclass
class NewItem:
    variant_id: str
    product_title: Optional[str] = None
    variant_title: Optional[str] = None
    sku: Optional[str] = None
    quantity: int = 1


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _dec(value: Any) -> Decimal:
    return Decimal(str(value or 0))


def _cents(value: Decimal) -> Decimal:
    return value.quantize(CENTS)


def _status(order: SupplierOrder) -> SupplierOrderStatus:
    return SupplierOrderStatus(order.status)


def _order_items(db: Session, order: SupplierOrder) -> list[SupplierOrderItem]:
    db.flush()
    return db.query(SupplierOrderItem).filter(SupplierOrderItem.order_id == order.id).all()


def get_order(db: Session, shop_id: str, order_id: str) -> SupplierOrder:
    order = db.query(SupplierOrder).filter(
        SupplierOrder.id == order_id,
        SupplierOrder.shop_id == shop_id,
    ).first()
    if not order:
        raise OrderNotFound(order_id)
    return order


def list_orders(db: Session, shop_id: str) -> list[SupplierOrder]:
    return (
        db.query(SupplierOrder)
        .filter(SupplierOrder.shop_id == shop_id)
        .order_by(SupplierOrder.created_at.desc())
        .all()
    )


def create_order(db: Session, shop_id: str, note: Optional[str] = None) -> SupplierOrder:
    order = SupplierOrder(
        shop_id=shop_id,
        status=SupplierOrderStatus.DRAFT,
        note=note,
        subtotal=Decimal("0"),
        total_ht=Decimal("0"),
        total_ttc=Decimal("0"),
        balance_adjustment=Decimal("0"),
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    logger.info("Supplier order %s created for shop %s", order.id, shop_id)
    return order


def recompute_order_totals(db: Session, order: SupplierOrder) -> SupplierOrder:
    """Only validated items count towards the payable total."""
    items = _order_items(db, order)
    subtotal = sum((_dec(i.line_total) for i in items if i.is_validated), Decimal("0"))
    total_ht = subtotal + _dec(order.balance_adjustment)
    total_ttc = total_ht * (Decimal("1") + settings.VAT_RATE)
    order.subtotal = _cents(subtotal)
    order.total_ht = _cents(total_ht)
    order.total_ttc = _cents(total_ttc)
    order.updated_at = _now()
    return order


def transition_status(order: SupplierOrder, new_status) -> SupplierOrder:
    """Gate a status change. Completing does not commit stock here."""
    target = SupplierOrderStatus(new_status)
    current = _status(order)
    if target == current:
        return order
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStatusTransition(f"Cannot move order from {current.value} to {target.value}")
    order.status = target
    order.updated_at = _now()
    logger.info("Supplier order %s: %s -> %s", order.id, current.value, target.value)
    return order


def update_order(
    db: Session,
    order: SupplierOrder,
    *,
    note: Optional[str] = None,
    balance_adjustment: Optional[Any] = None,
    status: Optional[str] = None,
) -> SupplierOrder:
    if status is not None:
        transition_status(order, status)
    if note is not None:
        order.note = note
    if balance_adjustment is not None:
        order.balance_adjustment = _dec(balance_adjustment)
    recompute_order_totals(db, order)
    db.commit()
    db.refresh(order)
    return order


def _metafield_configs(db: Session, shop_id: str) -> list[MetafieldConfig]:
    return db.query(MetafieldConfig).filter(
        MetafieldConfig.shop_id == shop_id,
        MetafieldConfig.is_active.is_(True),
    ).all()


async def _variant_metafields(
    db: Session,
    order: SupplierOrder,
    variant_ids: Iterable[str],
    client: Optional[ShopifyClient],
) -> tuple[dict[str, dict[str, str]], bool]:
    """
    Configured metafields per variant UUID. Second value tells whether any metafield is
    configured for the shop at all.
    """
    configs = _metafield_configs(db, order.shop_id)
    if not configs:
        return {}, False
    id_map = IdentifierMap.for_variants(db, variant_ids)
    if not id_map.shopify_variant_by_variant:
        return {}, True
    if client is None:
        shop = db.query(Shop).filter(Shop.id == order.shop_id).first()
        if not shop:
            return {}, True
        try:
            client = client_for_shop(shop)
        except InvalidToken:
            logger.warning("Shop %s: access token cannot be decrypted, metafields skipped", shop.id)
            return {}, True
    by_shopify_id = await client.fetch_variant_metafields(id_map.shopify_variant_by_variant.values(), configs)
    result = {}
    for variant_id, shopify_id in id_map.shopify_variant_by_variant.items():
        result[variant_id] = by_shopify_id.get(shopify_id, {})
    return result, True


async def add_items(
    db: Session,
    order: SupplierOrder,
    entries: Iterable[NewItem],
    client: Optional[ShopifyClient] = None,
) -> list[SupplierOrderItem]:
    """Insert one row per unit priced at the variant's current cost, then recompute totals."""
    entries = list(entries)
    variant_ids = {e.variant_id for e in entries if e.variant_id}
    costs: dict[str, Decimal] = {}
    if variant_ids:
        for variant_id, cost in db.query(ProductVariant.id, ProductVariant.cost).filter(ProductVariant.id.in_(variant_ids)).all():
            costs[variant_id] = _dec(cost)

    metafields, _ = await _variant_metafields(db, order, variant_ids, client)

    inserted: list[SupplierOrderItem] = []
    for entry in entries:
        unit_price = costs.get(entry.variant_id, Decimal("0"))
        for _ in range(entry.quantity or 1):
            item = SupplierOrderItem(
                order_id=order.id,
                variant_id=entry.variant_id,
                product_title=entry.product_title,
                variant_title=entry.variant_title,
                sku=entry.sku,
                quantity=1,
                unit_price=unit_price,
                line_total=unit_price,
                metafields=dict(metafields.get(entry.variant_id, {})),
                is_validated=False,
                is_printed=False,
            )
            db.add(item)
            inserted.append(item)

    recompute_order_totals(db, order)
    if _status(order) == SupplierOrderStatus.DRAFT:
        order.status = SupplierOrderStatus.IN_PROGRESS
    db.commit()
    for item in inserted:
        db.refresh(item)
    logger.info("Supplier order %s: %s unit row(s) added", order.id, len(inserted))
    return inserted


def _get_item(db: Session, order: SupplierOrder, item_id: str) -> SupplierOrderItem:
    item = db.query(SupplierOrderItem).filter(
        SupplierOrderItem.id == item_id,
        SupplierOrderItem.order_id == order.id,
    ).first()
    if not item:
        raise ItemNotFound(item_id)
    return item


def update_item(
    db: Session,
    order: SupplierOrder,
    item_id: str,
    *,
    is_validated: Optional[bool] = None,
    is_printed: Optional[bool] = None,
    quantity: Optional[int] = None,
    unit_price: Optional[Any] = None,
) -> SupplierOrderItem:
    item = _get_item(db, order, item_id)
    now = _now()

    if is_validated is not None:
        item.is_validated = is_validated
        item.validated_at = now if is_validated else None
    if is_printed is not None:
        item.is_printed = is_printed
        item.printed_at = now if is_printed else None
    if quantity is not None or unit_price is not None:
        new_quantity = quantity if quantity is not None else item.quantity
        new_price = _dec(unit_price) if unit_price is not None else _dec(item.unit_price)
        item.quantity = new_quantity
        item.unit_price = new_price
        item.line_total = _cents(new_price * new_quantity)
    item.updated_at = now

    if quantity is not None or unit_price is not None or is_validated is not None:
        recompute_order_totals(db, order)
    db.commit()
    db.refresh(item)
    return item


def delete_item(db: Session, order: SupplierOrder, item_id: str) -> None:
    item = _get_item(db, order, item_id)
    db.delete(item)
    recompute_order_totals(db, order)
    db.commit()


def recalculate_prices(db: Session, order: SupplierOrder) -> int:
    """
    Re-price every item at its variant's current cost, validated items included.
    Returns the number of items updated.
    """
    items = _order_items(db, order)
    if not items:
        return 0
    variant_ids = {i.variant_id for i in items if i.variant_id}
    costs: dict[str, Decimal] = {}
    if variant_ids:
        for variant_id, cost in db.query(ProductVariant.id, ProductVariant.cost).filter(ProductVariant.id.in_(variant_ids)).all():
            costs[variant_id] = _dec(cost)
    now = _now()
    for item in items:
        cost = costs.get(item.variant_id, Decimal("0")) if item.variant_id else Decimal("0")
        item.unit_price = cost
        item.line_total = _cents(cost * (item.quantity or 0))
        item.updated_at = now
    recompute_order_totals(db, order)
    db.commit()
    logger.info("Supplier order %s: %s item price(s) recalculated", order.id, len(items))
    return len(items)


async def refresh_metafields(
    db: Session,
    order: SupplierOrder,
    client: Optional[ShopifyClient] = None,
) -> dict:
    """Refetch configured metafields per distinct variant and overwrite them on every item of that variant."""
    items = _order_items(db, order)
    if not items:
        return {"message": "No items to update", "updatedCount": 0}
    variant_ids = {i.variant_id for i in items if i.variant_id}
    metafields, configured = await _variant_metafields(db, order, variant_ids, client)
    if not configured:
        return {"message": "Aucun métachamp configuré", "updatedCount": 0}

    updated = 0
    now = _now()
    for item in items:
        if not item.variant_id:
            continue
        item.metafields = dict(metafields.get(item.variant_id, {}))
        item.updated_at = now
        updated += 1
    db.commit()
    with_metafields = sum(1 for m in metafields.values() if m)
    return {
        "message": f"{updated} articles traités, {with_metafields} variantes avec métachamps",
        "updatedCount": updated,
    }
