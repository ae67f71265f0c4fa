"""
Price rules: a base price per product type plus additive modifiers.

A metafield modifier adds its amount when the variant carries exactly that
namespace + key + value; an option modifier adds its amount when any option slot
of the variant equals its value. All matching modifiers stack.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from ivy.models import (
    MetafieldConfig,
    PriceRule,
    PriceRuleModifier,
    PriceRuleOptionModifier,
    Product,
    ProductVariant,
    Shop,
    SupplierOrder,
    SupplierOrderItem,
    SupplierOrderStatus,
)
from ivy.services.progress import OperationAborted, ProgressReporter
from ivy.services.shopify_service import ShopifyClient, client_for_shop
from ivy.services.supplier_orders import recompute_order_totals

logger = logging.getLogger(__name__)

APPLY_TARGETS = ("shopify", "local")


class RuleNotFound(LookupError):
    pass


@dataclass
class PricedVariant:
    """What a rule needs to know about a variant: option values and (namespace, key) -> value."""
    options: list[str] = field(default_factory=list)
    metafields: dict[tuple[str, str], str] = field(default_factory=dict)


def _dec(value: Any) -> Decimal:
    return Decimal(str(value or 0))


def _now() -> datetime:
    return datetime.now(timezone.utc)


def total_price(rule: PriceRule, variant: PricedVariant) -> Decimal:
    total = _dec(rule.base_price)
    for mod in rule.modifiers:
        if variant.metafields.get((mod.metafield_namespace, mod.metafield_key)) == mod.metafield_value:
            total += _dec(mod.modifier_amount)
    options = [o for o in variant.options if o]
    for mod in rule.option_modifiers:
        if mod.option_value in options:
            total += _dec(mod.modifier_amount)
    return total


def _rule_variants(db: Session, rule: PriceRule) -> list[ProductVariant]:
    return (
        db.query(ProductVariant)
        .join(Product, Product.id == ProductVariant.product_id)
        .filter(Product.shop_id == rule.shop_id, Product.product_type == rule.product_type)
        .all()
    )


def _label(rule: PriceRule) -> str:
    return rule.product_type or rule.sku


async def apply_rule_to_shopify(
    db: Session,
    rule: PriceRule,
    client: ShopifyClient,
    reporter: ProgressReporter,
) -> int:
    """
    Push the computed price of every variant of the rule's product type to Shopify as
    inventory item cost, and store it as the local variant cost. Returns the number updated.
    """
    if not rule.is_active:
        raise OperationAborted(f"❌ Règle {_label(rule)} inactive")
    reporter.info(f"💰 Application de la règle {_label(rule)} ({rule.base_price} €)")

    variants = _rule_variants(db, rule)
    if not variants:
        reporter.warning(f"⚠️ Aucune variante pour le type {rule.product_type}")
        return 0
    reporter.info(f"📦 {len(variants)} variantes trouvées")

    reporter.info("🏷️ Récupération des métachamps...")
    raw = await client.fetch_raw_variant_metafields(v.shopify_id for v in variants)

    prices: dict[str, Decimal] = {}
    by_item: dict[str, list[ProductVariant]] = {}
    skipped = 0
    for variant in variants:
        if not variant.inventory_item_id:
            skipped += 1
            continue
        price = total_price(rule, PricedVariant(variant.options, raw.get(str(variant.shopify_id), {})))
        prices[str(variant.inventory_item_id)] = price
        by_item.setdefault(str(variant.inventory_item_id), []).append(variant)
    if skipped:
        reporter.warning(f"⚠️ {skipped} variantes sans inventory item ignorées")

    reporter.info("⬆️ Mise à jour des coûts sur Shopify...")
    outcome = await client.update_inventory_item_costs(prices, reporter)
    for inventory_item_id in outcome.data:
        for variant in by_item.get(inventory_item_id, []):
            variant.cost = prices[inventory_item_id]

    rule.last_applied_at = _now()
    db.commit()
    updated = len(outcome.data)
    if outcome.complete:
        reporter.success(f"✅ {updated} variantes mises à jour")
    else:
        reporter.warning(f"⚠️ {updated}/{len(prices)} variantes mises à jour ({outcome.failed_batches} batch(s) en échec)")
    return updated


def _metafield_keys(db: Session, shop_id: str) -> dict[str, tuple[str, str]]:
    """Stored item metafields are keyed by display name; map them back to (namespace, key)."""
    keys: dict[str, tuple[str, str]] = {}
    for config in db.query(MetafieldConfig).filter(MetafieldConfig.shop_id == shop_id).all():
        pair = (config.namespace, config.key)
        keys[f"{config.namespace}.{config.key}"] = pair
        if config.display_name:
            keys[config.display_name] = pair
    return keys


def _item_metafields(item: SupplierOrderItem, keys: dict[str, tuple[str, str]]) -> dict[tuple[str, str], str]:
    result = {}
    for name, value in (item.metafields or {}).items():
        pair = keys.get(name)
        if pair:
            result[pair] = value
    return result


def apply_rule_local(db: Session, rule: PriceRule, reporter: ProgressReporter) -> int:
    """
    Re-price the items of non-completed orders whose variant has the rule's product type,
    then recompute the totals of every touched order. Returns the number of items updated.
    """
    if not rule.is_active:
        raise OperationAborted(f"❌ Règle {_label(rule)} inactive")
    reporter.info(f"💰 Application locale de la règle {_label(rule)} ({rule.base_price} €)")

    rows = (
        db.query(SupplierOrderItem, ProductVariant)
        .join(SupplierOrder, SupplierOrder.id == SupplierOrderItem.order_id)
        .join(ProductVariant, ProductVariant.id == SupplierOrderItem.variant_id)
        .join(Product, Product.id == ProductVariant.product_id)
        .filter(
            SupplierOrder.shop_id == rule.shop_id,
            SupplierOrder.status != SupplierOrderStatus.COMPLETED,
            Product.product_type == rule.product_type,
        )
        .all()
    )
    if not rows:
        reporter.warning(f"⚠️ Aucun article de commande pour le type {rule.product_type}")
        rule.last_applied_at = _now()
        db.commit()
        return 0
    reporter.info(f"📦 {len(rows)} articles trouvés")

    keys = _metafield_keys(db, rule.shop_id)
    order_ids = set()
    for item, variant in rows:
        price = total_price(rule, PricedVariant(variant.options, _item_metafields(item, keys)))
        item.unit_price = price
        item.line_total = (price * (item.quantity or 0)).quantize(Decimal("0.01"))
        item.updated_at = _now()
        order_ids.add(item.order_id)

    for order in db.query(SupplierOrder).filter(SupplierOrder.id.in_(order_ids)).all():
        recompute_order_totals(db, order)
    rule.last_applied_at = _now()
    db.commit()
    reporter.success(f"✅ {len(rows)} articles mis à jour dans {len(order_ids)} commande(s)")
    return len(rows)


async def apply_all_rules(
    db: Session,
    shop: Shop,
    target: str,
    reporter: ProgressReporter,
    client: Optional[ShopifyClient] = None,
) -> int:
    """Apply every active rule of the shop, one after the other."""
    if target not in APPLY_TARGETS:
        raise ValueError(f"Unknown target: {target}")
    rules = (
        db.query(PriceRule)
        .filter(PriceRule.shop_id == shop.id, PriceRule.is_active.is_(True))
        .order_by(PriceRule.product_type)
        .all()
    )
    if not rules:
        reporter.warning("⚠️ Aucune règle active")
        return 0
    reporter.info(f"📋 {len(rules)} règle(s) active(s)")

    if target == "shopify" and client is None:
        client = client_for_shop(shop)
    total = 0
    for num, rule in enumerate(rules, start=1):
        reporter.progress(f"[{num}/{len(rules)}] {_label(rule)}")
        if target == "shopify":
            total += await apply_rule_to_shopify(db, rule, client, reporter)
        else:
            total += apply_rule_local(db, rule, reporter)
    reporter.success(f"✅ {len(rules)} règle(s) appliquée(s), {total} mise(s) à jour")
    return total


# CRUD

def get_rule(db: Session, shop_id: Optional[str], rule_id: str) -> PriceRule:
    query = db.query(PriceRule).filter(PriceRule.id == rule_id)
    if shop_id:
        query = query.filter(PriceRule.shop_id == shop_id)
    rule = query.first()
    if not rule:
        raise RuleNotFound(rule_id)
    return rule


def list_rules(db: Session, shop_id: str) -> list[PriceRule]:
    return db.query(PriceRule).filter(PriceRule.shop_id == shop_id).order_by(PriceRule.product_type).all()


def _set_modifiers(rule: PriceRule, modifiers: Iterable[dict], option_modifiers: Iterable[dict]) -> None:
    rule.modifiers = [
        PriceRuleModifier(
            metafield_namespace=m["namespace"],
            metafield_key=m["key"],
            metafield_value=m["value"],
            modifier_amount=_dec(m.get("amount")),
        )
        for m in modifiers
    ]
    rule.option_modifiers = [
        PriceRuleOptionModifier(
            option_name=m["option_name"],
            option_value=m["option_value"],
            modifier_amount=_dec(m.get("amount")),
        )
        for m in option_modifiers
    ]


def create_rule(
    db: Session,
    shop_id: str,
    *,
    sku: str,
    base_price: Any,
    product_type: Optional[str] = None,
    description: Optional[str] = None,
    is_active: bool = True,
    modifiers: Iterable[dict] = (),
    option_modifiers: Iterable[dict] = (),
) -> PriceRule:
    rule = PriceRule(
        shop_id=shop_id,
        sku=sku,
        product_type=product_type or sku,
        base_price=_dec(base_price),
        description=description,
        is_active=is_active,
    )
    _set_modifiers(rule, modifiers, option_modifiers)
    db.add(rule)
    db.commit()
    db.refresh(rule)
    logger.info("Price rule %s created for %s", rule.id, rule.product_type)
    return rule


def update_rule(db: Session, rule: PriceRule, **fields) -> PriceRule:
    """Only the given fields change; modifier lists are replaced when given."""
    modifiers = fields.pop("modifiers", None)
    option_modifiers = fields.pop("option_modifiers", None)
    for name in ("sku", "product_type", "description", "is_active"):
        if fields.get(name) is not None:
            setattr(rule, name, fields[name])
    if fields.get("base_price") is not None:
        rule.base_price = _dec(fields["base_price"])
    if modifiers is not None or option_modifiers is not None:
        _set_modifiers(
            rule,
            modifiers if modifiers is not None else [
                {"namespace": m.metafield_namespace, "key": m.metafield_key, "value": m.metafield_value, "amount": m.modifier_amount}
                for m in rule.modifiers
            ],
            option_modifiers if option_modifiers is not None else [
                {"option_name": m.option_name, "option_value": m.option_value, "amount": m.modifier_amount}
                for m in rule.option_modifiers
            ],
        )
    rule.updated_at = _now()
    db.commit()
    db.refresh(rule)
    return rule


def delete_rule(db: Session, rule: PriceRule) -> None:
    db.delete(rule)
    db.commit()
    logger.info("Price rule %s deleted", rule.id)


def rule_to_response(rule: PriceRule) -> dict:
    return {
        "id": rule.id,
        "shop_id": rule.shop_id,
        "sku": rule.sku,
        "product_type": rule.product_type,
        "base_price": float(rule.base_price or 0),
        "description": rule.description,
        "is_active": bool(rule.is_active),
        "last_applied_at": rule.last_applied_at.isoformat() if rule.last_applied_at else None,
        "modifiers": [
            {
                "id": m.id,
                "metafield_namespace": m.metafield_namespace,
                "metafield_key": m.metafield_key,
                "metafield_value": m.metafield_value,
                "modifier_amount": float(m.modifier_amount or 0),
            }
            for m in rule.modifiers
        ],
        "option_modifiers": [
            {
                "id": m.id,
                "option_name": m.option_name,
                "option_value": m.option_value,
                "modifier_amount": float(m.modifier_amount or 0),
            }
            for m in rule.option_modifiers
        ],
    }
