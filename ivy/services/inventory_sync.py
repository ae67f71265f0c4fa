"""
Shopify -> local store sync: products, variants (with cost and price) and inventory levels.

Steps run in order and each one commits, so a run that fails half-way keeps what it
already saved. Ids Shopify returns that no longer map to a local row are skipped.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ivy.models import InventoryLevel, Product, ProductVariant, Shop
from ivy.services.id_map import IdentifierMap
from ivy.services.progress import ProgressReporter
from ivy.services.shopify_service import ShopifyClient, to_decimal

logger = logging.getLogger(__name__)

SEPARATOR = "━" * 40


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _image_url(product: dict) -> Optional[str]:
    image = product.get("image") or {}
    if image.get("src"):
        return image["src"]
    images = product.get("images") or []
    return images[0].get("src") if images else None


def _option_name(product: dict, index: int) -> Optional[str]:
    options = product.get("options") or []
    return options[index].get("name") if len(options) > index else None


def upsert_products(db: Session, shop_id: str, products: list[dict]) -> int:
    """Upsert on (shop_id, shopify_id)."""
    existing = {
        p.shopify_id: p
        for p in db.query(Product).filter(Product.shop_id == shop_id).all()
    }
    now = _now()
    for data in products:
        shopify_id = str(data["id"])
        product = existing.get(shopify_id)
        if product is None:
            product = Product(shop_id=shop_id, shopify_id=shopify_id)
            db.add(product)
            existing[shopify_id] = product
        product.title = data.get("title") or ""
        product.handle = data.get("handle")
        product.image_url = _image_url(data)
        product.status = data.get("status")
        product.product_type = data.get("product_type") or None
        product.option1_name = _option_name(data, 0)
        product.option2_name = _option_name(data, 1)
        product.option3_name = _option_name(data, 2)
        product.synced_at = now
    db.commit()
    return len(products)


def upsert_variants(
    db: Session,
    products: list[dict],
    id_map: IdentifierMap,
    costs: dict[str, Decimal],
) -> int:
    """
    Upsert on (product_id, shopify_id). Cost comes from the inventory item; an existing
    cost is kept when Shopify did not return that inventory item.
    """
    product_ids = [pid for pid in (id_map.product_uuid(p["id"]) for p in products) if pid]
    existing = {}
    if product_ids:
        for v in db.query(ProductVariant).filter(ProductVariant.product_id.in_(product_ids)).all():
            existing[(v.product_id, v.shopify_id)] = v

    count = 0
    for data in products:
        product_id = id_map.product_uuid(data["id"])
        if not product_id:
            continue
        for v in data.get("variants") or []:
            shopify_id = str(v["id"])
            variant = existing.get((product_id, shopify_id))
            if variant is None:
                variant = ProductVariant(product_id=product_id, shopify_id=shopify_id, cost=Decimal("0"))
                db.add(variant)
                existing[(product_id, shopify_id)] = variant
            inventory_item_id = str(v["inventory_item_id"]) if v.get("inventory_item_id") else None
            variant.title = v.get("title")
            variant.sku = v.get("sku")
            variant.option1 = v.get("option1")
            variant.option2 = v.get("option2")
            variant.option3 = v.get("option3")
            variant.inventory_item_id = inventory_item_id
            if inventory_item_id and inventory_item_id in costs:
                variant.cost = costs[inventory_item_id]
            variant.price = to_decimal(v.get("price"))
            count += 1
    db.commit()
    return count


def upsert_levels(db: Session, rows, id_map: IdentifierMap) -> int:
    """Upsert on (variant_id, location_id); quantities are stored as reported."""
    variant_ids = list(set(id_map.variant_by_inventory_item.values()))
    existing = {}
    if variant_ids:
        for level in db.query(InventoryLevel).filter(InventoryLevel.variant_id.in_(variant_ids)).all():
            existing[(level.variant_id, level.location_id)] = level

    now = _now()
    count = 0
    for row in rows:
        variant_id = id_map.variant_uuid(row.inventory_item_id)
        if not variant_id:
            continue
        level = existing.get((variant_id, row.location_id))
        if level is None:
            level = InventoryLevel(variant_id=variant_id, location_id=row.location_id)
            db.add(level)
            existing[(variant_id, row.location_id)] = level
        level.quantity = row.quantity
        level.synced_at = now
        count += 1
    db.commit()
    return count


async def sync_inventory(
    db: Session,
    shop: Shop,
    client: ShopifyClient,
    reporter: ProgressReporter,
    product_type: Optional[str] = None,
) -> dict:
    if product_type:
        reporter.info(f"🚀 Synchronisation: {product_type}")
    else:
        reporter.info("🚀 Démarrage de la synchronisation...")
    reporter.success(f"✓ Boutique: {shop.name or shop.shopify_url}")

    label = f" ({product_type})" if product_type else ""
    reporter.info(f"📦 Récupération des produits{label}...")
    products = [p async for p in client.iter_active_products(product_type, reporter)]
    reporter.success(f"✓ {len(products)} produits récupérés")

    reporter.info("💾 Sauvegarde des produits...")
    upsert_products(db, shop.id, products)
    reporter.success(f"✓ {len(products)} produits sauvegardés")

    id_map = IdentifierMap.for_shop(db, shop.id)
    reporter.info("📋 Préparation des variantes...")
    inventory_item_ids = [
        v["inventory_item_id"]
        for p in products if id_map.product_uuid(p["id"])
        for v in p.get("variants") or [] if v.get("inventory_item_id")
    ]
    reporter.progress(f"  └─ {len(inventory_item_ids)} inventory items à récupérer")

    reporter.info("💰 Récupération des coûts depuis Shopify...")
    costs = await client.fetch_inventory_item_costs(inventory_item_ids, reporter)

    reporter.info("📋 Sauvegarde des variantes avec coûts...")
    variant_count = upsert_variants(db, products, id_map, costs.data)
    reporter.success(f"✓ {variant_count} variantes sauvegardées avec coûts")

    id_map = IdentifierMap.for_shop(db, shop.id)
    reporter.info("📊 Mise à jour des niveaux d'inventaire...")
    levels = await client.fetch_inventory_levels(inventory_item_ids, reporter)
    reporter.progress(f"  └─ Sauvegarde de {len(levels.data)} niveaux...")
    level_count = upsert_levels(db, levels.data, id_map)
    reporter.success(f"✓ {level_count} niveaux d'inventaire mis à jour")

    reporter.info(SEPARATOR)
    reporter.success("✅ Synchronisation terminée!")
    reporter.info(f"   {len(products)} produits, {variant_count} variantes")
    logger.info(
        "Inventory sync for shop %s: %s products, %s variants, %s levels (%s cost retries)",
        shop.id, len(products), variant_count, level_count, costs.retries,
    )
    return {"products": len(products), "variants": variant_count, "levels": level_count}
