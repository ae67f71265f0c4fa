"""
Lookup tables between Shopify ids and internal UUIDs, rebuilt for every sync run from the
rows just upserted. A miss returns None and the caller skips that unit: Shopify data may
still reference products deleted since.
"""
from dataclasses import dataclass, field
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ivy.models import Product, ProductVariant


@dataclass
class IdentifierMap:
    product_by_shopify_id: dict[str, str] = field(default_factory=dict)
    variant_by_inventory_item: dict[str, str] = field(default_factory=dict)
    shopify_variant_by_variant: dict[str, str] = field(default_factory=dict)

    @classmethod
    def for_shop(cls, db: Session, shop_id: str) -> "IdentifierMap":
        """Read-after-write: build all three tables from the store for one shop."""
        id_map = cls()
        product_ids = []
        for product_id, shopify_id in db.query(Product.id, Product.shopify_id).filter(Product.shop_id == shop_id).all():
            id_map.product_by_shopify_id[str(shopify_id)] = product_id
            product_ids.append(product_id)
        if product_ids:
            id_map.add_variants(
                db.query(ProductVariant.id, ProductVariant.shopify_id, ProductVariant.inventory_item_id)
                .filter(ProductVariant.product_id.in_(product_ids))
                .all()
            )
        return id_map

    @classmethod
    def for_variants(cls, db: Session, variant_ids: Iterable[str]) -> "IdentifierMap":
        """Only the variant UUID -> Shopify variant id table, for the given variants."""
        id_map = cls()
        variant_ids = [v for v in set(variant_ids) if v]
        if variant_ids:
            id_map.add_variants(
                db.query(ProductVariant.id, ProductVariant.shopify_id, ProductVariant.inventory_item_id)
                .filter(ProductVariant.id.in_(variant_ids))
                .all()
            )
        return id_map

    def add_variants(self, rows: Iterable[tuple]) -> None:
        for variant_id, shopify_id, inventory_item_id in rows:
            if shopify_id:
                self.shopify_variant_by_variant[variant_id] = str(shopify_id)
            if inventory_item_id:
                self.variant_by_inventory_item[str(inventory_item_id)] = variant_id

    def product_uuid(self, shopify_product_id) -> Optional[str]:
        return self.product_by_shopify_id.get(str(shopify_product_id))

    def variant_uuid(self, inventory_item_id) -> Optional[str]:
        return self.variant_by_inventory_item.get(str(inventory_item_id))

    def shopify_variant_id(self, variant_id: str) -> Optional[str]:
        return self.shopify_variant_by_variant.get(variant_id)
