"""
Inventory statistics: stock units, cost value and sale value, grouped by product type,
color and size.

load_inventory_rows() is the one place that turns store rows into InventoryRow values;
compute_inventory_stats() is a pure function over those rows.
"""
import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ivy.models import InventoryLevel, Product, ProductVariant
from ivy.services.colors import ColorMappings, is_color_option

logger = logging.getLogger(__name__)

SIZE_PATTERN = re.compile(r"^(XXXS|XXS|XS|S|M|L|XL|XXL|2XL|3XL|4XL|5XL|\d+)$", re.IGNORECASE)
UNDEFINED_TYPE = "Non défini"
UNKNOWN_PRODUCT = "Inconnu"
TOP_COLORS = 15
TOP_PRODUCTS = 10


def classify_option(value: str, option_name: Optional[str] = None) -> str:
    """
    "size" when the value looks like a size, otherwise "color".
    An option named Couleur/Color/Colour is always a color; without that hint anything that
    is not a size counts as a color, so an unnamed color "5" lands in sizes.
    """
    if is_color_option(option_name):
        return "color"
    return "size" if SIZE_PATTERN.match(value) else "color"


@dataclass
class InventoryRow:
    variant_id: str
    sku: Optional[str]
    options: list[str]
    cost: Decimal
    price: Decimal
    product_title: Optional[str]
    product_type: Optional[str]
    quantities: list[int] = field(default_factory=list)
    # aligned with options; None when unknown
    option_names: list[Optional[str]] = field(default_factory=list)

    @property
    def quantity(self) -> int:
        return sum(self.quantities)


def load_inventory_rows(db: Session, shop_id: str, location_id: Optional[str] = None) -> list[InventoryRow]:
    """Variants of the shop that have at least one inventory level (at location_id when given)."""
    query = (
        db.query(ProductVariant, Product, InventoryLevel)
        .join(Product, Product.id == ProductVariant.product_id)
        .join(InventoryLevel, InventoryLevel.variant_id == ProductVariant.id)
        .filter(Product.shop_id == shop_id)
    )
    if location_id:
        query = query.filter(InventoryLevel.location_id == location_id)

    rows: dict[str, InventoryRow] = {}
    for variant, product, level in query.all():
        row = rows.get(variant.id)
        if row is None:
            slots = [
                (value, name)
                for value, name in (
                    (variant.option1, product.option1_name),
                    (variant.option2, product.option2_name),
                    (variant.option3, product.option3_name),
                )
                if value
            ]
            row = InventoryRow(
                variant_id=variant.id,
                sku=variant.sku,
                options=[value for value, _ in slots],
                option_names=[name for _, name in slots],
                cost=Decimal(str(variant.cost or 0)),
                price=Decimal(str(variant.price or 0)),
                product_title=product.title,
                product_type=product.product_type,
            )
            rows[variant.id] = row
        row.quantities.append(int(level.quantity or 0))
    return list(rows.values())


def _sorted_by_stock(groups: dict, limit: Optional[int] = None) -> dict:
    ordered = sorted(groups.items(), key=lambda kv: kv[1]["stock"], reverse=True)
    if limit is not None:
        ordered = ordered[:limit]
    return dict(ordered)


def _money(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.01")))


def compute_inventory_stats(rows: Iterable[InventoryRow], colors: Optional[ColorMappings] = None) -> dict:
    total_variants = 0
    total_stock = 0
    total_cost_value = Decimal("0")
    total_sale_value = Decimal("0")
    by_type: dict = defaultdict(lambda: {"count": 0, "stock": 0, "value": Decimal("0")})
    by_color: dict = defaultdict(lambda: {"count": 0, "stock": 0})
    by_size: dict = defaultdict(lambda: {"count": 0, "stock": 0})
    by_product: dict = {}

    for row in rows:
        qty = row.quantity
        value = row.cost * qty
        total_variants += 1
        total_stock += qty
        total_cost_value += value
        total_sale_value += row.price * qty

        group = by_type[row.product_type or UNDEFINED_TYPE]
        group["count"] += 1
        group["stock"] += qty
        group["value"] += value

        names = row.option_names or []
        for i, option in enumerate(row.options):
            if not option:
                continue
            if classify_option(option, names[i] if i < len(names) else None) == "size":
                bucket = by_size[option.upper()]
            else:
                bucket = by_color[option]
            bucket["count"] += 1
            bucket["stock"] += qty

        title = row.product_title or UNKNOWN_PRODUCT
        product = by_product.setdefault(title, {"title": title, "stock": 0, "value": Decimal("0")})
        product["stock"] += qty
        product["value"] += value

    for group in by_type.values():
        group["value"] = _money(group["value"])

    top_colors = _sorted_by_stock(by_color, TOP_COLORS)
    if colors is not None:
        for name, bucket in top_colors.items():
            bucket["displayName"] = colors.transform(name)
            bucket["hex"] = colors.hex_for(name)

    top_products = sorted(by_product.values(), key=lambda p: p["stock"], reverse=True)[:TOP_PRODUCTS]

    return {
        "totalVariants": total_variants,
        "totalStock": total_stock,
        "totalStockValue": _money(total_cost_value),
        "totalSaleValue": _money(total_sale_value),
        "profit": _money(total_sale_value - total_cost_value),
        "byProductType": _sorted_by_stock(by_type),
        "byColor": top_colors,
        "bySize": _sorted_by_stock(by_size),
        "topProducts": [
            {"title": p["title"], "stock": p["stock"], "value": _money(p["value"])}
            for p in top_products
        ],
    }
