"""
SQLAlchemy models for shops, catalog, inventory, supplier orders, price rules and color rules.
All model and enum definitions live here for simplicity and to avoid circular imports.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, Numeric, Enum as SQLEnum, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ivy.database import Base
import enum
import uuid

# Enums
class SupplierOrderStatus(str, enum.Enum):
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    REQUESTED = "requested"
    PRODUCED = "produced"
    COMPLETED = "completed"

# Models
class Shop(Base):
    __tablename__ = "shops"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=True)
    shopify_url = Column("shopify_url", String, nullable=False, unique=True)
    shopify_token = Column("shopify_token", String, nullable=False)  # Encrypted
    shopify_location_id = Column("shopify_location_id", String, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())

    products = relationship("Product", back_populates="shop")
    metafield_configs = relationship("MetafieldConfig", back_populates="shop")

class Product(Base):
    __tablename__ = "products"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    shop_id = Column("shop_id", String, ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True)
    shopify_id = Column("shopify_id", String, nullable=False)
    title = Column(String, nullable=False)
    handle = Column(String, nullable=True)
    image_url = Column("image_url", String, nullable=True)
    status = Column(String, nullable=True)
    product_type = Column("product_type", String, nullable=True, index=True)
    option1_name = Column("option1_name", String, nullable=True)
    option2_name = Column("option2_name", String, nullable=True)
    option3_name = Column("option3_name", String, nullable=True)
    synced_at = Column("synced_at", DateTime, nullable=True)

    shop = relationship("Shop", back_populates="products")
    variants = relationship("ProductVariant", back_populates="product", cascade="all, delete-orphan")

    __table_args__ = (UniqueConstraint("shop_id", "shopify_id", name="products_shop_shopify_unique"),)

class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id = Column("product_id", String, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    shopify_id = Column("shopify_id", String, nullable=False)
    title = Column(String, nullable=True)
    sku = Column(String, nullable=True, index=True)
    option1 = Column(String, nullable=True)
    option2 = Column(String, nullable=True)
    option3 = Column(String, nullable=True)
    inventory_item_id = Column("inventory_item_id", String, nullable=True, index=True)
    cost = Column("cost", Numeric(12, 2), default=0, nullable=False)
    price = Column("price", Numeric(12, 2), default=0, nullable=False)
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    product = relationship("Product", back_populates="variants")
    inventory_levels = relationship("InventoryLevel", back_populates="variant", cascade="all, delete-orphan")

    __table_args__ = (UniqueConstraint("product_id", "shopify_id", name="product_variants_product_shopify_unique"),)

    @property
    def options(self) -> list:
        return [o for o in (self.option1, self.option2, self.option3) if o]

class InventoryLevel(Base):
    __tablename__ = "inventory_levels"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    variant_id = Column("variant_id", String, ForeignKey("product_variants.id", ondelete="CASCADE"), nullable=False)
    location_id = Column("location_id", String, nullable=False, index=True)
    # Shopify may report a transient negative level during a sync; stored as reported
    quantity = Column(Integer, default=0, nullable=False)
    synced_at = Column("synced_at", DateTime, nullable=True)

    variant = relationship("ProductVariant", back_populates="inventory_levels")

    __table_args__ = (UniqueConstraint("variant_id", "location_id", name="inventory_levels_variant_location_unique"),)

class MetafieldConfig(Base):
    __tablename__ = "metafield_config"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    shop_id = Column("shop_id", String, ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True)
    namespace = Column(String, nullable=False)
    key = Column(String, nullable=False)
    display_name = Column("display_name", String, nullable=True)
    is_active = Column("is_active", Boolean, default=True)

    shop = relationship("Shop", back_populates="metafield_configs")

class SupplierOrder(Base):
    __tablename__ = "supplier_orders"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    shop_id = Column("shop_id", String, ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(SQLEnum(SupplierOrderStatus, values_callable=lambda e: [m.value for m in e]), default=SupplierOrderStatus.DRAFT, nullable=False)
    subtotal = Column("subtotal", Numeric(12, 2), default=0, nullable=False)
    total_ht = Column("total_ht", Numeric(12, 2), default=0, nullable=False)
    total_ttc = Column("total_ttc", Numeric(12, 2), default=0, nullable=False)
    balance_adjustment = Column("balance_adjustment", Numeric(12, 2), default=0, nullable=False)
    note = Column(String, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    items = relationship("SupplierOrderItem", back_populates="order", cascade="all, delete-orphan", order_by="SupplierOrderItem.created_at")

class SupplierOrderItem(Base):
    __tablename__ = "supplier_order_items"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column("order_id", String, ForeignKey("supplier_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    variant_id = Column("variant_id", String, ForeignKey("product_variants.id", ondelete="SET NULL"), nullable=True)
    product_title = Column("product_title", String, nullable=True)
    variant_title = Column("variant_title", String, nullable=True)
    sku = Column(String, nullable=True)
    quantity = Column(Integer, default=1, nullable=False)
    unit_price = Column("unit_price", Numeric(12, 2), default=0, nullable=False)
    line_total = Column("line_total", Numeric(12, 2), default=0, nullable=False)
    metafields = Column(JSON, nullable=True)
    is_validated = Column("is_validated", Boolean, default=False, nullable=False)
    validated_at = Column("validated_at", DateTime, nullable=True)
    is_printed = Column("is_printed", Boolean, default=False, nullable=False)
    printed_at = Column("printed_at", DateTime, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    order = relationship("SupplierOrder", back_populates="items")
    variant = relationship("ProductVariant")

class PriceRule(Base):
    __tablename__ = "price_rules"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    shop_id = Column("shop_id", String, ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True)
    sku = Column(String, nullable=False)
    product_type = Column("product_type", String, nullable=True)
    base_price = Column("base_price", Numeric(12, 2), default=0, nullable=False)
    description = Column(String, nullable=True)
    is_active = Column("is_active", Boolean, default=True, nullable=False)
    last_applied_at = Column("last_applied_at", DateTime, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    modifiers = relationship("PriceRuleModifier", back_populates="rule", cascade="all, delete-orphan")
    option_modifiers = relationship("PriceRuleOptionModifier", back_populates="rule", cascade="all, delete-orphan")

class PriceRuleModifier(Base):
    __tablename__ = "price_rule_modifiers"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    price_rule_id = Column("price_rule_id", String, ForeignKey("price_rules.id", ondelete="CASCADE"), nullable=False, index=True)
    metafield_namespace = Column("metafield_namespace", String, nullable=False)
    metafield_key = Column("metafield_key", String, nullable=False)
    metafield_value = Column("metafield_value", String, nullable=False)
    modifier_amount = Column("modifier_amount", Numeric(12, 2), default=0, nullable=False)

    rule = relationship("PriceRule", back_populates="modifiers")

class PriceRuleOptionModifier(Base):
    __tablename__ = "price_rule_option_modifiers"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    price_rule_id = Column("price_rule_id", String, ForeignKey("price_rules.id", ondelete="CASCADE"), nullable=False, index=True)
    option_name = Column("option_name", String, nullable=False)
    option_value = Column("option_value", String, nullable=False)
    modifier_amount = Column("modifier_amount", Numeric(12, 2), default=0, nullable=False)

    rule = relationship("PriceRule", back_populates="option_modifiers")

class ColorRule(Base):
    __tablename__ = "color_rules"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    shop_id = Column("shop_id", String, ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True)
    reception_name = Column("reception_name", String, nullable=False)
    display_name = Column("display_name", String, nullable=True)
    hex_value = Column("hex_value", String, nullable=False, default="#808080")
    created_at = Column("created_at", DateTime, server_default=func.now())

    __table_args__ = (UniqueConstraint("shop_id", "reception_name", name="color_rules_shop_reception_unique"),)
