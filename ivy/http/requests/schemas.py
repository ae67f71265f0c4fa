"""
Pydantic schemas for request validation (Http/Requests).
Bodies accept both camelCase and the DB (snake_case) field names.
"""
from pydantic import BaseModel, AliasChoices, ConfigDict, Field, validator
from typing import Optional, List, Literal
from decimal import Decimal
from ivy.models import SupplierOrderStatus


def either(snake: str, camel: str) -> AliasChoices:
    return AliasChoices(snake, camel)


class RequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# Supplier order Schemas
class OrderCreateRequest(RequestModel):
    shop_id: str = Field(..., min_length=1, validation_alias=either("shop_id", "shopId"))
    note: Optional[str] = None


class OrderUpdateRequest(RequestModel):
    shop_id: str = Field(..., min_length=1, validation_alias=either("shop_id", "shopId"))
    order_id: str = Field(..., min_length=1, validation_alias=AliasChoices("order_id", "orderId", "id"))
    status: Optional[SupplierOrderStatus] = None
    note: Optional[str] = None
    balance_adjustment: Optional[Decimal] = Field(None, validation_alias=either("balance_adjustment", "balanceAdjustment"))


class AddItemEntry(RequestModel):
    variant_id: str = Field(..., min_length=1, validation_alias=either("variant_id", "variantId"))
    product_title: Optional[str] = Field(None, validation_alias=either("product_title", "productTitle"))
    variant_title: Optional[str] = Field(None, validation_alias=either("variant_title", "variantTitle"))
    sku: Optional[str] = None
    quantity: int = Field(1, ge=1)


class AddItemsRequest(RequestModel):
    shop_id: str = Field(..., min_length=1, validation_alias=either("shop_id", "shopId"))
    items: List[AddItemEntry] = Field(..., min_length=1)


class ItemUpdateRequest(RequestModel):
    """Either a single item change (itemId + fields) or a bulk action on the order."""
    shop_id: str = Field(..., min_length=1, validation_alias=either("shop_id", "shopId"))
    item_id: Optional[str] = Field(None, validation_alias=either("item_id", "itemId"))
    action: Optional[Literal["recalculate_prices", "refresh_metafields"]] = None
    is_validated: Optional[bool] = Field(None, validation_alias=either("is_validated", "isValidated"))
    is_printed: Optional[bool] = Field(None, validation_alias=either("is_printed", "isPrinted"))
    quantity: Optional[int] = Field(None, ge=0)
    unit_price: Optional[Decimal] = Field(None, validation_alias=either("unit_price", "unitPrice"))


# Price rule Schemas
class ModifierInput(RequestModel):
    namespace: str = Field(..., validation_alias=AliasChoices("namespace", "metafield_namespace"))
    key: str = Field(..., validation_alias=AliasChoices("key", "metafield_key"))
    value: str = Field(..., validation_alias=AliasChoices("value", "metafield_value"))
    amount: Decimal = Field(Decimal("0"), validation_alias=AliasChoices("amount", "modifier_amount"))


class OptionModifierInput(RequestModel):
    option_name: str = Field(..., validation_alias=either("option_name", "optionName"))
    option_value: str = Field(..., validation_alias=either("option_value", "optionValue"))
    amount: Decimal = Field(Decimal("0"), validation_alias=AliasChoices("amount", "modifier_amount"))


class PriceRuleCreateRequest(RequestModel):
    shop_id: str = Field(..., min_length=1, validation_alias=either("shop_id", "shopId"))
    sku: Optional[str] = None
    product_type: Optional[str] = Field(None, validation_alias=either("product_type", "productType"))
    base_price: Decimal = Field(..., validation_alias=either("base_price", "basePrice"))
    description: Optional[str] = None
    is_active: bool = Field(True, validation_alias=either("is_active", "isActive"))
    modifiers: List[ModifierInput] = []
    option_modifiers: List[OptionModifierInput] = Field([], validation_alias=either("option_modifiers", "optionModifiers"))


class PriceRuleUpdateRequest(RequestModel):
    id: str = Field(..., min_length=1)
    shop_id: Optional[str] = Field(None, validation_alias=either("shop_id", "shopId"))
    sku: Optional[str] = None
    product_type: Optional[str] = Field(None, validation_alias=either("product_type", "productType"))
    base_price: Optional[Decimal] = Field(None, validation_alias=either("base_price", "basePrice"))
    description: Optional[str] = None
    is_active: Optional[bool] = Field(None, validation_alias=either("is_active", "isActive"))
    modifiers: Optional[List[ModifierInput]] = None
    option_modifiers: Optional[List[OptionModifierInput]] = Field(None, validation_alias=either("option_modifiers", "optionModifiers"))


# Color rule Schemas
class ColorRuleCreateRequest(RequestModel):
    shop_id: str = Field(..., min_length=1, validation_alias=either("shop_id", "shopId"))
    reception_name: str = Field(..., min_length=1, validation_alias=either("reception_name", "receptionName"))
    display_name: Optional[str] = Field(None, validation_alias=either("display_name", "displayName"))
    hex_value: str = Field("#808080", validation_alias=either("hex_value", "hexValue"))

    @validator("hex_value")
    def validate_hex(cls, v):
        v = v.strip()
        if not v.startswith("#") or len(v) not in (4, 7):
            raise ValueError("Invalid hex color")
        return v.upper()


class ColorRuleUpdateRequest(RequestModel):
    id: str = Field(..., min_length=1)
    shop_id: Optional[str] = Field(None, validation_alias=either("shop_id", "shopId"))
    reception_name: Optional[str] = Field(None, validation_alias=either("reception_name", "receptionName"))
    display_name: Optional[str] = Field(None, validation_alias=either("display_name", "displayName"))
    hex_value: Optional[str] = Field(None, validation_alias=either("hex_value", "hexValue"))

    @validator("hex_value")
    def validate_hex(cls, v):
        if v is None:
            return v
        v = v.strip()
        if not v.startswith("#") or len(v) not in (4, 7):
            raise ValueError("Invalid hex color")
        return v.upper()


# Shop Schemas
class ShopCreateRequest(RequestModel):
    name: Optional[str] = None
    shopify_url: str = Field(..., min_length=1, validation_alias=either("shopify_url", "shopifyUrl"))
    shopify_token: str = Field(..., min_length=1, validation_alias=AliasChoices("shopify_token", "shopifyToken", "accessToken"))
    shopify_location_id: Optional[str] = Field(None, validation_alias=either("shopify_location_id", "shopifyLocationId"))


class ShopUpdateRequest(RequestModel):
    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    shopify_token: Optional[str] = Field(None, validation_alias=AliasChoices("shopify_token", "shopifyToken", "accessToken"))
    shopify_location_id: Optional[str] = Field(None, validation_alias=either("shopify_location_id", "shopifyLocationId"))


# Metafield config Schemas
class MetafieldConfigCreateRequest(RequestModel):
    shop_id: str = Field(..., min_length=1, validation_alias=either("shop_id", "shopId"))
    namespace: str = Field(..., min_length=1)
    key: str = Field(..., min_length=1)
    display_name: Optional[str] = Field(None, validation_alias=either("display_name", "displayName"))
    is_active: bool = Field(True, validation_alias=either("is_active", "isActive"))


class MetafieldConfigUpdateRequest(RequestModel):
    id: str = Field(..., min_length=1)
    shop_id: Optional[str] = Field(None, validation_alias=either("shop_id", "shopId"))
    namespace: Optional[str] = None
    key: Optional[str] = None
    display_name: Optional[str] = Field(None, validation_alias=either("display_name", "displayName"))
    is_active: Optional[bool] = Field(None, validation_alias=either("is_active", "isActive"))
