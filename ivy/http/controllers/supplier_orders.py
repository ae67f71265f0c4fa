"""
Supplier order routes: orders, their per-unit items, and bulk item actions.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ivy.database import get_db
from ivy.models import Shop, SupplierOrder, SupplierOrderItem
from ivy.http.requests.schemas import (
    AddItemsRequest,
    ItemUpdateRequest,
    OrderCreateRequest,
    OrderUpdateRequest,
)
from ivy.services import supplier_orders as orders_service
from ivy.services.supplier_orders import InvalidStatusTransition, ItemNotFound, NewItem, OrderNotFound

logger = logging.getLogger(__name__)
router = APIRouter()


def _money(value) -> float:
    return float(value or 0)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _order_response(order: SupplierOrder) -> dict:
    return {
        "id": order.id,
        "shop_id": order.shop_id,
        "status": order.status.value if hasattr(order.status, "value") else order.status,
        "subtotal": _money(order.subtotal),
        "total_ht": _money(order.total_ht),
        "total_ttc": _money(order.total_ttc),
        "balance_adjustment": _money(order.balance_adjustment),
        "note": order.note,
        "created_at": _iso(order.created_at),
        "updated_at": _iso(order.updated_at),
    }


def _item_response(item: SupplierOrderItem) -> dict:
    return {
        "id": item.id,
        "order_id": item.order_id,
        "variant_id": item.variant_id,
        "product_title": item.product_title,
        "variant_title": item.variant_title,
        "sku": item.sku,
        "quantity": item.quantity,
        "unit_price": _money(item.unit_price),
        "line_total": _money(item.line_total),
        "metafields": item.metafields or {},
        "is_validated": bool(item.is_validated),
        "validated_at": _iso(item.validated_at),
        "is_printed": bool(item.is_printed),
        "printed_at": _iso(item.printed_at),
        "created_at": _iso(item.created_at),
    }


def _load_order(db: Session, shop_id: Optional[str], order_id: str) -> SupplierOrder:
    if not shop_id or not order_id:
        raise HTTPException(status_code=400, detail="Missing required fields")
    try:
        return orders_service.get_order(db, shop_id, order_id)
    except OrderNotFound:
        raise HTTPException(status_code=404, detail="Order not found")


def _items(db: Session, order: SupplierOrder) -> list:
    rows = (
        db.query(SupplierOrderItem)
        .filter(SupplierOrderItem.order_id == order.id)
        .order_by(SupplierOrderItem.created_at)
        .all()
    )
    return [_item_response(i) for i in rows]


@router.get("", response_model=dict)
async def list_supplier_orders(
    shop_id: Optional[str] = Query(None, alias="shopId"),
    db: Session = Depends(get_db),
):
    """List supplier orders of a shop, newest first"""
    if not shop_id:
        raise HTTPException(status_code=400, detail="shopId is required")
    return {"orders": [_order_response(o) for o in orders_service.list_orders(db, shop_id)]}


@router.post("", response_model=dict)
async def create_supplier_order(
    request: OrderCreateRequest,
    db: Session = Depends(get_db),
):
    """Create an empty draft order"""
    if not db.query(Shop).filter(Shop.id == request.shop_id).first():
        raise HTTPException(status_code=404, detail="Shop not found")
    order = orders_service.create_order(db, request.shop_id, request.note)
    return {"order": _order_response(order)}


@router.put("", response_model=dict)
async def update_supplier_order(
    request: OrderUpdateRequest,
    db: Session = Depends(get_db),
):
    """Update note, balance adjustment or status; totals are recomputed"""
    order = _load_order(db, request.shop_id, request.order_id)
    try:
        order = orders_service.update_order(
            db,
            order,
            note=request.note,
            balance_adjustment=request.balance_adjustment,
            status=request.status,
        )
    except InvalidStatusTransition as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    return {"order": _order_response(order)}


@router.get("/{order_id}", response_model=dict)
async def get_supplier_order(
    order_id: str,
    shop_id: Optional[str] = Query(None, alias="shopId"),
    db: Session = Depends(get_db),
):
    """Order with its items"""
    order = _load_order(db, shop_id, order_id)
    return {"order": _order_response(order), "items": _items(db, order)}


@router.get("/{order_id}/items", response_model=dict)
async def list_order_items(
    order_id: str,
    shop_id: Optional[str] = Query(None, alias="shopId"),
    db: Session = Depends(get_db),
):
    order = _load_order(db, shop_id, order_id)
    return {"items": _items(db, order)}


@router.post("/{order_id}/items", response_model=dict)
async def add_order_items(
    order_id: str,
    request: AddItemsRequest,
    db: Session = Depends(get_db),
):
    """Add variants to the order: one row per unit, priced at the variant's current cost"""
    order = _load_order(db, request.shop_id, order_id)
    entries = [
        NewItem(
            variant_id=i.variant_id,
            product_title=i.product_title,
            variant_title=i.variant_title,
            sku=i.sku,
            quantity=i.quantity,
        )
        for i in request.items
    ]
    inserted = await orders_service.add_items(db, order, entries)
    return {"items": [_item_response(i) for i in inserted]}


@router.put("/{order_id}/items", response_model=dict)
async def update_order_items(
    order_id: str,
    request: ItemUpdateRequest,
    db: Session = Depends(get_db),
):
    """
    With action=recalculate_prices or action=refresh_metafields: bulk action on every item.
    Otherwise: update one item (itemId) - validation, printing, quantity or unit price.
    """
    order = _load_order(db, request.shop_id, order_id)

    if request.action == "recalculate_prices":
        count = orders_service.recalculate_prices(db, order)
        if not count:
            return {"message": "No items to update", "updatedCount": 0}
        return {"message": f"{count} articles mis à jour", "updatedCount": count}

    if request.action == "refresh_metafields":
        return await orders_service.refresh_metafields(db, order)

    if not request.item_id:
        raise HTTPException(status_code=400, detail="Missing required fields")
    try:
        item = orders_service.update_item(
            db,
            order,
            request.item_id,
            is_validated=request.is_validated,
            is_printed=request.is_printed,
            quantity=request.quantity,
            unit_price=request.unit_price,
        )
    except ItemNotFound:
        raise HTTPException(status_code=404, detail="Item not found")
    return {"item": _item_response(item)}


@router.delete("/{order_id}/items", response_model=dict)
async def delete_order_item(
    order_id: str,
    item_id: Optional[str] = Query(None, alias="itemId"),
    shop_id: Optional[str] = Query(None, alias="shopId"),
    db: Session = Depends(get_db),
):
    if not item_id:
        raise HTTPException(status_code=400, detail="Missing required fields")
    order = _load_order(db, shop_id, order_id)
    try:
        orders_service.delete_item(db, order, item_id)
    except ItemNotFound:
        raise HTTPException(status_code=404, detail="Item not found")
    return {"success": True}
