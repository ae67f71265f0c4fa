"""
Color rule routes: reception name (supplier wording) -> display name + hex.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ivy.database import get_db
from ivy.models import ColorRule, Shop
from ivy.http.requests.schemas import ColorRuleCreateRequest, ColorRuleUpdateRequest
from ivy.services.colors import normalize_color_name

logger = logging.getLogger(__name__)
router = APIRouter()


def _to_response(row: ColorRule) -> dict:
    return {
        "id": row.id,
        "shop_id": row.shop_id,
        "reception_name": row.reception_name,
        "display_name": row.display_name,
        "hex_value": row.hex_value,
    }


def _find_by_reception(db: Session, shop_id: str, reception_name: str) -> Optional[ColorRule]:
    """Reception names are unique per shop ignoring case and accents."""
    wanted = normalize_color_name(reception_name.strip())
    for rule in db.query(ColorRule).filter(ColorRule.shop_id == shop_id).all():
        if normalize_color_name(rule.reception_name) == wanted:
            return rule
    return None


@router.get("", response_model=dict)
async def list_color_rules(
    shop_id: Optional[str] = Query(None, alias="shopId"),
    db: Session = Depends(get_db),
):
    if not shop_id:
        raise HTTPException(status_code=400, detail="shopId is required")
    rows = db.query(ColorRule).filter(ColorRule.shop_id == shop_id).order_by(ColorRule.reception_name).all()
    return {"colors": [_to_response(r) for r in rows]}


@router.post("", response_model=dict)
async def create_color_rule(
    request: ColorRuleCreateRequest,
    db: Session = Depends(get_db),
):
    """Create, or update the rule already registered under the same reception name"""
    if not db.query(Shop).filter(Shop.id == request.shop_id).first():
        raise HTTPException(status_code=404, detail="Shop not found")
    rule = _find_by_reception(db, request.shop_id, request.reception_name)
    if rule is None:
        rule = ColorRule(shop_id=request.shop_id, reception_name=request.reception_name.strip())
        db.add(rule)
    rule.display_name = request.display_name or None
    rule.hex_value = request.hex_value
    db.commit()
    db.refresh(rule)
    logger.info("Color rule %s saved for shop %s", rule.reception_name, rule.shop_id)
    return {"color": _to_response(rule)}


@router.put("", response_model=dict)
async def update_color_rule(
    request: ColorRuleUpdateRequest,
    db: Session = Depends(get_db),
):
    query = db.query(ColorRule).filter(ColorRule.id == request.id)
    if request.shop_id:
        query = query.filter(ColorRule.shop_id == request.shop_id)
    rule = query.first()
    if not rule:
        raise HTTPException(status_code=404, detail="Color rule not found")

    if request.reception_name is not None:
        other = _find_by_reception(db, rule.shop_id, request.reception_name)
        if other is not None and other.id != rule.id:
            raise HTTPException(status_code=400, detail="A color rule with this reception name already exists")
        rule.reception_name = request.reception_name.strip()
    if request.display_name is not None:
        rule.display_name = request.display_name or None
    if request.hex_value is not None:
        rule.hex_value = request.hex_value
    db.commit()
    db.refresh(rule)
    return {"color": _to_response(rule)}


@router.delete("", response_model=dict)
async def delete_color_rule(
    rule_id: Optional[str] = Query(None, alias="id"),
    shop_id: Optional[str] = Query(None, alias="shopId"),
    db: Session = Depends(get_db),
):
    if not rule_id:
        raise HTTPException(status_code=400, detail="id is required")
    query = db.query(ColorRule).filter(ColorRule.id == rule_id)
    if shop_id:
        query = query.filter(ColorRule.shop_id == shop_id)
    rule = query.first()
    if not rule:
        raise HTTPException(status_code=404, detail="Color rule not found")
    db.delete(rule)
    db.commit()
    return {"success": True}
