"""
Price rule routes: CRUD and streamed application (to Shopify costs or to local orders).
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse

from ivy.database import get_db, get_session_factory
from ivy.models import PriceRule, Shop
from ivy.http.requests.schemas import PriceRuleCreateRequest, PriceRuleUpdateRequest
from ivy.services import price_rules as rules_service
from ivy.services.price_rules import APPLY_TARGETS, RuleNotFound
from ivy.services.progress import OperationAborted, ProgressReporter, stream_operation
from ivy.services.shopify_service import client_for_shop

logger = logging.getLogger(__name__)
router = APIRouter()


def _modifiers(request) -> Optional[list]:
    if request.modifiers is None:
        return None
    return [m.model_dump() for m in request.modifiers]


def _option_modifiers(request) -> Optional[list]:
    if request.option_modifiers is None:
        return None
    return [m.model_dump() for m in request.option_modifiers]


@router.get("", response_model=dict)
async def list_price_rules(
    shop_id: Optional[str] = Query(None, alias="shopId"),
    db: Session = Depends(get_db),
):
    if not shop_id:
        raise HTTPException(status_code=400, detail="shopId is required")
    return {"rules": [rules_service.rule_to_response(r) for r in rules_service.list_rules(db, shop_id)]}


@router.post("", response_model=dict)
async def create_price_rule(
    request: PriceRuleCreateRequest,
    db: Session = Depends(get_db),
):
    """The product type doubles as the rule identifier (sku)"""
    sku = request.sku or request.product_type
    if not sku:
        raise HTTPException(status_code=400, detail="sku or productType is required")
    if not db.query(Shop).filter(Shop.id == request.shop_id).first():
        raise HTTPException(status_code=404, detail="Shop not found")
    rule = rules_service.create_rule(
        db,
        request.shop_id,
        sku=sku,
        base_price=request.base_price,
        product_type=request.product_type,
        description=request.description,
        is_active=request.is_active,
        modifiers=_modifiers(request),
        option_modifiers=_option_modifiers(request),
    )
    return {"rule": rules_service.rule_to_response(rule)}


@router.put("", response_model=dict)
async def update_price_rule(
    request: PriceRuleUpdateRequest,
    db: Session = Depends(get_db),
):
    try:
        rule = rules_service.get_rule(db, request.shop_id, request.id)
    except RuleNotFound:
        raise HTTPException(status_code=404, detail="Price rule not found")
    rule = rules_service.update_rule(
        db,
        rule,
        sku=request.sku,
        product_type=request.product_type,
        base_price=request.base_price,
        description=request.description,
        is_active=request.is_active,
        modifiers=_modifiers(request),
        option_modifiers=_option_modifiers(request),
    )
    return {"rule": rules_service.rule_to_response(rule)}


@router.delete("", response_model=dict)
async def delete_price_rule(
    rule_id: Optional[str] = Query(None, alias="id"),
    shop_id: Optional[str] = Query(None, alias="shopId"),
    db: Session = Depends(get_db),
):
    if not rule_id:
        raise HTTPException(status_code=400, detail="id is required")
    try:
        rule = rules_service.get_rule(db, shop_id, rule_id)
    except RuleNotFound:
        raise HTTPException(status_code=404, detail="Price rule not found")
    rules_service.delete_rule(db, rule)
    return {"success": True}


def _load_shop_and_rule(db: Session, shop_id: str, rule_id: str) -> tuple[Shop, PriceRule]:
    shop = db.query(Shop).filter(Shop.id == shop_id).first()
    if not shop:
        raise OperationAborted("❌ Boutique non trouvée")
    try:
        rule = rules_service.get_rule(db, shop_id, rule_id)
    except RuleNotFound:
        raise OperationAborted("❌ Règle non trouvée")
    return shop, rule


@router.get("/apply-stream")
async def apply_price_rule_stream(
    shop_id: Optional[str] = Query(None, alias="shopId"),
    rule_id: Optional[str] = Query(None, alias="ruleId"),
    session_factory=Depends(get_session_factory),
):
    """Push a rule's computed prices to Shopify as inventory item costs (SSE progress)"""
    if not shop_id or not rule_id:
        raise HTTPException(status_code=400, detail="shopId and ruleId are required")

    async def run(reporter: ProgressReporter):
        db = session_factory()
        try:
            shop, rule = _load_shop_and_rule(db, shop_id, rule_id)
            await rules_service.apply_rule_to_shopify(db, rule, client_for_shop(shop), reporter)
        finally:
            db.close()

    return EventSourceResponse(stream_operation(run, name="price-rule-apply"), sep="\n")


@router.get("/apply-local-stream")
async def apply_price_rule_local_stream(
    shop_id: Optional[str] = Query(None, alias="shopId"),
    rule_id: Optional[str] = Query(None, alias="ruleId"),
    session_factory=Depends(get_session_factory),
):
    """Re-price the items of open supplier orders with a rule (SSE progress)"""
    if not shop_id or not rule_id:
        raise HTTPException(status_code=400, detail="shopId and ruleId are required")

    async def run(reporter: ProgressReporter):
        db = session_factory()
        try:
            _, rule = _load_shop_and_rule(db, shop_id, rule_id)
            rules_service.apply_rule_local(db, rule, reporter)
        finally:
            db.close()

    return EventSourceResponse(stream_operation(run, name="price-rule-apply-local"), sep="\n")


@router.get("/apply-all-stream")
async def apply_all_price_rules_stream(
    shop_id: Optional[str] = Query(None, alias="shopId"),
    target: Optional[str] = Query(None),
    session_factory=Depends(get_session_factory),
):
    """Apply every active rule to Shopify or to local orders (?target=shopify|local)"""
    if not shop_id:
        raise HTTPException(status_code=400, detail="shopId is required")
    if target not in APPLY_TARGETS:
        raise HTTPException(status_code=400, detail="target must be shopify or local")

    async def run(reporter: ProgressReporter):
        db = session_factory()
        try:
            shop = db.query(Shop).filter(Shop.id == shop_id).first()
            if not shop:
                raise OperationAborted("❌ Boutique non trouvée")
            await rules_service.apply_all_rules(db, shop, target, reporter)
        finally:
            db.close()

    return EventSourceResponse(stream_operation(run, name=f"price-rules-apply-{target}"), sep="\n")
