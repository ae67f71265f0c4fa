"""
Shop routes: register a Shopify store and its Admin API token (stored encrypted).
The token is never returned.
"""
import logging
import re
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ivy.database import get_db
from ivy.models import Shop
from ivy.http.requests.schemas import ShopCreateRequest, ShopUpdateRequest
from ivy.services.credentials import encrypt_token

logger = logging.getLogger(__name__)
router = APIRouter()


def normalize_shop_domain(shopify_url: str) -> str:
    """ma-boutique, https://ma-boutique.myshopify.com/ -> ma-boutique.myshopify.com"""
    domain = re.sub(r'^https?://', '', shopify_url.strip(), flags=re.IGNORECASE)
    domain = domain.split("/")[0].lower()
    if "." not in domain:
        domain = f"{domain}.myshopify.com"
    return domain


def _to_response(shop: Shop) -> dict:
    return {
        "id": shop.id,
        "name": shop.name,
        "shopify_url": shop.shopify_url,
        "shopify_location_id": shop.shopify_location_id,
        "created_at": shop.created_at.isoformat() if shop.created_at else None,
    }


@router.get("", response_model=dict)
async def list_shops(db: Session = Depends(get_db)):
    shops = db.query(Shop).order_by(Shop.created_at).all()
    return {"shops": [_to_response(s) for s in shops]}


@router.post("", response_model=dict)
async def create_shop(
    request: ShopCreateRequest,
    db: Session = Depends(get_db),
):
    domain = normalize_shop_domain(request.shopify_url)
    if not domain or domain == ".myshopify.com":
        raise HTTPException(status_code=400, detail="Invalid shopify_url")
    if db.query(Shop).filter(Shop.shopify_url == domain).first():
        raise HTTPException(status_code=400, detail="Shop already registered")

    shop = Shop(
        name=request.name or domain.split(".")[0],
        shopify_url=domain,
        shopify_token=encrypt_token(request.shopify_token.strip()),
        shopify_location_id=request.shopify_location_id or None,
    )
    db.add(shop)
    db.commit()
    db.refresh(shop)
    logger.info("Shop %s registered (%s)", shop.id, domain)
    return {"shop": _to_response(shop)}


@router.put("", response_model=dict)
async def update_shop(
    request: ShopUpdateRequest,
    db: Session = Depends(get_db),
):
    """Rename, change the default location or rotate the access token"""
    shop = db.query(Shop).filter(Shop.id == request.id).first()
    if not shop:
        raise HTTPException(status_code=404, detail="Shop not found")
    if request.name is not None:
        shop.name = request.name
    if request.shopify_location_id is not None:
        shop.shopify_location_id = request.shopify_location_id or None
    if request.shopify_token:
        shop.shopify_token = encrypt_token(request.shopify_token.strip())
        logger.info("Shop %s: access token replaced", shop.id)
    db.commit()
    db.refresh(shop)
    return {"shop": _to_response(shop)}
