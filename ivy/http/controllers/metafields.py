"""
Metafield config routes: which Shopify variant metafields (namespace.key) are copied onto
supplier order items, and the label they are shown under.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from ivy.database import get_db
from ivy.models import MetafieldConfig, Shop
from ivy.http.requests.schemas import MetafieldConfigCreateRequest, MetafieldConfigUpdateRequest

logger = logging.getLogger(__name__)
router = APIRouter()


def _to_response(row: MetafieldConfig) -> dict:
    return {
        "id": row.id,
        "shop_id": row.shop_id,
        "namespace": row.namespace,
        "key": row.key,
        "display_name": row.display_name,
        "is_active": bool(row.is_active),
    }


def _find(db: Session, shop_id: str, namespace: str, key: str) -> Optional[MetafieldConfig]:
    """namespace.key is unique per shop, ignoring case (as when filtering Shopify metafields)"""
    return db.query(MetafieldConfig).filter(
        MetafieldConfig.shop_id == shop_id,
        func.lower(MetafieldConfig.namespace) == namespace.strip().lower(),
        func.lower(MetafieldConfig.key) == key.strip().lower(),
    ).first()


def _load(db: Session, config_id: str, shop_id: Optional[str]) -> MetafieldConfig:
    query = db.query(MetafieldConfig).filter(MetafieldConfig.id == config_id)
    if shop_id:
        query = query.filter(MetafieldConfig.shop_id == shop_id)
    config = query.first()
    if not config:
        raise HTTPException(status_code=404, detail="Metafield config not found")
    return config


@router.get("", response_model=dict)
async def list_metafield_configs(
    shop_id: Optional[str] = Query(None, alias="shopId"),
    db: Session = Depends(get_db),
):
    if not shop_id:
        raise HTTPException(status_code=400, detail="shopId is required")
    rows = (
        db.query(MetafieldConfig)
        .filter(MetafieldConfig.shop_id == shop_id)
        .order_by(MetafieldConfig.namespace, MetafieldConfig.key)
        .all()
    )
    return {"metafields": [_to_response(r) for r in rows]}


@router.post("", response_model=dict)
async def create_metafield_config(
    request: MetafieldConfigCreateRequest,
    db: Session = Depends(get_db),
):
    """Create, or update the config already registered for the same namespace.key"""
    if not db.query(Shop).filter(Shop.id == request.shop_id).first():
        raise HTTPException(status_code=404, detail="Shop not found")
    config = _find(db, request.shop_id, request.namespace, request.key)
    if config is None:
        config = MetafieldConfig(
            shop_id=request.shop_id,
            namespace=request.namespace.strip(),
            key=request.key.strip(),
        )
        db.add(config)
    config.display_name = request.display_name or None
    config.is_active = request.is_active
    db.commit()
    db.refresh(config)
    logger.info("Metafield %s.%s configured for shop %s", config.namespace, config.key, config.shop_id)
    return {"metafield": _to_response(config)}


@router.put("", response_model=dict)
async def update_metafield_config(
    request: MetafieldConfigUpdateRequest,
    db: Session = Depends(get_db),
):
    config = _load(db, request.id, request.shop_id)

    namespace = request.namespace.strip() if request.namespace is not None else config.namespace
    key = request.key.strip() if request.key is not None else config.key
    if not namespace or not key:
        raise HTTPException(status_code=400, detail="namespace and key cannot be empty")
    other = _find(db, config.shop_id, namespace, key)
    if other is not None and other.id != config.id:
        raise HTTPException(status_code=400, detail="This metafield is already configured")
    config.namespace = namespace
    config.key = key
    if request.display_name is not None:
        config.display_name = request.display_name or None
    if request.is_active is not None:
        config.is_active = request.is_active
    db.commit()
    db.refresh(config)
    return {"metafield": _to_response(config)}


@router.delete("", response_model=dict)
async def delete_metafield_config(
    config_id: Optional[str] = Query(None, alias="id"),
    shop_id: Optional[str] = Query(None, alias="shopId"),
    db: Session = Depends(get_db),
):
    if not config_id:
        raise HTTPException(status_code=400, detail="id is required")
    config = _load(db, config_id, shop_id)
    db.delete(config)
    db.commit()
    return {"success": True}
