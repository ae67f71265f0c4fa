"""
Inventory routes: stock statistics and the streamed Shopify sync.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse

from ivy.database import get_db, get_session_factory
from ivy.models import Shop
from ivy.services.colors import ColorMappings
from ivy.services.inventory_stats import compute_inventory_stats, load_inventory_rows
from ivy.services.inventory_sync import sync_inventory
from ivy.services.progress import OperationAborted, ProgressReporter, stream_operation
from ivy.services.shopify_service import client_for_shop

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/stats", response_model=dict)
async def inventory_stats(
    shop_id: Optional[str] = Query(None, alias="shopId"),
    location_id: Optional[str] = Query(None, alias="locationId"),
    db: Session = Depends(get_db),
):
    """Stock units and values by product type, color and size. Optional ?locationId= filter."""
    if not shop_id:
        raise HTTPException(status_code=400, detail="shopId is required")
    rows = load_inventory_rows(db, shop_id, location_id)
    colors = ColorMappings.load(db, shop_id)
    return compute_inventory_stats(rows, colors)


@router.get("/sync-stream")
async def inventory_sync_stream(
    shop_id: Optional[str] = Query(None, alias="shopId"),
    product_type: Optional[str] = Query(None, alias="productType"),
    session_factory=Depends(get_session_factory),
):
    """Sync products, variants, costs and levels from Shopify; progress as Server-Sent Events."""
    if not shop_id:
        raise HTTPException(status_code=400, detail="shopId is required")

    async def run(reporter: ProgressReporter):
        # The stream outlives the request, so it owns its session
        db = session_factory()
        try:
            shop = db.query(Shop).filter(Shop.id == shop_id).first()
            if not shop:
                raise OperationAborted("❌ Boutique non trouvée")
            await sync_inventory(db, shop, client_for_shop(shop), reporter, product_type)
        finally:
            db.close()

    return EventSourceResponse(stream_operation(run, name="inventory-sync"), sep="\n")
