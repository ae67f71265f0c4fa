"""
Central API route registration. All HTTP controllers are mounted here under settings.API_PREFIX.
"""
import logging
from fastapi import FastAPI

from ivy.http.controllers import (
    inventory,
    supplier_orders,
    price_rules,
    color_rules,
    metafields,
    shops,
)

logger = logging.getLogger(__name__)


def register_routes(app: FastAPI, settings) -> None:
    """Register all API routers. Call from main.py after creating the FastAPI app."""
    prefix = settings.API_PREFIX
    app.include_router(inventory.router, prefix=f"{prefix}/inventory", tags=["inventory"])
    app.include_router(supplier_orders.router, prefix=f"{prefix}/suppliers/orders", tags=["supplier-orders"])
    app.include_router(price_rules.router, prefix=f"{prefix}/settings/price-rules", tags=["price-rules"])
    app.include_router(color_rules.router, prefix=f"{prefix}/settings/colors", tags=["colors"])
    app.include_router(metafields.router, prefix=f"{prefix}/settings/metafields", tags=["metafields"])
    app.include_router(shops.router, prefix=f"{prefix}/shops", tags=["shops"])
    logger.info("API routes registered under %s", prefix)
