"""
Webhook API Endpoints - Receive notifications from Shopify
"""
from typing import Optional
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from sdibridge.core.database import get_db
from sdibridge.core.exceptions import BridgeError
from sdibridge.integrations import CustomerDirectory
from sdibridge.schemas.webhook import ShopifyCustomerWebhook, ShopifyOrderWebhook, ShopifyOrderUpdatedWebhook
from sdibridge.services import OrderService, customer_service
from .deps import get_directory, http_error

logger = logging.getLogger(__name__)

webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@webhook_router.post("/customers/update")
async def customer_updated(
    payload: ShopifyCustomerWebhook,
    db: Session = Depends(get_db),
    directory: Optional[CustomerDirectory] = Depends(get_directory),
):
    """customers/create and customers/update"""
    try:
        return await customer_service.upsert_customer_from_webhook(db, payload, directory)
    except BridgeError as e:
        logger.warning(f"Customer webhook {payload.id} rejected: {e}")
        raise http_error(e)


@webhook_router.post("/orders/create")
async def order_created(payload: ShopifyOrderWebhook, db: Session = Depends(get_db)):
    try:
        return await run_in_threadpool(OrderService.handle_order_created, db, payload)
    except BridgeError as e:
        logger.warning(f"Order webhook {payload.id} rejected: {e}")
        raise http_error(e)


@webhook_router.post("/orders/updated")
async def order_updated(payload: ShopifyOrderUpdatedWebhook, db: Session = Depends(get_db)):
    """Cancellations only; any other update is acknowledged and ignored"""
    try:
        return await run_in_threadpool(OrderService.handle_order_updated, db, payload)
    except BridgeError as e:
        logger.warning(f"Order update webhook {payload.id} rejected: {e}")
        raise http_error(e)
