"""
API Router - JSON Endpoints
"""
from fastapi import APIRouter

from sdibridge.models import utcnow

# Import sub-routers
from .webhooks import webhook_router
from .invoices import invoices_router
from .credit_notes import credit_notes_router
from .cron import cron_router
from .admin import admin_router

api_router = APIRouter(tags=["API"])

# Include sub-routers
api_router.include_router(webhook_router)
api_router.include_router(invoices_router)
api_router.include_router(credit_notes_router)
api_router.include_router(cron_router)
api_router.include_router(admin_router)


@api_router.get("/status")
async def api_status():
    return {"status": "ok", "version": "1.0.0", "timestamp": utcnow().isoformat()}
