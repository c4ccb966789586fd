"""
Admin API Endpoints - order listings, batch actions and customer management
"""
from typing import Optional
from datetime import datetime
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from sdibridge.core.database import get_db
from sdibridge.core.exceptions import BridgeError
from sdibridge.integrations import CustomerDirectory
from sdibridge.models import OrderSnapshot, BillingProfile, Customer
from sdibridge.schemas.billing import (
    BillingProfileData, MarkBusinessRequest, SyncCustomersRequest, OrderBatchAction,
)
from sdibridge.services import OrderService, customer_service
from .deps import get_directory, http_error

logger = logging.getLogger(__name__)

admin_router = APIRouter(prefix="/admin", tags=["admin"])


def order_to_dict(order: OrderSnapshot) -> dict:
    customer = order.customer
    return {
        "id": str(order.id),
        "external_order_id": order.external_order_id,
        "order_number": order.order_number,
        "customer_id": customer.external_customer_id if customer else None,
        "customer_name": customer.display_name if customer else None,
        "currency": order.currency,
        "total_price": float(order.total_price or 0),
        "billing_country": order.billing_country,
        "has_vat_profile": order.has_vat_profile,
        "invoice_status": order.invoice_status,
        "invoice_id": order.invoice_id,
        "invoice_date": order.invoice_date.isoformat() if order.invoice_date else None,
        "last_error": order.last_error,
        "created_at": order.external_created_at.isoformat() if order.external_created_at else None,
    }


def profile_to_dict(profile: Optional[BillingProfile]) -> Optional[dict]:
    if profile is None:
        return None
    return {
        "is_business": profile.is_business,
        "is_qualified": profile.is_qualified,
        "company_name": profile.company_name,
        "vat_number": profile.vat_number,
        "tax_code": profile.tax_code,
        "sdi_code": profile.sdi_code,
        "pec": profile.pec,
        "address_line1": profile.address_line1,
        "address_line2": profile.address_line2,
        "city": profile.city,
        "province": profile.province,
        "postal_code": profile.postal_code,
        "country_code": profile.country_code,
    }


def customer_to_dict(customer: Customer) -> dict:
    return {
        "id": customer.external_customer_id,
        "email": customer.email,
        "first_name": customer.first_name,
        "last_name": customer.last_name,
        "country_code": customer.country_code,
        "billing_profile": profile_to_dict(customer.billing_profile),
    }


# ===================== ORDERS =====================

@admin_router.get("/orders")
def list_orders(
    status: Optional[str] = Query(None),
    has_vat_profile: Optional[bool] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
):
    orders, total = OrderService.get_orders(db, status, has_vat_profile, date_from, date_to, page, per_page)
    return {
        "orders": [order_to_dict(o) for o in orders],
        "total": total,
        "page": page,
        "per_page": per_page,
        "stats": OrderService.get_status_counts(db),
    }


@admin_router.get("/orders/stats")
def order_stats(db: Session = Depends(get_db)):
    return OrderService.get_dashboard_stats(db)


@admin_router.post("/orders/batch")
async def batch_action(request: OrderBatchAction, db: Session = Depends(get_db)):
    if not request.order_ids:
        raise HTTPException(status_code=422, detail="order_ids must not be empty")

    if request.action == "retry_invoices":
        results = await run_in_threadpool(OrderService.retry_invoices, db, request.order_ids)
        return {
            "success": True,
            "queued_count": sum(1 for r in results if r["success"]),
            "results": results,
        }
    if request.action == "reset_errors":
        updated = await run_in_threadpool(OrderService.reset_errors, db, request.order_ids)
        return {"success": True, "updated_count": updated}

    raise HTTPException(status_code=400, detail=f"Unknown action: {request.action}")


# ===================== CUSTOMERS =====================

@admin_router.post("/customers/mark-business")
async def mark_business(request: MarkBusinessRequest, db: Session = Depends(get_db)):
    try:
        profile = await run_in_threadpool(customer_service.mark_business, db, request)
    except BridgeError as e:
        raise http_error(e)
    return {"success": True, "customer_id": request.external_customer_id, "billing_profile": profile_to_dict(profile)}


@admin_router.post("/customers/sync")
async def sync_customers(
    request: SyncCustomersRequest,
    db: Session = Depends(get_db),
    directory: Optional[CustomerDirectory] = Depends(get_directory),
):
    if directory is None:
        raise HTTPException(status_code=400, detail="Customer directory is not configured")
    try:
        result = await customer_service.sync_customers(db, directory, request.limit, request.since_id)
    except Exception as e:
        logger.error(f"Customer sync failed: {e}")
        raise HTTPException(status_code=502, detail=f"Customer directory error: {e}")
    return {"success": True, **result}


@admin_router.get("/customers/sync")
def sync_status(db: Session = Depends(get_db)):
    return customer_service.get_sync_status(db)


@admin_router.get("/customers")
def list_customers(
    search: Optional[str] = Query(None),
    is_business: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    customers, total = customer_service.get_customers(db, search, is_business, page, per_page)
    return {
        "customers": [customer_to_dict(c) for c in customers],
        "total": total,
        "page": page,
        "per_page": per_page,
    }


@admin_router.get("/customers/{external_customer_id}")
def get_customer(external_customer_id: str, db: Session = Depends(get_db)):
    customer = customer_service.get_customer(db, external_customer_id)
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")

    data = customer_to_dict(customer)
    data["orders"] = [order_to_dict(o) for o in customer.orders]
    return data


@admin_router.put("/customers/{external_customer_id}/profile")
async def update_profile(
    external_customer_id: str,
    data: BillingProfileData,
    db: Session = Depends(get_db),
):
    """Customer portal self-service update"""
    try:
        profile = await run_in_threadpool(customer_service.update_own_profile, db, external_customer_id, data)
    except BridgeError as e:
        raise http_error(e)
    return {"success": True, "billing_profile": profile_to_dict(profile)}
