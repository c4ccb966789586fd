"""
Order Service - order intake, cancellation compensation and operator listings
"""
from sqlalchemy.orm import Session
from sqlalchemy import func
from typing import List, Optional, Tuple, Dict, Any
from datetime import datetime
from decimal import Decimal
import logging

from sdibridge.core.config import settings
from sdibridge.core.exceptions import PreconditionFailed
from sdibridge.models import OrderSnapshot, CreditNote, CreditNoteStatus, InvoiceJob, JobStatus
from sdibridge.schemas.webhook import ShopifyOrderWebhook, ShopifyOrderUpdatedWebhook
from .classifier import classify_order
from .customer_service import get_customer, upsert_customer, customer_country
from .invoice_service import open_credit_note
from .invoice_state import InvoiceStatus, InvoiceEvent, apply_transition, apply_transition_if_current, current_status
from .job_queue import InvoiceJobQueue

logger = logging.getLogger(__name__)

MAX_CANCEL_ATTEMPTS = 3


class OrderService:
    """Order lifecycle business logic"""

    @staticmethod
    def get_order_by_external_id(db: Session, external_id: str) -> Optional[OrderSnapshot]:
        return db.query(OrderSnapshot).filter(OrderSnapshot.external_order_id == external_id).first()

    # ========== Webhooks ==========

    @staticmethod
    def handle_order_created(
        db: Session,
        event: ShopifyOrderWebhook,
        queue: Optional[InvoiceJobQueue] = None,
    ) -> Dict[str, Any]:
        """
        orders/create: snapshot the order and classify it.
        A redelivered event leaves the existing snapshot untouched.
        """
        existing = OrderService.get_order_by_external_id(db, event.id)
        if existing:
            logger.info(f"Order {event.id} already received, skipping")
            return {
                "order_id": event.id,
                "created": False,
                "invoice_status": existing.invoice_status,
            }

        customer = get_customer(db, event.customer.id)
        if customer is None:
            customer = upsert_customer(
                db,
                event.customer.id,
                email=event.customer.email,
                first_name=event.customer.first_name,
                last_name=event.customer.last_name,
                country_code=event.billing_address.country_code if event.billing_address else None,
            )

        billing_country = None
        if event.billing_address and event.billing_address.country_code:
            billing_country = event.billing_address.country_code
        else:
            billing_country = customer_country(customer)

        disposition = classify_order(billing_country, customer.billing_profile, settings.HOME_COUNTRY)

        order = OrderSnapshot(
            external_order_id=event.id,
            order_number=event.order_number,
            currency=event.currency,
            total_price=event.total_price,
            external_created_at=event.created_at,
            billing_country=billing_country,
            customer=customer,
            has_vat_profile=disposition.has_vat_profile,
            invoice_status=disposition.invoice_status.value,
        )
        db.add(order)
        db.flush()

        job = None
        if disposition.enqueue:
            job = (queue or InvoiceJobQueue(db)).enqueue(event.id)

        db.commit()

        logger.info(f"[OK] Order {event.id} stored as {disposition.invoice_status.value} ({disposition.reason})")
        return {
            "order_id": event.id,
            "created": True,
            "invoice_status": disposition.invoice_status.value,
            "job_id": str(job.id) if job else None,
        }

    @staticmethod
    def handle_order_updated(
        db: Session,
        event: ShopifyOrderUpdatedWebhook,
        queue: Optional[InvoiceJobQueue] = None,
    ) -> Dict[str, Any]:
        """
        orders/updated: only cancellations change anything.
        The move to CANCELLED is a conditional update, so concurrent deliveries
        of the same cancellation open at most one credit note.
        """
        order = OrderService.get_order_by_external_id(db, event.id)
        if not order:
            logger.info(f"Update for unknown order {event.id} ignored")
            return {"order_id": event.id, "action": "order_not_found"}

        if not event.is_cancelled:
            return {"order_id": event.id, "action": "updated"}

        reason = f"Order cancelled: {event.cancel_reason or 'no reason given'}"
        for _ in range(MAX_CANCEL_ATTEMPTS):
            status = current_status(order)
            if status == InvoiceStatus.CANCELLED:
                db.rollback()
                return {"order_id": event.id, "action": "already_cancelled"}
            if apply_transition_if_current(db, order, InvoiceEvent.CANCEL, error=reason):
                break
            logger.info(f"Order {event.id} moved from {status.value} during cancellation, re-reading")
        else:
            db.rollback()
            raise PreconditionFailed(f"Order {event.id} keeps changing, cancellation not applied")

        credit_note = None
        if status == InvoiceStatus.ISSUED:
            credit_note, created = open_credit_note(db, order, reason, queue)
            if not created:
                credit_note = None
        db.commit()

        if credit_note is not None:
            logger.info(f"[OK] Order {event.id} cancelled, credit note {credit_note.id} queued")
            return {
                "order_id": event.id,
                "action": "credit_note_created",
                "credit_note_id": str(credit_note.id),
            }

        logger.info(f"[OK] Order {event.id} cancelled from {status.value}")
        return {"order_id": event.id, "action": "cancelled", "previous_status": status.value}

    # ========== Batch actions ==========

    @staticmethod
    def retry_invoices(db: Session, order_ids: List[str]) -> List[Dict[str, Any]]:
        """Queue an invoice job for each PENDING order that has none waiting"""
        queue = InvoiceJobQueue(db)
        results = []
        for external_id in order_ids:
            order = OrderService.get_order_by_external_id(db, external_id)
            if not order:
                results.append({"order_id": external_id, "success": False, "message": "Order not found"})
                continue
            if current_status(order) != InvoiceStatus.PENDING:
                results.append({
                    "order_id": external_id,
                    "success": False,
                    "message": f"Order is {order.invoice_status}",
                })
                continue
            if queue.has_active_job(external_id):
                results.append({"order_id": external_id, "success": False, "message": "Job already queued"})
                continue

            job = queue.enqueue(external_id)
            results.append({"order_id": external_id, "success": True, "job_id": str(job.id)})

        db.commit()
        return results

    @staticmethod
    def reset_errors(db: Session, order_ids: List[str]) -> int:
        orders = db.query(OrderSnapshot).filter(
            OrderSnapshot.external_order_id.in_(order_ids),
            OrderSnapshot.invoice_status == InvoiceStatus.ERROR.value,
        ).all()
        for order in orders:
            apply_transition(order, InvoiceEvent.OPERATOR_RESET)
        db.commit()
        logger.info(f"Reset {len(orders)} orders from ERROR to PENDING")
        return len(orders)

    # ========== Listings ==========

    @staticmethod
    def get_orders(
        db: Session,
        status: Optional[str] = None,
        has_vat_profile: Optional[bool] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        page: int = 1,
        per_page: int = 50,
    ) -> Tuple[List[OrderSnapshot], int]:
        query = db.query(OrderSnapshot)

        if status and status != "all":
            query = query.filter(OrderSnapshot.invoice_status == status)
        if has_vat_profile is not None:
            query = query.filter(OrderSnapshot.has_vat_profile == has_vat_profile)
        if date_from:
            query = query.filter(OrderSnapshot.external_created_at >= date_from)
        if date_to:
            query = query.filter(OrderSnapshot.external_created_at <= date_to)

        total = query.count()
        orders = query.order_by(OrderSnapshot.external_created_at.desc())\
            .offset((page - 1) * per_page)\
            .limit(per_page)\
            .all()
        return orders, total

    @staticmethod
    def get_status_counts(db: Session) -> Dict[str, int]:
        rows = db.query(OrderSnapshot.invoice_status, func.count(OrderSnapshot.id))\
            .group_by(OrderSnapshot.invoice_status).all()
        counts = {status.value: 0 for status in InvoiceStatus}
        counts.update({status: count for status, count in rows})
        return counts

    @staticmethod
    def get_dashboard_stats(db: Session) -> Dict[str, Any]:
        counts = OrderService.get_status_counts(db)
        invoiced_total = db.query(func.coalesce(func.sum(OrderSnapshot.total_price), 0))\
            .filter(OrderSnapshot.invoice_status == InvoiceStatus.ISSUED.value).scalar()

        return {
            "total_orders": sum(counts.values()),
            "by_status": counts,
            "invoiced_amount": float(Decimal(str(invoiced_total or 0))),
            "business_orders": db.query(OrderSnapshot).filter(OrderSnapshot.has_vat_profile == True).count(),  # noqa: E712
            "pending_jobs": db.query(InvoiceJob).filter(InvoiceJob.status == JobStatus.PENDING.value).count(),
            "failed_jobs": db.query(InvoiceJob).filter(InvoiceJob.status == JobStatus.FAILED.value).count(),
            "credit_notes_pending": db.query(CreditNote).filter(
                CreditNote.status.in_([CreditNoteStatus.PENDING.value, CreditNoteStatus.ERROR.value])
            ).count(),
        }
