"""
Invoice Service - builds fiscal documents, calls the issuer and commits the outcome
"""
import asyncio
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Dict, Any, Tuple
import logging

from sqlalchemy.orm import Session

from sdibridge.core.config import settings
from sdibridge.core.exceptions import BridgeError, IssuerError, IssuerTimeout, NotFound, PreconditionFailed
from sdibridge.integrations.base import (
    InvoiceIssuer, InvoiceDocument, CreditNoteDocument, DocumentLine,
    SupplierData, CustomerData, PostalAddress, IssueResult,
)
from sdibridge.models import OrderSnapshot, BillingProfile, CreditNote, CreditNoteStatus, JobType, JobStatus, utcnow
from .classifier import is_foreign
from .customer_service import ProfileResolver, customer_country
from .invoice_state import InvoiceStatus, InvoiceEvent, apply_transition, current_status
from .job_queue import InvoiceJobQueue

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
MISSING_PROFILE = "Customer missing valid billing profile"


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def get_order(db: Session, external_order_id: str) -> Optional[OrderSnapshot]:
    return db.query(OrderSnapshot).filter(OrderSnapshot.external_order_id == external_order_id).first()


def has_issued_invoice(order: OrderSnapshot) -> bool:
    status = current_status(order)
    return status == InvoiceStatus.ISSUED or (status == InvoiceStatus.CANCELLED and bool(order.invoice_id))


def latest_credit_note(db: Session, order: OrderSnapshot) -> Optional[CreditNote]:
    return db.query(CreditNote).filter(CreditNote.order_id == order.id).order_by(CreditNote.created_at.desc()).first()


def open_credit_note(
    db: Session,
    order: OrderSnapshot,
    reason: str,
    queue: Optional[InvoiceJobQueue] = None,
) -> Tuple[CreditNote, bool]:
    """
    Compensation for an issued invoice: one PENDING credit note for the order
    total plus a credit_note job. Returns (note, created). Does not commit.
    """
    existing = latest_credit_note(db, order)
    if existing is not None:
        return existing, False

    note = CreditNote(
        order=order,
        reason=reason,
        total_amount=order.total_price or 0,
        status=CreditNoteStatus.PENDING.value,
    )
    db.add(note)
    db.flush()

    (queue or InvoiceJobQueue(db)).enqueue(
        order.external_order_id,
        job_type=JobType.CREDIT_NOTE,
        payload={"external_order_id": order.external_order_id, "credit_note_id": str(note.id)},
    )
    logger.info(f"Credit note {note.id} opened for order {order.external_order_id}: {reason}")
    return note, True


class InvoiceService:
    """
    Issuance of invoices and credit notes.
    Every external call runs outside any open transaction and under a timeout.
    """

    def __init__(
        self,
        db: Session,
        issuer: InvoiceIssuer,
        resolver: Optional[ProfileResolver] = None,
        timeout: Optional[float] = None,
    ):
        self.db = db
        self.issuer = issuer
        self.resolver = resolver or ProfileResolver(db)
        self.timeout = timeout or settings.SDI_TIMEOUT_SECONDS

    # ========== Documents ==========

    @staticmethod
    def supplier() -> SupplierData:
        return SupplierData(
            vat_number=settings.SUPPLIER_VAT_NUMBER,
            tax_code=settings.SUPPLIER_TAX_CODE,
            company_name=settings.SUPPLIER_COMPANY_NAME,
            address=PostalAddress(
                address_line1=settings.SUPPLIER_ADDRESS_LINE1,
                city=settings.SUPPLIER_CITY,
                province=settings.SUPPLIER_PROVINCE,
                postal_code=settings.SUPPLIER_POSTAL_CODE,
                country_code=settings.HOME_COUNTRY,
            ),
        )

    @staticmethod
    def generate_invoice_number(order: OrderSnapshot) -> str:
        """Stable per order so a retried call carries the same number"""
        year = (order.external_created_at or utcnow()).strftime("%Y")
        return f"INV-{year}-{order.order_number or order.external_order_id}"

    def build_invoice_document(self, order: OrderSnapshot, profile: BillingProfile) -> InvoiceDocument:
        customer = order.customer
        customer_data = CustomerData(
            company_name=profile.company_name or customer.display_name,
            first_name=customer.first_name,
            last_name=customer.last_name,
            vat_number=profile.vat_number,
            tax_code=profile.tax_code,
            pec=profile.pec,
            sdi_code=profile.sdi_code,
            address=PostalAddress(
                address_line1=profile.address_line1 or "Address not provided",
                address_line2=profile.address_line2,
                city=profile.city or "City not provided",
                province=profile.province or "",
                postal_code=profile.postal_code or "00000",
                country_code=profile.country_code or customer.country_code or settings.HOME_COUNTRY,
            ),
        )

        # Shop prices include VAT
        gross = _money(order.total_price)
        rate = settings.DEFAULT_VAT_RATE
        taxable = (gross / (1 + Decimal(rate) / 100)).quantize(CENT, rounding=ROUND_HALF_UP)
        vat = gross - taxable

        today = utcnow().date()
        return InvoiceDocument(
            number=self.generate_invoice_number(order),
            date=today,
            supplier=self.supplier(),
            customer=customer_data,
            lines=[
                DocumentLine(
                    description=f"Order {order.order_number or order.external_order_id}",
                    quantity=1,
                    unit_price=taxable,
                    vat_rate=rate,
                    total_amount=taxable,
                ),
            ],
            total_amount=gross,
            total_vat=vat,
            currency=order.currency or "EUR",
            payment_method=settings.PAYMENT_METHOD,
            payment_due_date=today + timedelta(days=settings.PAYMENT_TERMS_DAYS),
        )

    def build_credit_note_document(
        self,
        order: OrderSnapshot,
        profile: BillingProfile,
        note: CreditNote,
    ) -> CreditNoteDocument:
        invoice = self.build_invoice_document(order, profile)
        amount = _money(note.total_amount)
        if amount != invoice.total_amount:
            ratio = amount / invoice.total_amount if invoice.total_amount else Decimal("0")
            for line in invoice.lines:
                line.unit_price = (line.unit_price * ratio).quantize(CENT)
                line.total_amount = (line.total_amount * ratio).quantize(CENT)
            invoice.total_vat = (invoice.total_vat * ratio).quantize(CENT)
            invoice.total_amount = amount

        return CreditNoteDocument(
            number=f"NC-{invoice.number[4:]}",
            date=invoice.date,
            supplier=invoice.supplier,
            customer=invoice.customer,
            lines=invoice.lines,
            total_amount=invoice.total_amount,
            total_vat=invoice.total_vat,
            currency=invoice.currency,
            payment_method=invoice.payment_method,
            payment_due_date=invoice.payment_due_date,
            invoice_number=order.invoice_id or invoice.number,
            reason=note.reason or "Order cancelled",
        )

    # ========== Issuer calls ==========

    async def _call(self, coro) -> IssueResult:
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise IssuerTimeout(f"Issuer call exceeded {self.timeout}s") from e
        except BridgeError:
            raise
        except Exception as e:
            raise IssuerError(str(e) or e.__class__.__name__) from e

    async def send_invoice(self, order: OrderSnapshot, profile: BillingProfile) -> IssueResult:
        document = self.build_invoice_document(order, profile)
        self.db.commit()
        return await self._call(self.issuer.issue_invoice(document))

    def record_issued_invoice(self, order: OrderSnapshot, result: IssueResult) -> InvoiceStatus:
        """
        Commit a successful issuance. The order is re-read first: a cancellation
        that landed during the call turns the invoice into a credit note.
        """
        self.db.refresh(order)
        status = current_status(order)

        if status == InvoiceStatus.CANCELLED:
            order.invoice_id = result.external_id
            order.invoice_date = result.issued_at
            open_credit_note(self.db, order, "Invoice issued after order cancellation")
            logger.warning(f"Order {order.external_order_id} cancelled while invoice {result.external_id} was issued, credit note opened")
        elif status == InvoiceStatus.ISSUED:
            logger.error(
                f"Order {order.external_order_id} already invoiced as {order.invoice_id}, "
                f"duplicate document {result.external_id} needs manual review"
            )
        else:
            if status == InvoiceStatus.ERROR:
                apply_transition(order, InvoiceEvent.OPERATOR_RESET)
            apply_transition(
                order, InvoiceEvent.ISSUE_SUCCEEDED,
                invoice_id=result.external_id, invoice_date=result.issued_at,
            )

        self.db.commit()
        return current_status(order)

    # ========== Credit notes ==========

    async def issue_credit_note(self, note: CreditNote) -> CreditNote:
        """
        Send a credit note. Requires an issued invoice and a qualified profile;
        customers outside the home jurisdiction get a local FOREIGN note.
        """
        if note.status == CreditNoteStatus.ISSUED.value:
            return note

        order = note.order
        if not has_issued_invoice(order):
            raise PreconditionFailed("Invoice not issued for this order")

        customer = order.customer
        if is_foreign(customer_country(customer), settings.HOME_COUNTRY):
            note.status = CreditNoteStatus.FOREIGN.value
            note.last_error = None
            self.db.commit()
            logger.info(f"Credit note {note.id} recorded locally for foreign order {order.external_order_id}")
            return note

        profile = await self.resolver.resolve(customer)
        if profile is None or not profile.is_qualified:
            raise PreconditionFailed(MISSING_PROFILE)

        document = self.build_credit_note_document(order, profile, note)
        self.db.commit()
        result = await self._call(self.issuer.issue_credit_note(document))

        note.external_id = result.external_id
        note.issued_at = result.issued_at
        note.status = CreditNoteStatus.ISSUED.value
        note.last_error = None
        self.db.commit()

        logger.info(f"Credit note {note.id} issued for order {order.external_order_id}: {result.external_id}")
        return note

    # ========== Operator actions ==========

    async def issue_invoice_now(self, external_order_id: str) -> Dict[str, Any]:
        """Manual single-order issuance; failures are surfaced, never retried inline"""
        order = get_order(self.db, external_order_id)
        if not order:
            raise NotFound("Order not found")

        status = current_status(order)
        if status == InvoiceStatus.ISSUED:
            raise PreconditionFailed("Invoice already issued")
        if status in (InvoiceStatus.CANCELLED, InvoiceStatus.CORRISPETTIVO, InvoiceStatus.FOREIGN):
            raise PreconditionFailed(f"No invoice can be issued for an order in status {status.value}")
        job = InvoiceJobQueue(self.db).active_job(external_order_id)
        if job is not None and job.status == JobStatus.PROCESSING.value:
            raise PreconditionFailed("Invoice issuance already in progress")
        if status == InvoiceStatus.ERROR:
            apply_transition(order, InvoiceEvent.OPERATOR_RESET)

        customer = order.customer
        if is_foreign(order.billing_country or customer_country(customer), settings.HOME_COUNTRY):
            apply_transition(order, InvoiceEvent.MARK_FOREIGN)
            self.db.commit()
            return {
                "invoice_status": InvoiceStatus.FOREIGN.value,
                "message": "Foreign customer - invoice not required",
            }

        profile = await self.resolver.resolve(customer)
        if profile is None or not profile.is_qualified:
            apply_transition(order, InvoiceEvent.ISSUE_FAILED, error=MISSING_PROFILE)
            self.db.commit()
            raise PreconditionFailed(MISSING_PROFILE)

        order.has_vat_profile = True
        try:
            result = await self.send_invoice(order, profile)
        except IssuerError as e:
            self.db.refresh(order)
            if current_status(order) == InvoiceStatus.PENDING:
                apply_transition(order, InvoiceEvent.ISSUE_FAILED, error=str(e))
                self.db.commit()
            logger.error(f"Manual invoice for order {external_order_id} failed: {e}")
            raise

        final_status = self.record_issued_invoice(order, result)
        logger.info(f"Invoice issued for order {external_order_id}: {result.external_id}")
        return {
            "invoice_status": final_status.value,
            "invoice_id": result.external_id,
            "invoice_date": result.issued_at.isoformat(),
        }

    async def issue_credit_note_now(self, external_order_id: str, reason: str) -> CreditNote:
        order = get_order(self.db, external_order_id)
        if not order:
            raise NotFound("Order not found")
        if not has_issued_invoice(order):
            raise PreconditionFailed("Invoice not issued for this order")

        note = latest_credit_note(self.db, order)
        if note is not None and note.status in (CreditNoteStatus.ISSUED.value, CreditNoteStatus.FOREIGN.value):
            raise PreconditionFailed("Credit note already issued for this order")

        if note is None:
            note = CreditNote(
                order=order,
                reason=reason,
                total_amount=order.total_price or 0,
                status=CreditNoteStatus.PENDING.value,
            )
            self.db.add(note)
        else:
            note.reason = reason
        self.db.commit()

        try:
            return await self.issue_credit_note(note)
        except IssuerError as e:
            note.status = CreditNoteStatus.ERROR.value
            note.last_error = str(e)
            self.db.commit()
            logger.error(f"Manual credit note for order {external_order_id} failed: {e}")
            raise

    # ========== Queries ==========

    def get_credit_notes(
        self,
        order_id: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        per_page: int = 20,
    ):
        query = self.db.query(CreditNote).join(OrderSnapshot)
        if order_id:
            query = query.filter(OrderSnapshot.external_order_id.contains(order_id))
        if status:
            query = query.filter(CreditNote.status == status)

        total = query.count()
        notes = query.order_by(CreditNote.created_at.desc()).offset((page - 1) * per_page).limit(per_page).all()
        return notes, total
