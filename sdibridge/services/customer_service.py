"""
Customer Service - customers, cached billing profiles and re-classification
"""
from typing import Optional, List, Dict, Any, Tuple
import logging

from pydantic import ValidationError
from sqlalchemy import or_
from sqlalchemy.orm import Session

from sdibridge.core.config import settings
from sdibridge.core.exceptions import NotFound, ValidationFailed
from sdibridge.integrations.base import CustomerDirectory
from sdibridge.integrations.shopify import extract_billing_data, is_business_customer
from sdibridge.models import Customer, BillingProfile, OrderSnapshot
from sdibridge.schemas.billing import BillingProfileData, MarkBusinessRequest
from sdibridge.schemas.webhook import ShopifyCustomerWebhook
from .invoice_state import InvoiceStatus
from .job_queue import InvoiceJobQueue

logger = logging.getLogger(__name__)

PROFILE_FIELDS = (
    "is_business", "company_name", "vat_number", "tax_code", "sdi_code", "pec",
    "address_line1", "address_line2", "city", "province", "postal_code", "country_code",
)


def _validation_message(error: ValidationError) -> str:
    return "; ".join(f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in error.errors())


# ========== Customers ==========

def get_customer(db: Session, external_customer_id: str) -> Optional[Customer]:
    return db.query(Customer).filter(Customer.external_customer_id == external_customer_id).first()


def upsert_customer(
    db: Session,
    external_customer_id: str,
    email: Optional[str] = None,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    country_code: Optional[str] = None,
) -> Customer:
    """Create on first sighting, refresh contact data afterwards. Does not commit."""
    customer = get_customer(db, external_customer_id)
    if customer is None:
        customer = Customer(external_customer_id=external_customer_id)
        db.add(customer)
        logger.info(f"New customer {external_customer_id}")

    if email is not None:
        customer.email = email
    if first_name is not None:
        customer.first_name = first_name
    if last_name is not None:
        customer.last_name = last_name
    if country_code:
        customer.country_code = country_code.upper()

    db.flush()
    return customer


def customer_country(customer: Customer) -> Optional[str]:
    if customer.country_code:
        return customer.country_code
    if customer.billing_profile and customer.billing_profile.country_code:
        return customer.billing_profile.country_code
    return None


# ========== Billing profiles ==========

def build_profile_data(
    billing: Optional[Dict[str, Any]],
    address: Optional[Dict[str, Any]],
    is_business: bool,
) -> Optional[BillingProfileData]:
    """
    Profile data from directory metafields and the customer's primary address.
    Returns None for a customer that is not a business.
    Raises pydantic.ValidationError for malformed identifiers.
    """
    if not is_business:
        return None

    billing = billing or {}
    address = address or {}
    return BillingProfileData(
        is_business=True,
        company_name=billing.get("company_name") or address.get("company"),
        vat_number=billing.get("vat_number"),
        tax_code=billing.get("tax_code"),
        sdi_code=billing.get("sdi_code"),
        pec=billing.get("pec"),
        address_line1=address.get("address1"),
        address_line2=address.get("address2"),
        city=address.get("city"),
        province=address.get("province"),
        postal_code=address.get("zip"),
        country_code=address.get("country_code") or settings.HOME_COUNTRY,
    )


def apply_profile(
    db: Session,
    customer: Customer,
    data: Optional[BillingProfileData],
    queue: Optional[InvoiceJobQueue] = None,
) -> Optional[BillingProfile]:
    """
    Upsert (data) or delete (None) the cached profile, then re-classify the
    customer's waiting orders. Does not commit.
    """
    profile = customer.billing_profile

    if data is None:
        if profile is not None:
            logger.info(f"Customer {customer.external_customer_id} is no longer a business, profile removed")
            customer.billing_profile = None
            db.flush()
        return None

    if profile is None:
        profile = BillingProfile(customer=customer)
        db.add(profile)

    for field in PROFILE_FIELDS:
        setattr(profile, field, getattr(data, field))
    db.flush()

    reclassify_pending_orders(db, customer, queue)
    return profile


def reclassify_pending_orders(
    db: Session,
    customer: Customer,
    queue: Optional[InvoiceJobQueue] = None,
) -> int:
    """
    Once a customer becomes a qualified business in the home jurisdiction, every
    order still PENDING without VAT profile flips and gets one invoice job.
    """
    profile = customer.billing_profile
    if profile is None or not profile.is_qualified:
        return 0
    if customer_country(customer) != settings.HOME_COUNTRY:
        return 0

    queue = queue or InvoiceJobQueue(db)
    orders = db.query(OrderSnapshot).filter(
        OrderSnapshot.customer_id == customer.id,
        OrderSnapshot.invoice_status == InvoiceStatus.PENDING.value,
        OrderSnapshot.has_vat_profile == False,  # noqa: E712
    ).all()

    flipped = 0
    for order in orders:
        if order.billing_country and order.billing_country != settings.HOME_COUNTRY:
            continue
        order.has_vat_profile = True
        queue.enqueue(order.external_order_id)
        flipped += 1

    if flipped:
        logger.info(f"Re-classified {flipped} pending orders of customer {customer.external_customer_id}")
    return flipped


class ProfileResolver:
    """
    Refresh-on-read policy for the cached profile: ask the directory, rewrite
    the cache, and fall back to the cache when the directory is unavailable.
    """

    def __init__(self, db: Session, directory: Optional[CustomerDirectory] = None):
        self.db = db
        self.directory = directory

    async def resolve(self, customer: Customer) -> Optional[BillingProfile]:
        if self.directory is None:
            return customer.billing_profile

        try:
            remote = await self.directory.fetch(customer.external_customer_id)
        except Exception as e:
            logger.warning(f"Directory unavailable for customer {customer.external_customer_id}, using cached profile: {e}")
            return customer.billing_profile

        if remote is None:
            return customer.billing_profile

        business = is_business_customer(remote.metafields) or bool((remote.primary_address.get("company") or "").strip())
        try:
            data = build_profile_data(extract_billing_data(remote.metafields), remote.primary_address, business)
        except ValidationError as e:
            logger.warning(f"Directory data for customer {customer.external_customer_id} rejected, using cached profile: {_validation_message(e)}")
            return customer.billing_profile

        apply_profile(self.db, customer, data)
        self.db.commit()
        return customer.billing_profile


# ========== Entry points ==========

async def upsert_customer_from_webhook(
    db: Session,
    event: ShopifyCustomerWebhook,
    directory: Optional[CustomerDirectory] = None,
) -> Dict[str, Any]:
    """customers/update: refresh the customer and its business classification"""
    address = event.primary_address
    address_dict = address.model_dump() if address else {}

    customer = upsert_customer(
        db,
        event.id,
        email=event.email,
        first_name=event.first_name,
        last_name=event.last_name,
        country_code=address.country_code if address else None,
    )

    billing = None
    business = False
    directory_ok = True
    if directory is not None:
        try:
            metafields = await directory.get_customer_metafields(event.id)
            billing = extract_billing_data(metafields)
            business = is_business_customer(metafields)
        except Exception as e:
            directory_ok = False
            logger.warning(f"Metafields unavailable for customer {event.id}, keeping cached profile: {e}")

    # Fallback: the standard company field marks a business too
    if not business and (address_dict.get("company") or "").strip():
        business = True

    if not directory_ok and not business:
        db.commit()
        return {"customer_id": event.id, "is_business": None, "profile": "unchanged"}

    try:
        data = build_profile_data(billing, address_dict, business)
    except ValidationError as e:
        db.rollback()
        raise ValidationFailed(_validation_message(e)) from e

    profile = apply_profile(db, customer, data)
    db.commit()

    logger.info(f"Customer {event.id} updated, business={business}")
    return {
        "customer_id": event.id,
        "is_business": business,
        "profile": "upserted" if profile is not None else "removed",
        "qualified": bool(profile and profile.is_qualified),
    }


def mark_business(db: Session, request: MarkBusinessRequest) -> BillingProfile:
    """Operator override of the business classification"""
    customer = get_customer(db, request.external_customer_id)
    if customer is None:
        raise NotFound(f"Customer {request.external_customer_id} not found")

    current = customer.billing_profile
    values = {field: getattr(current, field) for field in PROFILE_FIELDS} if current else {}
    values.update(request.model_dump(exclude={"external_customer_id"}, exclude_none=True))
    values["is_business"] = request.is_business
    if not values.get("country_code"):
        values["country_code"] = customer.country_code or settings.HOME_COUNTRY

    try:
        data = BillingProfileData(**values)
    except ValidationError as e:
        raise ValidationFailed(_validation_message(e)) from e

    profile = current
    if profile is None:
        profile = BillingProfile(customer=customer)
        db.add(profile)
    for field in PROFILE_FIELDS:
        setattr(profile, field, getattr(data, field))
    db.flush()

    reclassify_pending_orders(db, customer)
    db.commit()
    db.refresh(profile)

    logger.info(f"Customer {request.external_customer_id} marked business={request.is_business}")
    return profile


def update_own_profile(db: Session, external_customer_id: str, data: BillingProfileData) -> BillingProfile:
    """Self-service profile update; a VAT number implies a business"""
    customer = get_customer(db, external_customer_id)
    if customer is None:
        raise NotFound(f"Customer {external_customer_id} not found")

    if data.vat_number:
        data = data.model_copy(update={"is_business": True})

    profile = customer.billing_profile
    if profile is None:
        profile = BillingProfile(customer=customer)
        db.add(profile)
    for field in PROFILE_FIELDS:
        setattr(profile, field, getattr(data, field))
    db.flush()

    reclassify_pending_orders(db, customer)
    db.commit()
    db.refresh(profile)
    return profile


async def sync_customers(
    db: Session,
    directory: CustomerDirectory,
    limit: int = 50,
    since_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Pull customers from the directory with the since_id cursor.
    Stops on an empty page or when limit customers were synced.
    """
    synced = 0
    failed = 0
    last_customer_id = since_id
    has_more = True

    while has_more and synced < limit:
        page = await directory.get_customers(limit=min(50, limit - synced), since_id=last_customer_id)
        if not page:
            has_more = False
            break

        for raw in page:
            customer_id = str(raw.get("id"))
            last_customer_id = customer_id
            try:
                addresses = raw.get("addresses") or []
                primary = addresses[0] if addresses else {}
                customer = upsert_customer(
                    db,
                    customer_id,
                    email=raw.get("email"),
                    first_name=raw.get("first_name"),
                    last_name=raw.get("last_name"),
                    country_code=primary.get("country_code"),
                )
                metafields = await directory.get_customer_metafields(customer_id)
                billing = extract_billing_data(metafields)
                if is_business_customer(metafields):
                    apply_profile(db, customer, build_profile_data(billing, primary, True))
                db.commit()
                synced += 1
            except Exception as e:
                db.rollback()
                failed += 1
                logger.error(f"Sync failed for customer {customer_id}: {e}")

    logger.info(f"Synced {synced} customers from directory ({failed} failed)")
    return {
        "synced_count": synced,
        "failed_count": failed,
        "last_customer_id": last_customer_id,
        "has_more": has_more,
    }


# ========== Queries ==========

def get_customers(
    db: Session,
    search: Optional[str] = None,
    is_business: Optional[bool] = None,
    page: int = 1,
    per_page: int = 20,
) -> Tuple[List[Customer], int]:
    query = db.query(Customer)

    if search:
        term = f"%{search}%"
        query = query.filter(or_(
            Customer.email.ilike(term),
            Customer.first_name.ilike(term),
            Customer.last_name.ilike(term),
        ))

    if is_business is not None:
        query = query.join(BillingProfile, isouter=True)
        if is_business:
            query = query.filter(BillingProfile.is_business == True)  # noqa: E712
        else:
            query = query.filter(or_(BillingProfile.id == None, BillingProfile.is_business == False))  # noqa: E711,E712

    total = query.count()
    customers = query.order_by(Customer.created_at.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return customers, total


def get_sync_status(db: Session) -> Dict[str, int]:
    return {
        "total_customers": db.query(Customer).count(),
        "customers_with_billing_profile": db.query(BillingProfile).count(),
        "home_customers": db.query(Customer).filter(Customer.country_code == settings.HOME_COUNTRY).count(),
        "business_customers": db.query(BillingProfile).filter(BillingProfile.is_business == True).count(),  # noqa: E712
    }
