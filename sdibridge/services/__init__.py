# Services Package
from .order_service import OrderService
from .invoice_service import InvoiceService
from .retry_engine import RetryEngine, run_retry_batch
from .job_queue import InvoiceJobQueue
from .customer_service import ProfileResolver
from . import customer_service

__all__ = [
    "OrderService",
    "InvoiceService",
    "RetryEngine",
    "run_retry_batch",
    "InvoiceJobQueue",
    "ProfileResolver",
    "customer_service",
]
