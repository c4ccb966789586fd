# Jobs Package - Scheduled background tasks
from .invoice_retry import InvoiceRetryScheduler, start_scheduler, stop_scheduler

__all__ = ["InvoiceRetryScheduler", "start_scheduler", "stop_scheduler"]
