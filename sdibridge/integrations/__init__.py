# External Clients Package
from .base import (
    InvoiceIssuer, CustomerDirectory, DirectoryCustomer, IssueResult,
    InvoiceDocument, CreditNoteDocument, DocumentLine, SupplierData, CustomerData, PostalAddress,
)
from .sdi import SdiClient, create_sdi_client
from .shopify import ShopifyDirectoryClient, create_directory_client, extract_billing_data, is_business_customer

__all__ = [
    "InvoiceIssuer",
    "CustomerDirectory",
    "DirectoryCustomer",
    "IssueResult",
    "InvoiceDocument",
    "CreditNoteDocument",
    "DocumentLine",
    "SupplierData",
    "CustomerData",
    "PostalAddress",
    "SdiClient",
    "create_sdi_client",
    "ShopifyDirectoryClient",
    "create_directory_client",
    "extract_billing_data",
    "is_business_customer",
]
