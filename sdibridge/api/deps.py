"""
Shared API dependencies
"""
from typing import Optional

from fastapi import HTTPException

from sdibridge.core.exceptions import BridgeError, ValidationFailed, NotFound, PreconditionFailed, IssuerError
from sdibridge.integrations import InvoiceIssuer, CustomerDirectory, create_sdi_client, create_directory_client


def get_issuer() -> InvoiceIssuer:
    return create_sdi_client()


def get_directory() -> Optional[CustomerDirectory]:
    return create_directory_client()


def http_error(error: BridgeError) -> HTTPException:
    """Map the error taxonomy onto HTTP status codes"""
    if isinstance(error, ValidationFailed):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, NotFound):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, PreconditionFailed):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, IssuerError):
        return HTTPException(status_code=502, detail=f"Invoice issuer error: {error}")
    return HTTPException(status_code=500, detail=str(error))
