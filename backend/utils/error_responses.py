"""
Error responses for service failures.

Service errors keep their kind for logs; callers only ever see a generic
message and a status code.

Error Response Format:
{
    "detail": {
        "error": "request_failed",
        "message": "Unable to link bank account. Please try again."
    }
}
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status

from errors import (
    BankLinkError, DuplicateIdentity, InvalidCredentials, PersistFailed,
    UPSTREAM_ERRORS, ValidationFailed, WriteFailed
)

GENERIC_RETRY_MESSAGE = "Something went wrong. Please try again."


def status_for(error: BankLinkError) -> int:
    if isinstance(error, ValidationFailed):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(error, DuplicateIdentity):
        return status.HTTP_409_CONFLICT
    if isinstance(error, InvalidCredentials):
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(error, UPSTREAM_ERRORS):
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(error, (WriteFailed, PersistFailed)):
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def to_http_exception(
    error: BankLinkError,
    logger: logging.Logger,
    operation: str,
    message: Optional[str] = None,
) -> HTTPException:
    """Log the failure with its kind and build the generic HTTP error."""
    code = status_for(error)
    log = logger.error if code >= 500 else logger.warning
    log(f"{operation} failed: {error.kind}: {error.message}")

    return HTTPException(
        status_code=code,
        detail={
            "error": "request_failed",
            "message": message or GENERIC_RETRY_MESSAGE,
        },
    )


def validation_error_body(errors: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Body for rejected request payloads.

    Only field names are reported; submitted values (passwords, SSNs)
    are never echoed back.
    """
    parameters = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p != "body"]
        name = ".".join(loc) or None
        if name and name not in parameters:
            parameters.append(name)

    return {
        "detail": {
            "error": "validation_error",
            "parameters": parameters,
            "message": "Invalid request. Please check the highlighted fields.",
        }
    }
