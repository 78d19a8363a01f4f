"""Shared FastAPI dependencies."""

import logging
from uuid import UUID

from fastapi import Header, HTTPException

logger = logging.getLogger(__name__)


def _parse_customer_id(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError as e:
        logger.warning(f"Invalid X-Customer-Id header: {value!r}")
        raise HTTPException(status_code=401, detail="Invalid customer identity") from e


async def get_customer_id(x_customer_id: str | None = Header(default=None)) -> UUID:
    """
    Identity of the calling customer, set by the authenticating proxy.

    Raises:
        HTTPException: 401 if the header is missing or not a UUID
    """
    if not x_customer_id:
        raise HTTPException(status_code=401, detail="Missing customer identity")
    return _parse_customer_id(x_customer_id)


async def get_optional_customer_id(x_customer_id: str | None = Header(default=None)) -> UUID | None:
    """Like get_customer_id, but anonymous callers get None."""
    if not x_customer_id:
        return None
    return _parse_customer_id(x_customer_id)
