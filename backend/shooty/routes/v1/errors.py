# backend/shooty/routes/v1/errors.py
"""Shared error helpers for v1 routes."""

from typing import NoReturn

from fastapi import HTTPException

from ...core.exceptions import DomainException

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=500, detail=str(exc))
