"""
Helpers for working with SQLAlchemy sessions in a dialect-agnostic way.
"""

from __future__ import annotations

from typing import Optional, Sequence

from sqlalchemy import inspect
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, NoInspectionAvailable
from sqlalchemy.orm import Session


def resolve_session_bind(session: Session) -> Optional[Connection | Engine]:
    """Return the engine/connection bound to a session without direct .bind access."""
    bind = session.get_bind()
    if bind is not None:
        return bind

    try:
        insp = inspect(session)
    except NoInspectionAvailable:
        return None

    return getattr(insp, "bind", None)


def get_dialect_name(session: Session, default: str = "sqlite") -> str:
    """
    Return SQLAlchemy dialect name without touching Session.bind directly.

    Falls back to ``default`` when the bound engine cannot be resolved.
    """
    bind = resolve_session_bind(session)
    if bind is None:
        return default
    dialect = getattr(bind, "dialect", None)
    name = getattr(dialect, "name", None)
    return name or default


def violates_unique_constraint(
    integrity_error: IntegrityError,
    constraint_name: str,
    columns: Sequence[str] = (),
) -> bool:
    """
    Tell whether an IntegrityError came from a specific unique constraint.

    PostgreSQL exposes the constraint name through ``orig.diag``. SQLite only
    reports the offending ``table.column`` list, so ``columns`` must match it
    exactly in that case.
    """
    orig = getattr(integrity_error, "orig", None)
    diag = getattr(orig, "diag", None)
    if diag is not None and getattr(diag, "constraint_name", None):
        return diag.constraint_name == constraint_name

    text = str(orig if orig is not None else integrity_error)
    if constraint_name in text:
        return True
    if not columns or "UNIQUE constraint failed:" not in text:
        return False
    failed = text.split("UNIQUE constraint failed:", 1)[1]
    failed_columns = [part.strip().split(".")[-1] for part in failed.split(",")]
    return failed_columns == list(columns)
