# backend/shooty/routes/v1/__init__.py
"""
API v1 Routes

Versioned API endpoints under /api/v1.
"""

from . import payments, quotes, reservations

__all__ = [
    "payments",
    "quotes",
    "reservations",
]
