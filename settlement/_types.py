"""
Shared aliases: money, sessions, clock.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

type Cents = int
"""Amount in minor currency units. Never a float."""

type SessionFactory = async_sessionmaker[AsyncSession]


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite DateTime columns drop tzinfo)."""
    return datetime.now(UTC).replace(tzinfo=None)


__all__ = ("Cents", "SessionFactory", "utcnow")
