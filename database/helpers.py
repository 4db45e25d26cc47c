"""
Database helper functions — dialect-aware upserts shared by the stores.

"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


def to_uuid(value: str | uuid.UUID) -> uuid.UUID:
    return uuid.UUID(value) if isinstance(value, str) else value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _insert_for(session: AsyncSession):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise NotImplementedError(f"No upsert support for dialect {dialect!r}")


def upsert_statement(
    session: AsyncSession,
    model: Any,
    values: Dict[str, Any],
    *,
    conflict_columns: Iterable[str],
    update_columns: Iterable[str],
):
    """
    Build ``INSERT ... ON CONFLICT (conflict_columns) DO UPDATE``.

    Columns not listed in ``update_columns`` (``created_at`` in particular)
    keep their stored value when the row already exists.
    """
    insert = _insert_for(session)
    stmt = insert(model).values(**values)
    return stmt.on_conflict_do_update(
        index_elements=list(conflict_columns),
        set_={col: stmt.excluded[col] for col in update_columns},
    )
