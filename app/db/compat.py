"""
Dialect-aware insert helpers (PostgreSQL in production, SQLite in tests).

Both dialects support ``INSERT ... ON CONFLICT``; the statement classes live in
separate modules, so the right one is chosen from the session's bind. The
conflict handling is a single statement: a unique constraint decides who wins,
never a read-then-write.
"""
from typing import Any, Sequence

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def _insert_for(session: AsyncSession, model):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"ON CONFLICT is not supported for dialect '{dialect}'")


async def insert_ignore(
    session: AsyncSession,
    model,
    values: dict[str, Any],
    conflict_columns: Sequence[str],
) -> int | None:
    """
    INSERT ... ON CONFLICT DO NOTHING RETURNING id.

    Returns the new row id, or None when the unique key already existed.
    """
    stmt = (
        _insert_for(session, model)
        .values(**values)
        .on_conflict_do_nothing(index_elements=list(conflict_columns))
        .returning(model.id)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def upsert(
    session: AsyncSession,
    model,
    values: dict[str, Any],
    conflict_columns: Sequence[str],
    update_columns: Sequence[str],
) -> int:
    """INSERT ... ON CONFLICT DO UPDATE SET <update_columns> RETURNING id"""
    insert_stmt = _insert_for(session, model).values(**values)
    stmt = insert_stmt.on_conflict_do_update(
        index_elements=list(conflict_columns),
        set_={col: insert_stmt.excluded[col] for col in update_columns},
    ).returning(model.id)
    result = await session.execute(stmt)
    return result.scalar_one()
