"""
Race-free toggles for membership relations (favorites, attendance, likes).

A toggle flips a (subject, object) relation: insert the row if absent, delete
it if present, and report the resulting state. The relation table carries a
unique constraint on the pair, and the flip is issued so that concurrent
callers serialize on that constraint instead of racing between a read and a
write in application code.

PostgreSQL: one statement. A data-modifying CTE attempts
INSERT ... ON CONFLICT DO NOTHING; the DELETE branch only runs when the insert
returned nothing.

SQLite (tests / local dev): SQLite has no DML in CTEs, so the same two
branches run as two statements in the caller's transaction. The INSERT takes
the database write lock, which is held until commit, so concurrent callers
still serialize.
"""

import logging
from datetime import datetime
from typing import Type

from sqlalchemy import delete, text
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

from clubstats.database import dialect_name
from clubstats.errors import ConsistencyError

logger = logging.getLogger(__name__)

_PG_TOGGLE_SQL = """
    WITH ins AS (
        INSERT INTO {table} ({subject}, {object}, created_at)
        VALUES (:subject_id, :object_id, now())
        ON CONFLICT ({subject}, {object}) DO NOTHING
        RETURNING 'true' AS action
    ), del AS (
        DELETE FROM {table}
        WHERE {subject} = :subject_id
          AND {object} = :object_id
          AND NOT EXISTS (SELECT 1 FROM ins)
        RETURNING 'false' AS action
    )
    SELECT action FROM ins
    UNION ALL
    SELECT action FROM del
"""


def _toggle_sql(session: AsyncSession, model: Type[SQLModel], subject_field: str, object_field: str) -> str:
    quote = session.bind.dialect.identifier_preparer.quote
    return _PG_TOGGLE_SQL.format(
        table=quote(model.__tablename__),
        subject=quote(subject_field),
        object=quote(object_field),
    )


async def _toggle_postgresql(
    session: AsyncSession,
    model: Type[SQLModel],
    subject_field: str,
    object_field: str,
    subject_id: int,
    object_id: int,
) -> bool:
    result = await session.execute(
        text(_toggle_sql(session, model, subject_field, object_field)),
        {"subject_id": subject_id, "object_id": object_id},
    )
    actions = result.scalars().all()
    if len(actions) != 1 or actions[0] not in ("true", "false"):
        raise ConsistencyError(
            f"Toggle on {model.__tablename__} ({subject_field}={subject_id}, "
            f"{object_field}={object_id}) returned {actions!r}"
        )
    return actions[0] == "true"


async def _toggle_sqlite(
    session: AsyncSession,
    model: Type[SQLModel],
    subject_field: str,
    object_field: str,
    subject_id: int,
    object_id: int,
) -> bool:
    table = model.__table__
    key = {subject_field: subject_id, object_field: object_id}

    inserted = await session.execute(
        sqlite_insert(table)
        .values(created_at=datetime.utcnow(), **key)
        .on_conflict_do_nothing(index_elements=[subject_field, object_field])
    )
    if inserted.rowcount == 1:
        return True

    deleted = await session.execute(
        delete(table).where(
            table.c[subject_field] == subject_id,
            table.c[object_field] == object_id,
        )
    )
    if deleted.rowcount == 1:
        return False

    raise ConsistencyError(
        f"Toggle on {model.__tablename__} ({subject_field}={subject_id}, "
        f"{object_field}={object_id}) affected no row "
        f"(insert={inserted.rowcount}, delete={deleted.rowcount})"
    )


async def toggle_membership(
    session: AsyncSession,
    model: Type[SQLModel],
    subject_field: str,
    object_field: str,
    subject_id: int,
    object_id: int,
) -> bool:
    """
    Atomically flip the (subject, object) relation row of `model`.

    `model` must have a unique constraint on (subject_field, object_field)
    and a created_at column. Runs inside the caller's transaction.

    Returns:
        True if the row now exists (turned on), False if it was removed

    Raises:
        ConsistencyError: Neither branch affected a row
    """
    dialect = dialect_name(session)
    try:
        if dialect == "postgresql":
            state = await _toggle_postgresql(
                session, model, subject_field, object_field, subject_id, object_id
            )
        elif dialect == "sqlite":
            state = await _toggle_sqlite(
                session, model, subject_field, object_field, subject_id, object_id
            )
        else:
            raise ValueError(f"Unsupported dialect for toggle_membership: {dialect}")
    except ConsistencyError as e:
        logger.error(f"[TOGGLE] {e}")
        raise

    logger.debug(
        f"[TOGGLE] {model.__tablename__} {subject_field}={subject_id} "
        f"{object_field}={object_id} -> {'on' if state else 'off'}"
    )
    return state
