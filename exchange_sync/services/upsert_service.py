"""Idempotent bulk upserts keyed by the vendor identifier.

Rows are written with `INSERT ... ON CONFLICT (key) DO UPDATE` (PostgreSQL
or SQLite), so re-running a sync never duplicates a row. The whole call is
one transaction: a failure rolls back every batch and raises WriteError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from exchange_sync.core.config import settings
from exchange_sync.services.pp_errors import WriteError
from exchange_sync.types import JsonObject

logger = logging.getLogger(__name__)

# Never overwritten on conflict
IMMUTABLE_COLUMNS = {"id", "created_at"}


@dataclass
class UpsertResult:
    written: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0


def _dialect_insert(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise WriteError(f"Upsert not supported on dialect {dialect}", table="?")


def _chunks(rows: list[JsonObject], size: int) -> Iterable[list[JsonObject]]:
    for start in range(0, len(rows), size):
        yield rows[start : start + size]


def _prepare_rows(
    records: Iterable[JsonObject], columns: set[str], conflict_key: str
) -> tuple[list[JsonObject], int]:
    """Drop unknown columns and rows without a key; last record per key wins."""
    by_key: dict[Any, JsonObject] = {}
    skipped = 0
    for record in records:
        key = record.get(conflict_key)
        if key is None or key == "":
            skipped += 1
            continue
        by_key[key] = {
            name: value
            for name, value in record.items()
            if name in columns and name not in IMMUTABLE_COLUMNS
        }
    return list(by_key.values()), skipped


def upsert_records(
    db: Session,
    model: type,
    records: Iterable[JsonObject],
    conflict_key: str,
    *,
    batch_size: int | None = None,
) -> UpsertResult:
    """
    Insert-or-update mapped records keyed by `conflict_key`.

    Args:
        db: Database session
        model: ORM model whose table receives the rows
        records: Mapped records (unknown keys are ignored)
        conflict_key: Unique vendor-identifier column
        batch_size: Rows per statement (default PP_UPSERT_BATCH_SIZE)

    Returns:
        UpsertResult with created/updated split and rows skipped for a
        missing key.

    Raises:
        WriteError: the backing store rejected a batch (nothing committed)
    """
    table = model.__table__
    columns = {column.name for column in table.columns}
    if conflict_key not in columns:
        raise WriteError(f"{table.name} has no column {conflict_key}", table=table.name)

    rows, skipped = _prepare_rows(records, columns, conflict_key)
    result = UpsertResult(skipped=skipped)
    if not rows:
        return result

    insert = _dialect_insert(db)
    key_column = table.c[conflict_key]
    batch_size = batch_size or settings.PP_UPSERT_BATCH_SIZE

    try:
        for batch in _chunks(rows, batch_size):
            keys = [row[conflict_key] for row in batch]
            existing = set(db.scalars(select(key_column).where(key_column.in_(keys))))

            # executemany needs one key set per statement
            groups: dict[frozenset[str], list[JsonObject]] = {}
            for row in batch:
                groups.setdefault(frozenset(row), []).append(row)

            for names, group in groups.items():
                stmt = insert(table)
                set_ = {
                    name: stmt.excluded[name]
                    for name in names
                    if name != conflict_key
                }
                if "updated_at" in columns and "updated_at" not in names:
                    set_["updated_at"] = func.now()
                stmt = stmt.on_conflict_do_update(index_elements=[key_column], set_=set_)
                db.execute(stmt, group)

            updated = sum(1 for key in keys if key in existing)
            result.updated += updated
            result.created += len(keys) - updated
            result.written += len(keys)

        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Upsert into %s failed: %s", table.name, type(exc).__name__)
        raise WriteError(f"Upsert into {table.name} failed: {type(exc).__name__}", table=table.name) from exc

    logger.info(
        "Upserted %s %s rows (%s created, %s updated, %s skipped)",
        result.written,
        table.name,
        result.created,
        result.updated,
        result.skipped,
    )
    return result
