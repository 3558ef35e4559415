"""Writes that survive schema drift.

Before writing, the target columns are checked against the live table.
Columns the table lacks are added when that is safe, otherwise dropped
from the write (or the write fails, for ``critical`` callers). Every
mismatch is recorded in ``detected_errors`` for review.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import JSON, column, insert, table as table_clause, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.expression import TableClause

from awash.database.introspection import (
    auto_fix_missing_column,
    get_table_schema,
    python_defaults,
)
from awash.database.models import TABLE_MODELS
from awash.errors import report_error
from awash.schemas import Severity


logger = logging.getLogger(__name__)


@dataclass
class WriteResult:
    success: bool
    data: Any = None
    error: str | None = None
    warning: str | None = None
    removed_fields: list[str] = field(default_factory=list)
    auto_fixed_columns: list[str] = field(default_factory=list)


@dataclass
class _Reconciled:
    columns: set[str]
    removed: list[str]
    auto_fixed: list[str]


def _target(table: str, columns: list[str], sample: dict[str, Any]) -> TableClause:
    """Lightweight table clause, typed from the model where one exists."""
    model = TABLE_MODELS.get(table)
    known = model.__table__.c if model is not None else {}
    typed = []
    for name in columns:
        if name in known:
            typed.append(column(name, known[name].type))
        elif isinstance(sample.get(name), (dict, list)):
            typed.append(column(name, JSON()))
        else:
            typed.append(column(name))
    return table_clause(table, *typed)


async def _reconcile(
    session: AsyncSession,
    table: str,
    columns: list[str],
    sample: dict[str, Any],
    auto_fix: bool,
    critical: bool,
    operation: str,
) -> _Reconciled | WriteResult:
    schema = await get_table_schema(session, table)
    if schema is None:
        return WriteResult(success=False, error=f"Table '{table}' does not exist")

    live = set(schema.column_names)
    missing = [c for c in columns if c not in live]
    if not missing:
        return _Reconciled(columns=live, removed=[], auto_fixed=[])

    logger.warning(f"Schema mismatch in {table}: missing columns {', '.join(missing)}")

    auto_fixed: list[str] = []
    if auto_fix:
        for name in missing:
            if await auto_fix_missing_column(session, table, name, sample.get(name)):
                auto_fixed.append(name)
                live.add(name)

    still_missing = [c for c in missing if c not in auto_fixed]
    await report_error(
        session,
        f"Schema mismatch in {table}: missing columns {', '.join(still_missing) or 'none'}",
        severity=Severity.HIGH if critical else Severity.MEDIUM,
        context={
            "table": table,
            "missing_columns": still_missing,
            "auto_fixed_columns": auto_fixed,
            "context": f"{operation} operation",
        },
        error_type="schema_mismatch",
        status="auto_fixed" if auto_fixed else "pending",
    )

    if critical and still_missing:
        return WriteResult(
            success=False,
            error=f"Critical columns missing: {', '.join(still_missing)}",
            removed_fields=still_missing,
            auto_fixed_columns=auto_fixed,
        )
    return _Reconciled(columns=live, removed=still_missing, auto_fixed=auto_fixed)


async def resilient_insert(
    session: AsyncSession,
    table: str,
    data: dict[str, Any] | list[dict[str, Any]],
    auto_fix: bool = True,
    critical: bool = False,
) -> WriteResult:
    """Insert one row (dict) or several (list); returns the written values in the same shape."""
    rows = data if isinstance(data, list) else [data]
    if not rows or not any(rows):
        return WriteResult(success=False, error="No data to insert")

    columns = list(dict.fromkeys(key for row in rows for key in row))
    reconciled = await _reconcile(session, table, columns, rows[0], auto_fix, critical, "insert")
    if isinstance(reconciled, WriteResult):
        return reconciled

    written = []
    try:
        async with session.begin_nested():
            for row in rows:
                defaults = {k: v for k, v in python_defaults(table).items() if k in reconciled.columns}
                values = {**defaults, **{k: v for k, v in row.items() if k in reconciled.columns}}
                target = _target(table, list(values), values)
                await session.execute(insert(target).values(**values))
                written.append(values)
    except SQLAlchemyError as e:
        logger.error(f"Insert into {table} failed: {e}")
        return WriteResult(
            success=False,
            error=str(e),
            removed_fields=reconciled.removed,
            auto_fixed_columns=reconciled.auto_fixed,
        )

    return WriteResult(
        success=True,
        data=written if isinstance(data, list) else written[0],
        warning=f"Removed missing columns: {', '.join(reconciled.removed)}" if reconciled.removed else None,
        removed_fields=reconciled.removed,
        auto_fixed_columns=reconciled.auto_fixed,
    )


async def resilient_update(
    session: AsyncSession,
    table: str,
    updates: dict[str, Any],
    match: dict[str, Any],
    auto_fix: bool = True,
    critical: bool = False,
) -> WriteResult:
    """Update rows matching ``match``; ``data`` is ``{"rows_updated": n}``."""
    if not updates:
        return WriteResult(success=False, error="No data to update")
    if not match:
        return WriteResult(success=False, error="Update requires a match condition")

    reconciled = await _reconcile(session, table, list(updates), updates, auto_fix, critical, "update")
    if isinstance(reconciled, WriteResult):
        return reconciled

    unknown_match = [k for k in match if k not in reconciled.columns]
    if unknown_match:
        return WriteResult(success=False, error=f"Unknown match columns: {', '.join(unknown_match)}")

    values = {k: v for k, v in updates.items() if k in reconciled.columns}
    if not values:
        return WriteResult(
            success=False,
            error="No valid columns to update",
            removed_fields=reconciled.removed,
            auto_fixed_columns=reconciled.auto_fixed,
        )

    target = _target(table, list(dict.fromkeys([*values, *match])), {**match, **values})
    statement = update(target).where(*[target.c[k] == v for k, v in match.items()]).values(**values)
    try:
        async with session.begin_nested():
            result = await session.execute(statement)
    except SQLAlchemyError as e:
        logger.error(f"Update of {table} failed: {e}")
        return WriteResult(
            success=False,
            error=str(e),
            removed_fields=reconciled.removed,
            auto_fixed_columns=reconciled.auto_fixed,
        )

    return WriteResult(
        success=True,
        data={"rows_updated": result.rowcount},
        warning=f"Removed missing columns: {', '.join(reconciled.removed)}" if reconciled.removed else None,
        removed_fields=reconciled.removed,
        auto_fixed_columns=reconciled.auto_fixed,
    )
