"""Live table introspection, write validation and safe column auto-fix.

Column information comes from SQLAlchemy reflection against the session's
connection, so it reflects the database as it is, not as the models say it
should be. Results are cached per table for ``schema_cache_ttl_seconds``.
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Literal
from uuid import UUID

from pydantic_core import PydanticUndefined
from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from awash.config import get_settings
from awash.database.models import TABLE_MODELS
from awash.schemas import SchemaIssue, SchemaValidationResult


logger = logging.getLogger(__name__)

SAFE_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")
UUID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
INTEGER_TYPE = re.compile(r"int(eger)?\b")

Operation = Literal["select", "insert", "update", "upsert"]


@dataclass
class ColumnInfo:
    name: str
    type: str
    nullable: bool = True
    default: str | None = None
    primary_key: bool = False


@dataclass
class TableSchema:
    table_name: str
    columns: list[ColumnInfo] = field(default_factory=list)

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    @property
    def primary_keys(self) -> list[str]:
        return [c.name for c in self.columns if c.primary_key]

    def get(self, name: str) -> ColumnInfo | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None


@dataclass
class ColumnValidation:
    valid: bool
    existing_columns: list[str]
    missing_columns: list[str]


def is_safe_identifier(name: str) -> bool:
    return bool(SAFE_IDENTIFIER.match(name))


# =============================================================================
# Reflection + Cache
# =============================================================================

_schema_cache: dict[str, tuple[float, TableSchema]] = {}


def clear_schema_cache(table: str | None = None) -> None:
    """Drop cached schemas (all, or one table)."""
    if table is None:
        _schema_cache.clear()
    else:
        _schema_cache.pop(table, None)


def _reflect(sync_session: Any, table: str) -> TableSchema | None:
    inspector = inspect(sync_session.connection())
    if not inspector.has_table(table):
        return None

    pk_columns = set(inspector.get_pk_constraint(table).get("constrained_columns") or [])
    columns = [
        ColumnInfo(
            name=col["name"],
            type=str(col["type"]).lower(),
            nullable=bool(col.get("nullable", True)),
            default=col.get("default"),
            primary_key=col["name"] in pk_columns,
        )
        for col in inspector.get_columns(table)
    ]
    return TableSchema(table_name=table, columns=columns)


async def get_table_schema(session: AsyncSession, table: str) -> TableSchema | None:
    """Columns of ``table`` as the database sees them, or None if it doesn't exist."""
    if not is_safe_identifier(table):
        logger.warning(f"Refusing to introspect unsafe table name '{table}'")
        return None

    ttl = get_settings().schema_cache_ttl_seconds
    cached = _schema_cache.get(table)
    if cached and time.monotonic() - cached[0] < ttl:
        return cached[1]

    try:
        schema = await session.run_sync(_reflect, table)
        if schema is not None and not schema.columns:
            # Reflection came back empty; column names from a probe query are still useful
            result = await session.execute(text(f'SELECT * FROM "{table}" LIMIT 1'))
            schema.columns = [ColumnInfo(name=name, type="unknown") for name in result.keys()]
    except SQLAlchemyError as e:
        logger.error(f"Failed to get schema for '{table}': {e}")
        return None

    if schema is None:
        logger.warning(f"Table '{table}' not found")
        return None

    _schema_cache[table] = (time.monotonic(), schema)
    return schema


async def validate_columns(session: AsyncSession, table: str, columns: list[str]) -> ColumnValidation:
    """Split ``columns`` into those the table has and those it lacks."""
    schema = await get_table_schema(session, table)
    if schema is None:
        return ColumnValidation(valid=False, existing_columns=[], missing_columns=list(columns))

    known = set(schema.column_names)
    existing = [c for c in columns if c in known]
    missing = [c for c in columns if c not in known]
    return ColumnValidation(valid=not missing, existing_columns=existing, missing_columns=missing)


def python_defaults(table: str) -> dict[str, Any]:
    """Defaults the models fill in client side, keyed by column name."""
    model = TABLE_MODELS.get(table)
    if model is None:
        return {}

    column_names = set(model.__table__.columns.keys())
    defaults: dict[str, Any] = {}
    for name, info in model.model_fields.items():
        if name not in column_names or info.is_required():
            continue
        if info.default_factory is None and info.default is PydanticUndefined:
            continue
        defaults[name] = info.get_default(call_default_factory=True)
    return defaults


# =============================================================================
# Validation
# =============================================================================

COMMON_SCHEMA_FIXES: dict[str, str] = {
    "generated_code.code": "Use project_files.file_content instead",
    "projects.name": "Use projects.title instead",
    "project_files.content": "Use project_files.file_content instead",
    "conversations.name": "Use conversations.title instead",
}


def get_schema_fix_suggestion(issue: SchemaIssue) -> str:
    """A known fix for the table/column pair, else the issue's own suggestion."""
    return COMMON_SCHEMA_FIXES.get(f"{issue.table}.{issue.column}", issue.fix_suggestion)


def check_column_type(table: str, name: str, value: Any, column: ColumnInfo) -> SchemaIssue | None:
    column_type = column.type
    actual = type(value).__name__

    if "uuid" in column_type:
        if not (isinstance(value, UUID) or (isinstance(value, str) and UUID_PATTERN.match(value))):
            return SchemaIssue(
                type="type_mismatch", table=table, column=name, expected="uuid", actual=actual,
                message=f"Column '{name}' expects UUID format",
                fix_suggestion="Use a valid UUID",
            )

    if ("text" in column_type or "varchar" in column_type) and not isinstance(value, str):
        return SchemaIssue(
            type="type_mismatch", table=table, column=name, expected="string", actual=actual,
            message=f"Column '{name}' expects string, got {actual}",
            fix_suggestion="Convert value to string",
        )

    if INTEGER_TYPE.search(column_type) and (isinstance(value, bool) or not isinstance(value, int)):
        return SchemaIssue(
            type="type_mismatch", table=table, column=name, expected="integer", actual=actual,
            message=f"Column '{name}' expects integer, got {actual}",
            fix_suggestion="Convert value to integer or use correct numeric type",
        )

    if "json" in column_type:
        if isinstance(value, str):
            try:
                json.loads(value)
            except ValueError:
                return SchemaIssue(
                    type="type_mismatch", table=table, column=name,
                    expected="valid json", actual="invalid json",
                    message=f"Column '{name}' contains invalid JSON",
                    fix_suggestion="Check JSON syntax",
                )
        elif not isinstance(value, (dict, list)):
            return SchemaIssue(
                type="type_mismatch", table=table, column=name, expected="object/json", actual=actual,
                message=f"Column '{name}' expects JSON, got {actual}",
                fix_suggestion="Provide a valid JSON object",
            )

    return None


class SchemaValidator:
    """Checks a planned write against the live schema before it is executed."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def validate_operation(
        self,
        operation: Operation,
        table: str,
        data: dict[str, Any] | None = None,
    ) -> SchemaValidationResult:
        result = SchemaValidationResult()

        schema = await get_table_schema(self.session, table)
        if schema is None:
            result.valid = False
            result.errors.append(SchemaIssue(
                type="table_not_found",
                table=table,
                message=f"Table '{table}' does not exist in database",
                fix_suggestion="Check if table name is correct. Common tables: "
                               + ", ".join(sorted(TABLE_MODELS)),
            ))
            return result

        if data and operation in ("insert", "update", "upsert"):
            issues = self._check_data(operation, data, schema)
            result.errors.extend(issues)
            result.valid = not issues

        logger.info(f"Validated {operation} on {table}: {len(result.errors)} issue(s)")
        return result

    async def validate_batch(self, operations: list[tuple[Operation, str, dict[str, Any] | None]]) -> SchemaValidationResult:
        combined = SchemaValidationResult()
        for operation, table, data in operations:
            result = await self.validate_operation(operation, table, data)
            combined.errors.extend(result.errors)
            combined.warnings.extend(result.warnings)
        combined.valid = not combined.errors
        return combined

    def clear_cache(self) -> None:
        clear_schema_cache()

    def _check_data(self, operation: Operation, data: dict[str, Any], schema: TableSchema) -> list[SchemaIssue]:
        issues: list[SchemaIssue] = []
        table = schema.table_name
        known = schema.column_names

        for name in data:
            if name not in known:
                issue = SchemaIssue(
                    type="column_mismatch",
                    table=table,
                    column=name,
                    message=f"Column '{name}' does not exist in table '{table}'",
                    fix_suggestion=f"Available columns: {', '.join(known)}",
                )
                issue.fix_suggestion = get_schema_fix_suggestion(issue)
                issues.append(issue)

        # Updates only touch the columns they name
        if operation != "update":
            defaulted = python_defaults(table)
            for column in schema.columns:
                if column.nullable or column.default is not None or column.primary_key:
                    continue
                if column.name in data or column.name in defaulted:
                    continue
                issues.append(SchemaIssue(
                    type="constraint_violation",
                    table=table,
                    column=column.name,
                    message=f"Required column '{column.name}' is missing",
                    fix_suggestion=f"Add '{column.name}' to your data object",
                ))

        for name, value in data.items():
            column = schema.get(name)
            if column is None or value is None:
                continue
            issue = check_column_type(table, name, value, column)
            if issue:
                issues.append(issue)

        return issues


# =============================================================================
# Auto-fix
# =============================================================================

def infer_sql_type(sample: Any, dialect: str) -> str:
    """SQL type for a new nullable column, judged from one sample value."""
    if isinstance(sample, bool):
        return "BOOLEAN"
    if isinstance(sample, int):
        return "BIGINT"
    if isinstance(sample, float):
        return "DOUBLE PRECISION"
    if isinstance(sample, (dict, list)):
        return "JSONB" if dialect == "postgresql" else "JSON"
    return "TEXT"


async def auto_fix_missing_column(
    session: AsyncSession,
    table: str,
    column: str,
    sample: Any = None,
) -> bool:
    """Add ``column`` to ``table`` as a nullable column.

    Returns False without touching the database when auto-fix is disabled
    or either identifier is not a plain lowercase name.
    """
    if not get_settings().schema_auto_fix:
        return False
    if not (is_safe_identifier(table) and is_safe_identifier(column)):
        logger.warning(f"Not auto-fixing unsafe identifier {table}.{column}")
        return False

    sql_type = infer_sql_type(sample, session.bind.dialect.name)
    try:
        async with session.begin_nested():
            await session.execute(text(f'ALTER TABLE "{table}" ADD COLUMN "{column}" {sql_type}'))
    except SQLAlchemyError as e:
        logger.error(f"Auto-fix of {table}.{column} failed: {e}")
        return False
    finally:
        clear_schema_cache(table)

    logger.warning(f"Auto-fixed schema: added {table}.{column} {sql_type} NULL")
    return True
