"""
SQL dump generation for managed databases.

Dumps are plain SQL text: DROP/CREATE statements per table followed by one
INSERT per row, capped at Config.BACKUP_ROW_LIMIT rows per table.
"""

import json
import logging
import time
from datetime import date, datetime, time as dt_time, timezone
from decimal import Decimal
from typing import Any, List, Optional

from .config import Config
from .drivers import DatabaseDriver, MySQLDriver
from .models import DatabaseEngineType, TableStructure


MYSQL_FAMILY = (DatabaseEngineType.MYSQL, DatabaseEngineType.MARIADB)


def render_literal(value: Any, engine_type: DatabaseEngineType) -> str:
    """
    Render a Python value as a SQL literal.

    Args:
        value: Column value as returned by the driver
        engine_type: Target engine, used for binary and array literals

    Returns:
        SQL literal text
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        hex_value = bytes(value).hex()
        if engine_type in MYSQL_FAMILY:
            return f"X'{hex_value}'"
        return f"'\\x{hex_value}'"
    if isinstance(value, (datetime, date, dt_time)):
        return f"'{value.isoformat()}'"
    if isinstance(value, dict):
        value = json.dumps(value, default=str)
    elif isinstance(value, (list, tuple)):
        if engine_type in MYSQL_FAMILY:
            value = json.dumps(value, default=str)
        else:
            value = _pg_array_literal(value)
    escaped = str(value).replace("'", "''")
    return f"'{escaped}'"


def _pg_array_literal(values: Any) -> str:
    """Render a (possibly nested) list in PostgreSQL array input syntax, e.g. {1,NULL,"a b"}."""
    elements = []
    for item in values:
        if item is None:
            elements.append("NULL")
        elif isinstance(item, (list, tuple)):
            elements.append(_pg_array_literal(item))
        elif isinstance(item, bool):
            elements.append("true" if item else "false")
        elif isinstance(item, (int, float, Decimal)):
            elements.append(str(item))
        else:
            if isinstance(item, dict):
                item = json.dumps(item, default=str)
            elif isinstance(item, (datetime, date, dt_time)):
                item = item.isoformat()
            text = str(item).replace("\\", "\\\\").replace('"', '\\"')
            elements.append(f'"{text}"')
    return "{" + ",".join(elements) + "}"


def backup_filename(database: str) -> str:
    """Attachment name for a dump, e.g. analytics_backup_1760000000000.sql"""
    return f"{database}_backup_{int(time.time() * 1000)}.sql"


def _insert_statements(driver: DatabaseDriver, schema: Optional[str], table: str) -> List[str]:
    table_ref = driver.quote_identifier(table)
    result = driver.query(
        f"SELECT * FROM {driver.qualify(schema, table)} LIMIT {int(Config.BACKUP_ROW_LIMIT)}"
    )
    if not result.rows:
        return []

    columns = ", ".join(driver.quote_identifier(field) for field in result.fields)
    statements = []
    for row in result.rows:
        values = ", ".join(render_literal(row[field], driver.engine_type) for field in result.fields)
        statements.append(f"INSERT INTO {table_ref} ({columns}) VALUES ({values});")
    return statements


def _create_table_from_structure(driver: DatabaseDriver, table: str, structure: TableStructure) -> str:
    """Rebuild a CREATE TABLE statement from introspected columns and the primary key."""
    definitions = []
    for column in structure.columns:
        type_def = column.data_type
        if column.character_maximum_length:
            type_def += f"({column.character_maximum_length})"
        line = f"  {driver.quote_identifier(column.column_name)} {type_def}"
        if column.is_nullable == "NO":
            line += " NOT NULL"
        if column.column_default:
            line += f" DEFAULT {column.column_default}"
        definitions.append(line)

    primary_key = next((c for c in structure.constraints if c.constraint_type == "p"), None)
    if primary_key and primary_key.columns:
        pk_columns = ", ".join(driver.quote_identifier(c) for c in primary_key.columns)
        definitions.append(f"  PRIMARY KEY ({pk_columns})")

    return f"CREATE TABLE {driver.quote_identifier(table)} (\n" + ",\n".join(definitions) + "\n);"


def _dump_mysql(driver: MySQLDriver, schema: Optional[str], lines: List[str]):
    lines.append("SET FOREIGN_KEY_CHECKS = 0;")
    lines.append("")

    for summary in driver.list_tables(schema):
        table = summary.name
        lines.append(f"-- Table: {table}")
        lines.append(f"DROP TABLE IF EXISTS {driver.quote_identifier(table)};")

        create_sql = driver.show_create_table(schema, table)
        if create_sql:
            lines.append(create_sql + ";")

        lines.extend(_insert_statements(driver, schema, table))
        lines.append("")

    lines.append("SET FOREIGN_KEY_CHECKS = 1;")


def _dump_postgresql(driver: DatabaseDriver, schema: Optional[str], lines: List[str]):
    lines.append("BEGIN;")
    lines.append("")

    for summary in driver.list_tables(schema):
        table = summary.name
        structure = driver.get_table_structure(driver.resolve_schema(schema), table)

        lines.append(f"-- Table: {table}")
        lines.append(f"DROP TABLE IF EXISTS {driver.quote_identifier(table)} CASCADE;")
        lines.append(_create_table_from_structure(driver, table, structure))
        lines.append("")

        inserts = _insert_statements(driver, schema, table)
        if inserts:
            lines.extend(inserts)
            lines.append("")

    lines.append("COMMIT;")


def generate_dump(driver: DatabaseDriver, schema: Optional[str] = None) -> str:
    """
    Generate a SQL dump of every base table in a schema.

    Args:
        driver: Driver for the managed database
        schema: Schema to dump; defaults to the engine's default schema

    Returns:
        The dump as SQL text

    Raises:
        DatabaseConnectionError: If the engine is unreachable or rejects a query
    """
    generated_at = datetime.now(timezone.utc).isoformat()
    lines = [
        "--",
        "-- HubPanel SQL Dump",
        f"-- Database: {driver.name} ({driver.engine_type.value})",
        f"-- Generated at: {generated_at}",
        "--",
        "",
    ]

    if driver.engine_type in MYSQL_FAMILY:
        _dump_mysql(driver, schema, lines)
    else:
        _dump_postgresql(driver, schema, lines)

    lines.append("")
    dump = "\n".join(lines)
    logging.info(f"Generated SQL dump for '{driver.name}' ({len(dump)} bytes)")
    return dump
