"""
MySQL/MariaDB driver implementation.

MySQL has no schemas separate from databases, so the conventional "public"
schema is mapped onto the connection's own database.
"""

import logging
from typing import Any, Dict, List, Optional

from .base import DatabaseDriver, first_row, split_columns, to_int
from ..config import Config
from ..errors import DatabaseConnectionError
from ..models import ColumnInfo, ConstraintInfo, IndexInfo, TableStructure, TableSummary
from ..utils import format_bytes


LIST_TABLES_SQL = """
    SELECT
      TABLE_NAME AS name,
      DATA_LENGTH + INDEX_LENGTH AS size_bytes,
      TABLE_ROWS AS row_estimate
    FROM information_schema.TABLES
    WHERE TABLE_SCHEMA = :schema
      AND TABLE_TYPE = 'BASE TABLE'
    ORDER BY TABLE_NAME
"""

COLUMNS_SQL = """
    SELECT
      COLUMN_NAME AS column_name,
      DATA_TYPE AS data_type,
      COLUMN_TYPE AS udt_name,
      CHARACTER_MAXIMUM_LENGTH AS character_maximum_length,
      NUMERIC_PRECISION AS numeric_precision,
      NUMERIC_SCALE AS numeric_scale,
      IS_NULLABLE AS is_nullable,
      COLUMN_DEFAULT AS column_default
    FROM information_schema.COLUMNS
    WHERE TABLE_SCHEMA = :schema AND TABLE_NAME = :table
    ORDER BY ORDINAL_POSITION
"""

CONSTRAINTS_SQL = """
    SELECT
      tc.CONSTRAINT_NAME AS constraint_name,
      tc.CONSTRAINT_TYPE AS constraint_type,
      GROUP_CONCAT(kcu.COLUMN_NAME ORDER BY kcu.ORDINAL_POSITION) AS columns_str
    FROM information_schema.TABLE_CONSTRAINTS tc
    JOIN information_schema.KEY_COLUMN_USAGE kcu
      ON kcu.CONSTRAINT_SCHEMA = tc.CONSTRAINT_SCHEMA
     AND kcu.CONSTRAINT_NAME = tc.CONSTRAINT_NAME
     AND kcu.TABLE_NAME = tc.TABLE_NAME
    WHERE tc.TABLE_SCHEMA = :schema AND tc.TABLE_NAME = :table
    GROUP BY tc.CONSTRAINT_NAME, tc.CONSTRAINT_TYPE
    ORDER BY tc.CONSTRAINT_NAME
"""

INDEXES_SQL = """
    SELECT
      INDEX_NAME AS index_name,
      NOT NON_UNIQUE AS is_unique,
      INDEX_NAME = 'PRIMARY' AS is_primary,
      GROUP_CONCAT(COLUMN_NAME ORDER BY SEQ_IN_INDEX) AS definition
    FROM information_schema.STATISTICS
    WHERE TABLE_SCHEMA = :schema AND TABLE_NAME = :table
    GROUP BY INDEX_NAME, NON_UNIQUE
    ORDER BY INDEX_NAME
"""

ACTIVE_CONNECTIONS_SQL = """
    SELECT
      ID AS pid, USER AS user, DB AS `database`,
      HOST AS client_addr, COMMAND AS state, INFO AS query,
      TIME AS query_duration
    FROM information_schema.PROCESSLIST
    WHERE DB IS NOT NULL
    ORDER BY TIME DESC
"""

# Only populated when the server runs with log_output=TABLE
SLOW_QUERIES_SQL = """
    SELECT start_time, user_host, query_time, lock_time, rows_sent, rows_examined, db, sql_text
    FROM mysql.slow_log
    ORDER BY start_time DESC
    LIMIT 20
"""

# information_schema spells constraint types out; normalize to the pg_constraint codes
CONSTRAINT_TYPE_CODES = {
    "PRIMARY KEY": "p",
    "FOREIGN KEY": "f",
    "UNIQUE": "u",
    "CHECK": "c",
}


class MySQLDriver(DatabaseDriver):
    """MySQL / MariaDB driver backed by PyMySQL."""

    drivername = "mysql+pymysql"
    default_port = 3306

    def get_connect_args(self, timeout: float) -> Dict[str, Any]:
        """Get MySQL-specific connection arguments."""
        return {
            "connect_timeout": max(1, int(timeout)),
            "charset": Config.MYSQL_CHARSET,
        }

    def quote_identifier(self, name: str) -> str:
        return "`" + name.replace("`", "``") + "`"

    def resolve_schema(self, schema: Optional[str]) -> str:
        if not schema or schema == Config.DEFAULT_SCHEMA:
            return self.config.database
        return schema

    def filter_operator(self, operator: str) -> str:
        # LIKE is already case-insensitive under the default collations
        return "LIKE" if operator == "ILIKE" else operator

    def list_tables(self, schema: Optional[str] = None) -> List[TableSummary]:
        result = self.query(LIST_TABLES_SQL, {"schema": self.resolve_schema(schema)})
        tables = []
        for row in result.rows:
            size_bytes = to_int(row.get("size_bytes"))
            tables.append(TableSummary(
                name=row["name"],
                size_bytes=size_bytes,
                size=format_bytes(size_bytes),
                row_estimate=to_int(row.get("row_estimate")),
            ))
        return tables

    def get_table_structure(self, schema: str, table: str) -> TableStructure:
        params = {"schema": self.resolve_schema(schema), "table": table}

        columns = []
        for row in self.query(COLUMNS_SQL, params).rows:
            if row.get("column_default") is not None:
                row["column_default"] = str(row["column_default"])
            columns.append(ColumnInfo(**row))

        constraints = []
        for row in self.query(CONSTRAINTS_SQL, params).rows:
            raw_type = str(row["constraint_type"])
            constraints.append(ConstraintInfo(
                constraint_name=row["constraint_name"],
                constraint_type=CONSTRAINT_TYPE_CODES.get(raw_type, raw_type),
                columns=split_columns(row.get("columns_str")),
            ))

        indexes = [
            IndexInfo(
                index_name=row["index_name"],
                is_unique=bool(row["is_unique"]),
                is_primary=bool(row["is_primary"]),
                definition=row.get("definition") or "",
            )
            for row in self.query(INDEXES_SQL, params).rows
        ]

        return TableStructure(columns=columns, constraints=constraints, indexes=indexes)

    def schema_exists(self, schema: Optional[str]) -> bool:
        result = self.query(
            "SELECT 1 FROM information_schema.SCHEMATA WHERE SCHEMA_NAME = :schema",
            {"schema": self.resolve_schema(schema)},
        )
        return len(result) > 0

    def show_create_table(self, schema: Optional[str], table: str) -> Optional[str]:
        """Get the server-generated CREATE TABLE statement."""
        row = first_row(self.query(f"SHOW CREATE TABLE {self.qualify(schema, table)}"))
        return row.get("Create Table")

    def get_server_stats(self) -> Dict[str, Any]:
        version = first_row(self.query("SELECT VERSION() AS version")).get("version", "Unknown")
        size_row = first_row(self.query(
            "SELECT SUM(DATA_LENGTH + INDEX_LENGTH) AS db_size_bytes "
            "FROM information_schema.TABLES WHERE TABLE_SCHEMA = :schema",
            {"schema": self.config.database},
        ))
        process_row = first_row(self.query(
            "SELECT COUNT(*) AS count FROM information_schema.PROCESSLIST"
        ))
        max_conn_row = first_row(self.query("SHOW VARIABLES LIKE 'max_connections'"))

        size_bytes = to_int(size_row.get("db_size_bytes"))
        return {
            "version": version,
            "current_db": self.config.database,
            "db_size": format_bytes(size_bytes),
            "db_size_bytes": size_bytes,
            "active_connections": to_int(process_row.get("count")),
            "max_connections": str(max_conn_row.get("Value", "0")),
        }

    def get_active_connections(self) -> List[Dict[str, Any]]:
        return self.query(ACTIVE_CONNECTIONS_SQL).rows

    def get_slow_queries(self) -> List[Dict[str, Any]]:
        try:
            return self.query(SLOW_QUERIES_SQL).rows
        except DatabaseConnectionError as e:
            logging.info(f"Slow query log unavailable on '{self.name}': {e}")
            return []
