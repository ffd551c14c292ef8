"""
PostgreSQL driver implementation.
Serves both self-hosted PostgreSQL and Supabase (PostgreSQL-compatible) databases.
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
      t.tablename AS name,
      pg_total_relation_size(quote_ident(:schema) || '.' || quote_ident(t.tablename)) AS size_bytes,
      COALESCE(s.n_live_tup, 0) AS row_estimate
    FROM pg_catalog.pg_tables t
    LEFT JOIN pg_stat_user_tables s
      ON s.schemaname = t.schemaname AND s.relname = t.tablename
    WHERE t.schemaname = :schema
    ORDER BY t.tablename
"""

COLUMNS_SQL = """
    SELECT
      c.column_name, c.data_type, c.udt_name,
      c.character_maximum_length, c.numeric_precision, c.numeric_scale,
      c.is_nullable, c.column_default
    FROM information_schema.columns c
    WHERE c.table_schema = :schema AND c.table_name = :table
    ORDER BY c.ordinal_position
"""

CONSTRAINTS_SQL = """
    SELECT
      con.conname AS constraint_name,
      con.contype AS constraint_type,
      array_agg(att.attname ORDER BY u.pos) AS columns
    FROM pg_catalog.pg_constraint con
    JOIN pg_catalog.pg_class rel ON rel.oid = con.conrelid
    JOIN pg_catalog.pg_namespace nsp ON nsp.oid = rel.relnamespace
    CROSS JOIN LATERAL unnest(con.conkey) WITH ORDINALITY AS u(attnum, pos)
    JOIN pg_catalog.pg_attribute att
      ON att.attrelid = rel.oid AND att.attnum = u.attnum
    WHERE nsp.nspname = :schema AND rel.relname = :table
    GROUP BY con.conname, con.contype
    ORDER BY con.conname
"""

INDEXES_SQL = """
    SELECT
      i.relname AS index_name,
      ix.indisunique AS is_unique,
      ix.indisprimary AS is_primary,
      pg_get_indexdef(ix.indexrelid) AS definition
    FROM pg_catalog.pg_index ix
    JOIN pg_catalog.pg_class i ON i.oid = ix.indexrelid
    JOIN pg_catalog.pg_class t ON t.oid = ix.indrelid
    JOIN pg_catalog.pg_namespace n ON n.oid = t.relnamespace
    WHERE n.nspname = :schema AND t.relname = :table
    ORDER BY i.relname
"""

SERVER_STATS_SQL = """
    SELECT
      version() AS version,
      current_database() AS current_db,
      pg_database_size(current_database()) AS db_size_bytes,
      (SELECT count(*)::int FROM pg_stat_activity) AS active_connections,
      (SELECT setting FROM pg_settings WHERE name = 'max_connections') AS max_connections
"""

ACTIVE_CONNECTIONS_SQL = """
    SELECT
      pid, usename AS user, datname AS database,
      client_addr::text AS client_addr, application_name, state, query,
      backend_start, query_start,
      EXTRACT(EPOCH FROM now() - query_start) AS query_duration
    FROM pg_stat_activity
    WHERE datname IS NOT NULL
    ORDER BY query_start DESC NULLS LAST
"""

# Requires the pg_stat_statements extension
SLOW_QUERIES_SQL = """
    SELECT queryid, query, calls, total_exec_time, mean_exec_time,
           min_exec_time, max_exec_time, rows
    FROM pg_stat_statements
    ORDER BY mean_exec_time DESC
    LIMIT 20
"""

DATABASE_SIZES_SQL = """
    SELECT datname AS name, pg_database_size(datname) AS size_bytes
    FROM pg_database
    WHERE datistemplate = false
    ORDER BY pg_database_size(datname) DESC
"""

CACHE_HIT_SQL = """
    SELECT
      COALESCE(sum(heap_blks_read), 0) AS heap_read,
      COALESCE(sum(heap_blks_hit), 0) AS heap_hit,
      CASE WHEN COALESCE(sum(heap_blks_hit) + sum(heap_blks_read), 0) = 0 THEN 0
      ELSE round(sum(heap_blks_hit)::numeric / (sum(heap_blks_hit) + sum(heap_blks_read)) * 100, 2)
      END AS ratio
    FROM pg_statio_user_tables
"""

TRANSACTIONS_SQL = """
    SELECT
      xact_commit + xact_rollback AS total,
      xact_commit AS commits,
      xact_rollback AS rollbacks,
      CASE WHEN EXTRACT(EPOCH FROM (now() - stats_reset)) > 0
      THEN round(((xact_commit + xact_rollback) / EXTRACT(EPOCH FROM (now() - stats_reset)))::numeric, 2)
      ELSE 0 END AS tps
    FROM pg_stat_database
    WHERE datname = current_database()
"""

TABLE_BLOAT_SQL = """
    SELECT
      schemaname AS schema, relname AS table,
      n_live_tup AS live_rows, n_dead_tup AS dead_rows,
      CASE WHEN n_live_tup > 0 THEN round((n_dead_tup::numeric / n_live_tup) * 100, 2) ELSE 0 END AS bloat_ratio,
      last_vacuum, last_autovacuum, last_analyze, last_autoanalyze
    FROM pg_stat_user_tables
    ORDER BY n_dead_tup DESC
    LIMIT 20
"""


class PostgreSQLDriver(DatabaseDriver):
    """PostgreSQL / Supabase driver backed by psycopg2."""

    drivername = "postgresql+psycopg2"
    default_port = 5432

    def get_connect_args(self, timeout: float) -> Dict[str, Any]:
        """Get PostgreSQL-specific connection arguments."""
        connect_args = {
            # libpq takes whole seconds
            "connect_timeout": max(1, int(timeout)),
            "application_name": Config.APPLICATION_NAME,
        }

        ssl_mode = Config.PG_SSL_MODE
        if ssl_mode and ssl_mode != "disable":
            connect_args["sslmode"] = ssl_mode

        return connect_args

    def quote_identifier(self, name: str) -> str:
        return '"' + name.replace('"', '""') + '"'

    def resolve_schema(self, schema: Optional[str]) -> str:
        return schema or Config.DEFAULT_SCHEMA

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

        columns = [ColumnInfo(**row) for row in self.query(COLUMNS_SQL, params).rows]

        constraints = [
            ConstraintInfo(
                constraint_name=row["constraint_name"],
                constraint_type=str(row["constraint_type"]),
                columns=split_columns(row.get("columns")),
            )
            for row in self.query(CONSTRAINTS_SQL, params).rows
        ]

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
            "SELECT 1 FROM pg_catalog.pg_namespace WHERE nspname = :schema",
            {"schema": self.resolve_schema(schema)},
        )
        return len(result) > 0

    def get_server_stats(self) -> Dict[str, Any]:
        row = first_row(self.query(SERVER_STATS_SQL))
        size_bytes = to_int(row.get("db_size_bytes"))
        return {
            "version": row.get("version", "Unknown"),
            "current_db": row.get("current_db", self.config.database),
            "db_size": format_bytes(size_bytes),
            "db_size_bytes": size_bytes,
            "active_connections": to_int(row.get("active_connections")),
            "max_connections": str(row.get("max_connections", "0")),
        }

    def get_active_connections(self) -> List[Dict[str, Any]]:
        return self.query(ACTIVE_CONNECTIONS_SQL).rows

    def get_slow_queries(self) -> List[Dict[str, Any]]:
        try:
            return self.query(SLOW_QUERIES_SQL).rows
        except DatabaseConnectionError as e:
            logging.info(f"Slow query statistics unavailable on '{self.name}': {e}")
            return []

    def get_monitoring_extras(self) -> Dict[str, Any]:
        sizes = []
        for row in self.query(DATABASE_SIZES_SQL).rows:
            size_bytes = to_int(row.get("size_bytes"))
            sizes.append({"name": row["name"], "size": format_bytes(size_bytes), "size_bytes": size_bytes})

        return {
            "database_sizes": sizes,
            "cache_hit": first_row(self.query(CACHE_HIT_SQL)),
            "transactions": first_row(self.query(TRANSACTIONS_SQL)),
            "table_bloat": self.query(TABLE_BLOAT_SQL).rows,
        }
