"""
Abstract base class for managed database drivers.
Defines the interface that every engine adapter must implement.
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool, QueuePool

from ..config import Config
from ..errors import DatabaseConnectionError
from ..models import (
    NULL_OPERATORS,
    DatabaseEngineType,
    ManagedDatabase,
    TableDataOptions,
    TableDataPage,
    TableStructure,
    TableSummary,
)


def describe_error(error: Exception) -> str:
    """
    Extract the driver's own diagnostic text from a SQLAlchemy error.

    SQLAlchemy wraps DBAPI errors and appends SQL and a documentation link;
    the wrapped exception's message is what users need to see.
    """
    orig = getattr(error, "orig", None)
    message = str(orig) if orig is not None else str(error)
    return message.strip() or type(error).__name__


class QueryResult:
    """Rows and column names returned by a driver query."""

    def __init__(self, rows: List[Dict[str, Any]], fields: List[str]):
        self.rows = rows
        self.fields = fields

    def __len__(self) -> int:
        return len(self.rows)


class DatabaseDriver(ABC):
    """Abstract interface for managed database engines."""

    # SQLAlchemy dialect+driver name
    drivername: str = ""
    default_port: int = 0

    def __init__(self, config: ManagedDatabase):
        """
        Initialize the driver with a managed database configuration.

        Args:
            config: Resolved managed database configuration
        """
        self.config = config
        self._engine: Optional[Engine] = None

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def engine_type(self) -> DatabaseEngineType:
        return self.config.engine_type

    @property
    def engine(self) -> Engine:
        """Get the pooled engine, creating it if necessary."""
        if self._engine is None:
            self._engine = self.create_engine()
        return self._engine

    def get_connection_url(self) -> URL:
        """Build the SQLAlchemy URL for this database."""
        return URL.create(
            self.drivername,
            username=self.config.user,
            password=self.config.password,
            host=self.config.host,
            port=self.config.port or self.default_port,
            database=self.config.database,
        )

    def create_engine(self) -> Engine:
        """Create the pooled engine used for introspection and queries."""
        engine_kwargs = {
            "poolclass": QueuePool,
            "pool_size": Config.DRIVER_POOL_SIZE,
            "max_overflow": Config.DRIVER_MAX_OVERFLOW,
            "pool_timeout": Config.get_connect_timeout(),
            "pool_pre_ping": True,
            "pool_recycle": Config.DRIVER_POOL_RECYCLE,
            "connect_args": self.get_connect_args(Config.get_connect_timeout()),
        }
        engine = create_engine(self.get_connection_url(), **engine_kwargs)
        logging.info(
            f"Created {self.engine_type.value} engine for '{self.name}' "
            f"(pool_size={engine_kwargs['pool_size']})"
        )
        return engine

    def create_test_engine(self, timeout: float) -> Engine:
        """
        Create an unpooled engine for a single connection attempt.
        Connections are closed as soon as they are released.
        """
        return create_engine(
            self.get_connection_url(),
            poolclass=NullPool,
            connect_args=self.get_connect_args(timeout),
        )

    @abstractmethod
    def get_connect_args(self, timeout: float) -> Dict[str, Any]:
        """Get DBAPI connection arguments, including the connect timeout."""
        pass

    @abstractmethod
    def quote_identifier(self, name: str) -> str:
        """Quote a SQL identifier."""
        pass

    @abstractmethod
    def resolve_schema(self, schema: Optional[str]) -> str:
        """Map a requested schema name onto this engine's namespace."""
        pass

    @abstractmethod
    def list_tables(self, schema: Optional[str] = None) -> List[TableSummary]:
        """List base tables in a schema."""
        pass

    @abstractmethod
    def get_table_structure(self, schema: str, table: str) -> TableStructure:
        """Get columns, constraints and indexes of a table."""
        pass

    @abstractmethod
    def schema_exists(self, schema: Optional[str]) -> bool:
        """Check whether a schema exists."""
        pass

    @abstractmethod
    def get_server_stats(self) -> Dict[str, Any]:
        """Get server version, database size and connection counts."""
        pass

    @abstractmethod
    def get_active_connections(self) -> List[Dict[str, Any]]:
        """Get the server's client sessions, longest running first."""
        pass

    @abstractmethod
    def get_slow_queries(self) -> List[Dict[str, Any]]:
        """Get the slowest recorded statements, or an empty list if the server does not track them."""
        pass

    def get_monitoring_extras(self) -> Dict[str, Any]:
        """
        Engine-specific monitoring figures (database sizes, cache hits,
        transaction counters, table bloat). Engines without them return {}.
        """
        return {}

    def filter_operator(self, operator: str) -> str:
        """Map a filter operator onto this engine's SQL."""
        return operator

    def query(self, sql: str, params: Optional[Dict[str, Any]] = None) -> QueryResult:
        """
        Execute a parameterized query on a pooled connection.

        The connection is checked out for the duration of the call only and
        returned to the pool on every exit path.

        Raises:
            DatabaseConnectionError: If the engine is unreachable or rejects the query
        """
        try:
            with self.engine.connect() as conn:
                return _collect(conn.execute(text(sql), params or {}))
        except SQLAlchemyError as e:
            message = describe_error(e)
            logging.error(f"Query error on '{self.name}': {message}")
            raise DatabaseConnectionError(message) from e

    def execute(self, sql: str) -> QueryResult:
        """
        Run a console-supplied statement verbatim and commit it.

        The text goes to the DBAPI cursor untouched, so bind-parameter and
        percent syntax inside it is not interpreted.

        Raises:
            DatabaseConnectionError: If the engine is unreachable or rejects the statement
        """
        try:
            with self.engine.begin() as conn:
                conn = conn.execution_options(no_parameters=True)
                return _collect(conn.exec_driver_sql(sql))
        except SQLAlchemyError as e:
            message = describe_error(e)
            logging.warning(f"Statement rejected by '{self.name}': {message}")
            raise DatabaseConnectionError(message) from e

    def get_table_data(self, schema: Optional[str], table: str, options: TableDataOptions) -> TableDataPage:
        """
        Get one page of a table's rows.

        Filters are combined with AND and their values are bound as
        parameters. Column names are quoted, never interpolated raw.
        """
        params: Dict[str, Any] = {}
        clauses = []
        for i, data_filter in enumerate(options.filters):
            column = self.quote_identifier(data_filter.column)
            if data_filter.operator in NULL_OPERATORS:
                clauses.append(f"{column} {data_filter.operator}")
            else:
                params[f"filter_{i}"] = data_filter.value
                clauses.append(f"{column} {self.filter_operator(data_filter.operator)} :filter_{i}")

        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        order = ""
        if options.order_by:
            direction = "DESC" if options.order_dir == "DESC" else "ASC"
            order = f" ORDER BY {self.quote_identifier(options.order_by)} {direction}"
        table_ref = self.qualify(schema, table)

        count_row = first_row(self.query(f"SELECT COUNT(*) AS total FROM {table_ref}{where}", params))
        total = to_int(count_row.get("total"))

        page_params = dict(params)
        page_params["page_limit"] = options.page_size
        page_params["page_offset"] = (options.page - 1) * options.page_size
        result = self.query(
            f"SELECT * FROM {table_ref}{where}{order} LIMIT :page_limit OFFSET :page_offset",
            page_params,
        )

        return TableDataPage(
            rows=result.rows,
            fields=result.fields,
            total=total,
            page=options.page,
            page_size=options.page_size,
            total_pages=math.ceil(total / options.page_size) if options.page_size else 0,
        )

    def ping(self) -> None:
        """Run a trivial query to verify connectivity."""
        self.query("SELECT 1")

    def qualify(self, schema: Optional[str], table: str) -> str:
        """Build a quoted, schema-qualified table reference."""
        resolved = self.resolve_schema(schema)
        return f"{self.quote_identifier(resolved)}.{self.quote_identifier(table)}"

    def close(self) -> None:
        """Dispose of the connection pool."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None


def _collect(result) -> QueryResult:
    if not result.returns_rows:
        return QueryResult([], [])
    fields = list(result.keys())
    rows = [dict(row._mapping) for row in result]
    return QueryResult(rows, fields)


def split_columns(value: Any) -> List[str]:
    """Normalize an aggregated column list into a list of names."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    text_value = str(value).strip("{}")
    return [part for part in text_value.split(",") if part]


def to_int(value: Any, default: int = 0) -> int:
    """Coerce numeric catalog values (Decimal, str, None) to int."""
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def first_row(result: QueryResult) -> Dict[str, Any]:
    return result.rows[0] if result.rows else {}

