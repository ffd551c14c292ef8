from typing import Optional, List, Dict, Any
from enum import Enum
from sqlmodel import Field, SQLModel
from sqlalchemy import Index
from datetime import datetime


class DatabaseEngineType(str, Enum):
    """Supported managed database engines."""

    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    MARIADB = "mariadb"
    SUPABASE = "supabase"

    @classmethod
    def values(cls) -> List[str]:
        return [member.value for member in cls]


# --- Metadata tables ---


class User(SQLModel, table=True):
    """
    Represents a console user.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    email: Optional[str] = Field(default=None, index=True)
    hashed_password: str
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    last_login: Optional[datetime] = None


class ActivityLog(SQLModel, table=True):
    """
    Append-only log of operations performed through the console
    (backups, connection changes, logins, ...).
    """

    __table_args__ = (
        Index("ix_activitylog_timestamp_id", "timestamp", "id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    timestamp: datetime = Field(default_factory=datetime.utcnow, index=True)
    user: str = Field(index=True)  # username of the actor
    database: str = Field(index=True)  # managed database name, or "hubpanel"
    operation: str = Field(index=True)  # e.g. "BACKUP", "ADD_CONNECTION"
    status: str = Field(default="success", index=True)  # "success", "failure", "error"
    details: Optional[str] = Field(default=None)
    sql_query: Optional[str] = Field(default=None)


class StoredConnection(SQLModel, table=True):
    """
    A managed database connection saved through the console.
    """

    __tablename__ = "database_connections"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    host: str
    port: int = Field(default=5432)
    username: str
    password: str
    database: str
    db_type: str = Field(default=DatabaseEngineType.POSTGRESQL.value)
    created_at: datetime = Field(default_factory=datetime.utcnow)


# --- Value objects ---


class ConnectionParameters(SQLModel):
    """Parameters for a single connection attempt. Never persisted."""

    host: str
    port: int
    username: str
    password: str
    database: str
    engine_type: DatabaseEngineType


class ConnectionTestResult(SQLModel):
    """Outcome of a connection test."""

    ok: bool
    latency_ms: int = 0
    error: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"ok": self.ok, "latencyMs": self.latency_ms}
        if not self.ok and self.error:
            body["error"] = self.error
        return body


class ManagedDatabase(SQLModel):
    """Resolved configuration of a managed database."""

    name: str
    host: str
    port: int
    user: str
    password: str
    database: str
    engine_type: DatabaseEngineType
    source: str = "env"  # "env" or "stored"


class TableSummary(SQLModel):
    name: str
    size_bytes: int = 0
    size: str = "0 Bytes"
    row_estimate: int = 0


class ColumnInfo(SQLModel):
    column_name: str
    data_type: str
    udt_name: Optional[str] = None
    character_maximum_length: Optional[int] = None
    numeric_precision: Optional[int] = None
    numeric_scale: Optional[int] = None
    is_nullable: str = "YES"
    column_default: Optional[str] = None


class ConstraintInfo(SQLModel):
    constraint_name: str
    constraint_type: str  # p, f, u, c, ...
    columns: List[str] = []


class IndexInfo(SQLModel):
    index_name: str
    is_unique: bool = False
    is_primary: bool = False
    definition: str = ""


class TableStructure(SQLModel):
    columns: List[ColumnInfo] = []
    constraints: List[ConstraintInfo] = []
    indexes: List[IndexInfo] = []


class LogQuery(SQLModel):
    database: Optional[str] = None
    user: Optional[str] = None
    operation: Optional[str] = None
    limit: int = 50
    offset: int = 0


class LogEntryPublic(SQLModel):
    id: int
    timestamp: datetime
    database: str
    user: str
    operation: str
    status: str
    details: Optional[str] = None
    sql_query: Optional[str] = None


class LogPage(SQLModel):
    entries: List[LogEntryPublic] = []
    total: int = 0


# --- Table data browsing ---


FILTER_OPERATORS = ["=", "!=", ">", "<", ">=", "<=", "LIKE", "ILIKE", "IS NULL", "IS NOT NULL"]
NULL_OPERATORS = ["IS NULL", "IS NOT NULL"]


class DataFilter(SQLModel):
    """A single column condition; value is ignored for the NULL checks."""

    column: str
    operator: str
    value: Optional[Any] = None


class TableDataOptions(SQLModel):
    page: int = 1
    page_size: int = 50
    order_by: Optional[str] = None
    order_dir: str = "ASC"
    filters: List[DataFilter] = []


class TableDataPage(SQLModel):
    rows: List[Dict[str, Any]] = []
    fields: List[str] = []
    total: int = 0
    page: int = 1
    page_size: int = 50
    total_pages: int = 0

    def to_response(self) -> Dict[str, Any]:
        return {
            "rows": self.rows,
            "fields": self.fields,
            "total": self.total,
            "page": self.page,
            "pageSize": self.page_size,
            "totalPages": self.total_pages,
        }
