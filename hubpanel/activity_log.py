"""
Activity log: the append-only record of operations performed through the
console, and the reader that filters and pages it.
"""

import logging
from typing import Any, Optional, Tuple
from sqlmodel import Session, select, func

from .config import Config
from .models import ActivityLog, LogEntryPublic, LogPage, LogQuery
from .utils import truncate_string

# Details longer than this are truncated with an ellipsis
MAX_DETAILS_LENGTH = 2000


def log_activity(
    session: Session,
    user: str,
    database: str,
    operation: str,
    details: Optional[str] = None,
    sql_query: Optional[str] = None,
    status: str = "success",
):
    """
    Append an entry to the activity log.
    """
    try:
        entry = ActivityLog(
            user=user,
            database=database,
            operation=operation,
            details=truncate_string(details, MAX_DETAILS_LENGTH) if details else details,
            sql_query=sql_query,
            status=status,
        )
        session.add(entry)
        session.commit()
        logging.info(f"Activity logged: {user} performed {operation} on {database}")
    except Exception as e:
        session.rollback()
        logging.error(f"Failed to write activity log entry: {e}")
        # Don't raise the exception to avoid breaking the main operation


def _coerce_non_negative(value: Any) -> Optional[int]:
    """Parse a paging value; None when it is missing, non-numeric or negative."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(str(value).strip())
    except ValueError:
        return None
    return number if number >= 0 else None


def normalize_paging(limit: Any = None, offset: Any = None) -> Tuple[int, int]:
    """
    Leniently resolve limit/offset query values.

    Missing, non-numeric or negative values fall back to the defaults
    (limit 50, offset 0); a zero limit also falls back. Limits above the
    configured maximum are clamped, and so are offsets
    too large for the metadata database to bind.
    """
    parsed_limit = _coerce_non_negative(limit)
    if not parsed_limit:
        parsed_limit = Config.LOG_QUERY_DEFAULT_LIMIT
    parsed_limit = min(parsed_limit, Config.LOG_QUERY_MAX_LIMIT)

    parsed_offset = _coerce_non_negative(offset)
    if parsed_offset is None:
        parsed_offset = 0
    parsed_offset = min(parsed_offset, Config.LOG_QUERY_MAX_OFFSET)

    return parsed_limit, parsed_offset


def build_log_query(
    database: Optional[str] = None,
    user: Optional[str] = None,
    operation: Optional[str] = None,
    limit: Any = None,
    offset: Any = None,
) -> LogQuery:
    """Build a LogQuery from raw request values. Empty filters are dropped."""
    parsed_limit, parsed_offset = normalize_paging(limit, offset)
    return LogQuery(
        database=database or None,
        user=user or None,
        operation=operation or None,
        limit=parsed_limit,
        offset=parsed_offset,
    )


class ActivityLogReader:
    """Filtered, paginated, newest-first reads over the activity log."""

    def __init__(self, session: Session):
        self.session = session

    def query(self, log_query: LogQuery) -> LogPage:
        """
        Get one page of log entries matching every provided filter.

        Args:
            log_query: Filters and paging

        Returns:
            LogPage with the entries on this page and the total match count
        """
        limit, offset = normalize_paging(log_query.limit, log_query.offset)

        conditions = []
        if log_query.database:
            conditions.append(ActivityLog.database == log_query.database)
        if log_query.user:
            conditions.append(ActivityLog.user == log_query.user)
        if log_query.operation:
            conditions.append(ActivityLog.operation == log_query.operation)

        count_statement = select(func.count()).select_from(ActivityLog)
        statement = select(ActivityLog)
        for condition in conditions:
            count_statement = count_statement.where(condition)
            statement = statement.where(condition)

        total = self.session.exec(count_statement).one()

        # Newest first; id breaks ties between entries sharing a timestamp
        statement = (
            statement.order_by(ActivityLog.timestamp.desc(), ActivityLog.id.desc())
            .offset(offset)
            .limit(limit)
        )
        rows = self.session.exec(statement).all()

        return LogPage(
            entries=[LogEntryPublic.model_validate(row, from_attributes=True) for row in rows],
            total=total,
        )
