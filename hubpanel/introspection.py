"""
Read-only schema and table introspection for managed databases, plus
paginated browsing of table rows.
"""

import json
import logging
from typing import Annotated, Any, List, Optional
from fastapi import Depends

from .config import Config
from .drivers import DriverRegistry, get_driver_registry
from .errors import NotFoundError, ValidationError
from .models import (
    FILTER_OPERATORS,
    NULL_OPERATORS,
    DataFilter,
    TableDataOptions,
    TableDataPage,
    TableStructure,
    TableSummary,
)


class IntrospectionService:
    """Lists tables and fetches table structures through the driver registry."""

    def __init__(self, registry: DriverRegistry):
        self.registry = registry

    def list_tables(self, connection_id: str, schema: Optional[str] = None) -> List[TableSummary]:
        """
        List tables in a schema.

        Raises:
            NotFoundError: Unknown connection or schema
            DatabaseConnectionError: Engine unreachable or query rejected
        """
        schema = schema or Config.DEFAULT_SCHEMA
        driver = self.registry.resolve(connection_id)
        tables = driver.list_tables(schema)

        # An empty list is ambiguous; distinguish an empty schema from a missing one
        if not tables and not driver.schema_exists(schema):
            raise NotFoundError(f'Schema "{schema}" not found in database "{connection_id}"')

        logging.debug(f"Listed {len(tables)} tables in {connection_id}.{schema}")
        return tables

    def get_table_structure(
        self, connection_id: str, schema: Optional[str], table: str
    ) -> TableStructure:
        """
        Fetch a table's columns, constraints and indexes.

        Raises:
            NotFoundError: Unknown connection, schema or table
            DatabaseConnectionError: Engine unreachable or query rejected
        """
        schema = schema or Config.DEFAULT_SCHEMA
        driver = self.registry.resolve(connection_id)
        structure = driver.get_table_structure(schema, table)

        if not structure.columns:
            raise NotFoundError(f'Table "{schema}.{table}" not found in database "{connection_id}"')

        return structure

    def get_table_data(
        self, connection_id: str, schema: Optional[str], table: str, options: TableDataOptions
    ) -> TableDataPage:
        """
        Fetch one page of a table's rows.

        Filter and sort columns must exist on the table.

        Raises:
            NotFoundError: Unknown connection, schema or table
            ValidationError: Filter or sort on an unknown column
            DatabaseConnectionError: Engine unreachable or query rejected
        """
        structure = self.get_table_structure(connection_id, schema, table)
        known = {column.column_name for column in structure.columns}

        requested = [f.column for f in options.filters]
        if options.order_by:
            requested.append(options.order_by)
        for column in requested:
            if column not in known:
                raise ValidationError(f'Unknown column "{column}" in table "{table}"')

        driver = self.registry.resolve(connection_id)
        return driver.get_table_data(schema or Config.DEFAULT_SCHEMA, table, options)


def get_introspection_service(
    registry: Annotated[DriverRegistry, Depends(get_driver_registry)]
) -> IntrospectionService:
    """Dependency that provides the introspection service to the API endpoints."""
    return IntrospectionService(registry)


def _positive_int(value: Any, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        return default
    return number if number > 0 else default


def parse_filters(raw: Optional[str]) -> List[DataFilter]:
    """
    Parse the JSON filter list of a table data request, e.g.
    [{"column": "email", "operator": "LIKE", "value": "%@example.com"}].

    Raises:
        ValidationError: Malformed JSON or an unsupported operator
    """
    if not raw:
        return []
    try:
        items = json.loads(raw)
    except ValueError:
        raise ValidationError("Invalid filter JSON")
    if not isinstance(items, list):
        raise ValidationError("Invalid filter JSON")

    filters = []
    for item in items:
        if not isinstance(item, dict) or not isinstance(item.get("column"), str) or not item["column"]:
            raise ValidationError("Each filter needs a column and an operator")
        operator = str(item.get("operator", "")).upper()
        if operator not in FILTER_OPERATORS:
            raise ValidationError(
                f"Invalid filter operator. Must be one of: {', '.join(FILTER_OPERATORS)}"
            )
        if operator not in NULL_OPERATORS and item.get("value") is None:
            raise ValidationError(f'Filter on "{item["column"]}" needs a value')
        filters.append(DataFilter(column=item["column"], operator=operator, value=item.get("value")))
    return filters


def build_table_data_options(
    page: Any = None,
    page_size: Any = None,
    order_by: Optional[str] = None,
    order_dir: Optional[str] = None,
    filters: Optional[str] = None,
) -> TableDataOptions:
    """
    Build table data options from raw query values.

    Missing or invalid page numbers fall back to page 1 and the default page
    size; page sizes above the configured maximum are clamped. Any direction
    other than DESC sorts ascending.
    """
    size = min(
        _positive_int(page_size, Config.TABLE_DATA_DEFAULT_PAGE_SIZE),
        Config.TABLE_DATA_MAX_PAGE_SIZE,
    )
    return TableDataOptions(
        page=_positive_int(page, 1),
        page_size=size,
        order_by=order_by or None,
        order_dir="DESC" if (order_dir or "").upper() == "DESC" else "ASC",
        filters=parse_filters(filters),
    )
