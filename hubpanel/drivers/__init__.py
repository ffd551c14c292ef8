"""
Managed database drivers for HubPanel.
Provides one adapter per supported engine and a registry that resolves
database identifiers to drivers.
"""

from .base import DatabaseDriver, QueryResult, describe_error
from .mysql import MySQLDriver
from .postgresql import PostgreSQLDriver
from .registry import (
    DriverRegistry,
    get_driver_class,
    get_driver_registry,
    reset_driver_registry,
)

__all__ = [
    "DatabaseDriver",
    "QueryResult",
    "describe_error",
    "MySQLDriver",
    "PostgreSQLDriver",
    "DriverRegistry",
    "get_driver_class",
    "get_driver_registry",
    "reset_driver_registry",
]
