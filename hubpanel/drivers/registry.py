"""
Driver registry for resolving managed database identifiers to drivers.
"""

import logging
import threading
from typing import Callable, Dict, List, Optional, Type

from .base import DatabaseDriver
from .mysql import MySQLDriver
from .postgresql import PostgreSQLDriver
from ..config import Config
from ..errors import NotFoundError
from ..models import DatabaseEngineType, ManagedDatabase


# Registry of engine adapters. Supabase speaks the PostgreSQL protocol and
# MariaDB the MySQL one, so they share implementations.
_implementations: Dict[DatabaseEngineType, Type[DatabaseDriver]] = {
    DatabaseEngineType.POSTGRESQL: PostgreSQLDriver,
    DatabaseEngineType.SUPABASE: PostgreSQLDriver,
    DatabaseEngineType.MYSQL: MySQLDriver,
    DatabaseEngineType.MARIADB: MySQLDriver,
}

_missing = [t.value for t in DatabaseEngineType if t not in _implementations]
if _missing:
    raise RuntimeError(f"No driver registered for engine types: {', '.join(_missing)}")


def get_driver_class(engine_type: DatabaseEngineType) -> Type[DatabaseDriver]:
    """
    Get the driver implementation for an engine type.

    Args:
        engine_type: Engine identifier

    Returns:
        The driver class registered for that engine
    """
    return _implementations[DatabaseEngineType(engine_type)]


def load_env_databases() -> List[ManagedDatabase]:
    """Managed databases declared through DB_<i>_* environment variables."""
    return [
        ManagedDatabase(
            name=c["name"],
            host=c["host"],
            port=c["port"],
            user=c["user"],
            password=c["password"],
            database=c["database"],
            engine_type=DatabaseEngineType(c["type"]),
            source="env",
        )
        for c in Config.get_env_database_configs()
    ]


def load_stored_databases() -> List[ManagedDatabase]:
    """Managed databases saved through the console."""
    from ..connections import load_stored_databases as _load

    return _load()


class DriverRegistry:
    """
    Resolves managed database identifiers to cached drivers.

    Each identifier gets one driver whose engine owns a bounded connection
    pool; the pool handles checkout/return across concurrent requests.
    """

    def __init__(
        self,
        env_loader: Callable[[], List[ManagedDatabase]] = load_env_databases,
        stored_loader: Callable[[], List[ManagedDatabase]] = load_stored_databases,
    ):
        self._env_loader = env_loader
        self._stored_loader = stored_loader
        self._drivers: Dict[str, DatabaseDriver] = {}
        self._lock = threading.Lock()

    def list_databases(self) -> List[ManagedDatabase]:
        """
        Get all managed databases. Environment entries take priority over
        stored connections with the same name.
        """
        env_configs = self._env_loader()

        try:
            stored = self._stored_loader()
        except Exception as e:
            logging.warning(f"Could not read stored connections, using environment only: {e}")
            stored = []

        env_names = {c.name for c in env_configs}
        return env_configs + [c for c in stored if c.name not in env_names]

    def find_config(self, identifier: str) -> Optional[ManagedDatabase]:
        for config in self.list_databases():
            if config.name == identifier:
                return config
        return None

    def resolve(self, identifier: str) -> DatabaseDriver:
        """
        Get or create the driver for a managed database.

        Raises:
            NotFoundError: If no database with that name is configured
        """
        with self._lock:
            driver = self._drivers.get(identifier)
            if driver is not None:
                return driver

        config = self.find_config(identifier)
        if config is None:
            raise NotFoundError(f'Database "{identifier}" is not configured.')

        with self._lock:
            # Another request may have created it while we were looking it up
            driver = self._drivers.get(identifier)
            if driver is None:
                driver = get_driver_class(config.engine_type)(config)
                self._drivers[identifier] = driver
                logging.info(f"Registered {config.engine_type.value} driver for '{identifier}'")
            return driver

    def invalidate(self, identifier: str) -> None:
        """Dispose of and forget the driver for an identifier."""
        with self._lock:
            driver = self._drivers.pop(identifier, None)
        if driver is not None:
            driver.close()
            logging.info(f"Closed driver for '{identifier}'")

    def close_all(self) -> None:
        """Dispose of every connection pool."""
        with self._lock:
            drivers = list(self._drivers.items())
            self._drivers.clear()
        for name, driver in drivers:
            try:
                driver.close()
            except Exception as e:
                logging.error(f"Error closing driver for '{name}': {e}")


# Global registry instance
_registry: Optional[DriverRegistry] = None


def get_driver_registry() -> DriverRegistry:
    """Get the global driver registry."""
    global _registry
    if _registry is None:
        _registry = DriverRegistry()
    return _registry


def reset_driver_registry() -> None:
    """Close and drop the global registry (mainly for testing)."""
    global _registry
    if _registry is not None:
        _registry.close_all()
    _registry = None
