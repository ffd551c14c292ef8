"""
Live server monitoring for managed databases: client sessions, slow
statements and, where the engine exposes them, cache and transaction counters.
"""

import logging
from typing import Any, Dict

from .drivers import DatabaseDriver


def _number(row: Dict[str, Any], key: str) -> float:
    value = row.get(key)
    if value is None:
        return 0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0


def collect_monitoring(driver: DatabaseDriver) -> Dict[str, Any]:
    """
    Gather a monitoring snapshot for one database.

    Engines without cache or transaction statistics report zeros and empty
    lists for them.

    Raises:
        DatabaseConnectionError: If the engine is unreachable
    """
    connections = driver.get_active_connections()
    slow_queries = driver.get_slow_queries()
    extras = driver.get_monitoring_extras()

    cache_hit = extras.get("cache_hit") or {}
    transactions = extras.get("transactions") or {}

    logging.debug(
        f"Monitoring snapshot for '{driver.name}': {len(connections)} connections, "
        f"{len(slow_queries)} slow queries"
    )

    return {
        "dbType": driver.engine_type.value,
        "activeConnections": connections,
        "connectionCount": len(connections),
        "slowQueries": slow_queries,
        "databaseSizes": extras.get("database_sizes", []),
        "cacheHitRatio": {
            "heapRead": _number(cache_hit, "heap_read"),
            "heapHit": _number(cache_hit, "heap_hit"),
            "ratio": _number(cache_hit, "ratio"),
        },
        "transactions": {
            "total": _number(transactions, "total"),
            "commits": _number(transactions, "commits"),
            "rollbacks": _number(transactions, "rollbacks"),
            "tps": _number(transactions, "tps"),
        },
        "tableBloat": extras.get("table_bloat", []),
    }
