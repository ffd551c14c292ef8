"""
Connection testing for managed databases.

A test opens one unpooled connection, runs SELECT 1, and closes it. Failed
connections are an expected outcome and are reported in the result rather
than raised.
"""

import concurrent.futures
import logging
import re
import time
from typing import Optional
from sqlalchemy import text

from .config import Config
from .drivers import describe_error, get_driver_class
from .models import ConnectionParameters, ConnectionTestResult, ManagedDatabase

# user:password@ credentials embedded in URLs or DSNs
_URL_CREDENTIALS = re.compile(r"(://[^:/@\s]+):[^@\s]*@")


def redact_error(message: str, password: Optional[str] = None) -> str:
    """
    Strip secrets from a driver error message.

    Args:
        message: Raw error message
        password: Password used for the attempt

    Returns:
        The trimmed message with the password and URL credentials masked
    """
    redacted = _URL_CREDENTIALS.sub(r"\1:***@", message)
    if password:
        redacted = redacted.replace(password, "***")
    return redacted.strip()


class ConnectionTester:
    """
    Tests reachability of a database without persisting anything.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else Config.get_connect_timeout()

    def test(self, params: ConnectionParameters) -> ConnectionTestResult:
        """
        Attempt a single connection and measure its latency.

        Args:
            params: Validated connection parameters

        Returns:
            ConnectionTestResult with ok=False and an error message when the
            connection fails or exceeds the timeout ceiling
        """
        driver_class = get_driver_class(params.engine_type)
        driver = driver_class(ManagedDatabase(
            name=f"test:{params.host}:{params.port}/{params.database}",
            host=params.host,
            port=params.port,
            user=params.username,
            password=params.password,
            database=params.database,
            engine_type=params.engine_type,
            source="test",
        ))

        start = time.perf_counter()
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="conn-test")
        try:
            future = executor.submit(self._attempt, driver)
            try:
                latency_ms = future.result(timeout=self.timeout)
            except concurrent.futures.TimeoutError:
                elapsed_ms = int((time.perf_counter() - start) * 1000)
                logging.warning(
                    f"Connection test to {params.engine_type.value}://{params.host}:{params.port} "
                    f"timed out after {self.timeout}s"
                )
                return ConnectionTestResult(
                    ok=False,
                    latency_ms=elapsed_ms,
                    error=f"Connection timed out after {self.timeout:g} seconds",
                )
            except Exception as e:
                elapsed_ms = int((time.perf_counter() - start) * 1000)
                message = redact_error(describe_error(e), params.password) or "Connection failed"
                logging.info(
                    f"Connection test to {params.engine_type.value}://{params.host}:{params.port} "
                    f"failed: {message}"
                )
                return ConnectionTestResult(ok=False, latency_ms=elapsed_ms, error=message)
        finally:
            # A timed-out attempt keeps running until the driver's own connect
            # timeout fires; its engine is disposed in _attempt either way.
            executor.shutdown(wait=False)

        logging.info(
            f"Connection test to {params.engine_type.value}://{params.host}:{params.port} "
            f"succeeded in {latency_ms}ms"
        )
        return ConnectionTestResult(ok=True, latency_ms=latency_ms)

    def _attempt(self, driver) -> int:
        """Open, ping and close one connection. Returns latency in milliseconds."""
        engine = driver.create_test_engine(self.timeout)
        start = time.perf_counter()
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return int((time.perf_counter() - start) * 1000)
        finally:
            engine.dispose()


def get_connection_tester() -> ConnectionTester:
    """Dependency that provides a connection tester to the API endpoints."""
    return ConnectionTester()
