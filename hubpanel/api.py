import logging
import time
from fastapi import APIRouter, Body, Depends, Query, Request, Response
from fastapi.responses import JSONResponse
from typing import Annotated, Any, Dict, List, Optional
from sqlmodel import Session

from .activity_log import ActivityLogReader, build_log_query, log_activity
from .auth import CONSOLE_DATABASE, get_current_user
from .backup import backup_filename, generate_dump
from .connection_tester import ConnectionTester, get_connection_tester
from .connections import (
    add_connection,
    list_connections,
    mask_connection,
    parse_connection_parameters,
    parse_new_connection,
    remove_connection,
    validate_connection_name,
)
from .database import get_session
from .drivers import DriverRegistry, get_driver_registry
from .errors import DatabaseConnectionError, NotFoundError, ValidationError
from .introspection import IntrospectionService, build_table_data_options, get_introspection_service
from .models import User
from .monitoring import collect_monitoring
from .rate_limiter import limiter, CONNECTION_TEST_LIMIT, QUERY_LIMIT
from .utils import to_jsonable


def create_api_routes() -> APIRouter:
    """
    Creates and returns the API router for the console endpoints.
    Every endpoint requires a signed-in user.
    """
    router = APIRouter(prefix="/api")

    # --- Connection Endpoints ---

    @router.post("/connections/test")
    @limiter.limit(CONNECTION_TEST_LIMIT)
    def test_connection(
        request: Request,
        current_user: Annotated[User, Depends(get_current_user)],
        tester: Annotated[ConnectionTester, Depends(get_connection_tester)],
        payload: Annotated[Any, Body()] = None,
    ):
        """
        Tests a connection without saving it.
        A failed connection is a normal 200 response with ok=false.
        """
        params = parse_connection_parameters(payload)

        try:
            result = tester.test(params)
        except Exception as e:
            logging.exception(f"Connection test for {current_user.username} raised unexpectedly")
            return JSONResponse(
                status_code=500,
                content={"ok": False, "latencyMs": 0, "error": str(e) or "Internal server error"},
            )

        return result.to_response()

    @router.get("/connections")
    def get_connections(
        current_user: Annotated[User, Depends(get_current_user)],
        session: Annotated[Session, Depends(get_session)],
    ) -> List[Dict[str, Any]]:
        """Lists stored connections with passwords masked."""
        return [mask_connection(c) for c in list_connections(session)]

    @router.post("/connections", status_code=201)
    def create_connection(
        current_user: Annotated[User, Depends(get_current_user)],
        session: Annotated[Session, Depends(get_session)],
        tester: Annotated[ConnectionTester, Depends(get_connection_tester)],
        registry: Annotated[DriverRegistry, Depends(get_driver_registry)],
        payload: Annotated[Any, Body()] = None,
    ):
        """
        Saves a connection. The connection is tested first and only saved
        if the test succeeds.
        """
        name, params = parse_new_connection(payload)

        result = tester.test(params)
        if not result.ok:
            return JSONResponse(
                status_code=422,
                content={
                    "error": "Connection test failed. The connection was not saved.",
                    "details": result.error,
                    "latencyMs": result.latency_ms,
                },
            )

        connection = add_connection(session, name, params)
        registry.invalidate(name)

        log_activity(
            session,
            user=current_user.username,
            database=CONSOLE_DATABASE,
            operation="ADD_CONNECTION",
            details=(
                f'Added connection "{name}" ({params.engine_type.value}) -> '
                f"{params.host}:{params.port}/{params.database}"
            ),
        )

        body = mask_connection(connection)
        body["testLatencyMs"] = result.latency_ms
        return body

    @router.delete("/connections")
    def delete_connection(
        current_user: Annotated[User, Depends(get_current_user)],
        session: Annotated[Session, Depends(get_session)],
        registry: Annotated[DriverRegistry, Depends(get_driver_registry)],
        payload: Annotated[Any, Body()] = None,
    ) -> Dict[str, Any]:
        """Removes a stored connection by name."""
        name = payload.get("name") if isinstance(payload, dict) else None
        validate_connection_name(name)

        if not remove_connection(session, name):
            raise NotFoundError(f'Connection "{name}" not found.')

        registry.invalidate(name)
        log_activity(
            session,
            user=current_user.username,
            database=CONSOLE_DATABASE,
            operation="REMOVE_CONNECTION",
            details=f'Removed connection "{name}"',
        )
        return {"ok": True, "message": f'Connection "{name}" removed.'}

    # --- Database Endpoints ---

    @router.get("/databases")
    def get_databases(
        current_user: Annotated[User, Depends(get_current_user)],
        registry: Annotated[DriverRegistry, Depends(get_driver_registry)],
    ) -> List[Dict[str, Any]]:
        """
        Lists every managed database with its status. Unreachable databases
        are reported as offline rather than failing the whole listing.
        """
        results = []
        for config in registry.list_databases():
            entry: Dict[str, Any] = {
                "name": config.name,
                "host": config.host,
                "port": config.port,
                "type": config.engine_type.value,
                "source": config.source,
            }
            try:
                driver = registry.resolve(config.name)
                stats = driver.get_server_stats()
                tables = driver.list_tables()
                entry.update({
                    "size": stats.get("db_size") or "0 Bytes",
                    "tableCount": len(tables),
                    "activeConnections": stats.get("active_connections", 0),
                    "status": "online",
                })
            except Exception as e:
                logging.warning(f"Database '{config.name}' is offline: {e}")
                entry.update({
                    "size": "N/A",
                    "tableCount": 0,
                    "activeConnections": 0,
                    "status": "offline",
                    "error": str(e) or "Unknown error",
                })
            results.append(entry)
        return results

    @router.get("/tables")
    def get_tables(
        current_user: Annotated[User, Depends(get_current_user)],
        introspection: Annotated[IntrospectionService, Depends(get_introspection_service)],
        db: Optional[str] = None,
        schema: Optional[str] = None,
        table: Optional[str] = None,
    ):
        """
        Lists the tables of a schema, or returns one table's structure when
        a table name is given.
        """
        if not db:
            raise ValidationError("Missing required query parameter: db")

        if table:
            return introspection.get_table_structure(db, schema, table).model_dump()

        return [t.model_dump() for t in introspection.list_tables(db, schema)]

    @router.get("/tables/data")
    def get_table_data(
        current_user: Annotated[User, Depends(get_current_user)],
        introspection: Annotated[IntrospectionService, Depends(get_introspection_service)],
        db: Optional[str] = None,
        table: Optional[str] = None,
        schema: Optional[str] = None,
        page: Optional[str] = None,
        page_size: Annotated[Optional[str], Query(alias="pageSize")] = None,
        order_by: Annotated[Optional[str], Query(alias="orderBy")] = None,
        order_dir: Annotated[Optional[str], Query(alias="orderDir")] = None,
        filter_json: Annotated[Optional[str], Query(alias="filter")] = None,
    ) -> Dict[str, Any]:
        """
        Returns one page of a table's rows. The optional filter parameter is a
        JSON list of {column, operator, value} conditions combined with AND.
        """
        if not db or not table:
            raise ValidationError("Missing required query parameters: db, table")

        options = build_table_data_options(page, page_size, order_by, order_dir, filter_json)
        data = introspection.get_table_data(db, schema, table, options).to_response()
        data["rows"] = to_jsonable(data["rows"])
        return data

    # --- Query Endpoints ---

    @router.post("/query")
    @limiter.limit(QUERY_LIMIT)
    def run_query(
        request: Request,
        current_user: Annotated[User, Depends(get_current_user)],
        session: Annotated[Session, Depends(get_session)],
        registry: Annotated[DriverRegistry, Depends(get_driver_registry)],
        payload: Annotated[Any, Body()] = None,
    ):
        """
        Runs a SQL statement against a managed database and records it in
        the activity log. Statements the engine rejects answer 400.
        """
        body = payload if isinstance(payload, dict) else {}
        database = body.get("database")
        sql = body.get("sql")
        if not database or not isinstance(sql, str) or not sql.strip():
            raise ValidationError("Missing required fields: database, sql")

        driver = registry.resolve(database)
        start = time.perf_counter()
        try:
            result = driver.execute(sql)
        except DatabaseConnectionError as e:
            duration = round((time.perf_counter() - start) * 1000, 2)
            log_activity(
                session,
                user=current_user.username,
                database=database,
                operation="QUERY",
                details=f"Query failed ({duration}ms): {e.message}",
                sql_query=sql,
                status="error",
            )
            return JSONResponse(status_code=400, content={"error": e.message})

        duration = round((time.perf_counter() - start) * 1000, 2)
        log_activity(
            session,
            user=current_user.username,
            database=database,
            operation="QUERY",
            details=f"Query executed successfully in {duration}ms",
            sql_query=sql,
        )
        return {
            "rows": to_jsonable(result.rows),
            "rowCount": len(result.rows),
            "fields": result.fields,
            "duration": duration,
        }

    # --- Monitoring Endpoints ---

    @router.get("/monitoring")
    def get_monitoring(
        current_user: Annotated[User, Depends(get_current_user)],
        registry: Annotated[DriverRegistry, Depends(get_driver_registry)],
        db: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Returns live sessions, slow statements and server counters for a database."""
        if not db:
            raise ValidationError("Missing required query parameter: db")

        driver = registry.resolve(db)
        return to_jsonable(collect_monitoring(driver))

    # --- Activity Log Endpoints ---

    @router.get("/logs")
    def get_logs(
        current_user: Annotated[User, Depends(get_current_user)],
        session: Annotated[Session, Depends(get_session)],
        database: Optional[str] = None,
        user: Optional[str] = None,
        operation: Optional[str] = None,
        limit: Optional[str] = None,
        offset: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Returns activity log entries, newest first.
        Non-numeric or negative paging values fall back to the defaults.
        """
        log_query = build_log_query(database, user, operation, limit, offset)
        page = ActivityLogReader(session).query(log_query)
        return {
            "logs": [entry.model_dump(mode="json") for entry in page.entries],
            "total": page.total,
        }

    # --- Backup Endpoints ---

    @router.post("/backup")
    def create_backup(
        current_user: Annotated[User, Depends(get_current_user)],
        session: Annotated[Session, Depends(get_session)],
        registry: Annotated[DriverRegistry, Depends(get_driver_registry)],
        payload: Annotated[Any, Body()] = None,
    ):
        """
        Generates a SQL dump of a managed database and returns it as a
        downloadable attachment.
        """
        database = payload.get("database") if isinstance(payload, dict) else None
        if not database:
            raise ValidationError("Missing required field: database")

        driver = registry.resolve(database)
        dump = generate_dump(driver)

        log_activity(
            session,
            user=current_user.username,
            database=database,
            operation="BACKUP",
            details="Backup created successfully",
            sql_query=f"Backup for {database} ({driver.engine_type.value})",
        )

        return Response(
            content=dump,
            media_type="application/sql",
            headers={"Content-Disposition": f'attachment; filename="{backup_filename(database)}"'},
        )

    return router
