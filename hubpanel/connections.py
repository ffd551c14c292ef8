"""
Stored managed-database connections.

Connections saved through the console live in the metadata database and are
merged with the DB_<i>_* environment entries by the driver registry.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .config import SUPPORTED_DB_TYPES
from .database import get_engine
from .errors import ConflictError, ValidationError
from .models import ConnectionParameters, DatabaseEngineType, ManagedDatabase, StoredConnection


CONNECTION_NAME_PATTERN = re.compile(r"[a-zA-Z0-9_]+")

REQUIRED_FIELDS = ["host", "port", "username", "password", "database", "db_type"]

PASSWORD_MASK = "***"


def parse_connection_parameters(payload: Any) -> ConnectionParameters:
    """
    Validate a raw connection request body.

    Args:
        payload: Decoded JSON body

    Returns:
        ConnectionParameters ready for a connection test

    Raises:
        ValidationError: Missing fields, unknown engine type or bad port
    """
    if not isinstance(payload, dict):
        payload = {}

    missing = [
        field for field in REQUIRED_FIELDS
        if payload.get(field) is None or payload.get(field) == ""
    ]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(REQUIRED_FIELDS)}")

    db_type = payload["db_type"]
    if not isinstance(db_type, str) or db_type not in SUPPORTED_DB_TYPES:
        raise ValidationError(
            f"Invalid db_type. Must be one of: {', '.join(SUPPORTED_DB_TYPES)}"
        )

    port = _parse_port(payload["port"])
    if port is None:
        raise ValidationError("Invalid port number. Must be between 1 and 65535.")

    return ConnectionParameters(
        host=str(payload["host"]),
        port=port,
        username=str(payload["username"]),
        password=str(payload["password"]),
        database=str(payload["database"]),
        engine_type=DatabaseEngineType(db_type),
    )


def parse_new_connection(payload: Any) -> Tuple[str, ConnectionParameters]:
    """
    Validate the body of a save-connection request.

    Returns:
        The connection name and its parameters

    Raises:
        ValidationError: Missing fields, invalid name, engine type or port
    """
    if not isinstance(payload, dict):
        payload = {}

    if not payload.get("name") or any(
        payload.get(field) is None or payload.get(field) == "" for field in REQUIRED_FIELDS
    ):
        raise ValidationError(f"Missing required fields: {', '.join(['name'] + REQUIRED_FIELDS)}")

    name = validate_connection_name(payload["name"])
    return name, parse_connection_parameters(payload)


def _parse_port(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    try:
        port = int(str(value).strip())
    except ValueError:
        return None
    if port < 1 or port > 65535:
        return None
    return port


def validate_connection_name(name: Any) -> str:
    """Connection names are limited to letters, digits and underscores."""
    if not isinstance(name, str) or not name:
        raise ValidationError("Missing required field: name")
    if not CONNECTION_NAME_PATTERN.fullmatch(name):
        raise ValidationError(
            "Invalid name. Only alphanumeric characters and underscores are allowed."
        )
    return name


def mask_connection(connection: StoredConnection) -> Dict[str, Any]:
    """Public view of a stored connection; the password never leaves the server."""
    return {
        "id": connection.id,
        "name": connection.name,
        "host": connection.host,
        "port": connection.port,
        "username": connection.username,
        "password": PASSWORD_MASK,
        "database": connection.database,
        "db_type": connection.db_type,
        "created_at": connection.created_at.isoformat() if connection.created_at else None,
    }


def list_connections(session: Session) -> List[StoredConnection]:
    """Get all stored connections ordered by name."""
    return session.exec(select(StoredConnection).order_by(StoredConnection.name)).all()


def get_connection(session: Session, name: str) -> Optional[StoredConnection]:
    """Get a stored connection by name."""
    return session.exec(select(StoredConnection).where(StoredConnection.name == name)).first()


def add_connection(session: Session, name: str, params: ConnectionParameters) -> StoredConnection:
    """
    Save a connection.

    Raises:
        ValidationError: Invalid name
        ConflictError: A connection with that name already exists
    """
    validate_connection_name(name)

    if get_connection(session, name) is not None:
        raise ConflictError("A connection with this name already exists.")

    connection = StoredConnection(
        name=name,
        host=params.host,
        port=params.port,
        username=params.username,
        password=params.password,
        database=params.database,
        db_type=params.engine_type.value,
    )
    session.add(connection)
    try:
        session.commit()
    except IntegrityError as e:
        # Lost a race with a concurrent insert of the same name
        session.rollback()
        raise ConflictError("A connection with this name already exists.") from e
    session.refresh(connection)

    logging.info(f"Stored connection '{name}' ({connection.db_type}://{connection.host}:{connection.port})")
    return connection


def remove_connection(session: Session, name: str) -> bool:
    """
    Delete a stored connection.

    Returns:
        True if a connection was deleted, False if none matched
    """
    connection = get_connection(session, name)
    if connection is None:
        return False

    session.delete(connection)
    session.commit()
    logging.info(f"Removed stored connection '{name}'")
    return True


def to_managed_database(connection: StoredConnection) -> ManagedDatabase:
    return ManagedDatabase(
        name=connection.name,
        host=connection.host,
        port=connection.port,
        user=connection.username,
        password=connection.password,
        database=connection.database,
        engine_type=DatabaseEngineType(connection.db_type),
        source="stored",
    )


def load_stored_databases() -> List[ManagedDatabase]:
    """Read every stored connection as a managed database entry."""
    with Session(get_engine()) as session:
        managed = []
        for connection in list_connections(session):
            if connection.db_type not in SUPPORTED_DB_TYPES:
                logging.warning(
                    f"Skipping stored connection '{connection.name}' with unknown type '{connection.db_type}'"
                )
                continue
            managed.append(to_managed_database(connection))
        return managed
