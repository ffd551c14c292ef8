"""
Error taxonomy for HubPanel.

Every error raised by the core services derives from HubPanelError and
carries the HTTP status the boundary should answer with. The exception
handlers registered in main.py turn these into {"error": message} bodies.
"""


class HubPanelError(Exception):
    """Base class for all HubPanel errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(HubPanelError):
    """Malformed or missing input."""

    status_code = 400


class AuthError(HubPanelError):
    """Missing or invalid session."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class NotFoundError(HubPanelError):
    """Unknown connection, schema or table."""

    status_code = 404


class ConflictError(HubPanelError):
    """Resource already exists."""

    status_code = 409


class DatabaseConnectionError(HubPanelError):
    """Engine unreachable, credentials rejected, timeout or engine-side error."""

    status_code = 500


class InternalError(HubPanelError):
    """Unexpected fault."""

    status_code = 500
