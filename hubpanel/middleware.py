"""
Middleware for the FastAPI application.
"""

import logging
import time
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from .security import read_session_token


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """
    Middleware that records the token's username in request state so rate
    limiting and request logging can key on it. Endpoint protection is done
    by the get_current_user dependency, not here.
    """

    async def dispatch(self, request: Request, call_next):
        request.state.username = None

        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            request.state.username = read_session_token(auth_header.split(" ", 1)[1])

        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log all API requests with timing information.
    """

    async def dispatch(self, request: Request, call_next):
        """
        Process the request and log timing information.

        Args:
            request: The FastAPI request object
            call_next: The next middleware or endpoint handler

        Returns:
            Response: The response object
        """
        start_time = time.time()
        client_ip = request.client.host if request.client else "unknown"

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            logging.error(
                f"Request failed: {request.method} {request.url.path} "
                f"- Error: {e} "
                f"- Time: {process_time:.4f}s "
                f"- IP: {client_ip}"
            )
            raise

        process_time = time.time() - start_time
        logging.info(
            f"Request: {request.method} {request.url.path} "
            f"- Status: {response.status_code} "
            f"- Time: {process_time:.4f}s "
            f"- IP: {client_ip} "
            f"- User: {getattr(request.state, 'username', None) or 'anonymous'}"
        )
        response.headers["X-Process-Time"] = f"{process_time:.4f}"
        return response
