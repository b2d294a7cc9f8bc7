"""
Utility functions for ID and code generation
"""
import secrets
import string
import uuid

from aiohttp import web


def generate_auth_code(length: int = 6) -> str:
    """Generate a numeric temporary authorization code"""
    return "".join(secrets.choice(string.digits) for _ in range(length))


def generate_request_id() -> str:
    """Generate a correlation id for a player request"""
    return str(uuid.uuid4())


def generate_session_id() -> str:
    return uuid.uuid4().hex


def client_address(request: web.Request) -> str:
    """Network address of the requesting client"""
    return request.remote or "unknown"


def connection_closed(request: web.Request) -> bool:
    """True once the client's underlying connection has gone away"""
    transport = request.transport
    return transport is None or transport.is_closing()
