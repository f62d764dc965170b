from __future__ import annotations

from starlette.requests import HTTPConnection

from ml_server.state import SessionState


def get_session(conn: HTTPConnection) -> SessionState:
    """Shared SessionState for HTTP requests and WebSocket connections alike."""
    return conn.app.state.session
