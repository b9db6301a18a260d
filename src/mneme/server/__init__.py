"""HTTP server for the memory engine."""

from mneme.server.app import MnemeServer, create_app, status_for_error
from mneme.server.runner import ServerRunner

__all__ = [
    "MnemeServer",
    "ServerRunner",
    "create_app",
    "status_for_error",
]
