"""
API module for pgstate.

This module provides the external HTTP interface to the state store.
Store calls are blocking and are dispatched to worker threads.
"""

from .http_server import create_http_app, start_http_server

__all__ = [
    "create_http_app",
    "start_http_server",
]
