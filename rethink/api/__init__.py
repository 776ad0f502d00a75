"""FastAPI application factory for Rethink.

Provides the main application instance and factory function
for creating configured FastAPI apps.
"""

from rethink.api.main import create_app, get_app

__all__ = [
    "create_app",
    "get_app",
]
