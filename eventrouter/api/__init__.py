"""Health and metrics HTTP layer for eventrouter.

Exposes:
    create_app -- FastAPI application factory.
"""

from eventrouter.api.app import create_app

__all__ = ["create_app"]
