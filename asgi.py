"""
asgi.py -- ASGI entry point for SSO.

Run with:  uvicorn asgi:app
           python main.py serve

Settings are read from the environment (or CONFIG_PATH) when the lifespan
starts, not at import time.
"""

from api.main import app

__all__ = ["app"]
