"""
asgi.py -- ASGI entry point for the coursework auth service.

Run with:  uvicorn asgi:app --reload

api/main.py owns the app; this module only re-exports it so deployment
config never has to know the package layout.
"""

from api.main import app

__all__ = ["app"]
