"""
FastAPI service for taskboard.

Exposes the FastAPI app at package level (taskboard.api.app).
"""

from .main import app  # noqa: F401
