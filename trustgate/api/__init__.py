"""
TRUSTGATE REST API.

FastAPI service exposing enrollment, verification and trusted devices.
"""
from .main import app, create_app

__all__ = ["app", "create_app"]
