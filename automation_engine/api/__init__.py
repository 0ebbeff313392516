"""FastAPI application and routes."""

from automation_engine.api.app import create_app
from automation_engine.api.routes import router

__all__ = ["create_app", "router"]
