"""API version 1."""
from review_engine.api.v1.api import api_router

__all__ = ["api_router"]
