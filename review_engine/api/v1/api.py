"""API router for version 1."""
from fastapi import APIRouter

from review_engine.api.v1.endpoints import reviews


api_router = APIRouter()
api_router.include_router(reviews.router)
