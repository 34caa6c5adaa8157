from fastapi import APIRouter
from app.routes import analysis, events

api_router = APIRouter()

api_router.include_router(analysis.router, prefix="/analysis", tags=["analysis"])
api_router.include_router(events.router, prefix="/events", tags=["events"])
