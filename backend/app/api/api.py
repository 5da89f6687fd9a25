from fastapi import APIRouter
from app.api.endpoints import failure_analysis

api_router = APIRouter()
api_router.include_router(failure_analysis.router, prefix="/failure-analysis", tags=["failure-analysis"])
