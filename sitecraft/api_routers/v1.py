from fastapi import APIRouter

from sitecraft.features.analysis.routes.analysis import router as analysis_router


api_router = APIRouter()

# Register all feature routes
api_router.include_router(analysis_router)
