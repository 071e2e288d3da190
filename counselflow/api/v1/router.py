from fastapi import APIRouter

from counselflow.api.v1.ai import router as ai_router

api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(ai_router)
