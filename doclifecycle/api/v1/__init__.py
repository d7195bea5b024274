from fastapi import APIRouter

from doclifecycle.api.v1.routers import document_history, health

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(document_history.router)

__all__ = ["api_router"]
