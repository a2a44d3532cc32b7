"""
API router - aggregates all route modules.
"""
from fastapi import APIRouter
from growth.api.promoters import router as promoters_router
from growth.api.promoter_self import router as promoter_self_router
from growth.api.admin_promoters import router as admin_promoters_router
from growth.api.billing import router as billing_router
from growth.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(promoters_router)
api_router.include_router(promoter_self_router)
api_router.include_router(admin_promoters_router)
api_router.include_router(billing_router)
api_router.include_router(health_router)
