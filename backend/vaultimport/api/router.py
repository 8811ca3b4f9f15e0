"""API router that aggregates all routes."""

from fastapi import APIRouter

from vaultimport.api.routes import dedup, health, import_jobs, plan, services, sources

api_router = APIRouter(prefix="/api")

# Include route modules
api_router.include_router(health.router)

# V1 API routes
v1_router = APIRouter(prefix="/v1")
v1_router.include_router(services.router)
v1_router.include_router(sources.router)
v1_router.include_router(import_jobs.router)
v1_router.include_router(dedup.router)
v1_router.include_router(plan.router)

api_router.include_router(v1_router)
