from fastapi import APIRouter

from statmail.api.jobs import router as jobs_router
from statmail.api.reports import router as reports_router

api_router = APIRouter()

# API routes at /api/*
api_router.include_router(jobs_router, prefix="/api", tags=["jobs"])
api_router.include_router(reports_router, prefix="/api", tags=["reports"])
