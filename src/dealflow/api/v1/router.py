"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.dealflow.api.v1 import health, ingest, jobs, process, webhooks

router = APIRouter()

router.include_router(health.router)
router.include_router(ingest.router)
router.include_router(jobs.router)
router.include_router(process.router)
router.include_router(webhooks.router)
