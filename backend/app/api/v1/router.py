"""API root router."""

from __future__ import annotations

from fastapi import APIRouter

from app.api.v1.delegations import router as delegations_router


router = APIRouter()
router.include_router(delegations_router, prefix="/xtz", tags=["delegations"])
