"""
GET /health: load balancer health check.

Planning needs no database, so the service reports "degraded" (still 200)
when the provisioning-records store is unreachable or unmigrated.
"""
from fastapi import APIRouter
from pydantic import BaseModel

from auditledger.backends.registry import BACKENDS
from auditledger.core.db import StoreStatus, store_status

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    db: StoreStatus
    backends: list[str]


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check() -> HealthResponse:
    store = await store_status()
    return HealthResponse(
        status="ok" if store is StoreStatus.OK else "degraded",
        db=store,
        backends=sorted(BACKENDS),
    )
