"""
Provisioning endpoints.

  POST /provisioning/plan                      pure resolution, nothing stored
  POST /provisioning/reconcile                 resolve against the recorded
                                               lock state, then replace it
  GET  /provisioning/records/{backend}/{name}  last recorded state

Reconciles of the same resource are serialized within this process; running
several API processes against one database needs external coordination.
"""
import asyncio
import logging
import weakref

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auditledger.core.config import get_settings
from auditledger.core.db import get_db
from auditledger.engine.pipeline import resolve_request
from auditledger.engine.validator import validate
from auditledger.models.provisioning import ProvisioningRecord
from auditledger.schemas.common import ViolationResponse
from auditledger.schemas.provisioning import (
    PlanRequest,
    ProvisioningResponse,
    ReconcileRequest,
    RecordResponse,
)
from auditledger.schemas.request import LockMode
from auditledger.schemas.resources import LockConfiguration, ResourceGraph

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/provisioning", tags=["provisioning"])

# Entries vanish once no reconcile holds or waits on the lock
_reconcile_locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = weakref.WeakValueDictionary()


def _lock_for(key: tuple[str, str]) -> asyncio.Lock:
    lock = _reconcile_locks.get(key)
    if lock is None:
        lock = _reconcile_locks[key] = asyncio.Lock()
    return lock


def _to_response(graph: ResourceGraph) -> ProvisioningResponse:
    return ProvisioningResponse(
        outputs=graph.outputs,
        graph=graph.model_dump(mode="json"),
        warnings=[ViolationResponse(**w.model_dump()) for w in graph.warnings],
    )


async def _get_record(db: AsyncSession, backend: str, name: str) -> ProvisioningRecord | None:
    result = await db.execute(
        select(ProvisioningRecord).where(
            ProvisioningRecord.backend == backend,
            ProvisioningRecord.resource_name == name,
        )
    )
    return result.scalars().first()


def _prior_state(record: ProvisioningRecord | None) -> LockConfiguration | None:
    if record is None:
        return None
    return LockConfiguration(
        enabled=record.lock_enabled,
        mode=LockMode(record.lock_mode),
        retention_days=record.retention_days,
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/plan", response_model=ProvisioningResponse)
async def plan_provisioning(payload: PlanRequest) -> ProvisioningResponse:
    """Resolve a request without recording anything."""
    graph = resolve_request(
        payload.request,
        payload.prior_state,
        settings=get_settings(),
        strict=payload.strict,
    )
    return _to_response(graph)


@router.post("/reconcile", response_model=ProvisioningResponse)
async def reconcile_provisioning(
    payload: ReconcileRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> ProvisioningResponse:
    """Resolve against the last recorded lock state and replace the record."""
    settings = get_settings()
    request = validate(payload.request, settings)
    key = (request.backend, request.name)

    async with _lock_for(key):
        record = await _get_record(db, *key)
        graph = resolve_request(
            payload.request,
            _prior_state(record),
            settings=settings,
            strict=payload.strict,
        )

        lock = graph.lock
        if record is None:
            record = ProvisioningRecord(backend=request.backend, resource_name=request.name)
            db.add(record)
            response.status_code = status.HTTP_201_CREATED
        record.lock_enabled = lock.enabled
        record.lock_mode = lock.mode.value
        record.retention_days = lock.retention_days
        record.immutability_verified = graph.summary.immutability_verified
        record.outputs = graph.outputs
        record.graph = graph.model_dump(mode="json")
        await db.commit()

    logger.info(
        "Recorded %s/%s (lock=%s mode=%s retention=%d)",
        request.backend, request.name, lock.enabled, lock.mode.value, lock.retention_days,
    )
    return _to_response(graph)


@router.get("/records/{backend}/{name}", response_model=RecordResponse)
async def get_provisioning_record(
    backend: str,
    name: str,
    db: AsyncSession = Depends(get_db),
) -> RecordResponse:
    record = await _get_record(db, backend, name)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No provisioning record for {backend}/{name}",
        )
    return RecordResponse.model_validate(record)
