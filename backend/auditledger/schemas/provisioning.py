"""Request / response bodies for the provisioning endpoints."""
import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from auditledger.schemas.common import ViolationResponse
from auditledger.schemas.resources import LockConfiguration


class PlanRequest(BaseModel):
    # Left as a plain mapping so shape errors are reported by the validator
    request: dict[str, Any]
    prior_state: LockConfiguration | None = None
    strict: bool = False


class ReconcileRequest(BaseModel):
    request: dict[str, Any]
    strict: bool = False


class ProvisioningResponse(BaseModel):
    outputs: dict[str, Any]
    graph: dict[str, Any]
    warnings: list[ViolationResponse] = Field(default_factory=list)


class RecordResponse(BaseModel):
    id: uuid.UUID
    backend: str
    resource_name: str
    lock_enabled: bool
    lock_mode: str
    retention_days: int
    immutability_verified: bool
    outputs: dict[str, Any]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
