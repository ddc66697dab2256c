"""Shared schema utilities."""
from pydantic import BaseModel

from auditledger.core.errors import ProvisioningError


class ViolationResponse(BaseModel):
    field: str
    rule: str
    message: str


class ErrorResponse(BaseModel):
    detail: str
    violations: list[ViolationResponse] = []

    @classmethod
    def from_error(cls, exc: ProvisioningError) -> "ErrorResponse":
        return cls(
            detail=str(exc),
            violations=[ViolationResponse(**v.model_dump()) for v in exc.violations],
        )
