"""
Structured error taxonomy for the provisioning engine.

  ValidationError            bad input shape or value, rejected before derivation
  PolicyConflictError        cross-field or cross-run invariant violated
  UnverifiedDependencyError  referenced external resource not confirmed to exist

Every error carries the full list of violations so callers can report all of
them at once instead of fixing inputs one round-trip at a time.
"""
from collections.abc import Iterable

from pydantic import BaseModel


class Violation(BaseModel):
    field: str
    rule: str
    message: str

    model_config = {"frozen": True}


class ProvisioningError(Exception):
    """Base class, never raised directly."""

    def __init__(self, violations: Iterable[Violation]):
        self.violations: tuple[Violation, ...] = tuple(violations)
        super().__init__("; ".join(f"{v.field}: {v.message}" for v in self.violations))

    @classmethod
    def single(cls, field: str, rule: str, message: str) -> "ProvisioningError":
        return cls([Violation(field=field, rule=rule, message=message)])

    def rules(self) -> set[str]:
        return {v.rule for v in self.violations}


class ValidationError(ProvisioningError):
    pass


class PolicyConflictError(ProvisioningError):
    pass


class UnverifiedDependencyError(ProvisioningError):
    pass
