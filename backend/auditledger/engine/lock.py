"""Lock Configuration Resolver — dispatches to the backend selected by tag."""
from auditledger.backends.registry import get_backend
from auditledger.schemas.request import ValidatedRequest
from auditledger.schemas.resources import LockConfiguration


def resolve(
    request: ValidatedRequest, prior_state: LockConfiguration | None = None
) -> LockConfiguration:
    return get_backend(request.backend).resolve_lock(request, prior_state)
