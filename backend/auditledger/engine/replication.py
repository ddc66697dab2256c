"""Replication Wiring Resolver."""
import logging

from auditledger.backends.registry import get_backend
from auditledger.core.errors import ValidationError
from auditledger.schemas.request import ValidatedRequest
from auditledger.schemas.resources import ReplicationConfig

logger = logging.getLogger(__name__)


def resolve(request: ValidatedRequest) -> ReplicationConfig | None:
    """Declare replication to the requested destination.

    The destination and role are only checked syntactically; their existence
    is never confirmed here, so the result is always ``declared`` and
    unverified.
    """
    if request.replication_target is None or request.replication_role is None:
        return None

    profile = get_backend(request.backend)
    violations = profile.check_replication(
        request.replication_target, request.replication_role, request.name
    )
    if violations:
        raise ValidationError(violations)

    config = ReplicationConfig(
        destination=request.replication_target,
        role=request.replication_role,
        storage_class=request.replication_storage_class,
        native_storage_class=profile.native_tier(request.replication_storage_class),
        replicate_kms_encrypted=bool(request.kms_key_id),
    )
    logger.debug(
        "Replication for %s declared to %s (unverified)", request.name, config.destination
    )
    return config
