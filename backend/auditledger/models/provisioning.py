import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from auditledger.models.base import Base

_JSON = JSON().with_variant(JSONB(), "postgresql")


class ProvisioningRecord(Base):
    """Last resolved state of one provisioned resource.

    The lock columns are threaded back into the next reconcile as its prior
    state; the graph is kept for inspection only.
    """

    __tablename__ = "provisioning_records"
    __table_args__ = (
        UniqueConstraint("backend", "resource_name", name="uq_provisioning_records_resource"),
    )
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    backend: Mapped[str] = mapped_column(String(20), nullable=False)
    resource_name: Mapped[str] = mapped_column(String(63), nullable=False)
    lock_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False)
    lock_mode: Mapped[str] = mapped_column(String(20), nullable=False)
    retention_days: Mapped[int] = mapped_column(Integer, nullable=False)
    immutability_verified: Mapped[bool] = mapped_column(Boolean, nullable=False)
    outputs: Mapped[dict[str, Any]] = mapped_column(_JSON, nullable=False)
    graph: Mapped[dict[str, Any]] = mapped_column(_JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )
