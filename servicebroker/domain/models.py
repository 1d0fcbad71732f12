from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, Index, Integer, String, Text, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from servicebroker.domain.lifecycle import InstanceStatus


# Use JSONB on Postgres and plain JSON elsewhere so sqlite test databases share the mapping.
JsonDocument = JSON().with_variant(JSONB(), "postgresql")
# SQLite only autoincrements INTEGER primary keys.
AutoIncrementId = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    pass


class ServiceInstanceDetails(Base):
    __tablename__ = "service_instance_details"

    # Caller-supplied id; backend resource names are derived from it so polling can find them.
    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    location: Mapped[str | None] = mapped_column(String, nullable=True)
    url: Mapped[str | None] = mapped_column(String, nullable=True)
    # Opaque backend metadata returned by the provider at provision time.
    other_details: Mapped[dict[str, Any] | None] = mapped_column(JsonDocument, nullable=True)
    # Never changes after the row is created.
    service_id: Mapped[str] = mapped_column(String)
    plan_id: Mapped[str] = mapped_column(String)
    organization_guid: Mapped[str | None] = mapped_column(String, nullable=True)
    space_guid: Mapped[str | None] = mapped_column(String, nullable=True)
    # Lifecycle status; rows are inserted as a provisioning claim before the backend is called.
    status: Mapped[str] = mapped_column(
        String, default=InstanceStatus.PROVISIONING.value, server_default=InstanceStatus.ACTIVE.value
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    # Soft-delete marker; rows stay for audit and are hidden from live lookups.
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    def get_other_details(self) -> dict[str, Any]:
        return dict(self.other_details or {})


class ServiceBindingCredentials(Base):
    __tablename__ = "service_binding_credentials"
    __table_args__ = (
        # Only live bindings compete for the (instance, binding) pair.
        Index(
            "uq_service_binding_credentials_live",
            "service_instance_id",
            "binding_id",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(AutoIncrementId, primary_key=True, autoincrement=True)
    service_instance_id: Mapped[str] = mapped_column(String(255), index=True)
    binding_id: Mapped[str] = mapped_column(String(255))
    service_id: Mapped[str] = mapped_column(String)
    # Credential blob minted by the account manager; returned to callers merged with instance details.
    other_details: Mapped[dict[str, Any] | None] = mapped_column(JsonDocument, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def get_other_details(self) -> dict[str, Any]:
        return dict(self.other_details or {})


class ProvisionRequestDetails(Base):
    __tablename__ = "provision_request_details"

    # Append-only history of provision requests; kept after the instance is deleted.
    id: Mapped[int] = mapped_column(AutoIncrementId, primary_key=True, autoincrement=True)
    service_instance_id: Mapped[str] = mapped_column(String(255), index=True)
    request_details: Mapped[dict[str, Any] | None] = mapped_column(JsonDocument, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class PlanDetails(Base):
    __tablename__ = "plan_details"

    # Plan ids generated at runtime by older releases; read by the legacy plan upgrader.
    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    service_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String)
    features: Mapped[dict[str, Any] | None] = mapped_column(JsonDocument, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Migration(Base):
    __tablename__ = "migrations"

    # Monotonic ledger of applied schema migrations.
    id: Mapped[int] = mapped_column(AutoIncrementId, primary_key=True, autoincrement=True)
    migration_id: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
