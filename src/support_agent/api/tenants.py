"""Tenant lookup used by the chat endpoint.

Tenant records are owned by the account service; this side only reads them.
"""

from __future__ import annotations

from typing import Any, Protocol

from sqlalchemy import Boolean, Float, String, Text, create_engine, select
from sqlalchemy.orm import Mapped, mapped_column, sessionmaker

from support_agent.models import TenantConfig
from support_agent.retrieval.pg_store import Base


class TenantDirectory(Protocol):
    def get_by_slug(self, slug: str) -> TenantConfig | None:
        """Return the tenant's current configuration, or None if unknown."""


class InMemoryTenantDirectory:
    def __init__(self, tenants: list[TenantConfig] | None = None) -> None:
        self._by_slug = {tenant.slug: tenant for tenant in tenants or []}

    def add(self, tenant: TenantConfig) -> None:
        self._by_slug[tenant.slug] = tenant

    def get_by_slug(self, slug: str) -> TenantConfig | None:
        return self._by_slug.get(slug)


class TenantRow(Base):
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    slug: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    instructions: Mapped[str] = mapped_column(Text, nullable=False)
    model_provider: Mapped[str] = mapped_column(String, nullable=False)
    model_name: Mapped[str] = mapped_column(String, nullable=False)
    temperature: Mapped[float] = mapped_column(Float, nullable=False)
    welcome_message: Mapped[str] = mapped_column(Text, nullable=False)
    openai_api_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    anthropic_api_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    google_api_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    widget_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False)


_COLUMNS = (
    "id",
    "slug",
    "name",
    "instructions",
    "model_provider",
    "model_name",
    "temperature",
    "welcome_message",
    "openai_api_key",
    "anthropic_api_key",
    "google_api_key",
    "widget_enabled",
)


class SqlTenantDirectory:
    """Reads tenant configuration from the shared `tenants` table."""

    def __init__(self, database_url: str) -> None:
        self._session_factory = sessionmaker(bind=create_engine(database_url, pool_pre_ping=True))

    def get_by_slug(self, slug: str) -> TenantConfig | None:
        with self._session_factory() as session:
            row = session.scalars(select(TenantRow).where(TenantRow.slug == slug)).first()
        if row is None:
            return None
        record: dict[str, Any] = {column: getattr(row, column) for column in _COLUMNS}
        return TenantConfig.from_record(record)
