"""
Database models for merchant sessions, data scopes, API keys and usage logs,
plus the API schemas used to render them.
"""

import datetime
import uuid
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shop_access.core.database import Base
from shop_access.core.settings import ScopeName


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class MerchantSession(Base):
    """
    One installed merchant and its Shopify grant.

    Attributes:
        id (str): Opaque session identifier handed to the admin dashboard.
        shop (str): Shop domain, e.g. ``store.myshopify.com``. Unique.
        access_token (str): Shopify Admin API access token.
        scope (str): Upstream OAuth scopes granted at install time.
        is_online (bool): Whether the grant is an online (user) token.
    """

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    shop: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    access_token: Mapped[str] = mapped_column(String, nullable=False)
    scope: Mapped[str | None] = mapped_column(String, nullable=True)
    is_online: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    data_scopes: Mapped[List["DataScope"]] = relationship(back_populates="session")
    api_keys: Mapped[List["ApiKey"]] = relationship(back_populates="session")


class DataScope(Base):
    """A per-merchant toggle for one resource kind. Absent means disabled."""

    __tablename__ = "data_scopes"
    __table_args__ = (
        UniqueConstraint("session_id", "scope_name", name="uq_data_scopes_session_scope"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    session_id: Mapped[str] = mapped_column(ForeignKey("sessions.id"), index=True, nullable=False)
    scope_name: Mapped[str] = mapped_column(String(32), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    session: Mapped[MerchantSession] = relationship(back_populates="data_scopes")


class ApiKey(Base):
    """
    Bearer credential for the public data endpoints, bound to one session.

    Only the SHA-256 hash of the secret is stored. Revocation sets
    ``is_active`` to False; rows are never deleted.
    """

    __tablename__ = "api_keys"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    session_id: Mapped[str] = mapped_column(ForeignKey("sessions.id"), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    key_prefix: Mapped[str] = mapped_column(String(12), nullable=False)
    key_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    last_four: Mapped[str] = mapped_column(String(4), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_used_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    session: Mapped[MerchantSession] = relationship(back_populates="api_keys")

    @property
    def masked_key(self) -> str:
        return f"{self.key_prefix}...{self.last_four}"


class UsageLog(Base):
    """Append-only record of one proxied call."""

    __tablename__ = "usage_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    api_key_id: Mapped[str] = mapped_column(ForeignKey("api_keys.id"), index=True, nullable=False)
    endpoint: Mapped[str] = mapped_column(String, nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class CamelModel(BaseModel):
    """Response schema rendered with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class DataScopeOut(CamelModel):
    id: str
    session_id: str
    scope_name: str
    enabled: bool
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None


class ScopesResponse(BaseModel):
    scopes: List[DataScopeOut]


class ScopeToggle(CamelModel):
    scope_name: ScopeName = Field(..., description="Resource kind to toggle")
    enabled: bool = Field(..., description="Whether the resource may be proxied")


class ApiKeyOut(CamelModel):
    """
    API key as shown to the merchant.

    ``key`` holds the plaintext secret only in the response to the request
    that issued it; every other response carries the masked form.
    """

    id: str
    session_id: str
    name: str
    key: str
    is_active: bool
    last_used_at: Optional[datetime.datetime] = None
    created_at: datetime.datetime

    @classmethod
    def from_record(cls, record: ApiKey, raw_key: str | None = None) -> "ApiKeyOut":
        return cls(
            id=record.id,
            session_id=record.session_id,
            name=record.name,
            key=raw_key if raw_key is not None else record.masked_key,
            is_active=record.is_active,
            last_used_at=record.last_used_at,
            created_at=record.created_at,
        )


class ApiKeyResponse(BaseModel):
    key: ApiKeyOut


class ApiKeyListResponse(BaseModel):
    keys: List[ApiKeyOut]


class CreateApiKeyRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=100, description="Human readable key name")

    model_config = {"json_schema_extra": {"example": {"name": "Production"}}}
