from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field
from framework.security import Role


class SubscriptionTier(str, Enum):
    FREE = "free"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


class TenantStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class ResourceKind(str, Enum):
    """Resource kinds counted against a tenant's quota."""
    USER = "user"
    PROJECT = "project"


class Tenant(SQLModel, table=True):
    __tablename__ = "tenants"
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True, max_length=255)
    subscription_tier: SubscriptionTier = Field(default=SubscriptionTier.FREE)
    max_users: int = Field(ge=0)
    max_projects: int = Field(ge=0)
    status: TenantStatus = Field(default=TenantStatus.ACTIVE)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_active(self) -> bool:
        return self.status == TenantStatus.ACTIVE

    def limit_for(self, kind: ResourceKind) -> int:
        return self.max_users if kind == ResourceKind.USER else self.max_projects


class User(SQLModel, table=True):
    __tablename__ = "users"
    id: Optional[int] = Field(default=None, primary_key=True)
    # Globally unique so login needs no tenant hint
    email: str = Field(unique=True, index=True, max_length=320)
    hashed_password: str
    # NULL only for the Super Admin
    tenant_id: Optional[int] = Field(default=None, foreign_key="tenants.id", index=True)
    role: Role = Field(default=Role.STANDARD_USER)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TenantUsage(SQLModel, table=True):
    """Quota counter: reserved units of one resource kind for one tenant."""
    __tablename__ = "tenant_usage"
    __table_args__ = (UniqueConstraint("tenant_id", "kind", name="uq_tenant_usage_tenant_kind"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: int = Field(foreign_key="tenants.id", index=True)
    kind: ResourceKind
    used: int = Field(default=0, ge=0)
