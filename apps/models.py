"""
Model registration for migrations: import all models that should be migrated by Alembic here.
"""
from apps.identity.models import Tenant, TenantUsage, User
from apps.projects.models import Project, Task

__all__ = ["Tenant", "TenantUsage", "User", "Project", "Task"]
