"""
Role-based permission evaluation.

Decisions are driven by CAPABILITIES (role -> action -> access). The tenant
boundary is checked before the table is consulted, so no role except the Super
Admin can act outside its own tenant.
"""

from enum import Enum
from typing import Callable, Dict, Optional
from framework.exceptions.handler import Forbidden
from framework.logging.audit import ALLOW, AuditTrail
from framework.logging.logger import get_logger
from framework.security import RequestContext, Role

logger = get_logger("permissions")


class Action(str, Enum):
    TENANT_LIST = "tenant:list"
    TENANT_CREATE = "tenant:create"
    TENANT_READ = "tenant:read"
    TENANT_UPDATE = "tenant:update"
    TENANT_SET_STATUS = "tenant:set_status"

    USER_READ = "user:read"
    USER_CREATE = "user:create"
    USER_UPDATE = "user:update"
    USER_DELETE = "user:delete"

    PROJECT_READ = "project:read"
    PROJECT_CREATE = "project:create"
    PROJECT_UPDATE = "project:update"
    PROJECT_DELETE = "project:delete"

    TASK_READ = "task:read"
    TASK_CREATE = "task:create"
    TASK_UPDATE = "task:update"
    TASK_DELETE = "task:delete"

    @property
    def category(self) -> str:
        return self.value.split(":", 1)[0]


class Access(str, Enum):
    FULL = "full"
    LIMITED = "limited"  # requires resource ownership/assignment
    NONE = "none"


class Decision(str, Enum):
    ALLOW = "allow"
    OWNERSHIP_REQUIRED = "ownership_required"


def _grant(access: Access, *actions: Action) -> Dict[Action, Access]:
    return {action: access for action in actions}


CAPABILITIES: Dict[Role, Dict[Action, Access]] = {
    Role.SUPER_ADMIN: _grant(Access.FULL, *Action),
    Role.TENANT_ADMIN: {
        # Settings of its own tenant only; never list/create tenants or change status
        **_grant(Access.FULL, Action.TENANT_READ, Action.TENANT_UPDATE),
        **_grant(Access.FULL, Action.USER_READ, Action.USER_CREATE, Action.USER_UPDATE, Action.USER_DELETE),
        **_grant(Access.FULL, Action.PROJECT_READ, Action.PROJECT_CREATE, Action.PROJECT_UPDATE, Action.PROJECT_DELETE),
        **_grant(Access.FULL, Action.TASK_READ, Action.TASK_CREATE, Action.TASK_UPDATE, Action.TASK_DELETE),
    },
    Role.STANDARD_USER: {
        **_grant(Access.FULL, Action.PROJECT_READ, Action.TASK_READ),
        **_grant(Access.LIMITED, Action.PROJECT_CREATE, Action.PROJECT_UPDATE),
        **_grant(Access.LIMITED, Action.TASK_CREATE, Action.TASK_UPDATE),
    },
}


def access_for(role: Role, action: Action) -> Access:
    return CAPABILITIES.get(role, {}).get(action, Access.NONE)


OwnershipCheck = Callable[[RequestContext], bool]


class PermissionEvaluator:
    """Answers: may this context perform `action` on data of `target_tenant_id`?"""

    def __init__(self, audit: AuditTrail):
        self.audit = audit

    def authorize(
        self,
        ctx: RequestContext,
        action: Action,
        target_tenant_id: Optional[int],
        ownership: Optional[OwnershipCheck] = None,
    ) -> Decision:
        """
        Raises Forbidden on denial.

        Returns OWNERSHIP_REQUIRED when the role has limited access and no
        ownership check was supplied yet; the caller must then call
        confirm_ownership() once the resource is loaded.
        """
        if ctx.is_super_admin:
            self.audit.record(
                action=action.value,
                outcome=ALLOW,
                actor_id=ctx.user_id,
                actor_role=ctx.role.value,
                target_tenant_id=target_tenant_id,
                cross_tenant=True,
            )
            return Decision.ALLOW

        if target_tenant_id is None or target_tenant_id != ctx.tenant_id:
            self._deny(ctx, action, target_tenant_id, "tenant mismatch")

        access = access_for(ctx.role, action)
        if access is Access.FULL:
            return Decision.ALLOW
        if access is Access.LIMITED:
            if ownership is None:
                return Decision.OWNERSHIP_REQUIRED
            self.confirm_ownership(ctx, action, target_tenant_id, ownership)
            return Decision.ALLOW

        self._deny(ctx, action, target_tenant_id, f"role {ctx.role.value} lacks {action.value}")

    def confirm_ownership(
        self,
        ctx: RequestContext,
        action: Action,
        target_tenant_id: Optional[int],
        ownership: OwnershipCheck,
    ) -> None:
        if not ownership(ctx):
            self._deny(ctx, action, target_tenant_id, "not owner or assignee")

    def _deny(self, ctx: RequestContext, action: Action, target_tenant_id: Optional[int], reason: str):
        logger.info(
            f"Denied {action.value} | User: {ctx.user_id} | Role: {ctx.role.value} | "
            f"Tenant: {ctx.tenant_id} -> {target_tenant_id} | Reason: {reason}"
        )
        self.audit.deny(action.value, reason, context=ctx, target_tenant_id=target_tenant_id)
        raise Forbidden()
