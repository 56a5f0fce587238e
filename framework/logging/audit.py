"""
Security audit trail.

Every denial (authentication, permission, quota) and every cross-tenant action
taken by a Super Admin becomes one AuditEvent. Events go to a sink; the default
sink writes to the loguru audit channel (see LogConfig), tests can pass a list.
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional
from loguru import logger

ALLOW = "allow"
DENY = "deny"


@dataclass(frozen=True)
class AuditEvent:
    action: str
    outcome: str
    actor_id: Optional[int] = None
    actor_role: Optional[str] = None
    target_tenant_id: Optional[int] = None
    cross_tenant: bool = False
    reason: Optional[str] = None
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> str:
        payload = asdict(self)
        payload["at"] = self.at.isoformat()
        return json.dumps(payload, sort_keys=True)


AuditSink = Callable[[AuditEvent], None]


def loguru_sink(event: AuditEvent) -> None:
    logger.bind(audit=True).info(event.to_json())


class MemorySink:
    """Collects events in memory (tests, debugging)."""

    def __init__(self):
        self.events: List[AuditEvent] = []

    def __call__(self, event: AuditEvent) -> None:
        self.events.append(event)

    def filter(self, **criteria) -> List[AuditEvent]:
        return [
            event for event in self.events
            if all(getattr(event, key) == value for key, value in criteria.items())
        ]


class AuditTrail:
    def __init__(self, sink: Optional[AuditSink] = None):
        self.sink = sink or loguru_sink

    def record(
        self,
        action: str,
        outcome: str,
        actor_id: Optional[int] = None,
        actor_role: Optional[str] = None,
        target_tenant_id: Optional[int] = None,
        cross_tenant: bool = False,
        reason: Optional[str] = None,
    ) -> AuditEvent:
        event = AuditEvent(
            action=action,
            outcome=outcome,
            actor_id=actor_id,
            actor_role=actor_role,
            target_tenant_id=target_tenant_id,
            cross_tenant=cross_tenant,
            reason=reason,
        )
        self.sink(event)
        return event

    def deny(self, action: str, reason: str, context=None, target_tenant_id: Optional[int] = None) -> AuditEvent:
        """Record a denial; `context` is a RequestContext when the actor is known."""
        return self.record(
            action=action,
            outcome=DENY,
            actor_id=getattr(context, "user_id", None),
            actor_role=_role_value(context),
            target_tenant_id=target_tenant_id,
            cross_tenant=context is not None and target_tenant_id != getattr(context, "tenant_id", None),
            reason=reason,
        )


def _role_value(context) -> Optional[str]:
    role = getattr(context, "role", None)
    return getattr(role, "value", role)


# Process-wide default trail; the app can swap it through dependency overrides
audit_trail = AuditTrail()
