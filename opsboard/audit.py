"""
Append-only access audit trail.

The HTTP adapter records each denial (and, when configured, each allowed
decision) as an ``AccessAuditEntry``.  Lookup failures are recorded with
outcome ``ERROR`` so that directory outages stand out from ordinary
refusals when the trail is reviewed or alerted on.

The gate itself never writes here -- decisions stay side-effect free and
the trail is fed from the request boundary only.
"""

from __future__ import annotations

import enum
import uuid
from collections import Counter, deque
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from opsboard.models import AccessDecision, Action, Principal, ResourceType


class AuditOutcome(str, enum.Enum):
    ALLOW = "ALLOW"
    DENY = "DENY"
    ERROR = "ERROR"


class AccessAuditEntry(BaseModel):
    """One recorded access decision."""

    entry_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique identifier for this audit entry (UUID).",
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="UTC timestamp of the decision.",
    )
    principal_id: Optional[str] = Field(
        default=None,
        description="Id of the acting principal; None for anonymous requests.",
    )
    principal_role: Optional[str] = Field(
        default=None,
        description="Role of the acting principal at decision time.",
    )
    action: Optional[Action] = None
    resource: Optional[ResourceType] = None
    target_id: Optional[str] = Field(
        default=None,
        description="Target user id for user-directed rules.",
    )
    outcome: AuditOutcome
    reason: Optional[str] = Field(
        default=None,
        description="Denial reason code, or LOOKUP_FAILED for directory faults.",
    )
    message: str = ""
    route: str = Field(
        default="",
        description="``METHOD path`` of the request, when known.",
    )

    @classmethod
    def from_decision(
        cls,
        principal: Optional[Principal],
        decision: AccessDecision,
        action: Optional[Action] = None,
        resource: Optional[ResourceType] = None,
        target_id: Optional[str] = None,
        route: str = "",
    ) -> AccessAuditEntry:
        return cls(
            principal_id=principal.id if principal else None,
            principal_role=principal.role.value if principal else None,
            action=action,
            resource=resource,
            target_id=target_id,
            outcome=AuditOutcome.ALLOW if decision.allowed else AuditOutcome.DENY,
            reason=decision.reason.value if decision.reason else None,
            message=decision.message,
            route=route,
        )


class AccessAuditLog:
    """In-memory, append-only list of access audit entries.

    There are no ``update()`` or ``delete()`` methods.  ``append()`` stores
    a copy and ``query()`` hands out copies, so callers cannot edit recorded
    entries.

    Args:
        max_entries: Optional retention bound.  When set, the oldest
            entries are dropped once the log holds this many; ``None``
            keeps everything for the life of the process.
    """

    def __init__(self, max_entries: Optional[int] = None) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self._entries: deque[AccessAuditEntry] = deque(maxlen=max_entries)

    def append(self, entry: AccessAuditEntry) -> AccessAuditEntry:
        stored = entry.model_copy(deep=True)
        self._entries.append(stored)
        return stored.model_copy(deep=True)

    def query(
        self,
        principal_id: Optional[str] = None,
        outcome: Optional[AuditOutcome] = None,
        reason: Optional[str] = None,
        time_start: Optional[datetime] = None,
        time_end: Optional[datetime] = None,
    ) -> list[AccessAuditEntry]:
        """Return matching entries in insertion order.

        Args:
            principal_id: Optional filter by acting principal.
            outcome: Optional filter by outcome.
            reason: Optional filter by reason code.
            time_start: Optional inclusive start time.
            time_end: Optional inclusive end time.

        Returns:
            List of matching ``AccessAuditEntry`` objects (copies).
        """
        results = []
        for entry in self._entries:
            if principal_id is not None and entry.principal_id != principal_id:
                continue
            if outcome is not None and entry.outcome != outcome:
                continue
            if reason is not None and entry.reason != reason:
                continue
            if time_start is not None and entry.timestamp < time_start:
                continue
            if time_end is not None and entry.timestamp > time_end:
                continue
            results.append(entry.model_copy(deep=True))
        return results

    def summarize(self) -> dict[str, Any]:
        """Counts by outcome and by reason, for dashboards and alerts."""
        return {
            "total": len(self._entries),
            "by_outcome": dict(Counter(e.outcome.value for e in self._entries)),
            "by_reason": dict(Counter(e.reason for e in self._entries if e.reason)),
        }

    def __len__(self) -> int:
        return len(self._entries)
