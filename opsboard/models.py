"""
Core data models for the OpsBoard access-control core.

A ``Principal`` is the authenticated actor of one request.  Every
authorization question is answered with an ``AccessDecision`` value --
denials are ordinary outcomes, not exceptions, because the HTTP layer
maps each denial reason to its own status code and the dashboard branches
on it (redirect to login vs. toast-and-stay).
"""

from __future__ import annotations

import enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Role(str, enum.Enum):
    """Closed set of user roles.

    Values are the strings stored on user documents.  ``Developer`` and
    ``Teaching Assistant`` were added to the user schema after the original
    upper-case roles and kept their spelling; ``Role("DEVELOPER")`` and
    ``Role("teaching_assistant")`` resolve to the same members.
    """

    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    TRAINER = "TRAINER"
    DEVELOPER = "Developer"
    TEACHING_ASSISTANT = "Teaching Assistant"
    MEMBER = "MEMBER"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            key = value.strip().upper().replace(" ", "_")
            for member in cls:
                if member.name == key:
                    return member
        return None


class ResourceType(str, enum.Enum):
    """Resources exposed by the OpsBoard API."""

    USER = "User"
    TASK = "Task"
    CLASS = "Class"
    PAYMENT = "Payment"
    CONTEST = "Contest"
    CONTEST_VIDEO_SOLUTION = "ContestVideoSolution"
    MARKETING_CAMPAIGN = "MarketingCampaign"
    VIDEO = "Video"
    COMMENT = "Comment"


class Action(str, enum.Enum):
    """Actions a principal may attempt on a resource.

    ``UPDATE`` on a user is the self-service profile update.  The
    administrative full update, which may change the stored role, is
    ``CHANGE_ROLE``.
    """

    LIST = "list"
    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    CHANGE_ROLE = "change_role"
    CHANGE_PASSWORD = "change_password"


CRUD_ACTIONS: tuple[Action, ...] = (
    Action.LIST,
    Action.VIEW,
    Action.CREATE,
    Action.UPDATE,
    Action.DELETE,
)


class Outcome(str, enum.Enum):
    ALLOW = "ALLOW"
    DENY = "DENY"


class DenialReason(str, enum.Enum):
    """Why a request was refused.

    * ``UNAUTHENTICATED`` -- no principal was resolved (401).
    * ``FORBIDDEN``       -- authenticated, insufficient privilege (403).
    * ``NOT_FOUND``       -- the target user of a lookup rule does not
      exist (404).
    """

    UNAUTHENTICATED = "UNAUTHENTICATED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]


_STATUS_CODES: dict[DenialReason, int] = {
    DenialReason.UNAUTHENTICATED: 401,
    DenialReason.FORBIDDEN: 403,
    DenialReason.NOT_FOUND: 404,
}


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------

class Principal(BaseModel):
    """The authenticated actor of a single request.

    Produced upstream by the identity resolver and immutable for the
    lifetime of the request.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(
        ...,
        min_length=1,
        description="Opaque user identifier (the user document's id as a string).",
    )
    role: Role = Field(
        ...,
        description="Role of the actor at the time the request was authenticated.",
    )

    @field_validator("role", mode="before")
    @classmethod
    def parse_role(cls, v):
        if isinstance(v, str) and not isinstance(v, Role):
            return Role(v)
        return v

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class AccessDecision(BaseModel):
    """Outcome of one authorization check.

    Never persisted and never cached; every check builds a fresh decision.
    """

    model_config = ConfigDict(frozen=True)

    outcome: Outcome
    reason: Optional[DenialReason] = None
    message: str = ""

    @classmethod
    def allow(cls) -> AccessDecision:
        return cls(outcome=Outcome.ALLOW)

    @classmethod
    def deny(cls, reason: DenialReason, message: str) -> AccessDecision:
        return cls(outcome=Outcome.DENY, reason=reason, message=message)

    @property
    def allowed(self) -> bool:
        return self.outcome == Outcome.ALLOW

    @property
    def status_code(self) -> int:
        """HTTP status the decision maps to (200 when allowed)."""
        if self.reason is None:
            return 200
        return self.reason.status_code

    def to_body(self) -> dict[str, str]:
        """JSON body sent to the client for a denial."""
        return {"error": self.message}
