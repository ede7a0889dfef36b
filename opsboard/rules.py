"""
The access rule table -- the single source of truth for who may do what.

The original API carried two slightly divergent copies of these rules
(route-level ``admin``/``requireRole`` middleware and the
``canViewUser``/``canModifyUser`` helpers).  They are consolidated here
into one table keyed by ``(action, resource type)``.  Each entry is one of
three requirement variants:

* ``Authenticated``                 -- any authenticated principal.
* ``RoleIn``                        -- the principal's role must be listed.
  Static: never needs to look up another record.
* ``SelfOrRoleInWithTargetFilter``  -- ADMIN, the target user themself, or
  a listed role acting on a target whose *current* role passes the filter.
  The only variant that needs a user-directory lookup.

The same table drives the API gate (``opsboard.gate``) and the UI-side
capability report (``get_capabilities_for_role``).
"""

from __future__ import annotations

from typing import Union

from pydantic import BaseModel, ConfigDict

from opsboard.models import CRUD_ACTIONS, Action, ResourceType, Role


FORBIDDEN_MESSAGE = "Access denied. Insufficient permissions."


# ---------------------------------------------------------------------------
# Requirement variants
# ---------------------------------------------------------------------------

class Authenticated(BaseModel):
    """Any authenticated principal may proceed."""

    model_config = ConfigDict(frozen=True)


class RoleIn(BaseModel):
    """The principal's role must be one of ``roles``."""

    model_config = ConfigDict(frozen=True)

    roles: frozenset[Role]
    message: str = FORBIDDEN_MESSAGE


class SelfOrRoleInWithTargetFilter(BaseModel):
    """ADMIN, self, or ``roles`` acting on a target whose role is in
    ``target_roles``.

    Evaluated in order, first match wins:

    1. principal is ADMIN -> allow
    2. principal is the target -> allow
    3. principal role in ``roles`` -> look up the target's role;
       missing target -> not found; role in ``target_roles`` -> allow;
       otherwise forbidden with ``target_message``
    4. otherwise -> forbidden with ``message``
    """

    model_config = ConfigDict(frozen=True)

    roles: frozenset[Role] = frozenset()
    target_roles: frozenset[Role] = frozenset()
    target_message: str = FORBIDDEN_MESSAGE
    message: str = FORBIDDEN_MESSAGE


Requirement = Union[Authenticated, RoleIn, SelfOrRoleInWithTargetFilter]


class UndeclaredRuleError(KeyError):
    """Raised when no rule is declared for an ``(action, resource)`` pair."""


# ---------------------------------------------------------------------------
# Role tiers
# ---------------------------------------------------------------------------

# Every role must be classified here.  The tier is informational for the
# dashboard; the table below never derives a rule from it.
ROLE_TIERS: dict[Role, str] = {
    Role.ADMIN: "administrator",
    Role.MANAGER: "manager",
    Role.TRAINER: "staff",
    Role.DEVELOPER: "staff",
    Role.TEACHING_ASSISTANT: "staff",
    Role.MEMBER: "member",
}


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------

_ANY_AUTHENTICATED = Authenticated()
_ADMIN_ONLY = RoleIn(roles=frozenset({Role.ADMIN}))
_ADMIN_OR_MANAGER = RoleIn(roles=frozenset({Role.ADMIN, Role.MANAGER}))

# Resources every authenticated principal may work with.
_OPEN_RESOURCES = (
    ResourceType.TASK,
    ResourceType.CLASS,
    ResourceType.CONTEST,
    ResourceType.CONTEST_VIDEO_SOLUTION,
    ResourceType.VIDEO,
    ResourceType.COMMENT,
)

_RULES: dict[tuple[Action, ResourceType], Requirement] = {
    # Users
    (Action.LIST, ResourceType.USER): _ADMIN_OR_MANAGER,
    (Action.VIEW, ResourceType.USER): SelfOrRoleInWithTargetFilter(
        roles=frozenset({Role.MANAGER, Role.TRAINER}),
        target_roles=frozenset({Role.MEMBER}),
        target_message="You can only view member profiles",
    ),
    (Action.CREATE, ResourceType.USER): _ADMIN_ONLY,
    (Action.UPDATE, ResourceType.USER): SelfOrRoleInWithTargetFilter(
        roles=frozenset({Role.MANAGER, Role.TRAINER}),
        target_roles=frozenset({Role.MEMBER}),
        target_message="You can only modify member profiles",
    ),
    (Action.DELETE, ResourceType.USER): _ADMIN_ONLY,
    (Action.CHANGE_ROLE, ResourceType.USER): _ADMIN_ONLY,
    (Action.CHANGE_PASSWORD, ResourceType.USER): SelfOrRoleInWithTargetFilter(
        message="Not authorized to change this password",
    ),
}

for _resource in _OPEN_RESOURCES:
    for _action in CRUD_ACTIONS:
        _RULES[(_action, _resource)] = _ANY_AUTHENTICATED

for _action in CRUD_ACTIONS:
    _RULES[(_action, ResourceType.PAYMENT)] = _ADMIN_OR_MANAGER
    _RULES[(_action, ResourceType.MARKETING_CAMPAIGN)] = _ADMIN_ONLY


def _ensure_exhaustive() -> None:
    """Fail the import if a role or resource was added without rules."""
    unclassified = [r.name for r in Role if r not in ROLE_TIERS]
    if unclassified:
        raise RuntimeError(f"Roles without a tier classification: {unclassified}")

    missing = [
        f"{action.value}:{resource.value}"
        for resource in ResourceType
        for action in CRUD_ACTIONS
        if (action, resource) not in _RULES
    ]
    if missing:
        raise RuntimeError(f"Undeclared access rules: {missing}")


_ensure_exhaustive()


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def get_requirement(action: Action, resource: ResourceType) -> Requirement:
    """Return the requirement declared for ``(action, resource)``.

    Raises:
        UndeclaredRuleError: If the pair has no rule.  Undeclared pairs are
            a programming error, never an implicit allow or deny.
    """
    try:
        return _RULES[(action, resource)]
    except KeyError:
        raise UndeclaredRuleError(
            f"No access rule declared for action '{action.value}' "
            f"on resource '{resource.value}'."
        ) from None


def requires_target(action: Action, resource: ResourceType) -> bool:
    """Whether the rule for ``(action, resource)`` needs a target user id."""
    return isinstance(get_requirement(action, resource), SelfOrRoleInWithTargetFilter)


def declared_rules() -> dict[tuple[Action, ResourceType], Requirement]:
    """Return a copy of the full rule table."""
    return dict(_RULES)


def get_capabilities_for_role(role: Role) -> dict[str, str]:
    """Summarize what ``role`` may do, for UI-side capability checks.

    Keys are ``"<action>:<resource>"``.  Values are ``"allow"``,
    ``"deny"``, or ``"self_or_target"`` when the answer depends on the
    target user and must be asked of the gate.

    Args:
        role: The role to report on.

    Returns:
        Dictionary covering every declared rule.
    """
    capabilities: dict[str, str] = {}
    for (action, resource), requirement in _RULES.items():
        key = f"{action.value}:{resource.value}"
        if isinstance(requirement, Authenticated):
            capabilities[key] = "allow"
        elif isinstance(requirement, RoleIn):
            capabilities[key] = "allow" if role in requirement.roles else "deny"
        elif isinstance(requirement, SelfOrRoleInWithTargetFilter):
            capabilities[key] = "allow" if role == Role.ADMIN else "self_or_target"
        else:
            raise TypeError(f"Unknown requirement type: {type(requirement).__name__}")
    return capabilities
