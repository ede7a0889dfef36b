"""
AccessControlGate -- the authorization decision point.

The gate runs after identity resolution and before any resource handler.
Given a principal (or its absence), an action, a resource type and, for
user-directed actions, a target user id, it returns an ``AccessDecision``.

**Properties the gate guarantees:**

* Denials are returned as values.  Nothing inside the gate raises for an
  expected outcome (unauthenticated, forbidden, target not found).
* A decision depends only on the principal, the action, the resource
  type and -- for lookup rules -- the target's role as the directory
  reports it *now*.  Nothing is memoized between calls.
* ADMIN and self-access short-circuit before the directory is consulted;
  at most one lookup is made per decision.
* A directory failure raises ``LookupFailedError`` unchanged.  It is never
  turned into a 403 or 404; whether to fail closed or retry is the
  caller's call.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from opsboard.directory import LookupFailedError, UserDirectory
from opsboard.models import (
    AccessDecision,
    Action,
    DenialReason,
    Principal,
    ResourceType,
    Role,
)
from opsboard.rules import (
    FORBIDDEN_MESSAGE,
    Authenticated,
    RoleIn,
    SelfOrRoleInWithTargetFilter,
    get_requirement,
)

logger = logging.getLogger(__name__)

UNAUTHENTICATED_MESSAGE = "Authentication required"
NOT_FOUND_MESSAGE = "User not found"


class AccessControlGate:
    """Evaluates the rule table for one request at a time.

    The gate holds a reference to the user directory and nothing else; it
    is safe to share a single instance across concurrent requests.
    """

    def __init__(self, directory: UserDirectory) -> None:
        self._directory = directory

    # -- primitive checks --

    def require_authenticated(self, principal: Optional[Principal]) -> AccessDecision:
        """Deny with UNAUTHENTICATED when no principal was resolved."""
        decision = self._check_authenticated(principal)
        self._log_decision(principal, "authenticated", decision)
        return decision

    def require_role(
        self,
        principal: Optional[Principal],
        allowed_roles: Iterable[Role],
        message: str = FORBIDDEN_MESSAGE,
    ) -> AccessDecision:
        """Whole-resource gate: the principal's role must be allowed.

        Static -- never looks up another record.

        Args:
            principal: The resolved principal, or None.
            allowed_roles: Roles that may proceed.
            message: Client-facing text for the FORBIDDEN denial.

        Returns:
            ALLOW, or DENY with UNAUTHENTICATED / FORBIDDEN.
        """
        allowed = frozenset(allowed_roles)
        decision = self._check_role(principal, allowed, message)
        roles = ",".join(sorted(role.value for role in allowed))
        self._log_decision(principal, f"role in [{roles}]", decision)
        return decision

    # -- user-directed checks --

    def can_view_user(
        self, principal: Optional[Principal], target_user_id: str
    ) -> AccessDecision:
        """May ``principal`` read the profile of ``target_user_id``?

        ADMIN and self always may; MANAGER and TRAINER may view MEMBER
        profiles only; everyone else is refused.

        Raises:
            LookupFailedError: If the directory cannot report the target's role.
        """
        return self.authorize(principal, Action.VIEW, ResourceType.USER, target_user_id)

    def can_modify_user(
        self, principal: Optional[Principal], target_user_id: str
    ) -> AccessDecision:
        """May ``principal`` update the profile of ``target_user_id``?

        Evaluated from its own rule, independently of ``can_view_user``,
        even though both rules currently grant the same access.

        Raises:
            LookupFailedError: If the directory cannot report the target's role.
        """
        return self.authorize(principal, Action.UPDATE, ResourceType.USER, target_user_id)

    def can_change_password(
        self, principal: Optional[Principal], target_user_id: str
    ) -> AccessDecision:
        """Only the user themself or an ADMIN may change a password."""
        return self.authorize(
            principal, Action.CHANGE_PASSWORD, ResourceType.USER, target_user_id
        )

    def can_create_resource(
        self, principal: Optional[Principal], resource_type: ResourceType
    ) -> AccessDecision:
        """May ``principal`` create a ``resource_type``?"""
        return self.authorize(principal, Action.CREATE, resource_type)

    # -- generic entry point --

    def authorize(
        self,
        principal: Optional[Principal],
        action: Action,
        resource_type: ResourceType,
        target_user_id: Optional[str] = None,
    ) -> AccessDecision:
        """Evaluate the declared rule for ``(action, resource_type)``.

        Args:
            principal: The resolved principal, or None.
            action: The attempted action.
            resource_type: The resource the action applies to.
            target_user_id: Id of the user acted upon.  Required for rules
                that depend on the target.

        Returns:
            The ``AccessDecision``.

        Raises:
            UndeclaredRuleError: If no rule exists for the pair.
            ValueError: If the rule needs a target and none was given.
            LookupFailedError: If the directory cannot answer.
        """
        requirement = get_requirement(action, resource_type)

        if isinstance(requirement, Authenticated):
            decision = self._check_authenticated(principal)
        elif isinstance(requirement, RoleIn):
            decision = self._check_role(principal, requirement.roles, requirement.message)
        elif isinstance(requirement, SelfOrRoleInWithTargetFilter):
            if not target_user_id:
                raise ValueError(
                    f"Action '{action.value}' on '{resource_type.value}' "
                    "requires a target user id."
                )
            decision = self._evaluate_target_rule(principal, requirement, target_user_id)
        else:
            raise TypeError(f"Unknown requirement type: {type(requirement).__name__}")

        check = f"{action.value}:{resource_type.value}"
        if target_user_id:
            check += f" target={target_user_id}"
        self._log_decision(principal, check, decision)
        return decision

    # -- helpers --

    @staticmethod
    def _check_authenticated(principal: Optional[Principal]) -> AccessDecision:
        if principal is None:
            return AccessDecision.deny(
                DenialReason.UNAUTHENTICATED, UNAUTHENTICATED_MESSAGE
            )
        return AccessDecision.allow()

    def _check_role(
        self,
        principal: Optional[Principal],
        allowed_roles: frozenset[Role],
        message: str,
    ) -> AccessDecision:
        decision = self._check_authenticated(principal)
        if not decision.allowed:
            return decision
        if principal.role not in allowed_roles:
            return self._forbid(message)
        return decision

    def _evaluate_target_rule(
        self,
        principal: Optional[Principal],
        requirement: SelfOrRoleInWithTargetFilter,
        target_user_id: str,
    ) -> AccessDecision:
        decision = self._check_authenticated(principal)
        if not decision.allowed:
            return decision

        if principal.is_admin:
            return decision
        if principal.id == target_user_id:
            return decision
        if principal.role not in requirement.roles:
            return self._forbid(requirement.message)

        try:
            target_role = self._directory.find_role_by_id(target_user_id)
        except LookupFailedError:
            logger.warning(
                "Role lookup for target %s failed while authorizing %s (%s)",
                target_user_id,
                principal.id,
                principal.role.value,
                exc_info=True,
            )
            raise

        if target_role is None:
            return AccessDecision.deny(DenialReason.NOT_FOUND, NOT_FOUND_MESSAGE)
        if target_role not in requirement.target_roles:
            return self._forbid(requirement.target_message)
        return decision

    @staticmethod
    def _forbid(message: str) -> AccessDecision:
        return AccessDecision.deny(DenialReason.FORBIDDEN, message)

    @staticmethod
    def _log_decision(
        principal: Optional[Principal], check: str, decision: AccessDecision
    ) -> None:
        actor = f"{principal.id} ({principal.role.value})" if principal else "anonymous"
        if decision.allowed:
            logger.debug("ALLOW %s %s", actor, check)
        else:
            logger.info("DENY %s %s reason=%s", actor, check, decision.reason.value)
