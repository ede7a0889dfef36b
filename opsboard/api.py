"""
FastAPI integration for the access-control gate.

Routes declare their requirement with one of the dependency factories
below; the dependency evaluates the gate and either returns the principal
to the handler or raises ``AccessDeniedError``, which the installed
exception handler renders as ``{"error": "..."}`` with 401 / 403 / 404.

The principal is read from ``request.state.principal``, where the
application's authentication middleware stores it after resolving the
bearer token.  This module never resolves identity itself.

Usage::

    app = FastAPI()
    install_access_control(app, AccessControlGate(directory))

    @app.get("/api/v1/payments")
    def list_payments(principal: Principal = Depends(require_roles(Role.ADMIN, Role.MANAGER))):
        ...

    @app.get("/api/v1/users/{id}")
    def get_user(id: str, principal: Principal = Depends(require_access(Action.VIEW, ResourceType.USER, "id"))):
        ...

Directory lookups are synchronous, so these dependencies are plain
functions; FastAPI runs them on its worker thread pool and a slow lookup
holds up only its own request.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from opsboard.audit import AccessAuditEntry, AccessAuditLog, AuditOutcome
from opsboard.config import DEFAULT_SETTINGS, GateSettings, RouteRegistry
from opsboard.directory import LookupFailedError
from opsboard.gate import AccessControlGate
from opsboard.models import AccessDecision, Action, DenialReason, Principal, ResourceType, Role
from opsboard.rules import requires_target

logger = logging.getLogger(__name__)


class AccessDeniedError(Exception):
    """Carries a denial from a dependency to the exception handler."""

    def __init__(self, decision: AccessDecision) -> None:
        super().__init__(decision.message)
        self.decision = decision


# ---------------------------------------------------------------------------
# Application wiring
# ---------------------------------------------------------------------------

def install_access_control(
    app: FastAPI,
    gate: AccessControlGate,
    settings: GateSettings | None = None,
    audit_log: AccessAuditLog | None = None,
) -> None:
    """Attach the gate, its settings and the error handlers to ``app``.

    The ``LookupFailedError`` handler is only installed when the settings
    say to fail closed; otherwise the error reaches the application's own
    handling (by default a 500).
    """
    settings = settings or DEFAULT_SETTINGS
    app.state.access_gate = gate
    app.state.access_settings = settings
    app.state.access_audit_log = audit_log

    app.add_exception_handler(AccessDeniedError, _access_denied_handler)
    if settings.fail_closed_on_lookup_failure:
        app.add_exception_handler(LookupFailedError, _lookup_failed_handler)


async def _access_denied_handler(request: Request, exc: AccessDeniedError) -> JSONResponse:
    decision = exc.decision
    headers = None
    if decision.reason == DenialReason.UNAUTHENTICATED:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=decision.status_code, content=decision.to_body(), headers=headers
    )


async def _lookup_failed_handler(request: Request, exc: LookupFailedError) -> JSONResponse:
    settings: GateSettings = request.app.state.access_settings
    logger.error("Failing closed on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=settings.lookup_failure_status_code,
        content={"error": settings.lookup_failure_message},
    )


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_principal(request: Request) -> Optional[Principal]:
    """Return the principal resolved upstream, or None."""
    return getattr(request.state, "principal", None)


def _route_label(request: Request) -> str:
    route = request.scope.get("route")
    path = getattr(route, "path", request.url.path)
    return f"{request.method} {path}"


def _enforce(
    request: Request,
    principal: Optional[Principal],
    decide: Callable[[AccessControlGate], AccessDecision],
    action: Optional[Action] = None,
    resource: Optional[ResourceType] = None,
    target_id: Optional[str] = None,
) -> Principal:
    gate: AccessControlGate = request.app.state.access_gate
    settings: GateSettings = request.app.state.access_settings
    audit_log: Optional[AccessAuditLog] = request.app.state.access_audit_log
    route = _route_label(request)

    try:
        decision = decide(gate)
    except LookupFailedError as exc:
        if audit_log is not None and settings.audit_denials:
            audit_log.append(AccessAuditEntry(
                principal_id=principal.id if principal else None,
                principal_role=principal.role.value if principal else None,
                action=action,
                resource=resource,
                target_id=target_id,
                outcome=AuditOutcome.ERROR,
                reason="LOOKUP_FAILED",
                message=str(exc),
                route=route,
            ))
        raise

    if audit_log is not None:
        if (decision.allowed and settings.audit_allowed) or (
            not decision.allowed and settings.audit_denials
        ):
            audit_log.append(AccessAuditEntry.from_decision(
                principal, decision, action, resource, target_id, route
            ))

    if not decision.allowed:
        raise AccessDeniedError(decision)
    return principal


def require_authenticated() -> Callable[[Request], Principal]:
    """Dependency factory: any authenticated principal."""

    def _require_authenticated(request: Request) -> Principal:
        principal = get_principal(request)
        return _enforce(request, principal, lambda gate: gate.require_authenticated(principal))

    return _require_authenticated


def require_roles(*roles: Role) -> Callable[[Request], Principal]:
    """Dependency factory: principal's role must be one of ``roles``."""
    allowed = frozenset(roles)

    def _require_roles(request: Request) -> Principal:
        principal = get_principal(request)
        return _enforce(request, principal, lambda gate: gate.require_role(principal, allowed))

    return _require_roles


def require_access(
    action: Action,
    resource: ResourceType,
    target_param: Optional[str] = None,
) -> Callable[[Request], Principal]:
    """Dependency factory: evaluate the table rule for ``(action, resource)``.

    Args:
        action: The action the route performs.
        resource: The resource the route acts on.
        target_param: Path parameter holding the target user id, for rules
            that depend on the target.

    Raises:
        UndeclaredRuleError: If no rule exists for ``(action, resource)``.
        ValueError: If the rule depends on the target and ``target_param``
            is missing.
    """
    if requires_target(action, resource) and not target_param:
        raise ValueError(
            f"Rule '{action.value}:{resource.value}' needs a target_param."
        )

    def _require_access(request: Request) -> Principal:
        principal = get_principal(request)
        target_id = request.path_params.get(target_param) if target_param else None
        return _enforce(
            request,
            principal,
            lambda gate: gate.authorize(principal, action, resource, target_id),
            action,
            resource,
            target_id,
        )

    return _require_access


def require_declared_route(registry: RouteRegistry) -> Callable[[Request], Principal]:
    """Dependency factory: look the matched route up in ``registry``.

    Suitable as a router-wide dependency.  A route that has no binding
    raises ``KeyError`` -- every guarded route must be declared.
    """

    def _require_declared_route(request: Request) -> Principal:
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)
        binding = registry.get(request.method, path)
        principal = get_principal(request)
        target_id = (
            request.path_params.get(binding.target_param) if binding.target_param else None
        )
        return _enforce(
            request,
            principal,
            lambda gate: gate.authorize(principal, binding.action, binding.resource, target_id),
            binding.action,
            binding.resource,
            target_id,
        )

    return _require_declared_route
