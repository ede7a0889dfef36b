"""
Gate configuration and declarative route bindings.

Two things are configurable per deployment:

* **Gate settings** -- what the HTTP adapter does when the user directory
  cannot answer (fail closed with a 5xx, or let the exception reach the
  application's own error handling), and which decisions are written to
  the access audit trail.
* **Route bindings** -- which ``(action, resource)`` rule guards each
  ``METHOD path`` of the API, and which path parameter names the target
  user for user-directed rules.  The rules themselves are *not*
  configurable; they live in ``opsboard.rules`` so that the API and the
  dashboard read the same table.

Both are validated pydantic models and can be loaded from one YAML file::

    gate:
      fail_closed_on_lookup_failure: true
      lookup_failure_status_code: 503
    routes:
      - method: GET
        path: /api/v1/users/{id}
        action: view
        resource: User
        target_param: id
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from opsboard.models import Action, ResourceType
from opsboard.rules import UndeclaredRuleError, requires_target


_HTTP_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"}


# ---------------------------------------------------------------------------
# Gate settings
# ---------------------------------------------------------------------------

class GateSettings(BaseModel):
    """Deployment settings for the HTTP side of the gate."""

    fail_closed_on_lookup_failure: bool = Field(
        default=True,
        description=(
            "When the user directory cannot answer, refuse the request with "
            "``lookup_failure_status_code``.  When false, the "
            "``LookupFailedError`` propagates to the application so it can "
            "retry or report the fault itself."
        ),
    )
    lookup_failure_status_code: int = Field(
        default=503,
        ge=500,
        le=599,
        description="Status returned when failing closed.  Must be a 5xx code.",
    )
    lookup_failure_message: str = Field(
        default="User directory unavailable",
        min_length=1,
        description="Client-facing error text when failing closed.",
    )
    audit_denials: bool = Field(
        default=True,
        description="Record every denial and lookup failure in the access audit trail.",
    )
    audit_allowed: bool = Field(
        default=False,
        description="Also record allowed decisions.  Noisy; useful while investigating.",
    )


DEFAULT_SETTINGS = GateSettings()
"""Fail closed on directory outages, audit denials only."""


# ---------------------------------------------------------------------------
# Route bindings
# ---------------------------------------------------------------------------

class RouteBinding(BaseModel):
    """Declares the access rule that guards one API route."""

    method: str = Field(..., description="HTTP method, upper-cased on load.")
    path: str = Field(
        ...,
        min_length=1,
        description="Route path template as registered with the router, e.g. ``/api/v1/users/{id}``.",
    )
    action: Action
    resource: ResourceType
    target_param: Optional[str] = Field(
        default=None,
        description=(
            "Path parameter holding the target user id.  Required when the "
            "rule for ``(action, resource)`` depends on the target user."
        ),
    )

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: str) -> str:
        method = v.upper()
        if method not in _HTTP_METHODS:
            raise ValueError(f"method must be one of {sorted(_HTTP_METHODS)}, got '{v}'")
        return method

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"path must start with '/', got '{v}'")
        return v

    @model_validator(mode="after")
    def target_param_when_needed(self) -> RouteBinding:
        try:
            needs_target = requires_target(self.action, self.resource)
        except UndeclaredRuleError as exc:
            raise ValueError(f"Route {self.method} {self.path}: {exc.args[0]}") from None
        if needs_target:
            if not self.target_param:
                raise ValueError(
                    f"Route {self.method} {self.path}: rule "
                    f"'{self.action.value}:{self.resource.value}' needs a target_param."
                )
            if "{" + self.target_param + "}" not in self.path:
                raise ValueError(
                    f"Route {self.method} {self.path}: target_param "
                    f"'{self.target_param}' does not appear in the path."
                )
        return self

    @property
    def key(self) -> tuple[str, str]:
        return (self.method, self.path)


class RouteRegistry:
    """Route bindings keyed by ``(METHOD, path)``.

    Each route may be bound once; rebinding an already registered route is
    rejected so that two declarations can never disagree silently.
    """

    def __init__(self, bindings: list[RouteBinding] | None = None) -> None:
        self._bindings: dict[tuple[str, str], RouteBinding] = {}
        for binding in bindings or []:
            self.register(binding)

    def register(self, binding: RouteBinding) -> None:
        """Register a route binding.

        Raises:
            ValueError: If the route is already bound.
        """
        if binding.key in self._bindings:
            raise ValueError(
                f"Route {binding.method} {binding.path} is already registered."
            )
        self._bindings[binding.key] = copy.deepcopy(binding)

    def get(self, method: str, path: str) -> RouteBinding:
        """Return the binding for ``method path``.

        Raises:
            KeyError: If the route is not bound.
        """
        key = (method.upper(), path)
        if key not in self._bindings:
            raise KeyError(f"No access rule bound to route {key[0]} {key[1]}")
        return copy.deepcopy(self._bindings[key])

    def list_routes(self) -> list[str]:
        """Return ``"METHOD path"`` strings, sorted by path then method."""
        return [
            f"{method} {path}"
            for method, path in sorted(self._bindings, key=lambda k: (k[1], k[0]))
        ]

    def __len__(self) -> int:
        return len(self._bindings)

    def __contains__(self, key: tuple[str, str]) -> bool:
        method, path = key
        return (method.upper(), path) in self._bindings


# ---------------------------------------------------------------------------
# YAML loader
# ---------------------------------------------------------------------------

def load_settings_from_yaml(path: str | Path) -> tuple[GateSettings, list[RouteBinding]]:
    """Load gate settings and route bindings from a YAML file.

    The file must contain a top-level ``routes`` list; a top-level ``gate``
    mapping is optional and falls back to ``DEFAULT_SETTINGS``.

    Args:
        path: Path to the YAML file.

    Returns:
        ``(settings, bindings)``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the YAML structure is invalid.
        pydantic.ValidationError: If any entry fails validation.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Access configuration not found: {path}")

    with open(path, "r") as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict) or "routes" not in raw:
        raise ValueError(
            "YAML file must contain a top-level 'routes' key with a list of route bindings."
        )

    gate_data = raw.get("gate")
    if gate_data is None:
        settings = DEFAULT_SETTINGS.model_copy()
    elif isinstance(gate_data, dict):
        settings = GateSettings(**gate_data)
    else:
        raise ValueError("'gate' must be a mapping of settings.")

    routes_data = raw["routes"]
    if not isinstance(routes_data, list):
        raise ValueError("'routes' must be a list of route bindings.")

    bindings: list[RouteBinding] = []
    for idx, entry in enumerate(routes_data):
        if not isinstance(entry, dict):
            raise ValueError(f"Route entry at index {idx} must be a mapping.")
        bindings.append(RouteBinding(**entry))

    return settings, bindings
