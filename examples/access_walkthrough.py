"""
Access Walkthrough: Who May Do What on OpsBoard
===============================================

This script drives the access-control gate against an in-memory user
directory seeded with one user per role.

Steps demonstrated:
  1. Load gate settings and route bindings from YAML
  2. Print the capability matrix for every role
  3. Evaluate user-directed checks (view / modify / password)
  4. Evaluate each bound route for a manager and a member
  5. Show a fresh role lookup after a promotion
  6. Show a directory outage surfacing as LookupFailedError
  7. Summarize the decisions recorded in the audit trail

Usage:
    python -m examples.access_walkthrough
    # or: python examples/access_walkthrough.py
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

# Ensure the project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from opsboard.audit import AccessAuditEntry, AccessAuditLog
from opsboard.config import RouteRegistry, load_settings_from_yaml
from opsboard.directory import InMemoryUserDirectory, LookupFailedError
from opsboard.gate import AccessControlGate
from opsboard.models import Action, Principal, ResourceType, Role
from opsboard.rules import ROLE_TIERS, get_capabilities_for_role

CONFIG_PATH = Path(__file__).parent / "opsboard_access.yaml"


def _banner(text: str) -> None:
    print(f"\n{'=' * 60}")
    print(f"  {text}")
    print(f"{'=' * 60}\n")


def _show(label: str, decision) -> None:
    verdict = "ALLOW" if decision.allowed else f"DENY {decision.status_code} {decision.message!r}"
    print(f"  {label:<48} {verdict}")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    _banner("OpsBoard Access Walkthrough")

    # ------------------------------------------------------------------
    # Step 1: Load configuration
    # ------------------------------------------------------------------
    _banner("Step 1: Load Gate Settings and Route Bindings")

    settings, bindings = load_settings_from_yaml(CONFIG_PATH)
    registry = RouteRegistry(bindings)
    print(f"Settings: {settings.model_dump()}")
    print(f"Bound routes: {len(registry)}")

    directory = InMemoryUserDirectory({
        "u-admin": Role.ADMIN,
        "u-manager": Role.MANAGER,
        "u-trainer": Role.TRAINER,
        "u-dev": Role.DEVELOPER,
        "u-ta": Role.TEACHING_ASSISTANT,
        "u-member": Role.MEMBER,
        "u-member-2": Role.MEMBER,
    })
    gate = AccessControlGate(directory)
    audit_log = AccessAuditLog()

    principals = {
        user_id: Principal(id=user_id, role=directory.find_role_by_id(user_id))
        for user_id in ("u-admin", "u-manager", "u-trainer", "u-dev", "u-ta", "u-member")
    }

    # ------------------------------------------------------------------
    # Step 2: Capability matrix
    # ------------------------------------------------------------------
    _banner("Step 2: Capability Matrix")

    for role in Role:
        caps = get_capabilities_for_role(role)
        granted = sorted(key for key, value in caps.items() if value != "deny")
        print(f"{role.value} [{ROLE_TIERS[role]}]: {len(granted)} of {len(caps)} rules open")
    print()
    print(json.dumps(get_capabilities_for_role(Role.TRAINER), indent=2))

    # ------------------------------------------------------------------
    # Step 3: User-directed checks
    # ------------------------------------------------------------------
    _banner("Step 3: User-Directed Checks")

    manager = principals["u-manager"]
    member = principals["u-member"]
    _show("manager views member", gate.can_view_user(manager, "u-member"))
    _show("manager views trainer", gate.can_view_user(manager, "u-trainer"))
    _show("manager views unknown user", gate.can_view_user(manager, "u-ghost"))
    _show("member modifies own profile", gate.can_modify_user(member, "u-member"))
    _show("member modifies another member", gate.can_modify_user(member, "u-member-2"))
    _show("manager changes member password", gate.can_change_password(manager, "u-member"))
    _show("anonymous views member", gate.can_view_user(None, "u-member"))

    # ------------------------------------------------------------------
    # Step 4: Bound routes
    # ------------------------------------------------------------------
    _banner("Step 4: Bound Routes")

    for principal in (manager, member):
        print(f"As {principal.id} ({principal.role.value}):")
        for route in registry.list_routes():
            method, path = route.split(" ", 1)
            binding = registry.get(method, path)
            target_id = "u-member" if binding.target_param else None
            decision = gate.authorize(principal, binding.action, binding.resource, target_id)
            audit_log.append(AccessAuditEntry.from_decision(
                principal, decision, binding.action, binding.resource, target_id, route
            ))
            _show(route, decision)
        print()

    # ------------------------------------------------------------------
    # Step 5: Fresh lookups
    # ------------------------------------------------------------------
    _banner("Step 5: Role Changes Apply Immediately")

    trainer = principals["u-trainer"]
    _show("trainer views u-member-2", gate.can_view_user(trainer, "u-member-2"))
    directory.set_role("u-member-2", Role.TRAINER)
    print("  (u-member-2 promoted to TRAINER)")
    _show("trainer views u-member-2", gate.can_view_user(trainer, "u-member-2"))

    # ------------------------------------------------------------------
    # Step 6: Directory outage
    # ------------------------------------------------------------------
    _banner("Step 6: Directory Outage")

    directory.available = False
    try:
        gate.can_view_user(trainer, "u-member")
    except LookupFailedError as exc:
        print(f"  LookupFailedError: {exc}")
    _show("admin views member during outage", gate.can_view_user(principals["u-admin"], "u-member"))
    _show("member creates task during outage", gate.can_create_resource(member, ResourceType.TASK))
    directory.available = True

    # ------------------------------------------------------------------
    # Step 7: Audit summary
    # ------------------------------------------------------------------
    _banner("Step 7: Audit Trail Summary")

    print(json.dumps(audit_log.summarize(), indent=2))
    denied_payments = [
        e for e in audit_log.query(principal_id=member.id)
        if e.resource == ResourceType.PAYMENT and e.action == Action.LIST
    ]
    print(f"\nMember payment-list denials recorded: {len(denied_payments)}")


if __name__ == "__main__":
    main()
