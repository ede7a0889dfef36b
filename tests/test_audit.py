"""
Tests for opsboard.audit -- the append-only access audit trail.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from opsboard.audit import AccessAuditEntry, AccessAuditLog, AuditOutcome
from opsboard.models import AccessDecision, Action, DenialReason, Principal, ResourceType, Role


def _denial(reason: DenialReason = DenialReason.FORBIDDEN) -> AccessDecision:
    return AccessDecision.deny(reason, "denied")


def _entry(
    principal_id: str | None = "u1",
    decision: AccessDecision | None = None,
) -> AccessAuditEntry:
    principal = Principal(id=principal_id, role=Role.MEMBER) if principal_id else None
    return AccessAuditEntry.from_decision(
        principal,
        decision or _denial(),
        Action.LIST,
        ResourceType.PAYMENT,
        route="GET /api/v1/payments",
    )


# ---------------------------------------------------------------------------
# 1. Entries
# ---------------------------------------------------------------------------

class TestEntryFromDecision:
    def test_denial_entry(self):
        entry = _entry()
        assert entry.outcome == AuditOutcome.DENY
        assert entry.reason == "FORBIDDEN"
        assert entry.principal_id == "u1"
        assert entry.principal_role == "MEMBER"
        assert entry.route == "GET /api/v1/payments"

    def test_anonymous_entry(self):
        entry = _entry(principal_id=None, decision=_denial(DenialReason.UNAUTHENTICATED))
        assert entry.principal_id is None
        assert entry.principal_role is None
        assert entry.reason == "UNAUTHENTICATED"

    def test_allowed_entry(self):
        entry = _entry(decision=AccessDecision.allow())
        assert entry.outcome == AuditOutcome.ALLOW
        assert entry.reason is None


# ---------------------------------------------------------------------------
# 2. Log queries
# ---------------------------------------------------------------------------

class TestAccessAuditLog:
    def test_append_and_length(self):
        log = AccessAuditLog()
        log.append(_entry())
        log.append(_entry())
        assert len(log) == 2

    def test_query_by_principal(self):
        log = AccessAuditLog()
        log.append(_entry("u1"))
        log.append(_entry("u2"))
        results = log.query(principal_id="u2")
        assert [e.principal_id for e in results] == ["u2"]

    def test_query_by_outcome_and_reason(self):
        log = AccessAuditLog()
        log.append(_entry(decision=_denial(DenialReason.NOT_FOUND)))
        log.append(_entry(decision=AccessDecision.allow()))
        log.append(AccessAuditEntry(outcome=AuditOutcome.ERROR, reason="LOOKUP_FAILED"))
        assert len(log.query(outcome=AuditOutcome.DENY)) == 1
        assert len(log.query(reason="LOOKUP_FAILED")) == 1
        assert len(log.query(outcome=AuditOutcome.ALLOW)) == 1

    def test_query_by_time_window(self):
        log = AccessAuditLog()
        now = datetime.now(timezone.utc)
        old = _entry()
        old.timestamp = now - timedelta(hours=2)
        log.append(old)
        log.append(_entry())
        recent = log.query(time_start=now - timedelta(minutes=5))
        assert len(recent) == 1
        early = log.query(time_end=now - timedelta(hours=1))
        assert len(early) == 1

    def test_query_returns_copies(self):
        log = AccessAuditLog()
        log.append(_entry("u1"))
        copy = log.query()[0]
        copy.principal_id = "TAMPERED"
        assert log.query()[0].principal_id == "u1"

    def test_summarize(self):
        log = AccessAuditLog()
        log.append(_entry(decision=_denial(DenialReason.FORBIDDEN)))
        log.append(_entry(decision=_denial(DenialReason.FORBIDDEN)))
        log.append(_entry(decision=_denial(DenialReason.UNAUTHENTICATED)))
        summary = log.summarize()
        assert summary["total"] == 3
        assert summary["by_outcome"] == {"DENY": 3}
        assert summary["by_reason"] == {"FORBIDDEN": 2, "UNAUTHENTICATED": 1}

    def test_empty_log(self):
        log = AccessAuditLog()
        assert len(log) == 0
        assert log.query() == []
        assert log.summarize() == {"total": 0, "by_outcome": {}, "by_reason": {}}

    def test_append_stores_and_returns_copies(self):
        log = AccessAuditLog()
        entry = _entry("u1")
        returned = log.append(entry)
        entry.principal_id = "EDITED_AFTER_APPEND"
        returned.principal_id = "EDITED_RETURN_VALUE"
        assert log.query()[0].principal_id == "u1"


# ---------------------------------------------------------------------------
# 3. Retention
# ---------------------------------------------------------------------------

class TestRetention:
    def test_unbounded_by_default(self):
        log = AccessAuditLog()
        for _ in range(50):
            log.append(_entry())
        assert len(log) == 50

    def test_oldest_entries_dropped_at_bound(self):
        log = AccessAuditLog(max_entries=2)
        log.append(_entry("u1"))
        log.append(_entry("u2"))
        log.append(_entry("u3"))
        assert len(log) == 2
        assert [e.principal_id for e in log.query()] == ["u2", "u3"]
        assert log.summarize()["total"] == 2

    def test_non_positive_bound_rejected(self):
        with pytest.raises(ValueError, match="max_entries must be positive"):
            AccessAuditLog(max_entries=0)
