"""
Tests for opsboard.config -- gate settings, route bindings and the YAML loader.
"""

from pathlib import Path

import pytest
import yaml

from opsboard.config import (
    DEFAULT_SETTINGS,
    GateSettings,
    RouteBinding,
    RouteRegistry,
    load_settings_from_yaml,
)
from opsboard.models import Action, ResourceType


def _binding(**overrides) -> RouteBinding:
    data = {
        "method": "GET",
        "path": "/api/v1/tasks",
        "action": "list",
        "resource": "Task",
    }
    data.update(overrides)
    return RouteBinding(**data)


# ---------------------------------------------------------------------------
# 1. Gate settings
# ---------------------------------------------------------------------------

class TestGateSettings:
    def test_defaults_fail_closed(self):
        assert DEFAULT_SETTINGS.fail_closed_on_lookup_failure is True
        assert DEFAULT_SETTINGS.lookup_failure_status_code == 503
        assert DEFAULT_SETTINGS.audit_denials is True
        assert DEFAULT_SETTINGS.audit_allowed is False

    def test_non_5xx_status_rejected(self):
        with pytest.raises(Exception):
            GateSettings(lookup_failure_status_code=403)

    def test_empty_message_rejected(self):
        with pytest.raises(Exception):
            GateSettings(lookup_failure_message="")


# ---------------------------------------------------------------------------
# 2. Route bindings
# ---------------------------------------------------------------------------

class TestRouteBinding:
    def test_parses_enums_and_upper_cases_method(self):
        binding = _binding(method="get")
        assert binding.method == "GET"
        assert binding.action == Action.LIST
        assert binding.resource == ResourceType.TASK
        assert binding.key == ("GET", "/api/v1/tasks")

    def test_unknown_method_rejected(self):
        with pytest.raises(Exception):
            _binding(method="FETCH")

    def test_relative_path_rejected(self):
        with pytest.raises(Exception):
            _binding(path="api/v1/tasks")

    def test_target_rule_needs_target_param(self):
        with pytest.raises(Exception, match="needs a target_param"):
            _binding(path="/api/v1/users/{id}", action="view", resource="User")

    def test_target_param_must_appear_in_path(self):
        with pytest.raises(Exception, match="does not appear in the path"):
            _binding(
                path="/api/v1/users/{id}",
                action="view",
                resource="User",
                target_param="user_id",
            )

    def test_valid_target_binding(self):
        binding = _binding(
            method="PUT",
            path="/api/v1/users/{id}/profile",
            action="update",
            resource="User",
            target_param="id",
        )
        assert binding.target_param == "id"

    def test_undeclared_rule_rejected(self):
        with pytest.raises(Exception, match="No access rule declared"):
            _binding(action="change_role", resource="Video")


# ---------------------------------------------------------------------------
# 3. Route registry
# ---------------------------------------------------------------------------

class TestRouteRegistry:
    def test_register_and_get(self):
        registry = RouteRegistry()
        registry.register(_binding())
        assert registry.get("get", "/api/v1/tasks").resource == ResourceType.TASK
        assert ("GET", "/api/v1/tasks") in registry
        assert len(registry) == 1

    def test_duplicate_rejected(self):
        registry = RouteRegistry([_binding()])
        with pytest.raises(ValueError, match="already registered"):
            registry.register(_binding(action="view"))

    def test_unknown_route_raises_key_error(self):
        with pytest.raises(KeyError):
            RouteRegistry().get("GET", "/nowhere")

    def test_same_path_different_methods(self):
        registry = RouteRegistry([
            _binding(),
            _binding(method="POST", action="create"),
        ])
        assert registry.list_routes() == ["GET /api/v1/tasks", "POST /api/v1/tasks"]

    def test_returns_copies(self):
        registry = RouteRegistry([_binding()])
        retrieved = registry.get("GET", "/api/v1/tasks")
        retrieved.path = "/mutated"
        assert registry.get("GET", "/api/v1/tasks").path == "/api/v1/tasks"


# ---------------------------------------------------------------------------
# 4. YAML loader
# ---------------------------------------------------------------------------

class TestYAMLLoader:
    def _write_yaml(self, data: dict, tmp_dir: Path) -> Path:
        path = tmp_dir / "access.yaml"
        with open(path, "w") as f:
            yaml.dump(data, f)
        return path

    def test_load_routes_with_default_settings(self, tmp_path):
        path = self._write_yaml(
            {"routes": [{"method": "GET", "path": "/api/v1/classes", "action": "list", "resource": "Class"}]},
            tmp_path,
        )
        settings, bindings = load_settings_from_yaml(path)
        assert settings == DEFAULT_SETTINGS
        assert len(bindings) == 1
        assert bindings[0].resource == ResourceType.CLASS

    def test_load_gate_settings(self, tmp_path):
        path = self._write_yaml(
            {
                "gate": {"fail_closed_on_lookup_failure": False, "audit_allowed": True},
                "routes": [],
            },
            tmp_path,
        )
        settings, bindings = load_settings_from_yaml(path)
        assert settings.fail_closed_on_lookup_failure is False
        assert settings.audit_allowed is True
        assert bindings == []

    def test_missing_file_raises(self):
        with pytest.raises(FileNotFoundError):
            load_settings_from_yaml("/nonexistent/access.yaml")

    def test_missing_routes_key_raises(self, tmp_path):
        path = self._write_yaml({"gate": {}}, tmp_path)
        with pytest.raises(ValueError, match="top-level 'routes' key"):
            load_settings_from_yaml(path)

    def test_routes_must_be_list(self, tmp_path):
        path = self._write_yaml({"routes": {"GET": "/"}}, tmp_path)
        with pytest.raises(ValueError, match="must be a list"):
            load_settings_from_yaml(path)

    def test_gate_must_be_mapping(self, tmp_path):
        path = self._write_yaml({"gate": ["bad"], "routes": []}, tmp_path)
        with pytest.raises(ValueError, match="'gate' must be a mapping"):
            load_settings_from_yaml(path)

    def test_non_mapping_route_entry_raises(self, tmp_path):
        path = self._write_yaml({"routes": ["GET /api/v1/tasks"]}, tmp_path)
        with pytest.raises(ValueError, match="index 0"):
            load_settings_from_yaml(path)

    def test_invalid_route_entry_raises(self, tmp_path):
        path = self._write_yaml(
            {"routes": [{"method": "GET", "path": "/x", "action": "fly", "resource": "Task"}]},
            tmp_path,
        )
        with pytest.raises(Exception):
            load_settings_from_yaml(path)

    def test_load_bundled_example(self):
        sample_path = Path(__file__).parent.parent / "examples" / "opsboard_access.yaml"
        settings, bindings = load_settings_from_yaml(sample_path)
        registry = RouteRegistry(bindings)
        assert settings.fail_closed_on_lookup_failure is True
        assert ("GET", "/api/v1/users/{id}") in registry
        assert registry.get("GET", "/api/v1/users/{id}").target_param == "id"
        assert ("GET", "/api/v1/payments") in registry
