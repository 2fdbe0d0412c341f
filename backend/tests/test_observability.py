"""Tracing and metrics stay inert when Opik is switched off."""
from __future__ import annotations

import importlib


def test_app_builds_without_opik_and_tracing_is_inert(monkeypatch) -> None:
    monkeypatch.setenv("OPIK_ENABLED", "false")
    monkeypatch.delenv("OPIK_API_KEY", raising=False)

    import app.core.config as core_config
    import app.observability.client as client_module
    import app.main as main_module

    importlib.reload(core_config)
    reloaded_client = importlib.reload(client_module)
    reloaded_app = importlib.reload(main_module)

    assert reloaded_client.init_opik() is None
    assert reloaded_client.get_opik_client() is None
    paths = {route.path for route in reloaded_app.app.routes}
    assert {"/health", "/jobs/program-sync", "/tasks"} <= paths
