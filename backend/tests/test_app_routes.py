"""Regression tests for application route registration."""
from fastapi.routing import APIRoute

from app.main import app


def _routes(path: str):
    return [route for route in app.routes if isinstance(route, APIRoute) and route.path == path]


def test_program_sync_route_registered_once_for_get_and_post() -> None:
    routes = _routes("/jobs/program-sync")
    assert len(routes) == 1
    assert {"GET", "POST"} <= routes[0].methods


def test_coach_edit_routes_registered() -> None:
    assert [route.methods for route in _routes("/instances/{instance_id}/weeks/{week_number}")] == [{"PATCH"}]
    assert [route.methods for route in _routes("/programs/{program_id}/weeks/{week_number}")] == [{"PATCH"}]
