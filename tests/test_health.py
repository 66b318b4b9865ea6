"""Smoke test for application startup."""


def test_app_imports() -> None:
    """Verify the app can be imported without errors."""
    from rewardstore.main import app

    assert app.title == "RewardStore"


def test_routes_registered() -> None:
    """Every router is mounted."""
    from rewardstore.main import app

    paths = {route.path for route in app.routes}
    assert {
        "/health",
        "/ready",
        "/catalog",
        "/students/{student_id}/rewards",
        "/students/{student_id}/rewards/{item_id}/purchase",
        "/students/{student_id}/rewards/{item_id}/equip",
        "/students/{student_id}/rewards/{item_id}/unequip",
        "/admin/pending-purchases",
        "/admin/reconcile",
    } <= paths
