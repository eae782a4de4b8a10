from apps.api.main import app


def test_versioned_routes_exist():
    paths = {route.path for route in app.routes}
    for prefix in ("", "/api", "/api/v1"):
        assert f"{prefix}/health" in paths
        assert f"{prefix}/profile/{{user_id}}" in paths
        assert f"{prefix}/activities" in paths
    assert "/api/v1/profile/{user_id}/live" in paths


def test_openapi_includes_versioned_paths():
    schema = app.openapi()
    paths = schema.get("paths", {})
    assert "/api/v1/health" in paths
    assert "/api/v1/profile/{user_id}/weekly" in paths
    assert "/api/v1/challenges/{user_id}/join" in paths


def test_openapi_schema_has_core_components():
    schema = app.openapi()
    assert schema.get("openapi", "").startswith("3.")
    assert schema.get("info", {}).get("title") == "Fitness Profile API"
    components = schema.get("components", {}).get("schemas", {})
    for name in ("ProfileResponse", "WeeklyActivityResponse", "ChallengesResponse", "InvalidateRequest"):
        assert name in components
