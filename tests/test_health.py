import pytest

from backend.app import create_app


class PingRedis:
    def __init__(self, healthy=True):
        self.healthy = healthy

    def ping(self):
        if not self.healthy:
            raise ConnectionError("redis down")
        return True


@pytest.fixture
def make_app():
    def _make(redis_client):
        return create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "REDIS_CLIENT": redis_client,
        })
    return _make


def test_healthz_reports_db_and_redis(make_app):
    resp = make_app(PingRedis()).test_client().get("/healthz")
    assert resp.status_code == 200
    assert resp.get_json() == {"db": True, "redis": True}
    assert resp.headers["X-Request-ID"]


def test_healthz_degrades_without_redis(make_app):
    resp = make_app(PingRedis(healthy=False)).test_client().get("/healthz")
    assert resp.status_code == 200
    assert resp.get_json() == {"db": True, "redis": False}


def test_capture_routes_are_registered(make_app):
    app = make_app(PingRedis())
    rules = {rule.rule for rule in app.url_map.iter_rules()}
    assert "/capture/session/submit" in rules
    assert "/capture/session/views/<string:view_id>/pointer" in rules
