"""
Tests for health endpoints and application wiring.
"""

from datetime import datetime

from minno_server import __version__


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["service"] == "minno-server"
        assert datetime.fromisoformat(body["timestamp"])

    async def test_detailed_health_reports_database_and_dispatcher(self, client):
        response = await client.get("/health/detailed")

        assert response.status_code == 200
        body = response.json()
        assert body["dependencies"]["database"] == "healthy"
        assert body["dispatcher"]["workers"] == 1
        assert body["version"] == __version__

    async def test_detailed_health_degrades_without_database(self, client, context):
        context.session_maker = _broken_session_maker()

        response = await client.get("/health/detailed")

        assert response.status_code == 503
        assert response.json()["status"] == "degraded"

    async def test_root_lists_endpoints(self, client):
        response = await client.get("/")

        assert response.status_code == 200
        assert response.json()["endpoints"]["slack_events"] == "/slack/events"


def _broken_session_maker():
    class BrokenSession:
        async def __aenter__(self):
            raise ConnectionError("database unreachable")

        async def __aexit__(self, *exc_info):
            return False

    return lambda: BrokenSession()
