"""
API Integration Tests for the Appointment Saga

Runs the FastAPI app against the real service with the mocked Redis client.
Only the tracking side is exercised over HTTP, so no durable store is opened.
"""

import pytest
from fastapi.testclient import TestClient

from ..app import create_app
from ..repository_factory import RepositoryFactory
from ..runtime import SagaRuntime, build_service


@pytest.fixture
def client(test_config, mock_redis_client):
    """FastAPI test client over an injected runtime"""
    repositories = RepositoryFactory(test_config, mock_redis_client)
    service = build_service(test_config, mock_redis_client, repositories)
    runtime = SagaRuntime(
        config=test_config,
        redis=mock_redis_client,
        broker=service.fanout.broker,
        repositories=repositories,
        service=service,
        owns_redis=False,
    )
    with TestClient(create_app(runtime=runtime)) as test_client:
        yield test_client


BODY = {"insuredId": "12345", "scheduleId": 100, "countryISO": "PE"}


class TestCreate:

    def test_create_returns_pending(self, client):
        response = client.post("/appointments", json=BODY)

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "pending"
        assert data["insuredId"] == "12345"
        assert data["scheduleId"] == 100
        assert data["countryISO"] == "PE"
        assert data["createdAt"].endswith("Z")
        assert len(data["appointmentId"]) == 36

    def test_duplicate_slot_is_409(self, client):
        client.post("/appointments", json=BODY)

        response = client.post("/appointments", json={**BODY, "insuredId": "54321"})

        assert response.status_code == 409
        assert response.json()["kind"] == "conflict"

    @pytest.mark.parametrize("body, message", [
        ({**BODY, "insuredId": "123"}, "insuredId must be exactly 5 digits"),
        ({**BODY, "scheduleId": 0}, "scheduleId must be a positive number"),
        ({**BODY, "countryISO": "AR"}, "countryISO must be either PE or CL"),
        ({"scheduleId": 1, "countryISO": "PE"}, "insuredId is required"),
    ])
    def test_invalid_body_is_400(self, client, body, message):
        response = client.post("/appointments", json=body)

        assert response.status_code == 400
        assert response.json() == {"message": message, "kind": "validation"}

    def test_malformed_json_is_400(self, client):
        response = client.post(
            "/appointments", content=b"{not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid JSON in request body"

    def test_non_object_body_is_400_not_422(self, client):
        response = client.post("/appointments", json=[BODY])

        assert response.status_code == 400
        assert response.json() == {"message": "Request body must be a JSON object", "kind": "validation"}

    def test_store_failure_is_500(self, client, mock_redis_client):
        mock_redis_client.get.side_effect = ConnectionError("redis down")

        response = client.post("/appointments", json=BODY)

        assert response.status_code == 500
        assert response.json()["kind"] == "infrastructure"


class TestList:

    def test_list_newest_first(self, client):
        first = client.post("/appointments", json=BODY).json()
        second = client.post("/appointments", json={**BODY, "scheduleId": 101}).json()

        response = client.get("/appointments/12345")

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        ids = [a["appointmentId"] for a in data["appointments"]]
        assert set(ids) == {first["appointmentId"], second["appointmentId"]}

    def test_list_empty(self, client):
        response = client.get("/appointments/00000")

        assert response.status_code == 200
        assert response.json() == {"appointments": [], "count": 0}

    def test_list_invalid_insured_id(self, client):
        response = client.get("/appointments/abc")

        assert response.status_code == 400


class TestRepublish:

    def test_republish_pending(self, client, mock_redis_client, test_config):
        created = client.post("/appointments", json=BODY).json()

        response = client.post(f"/appointments/{created['appointmentId']}/republish")

        assert response.status_code == 200
        assert response.json()["status"] == "pending"
        assert len(mock_redis_client.streams[test_config.fanout_stream]) == 2

    def test_republish_unknown(self, client):
        response = client.post("/appointments/missing/republish")

        assert response.status_code == 404
        assert response.json()["kind"] == "not_found"


class TestOperational:

    def test_root_endpoint(self, client):
        data = client.get("/").json()

        assert data["service"] == "Appointment Saga Service"
        assert "endpoints" in data

    def test_health_endpoint(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "redis" in data["checks"]
        assert data["uptime_seconds"] >= 0

    def test_health_unhealthy_when_redis_down(self, client, mock_redis_client):
        mock_redis_client.ping.side_effect = ConnectionError("down")

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    def test_metrics_endpoint(self, client):
        client.post("/appointments", json=BODY)

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "appointment_saga_steps_total" in response.text
