import time

import pytest

from nearu.domain.proximity.nearby import USERS

DC = (43.4723, -80.5449)
MC = (43.4721, -80.5447)


def _headers(user_id: str) -> dict[str, str]:
	return {"X-User-Id": user_id}


async def _heartbeat(api_client, user_id: str, point, accuracy: float = 5.0):
	return await api_client.post(
		"/location/heartbeat",
		json={"latitude": point[0], "longitude": point[1], "accuracy_m": accuracy},
		headers=_headers(user_id),
	)


@pytest.mark.asyncio
async def test_heartbeat_requires_auth(api_client):
	response = await api_client.post(
		"/location/heartbeat", json={"latitude": DC[0], "longitude": DC[1], "accuracy_m": 5}
	)
	assert response.status_code == 401
	assert response.json()["detail"] == "invalid_token"


@pytest.mark.asyncio
async def test_heartbeat_filters_samples(api_client, services):
	response = await _heartbeat(api_client, "alice", DC, accuracy=40.0)
	assert response.status_code == 200
	assert response.json()["accepted"] is False

	response = await _heartbeat(api_client, "alice", DC)
	assert response.json()["accepted"] is True
	await services.tracking.wait_idle("alice")
	stored = await services.store.get(USERS, "alice")
	assert stored["location"]["latitude"] == DC[0]
	assert stored["isActive"] is True

	response = await _heartbeat(api_client, "alice", DC)
	assert response.json()["accepted"] is False


@pytest.mark.asyncio
async def test_heartbeat_validates_coordinates(api_client):
	response = await _heartbeat(api_client, "alice", (95.0, 0.0))
	assert response.status_code == 422
	assert response.json()["detail"] == "validation_error"


@pytest.mark.asyncio
async def test_nearby_requires_a_known_location(api_client):
	response = await api_client.get("/proximity/nearby", headers=_headers("alice"))
	assert response.status_code == 400
	assert response.json()["detail"] == "location_unavailable"


@pytest.mark.asyncio
async def test_nearby_lists_other_users(api_client, services):
	now_ms = int(time.time() * 1000)
	await services.store.set(
		USERS,
		"bob",
		{
			"name": "Bob",
			"program": "Physics",
			"isActive": True,
			"lastActive": now_ms,
			"location": {"latitude": MC[0], "longitude": MC[1], "timestamp": now_ms},
		},
	)
	await _heartbeat(api_client, "alice", DC)
	await services.tracking.wait_idle("alice")

	response = await api_client.get("/proximity/nearby", params={"radius_m": 100}, headers=_headers("alice"))
	assert response.status_code == 200
	[item] = response.json()["items"]
	assert response.json()["location_fresh"] is True
	assert item["user_id"] == "bob"
	assert item["display_name"] == "Bob"
	assert item["program"] == "Physics"
	assert 20 < item["distance_m"] < 35

	await api_client.put("/location/ghost-mode", json={"enabled": True}, headers=_headers("bob"))
	response = await api_client.get("/proximity/nearby", headers=_headers("alice"))
	assert response.json()["items"] == []


@pytest.mark.asyncio
async def test_crossing_status_reports_counts(api_client, services):
	response = await api_client.get("/crossings/bob", headers=_headers("alice"))
	assert response.status_code == 200
	body = response.json()
	assert body["phase"] == "no_history"
	assert body["my_count"] == 0
	assert body["unlocked"] is False
	assert body["required"] == services.accumulator.policy.required_crossings

	self_pair = await api_client.get("/crossings/alice", headers=_headers("alice"))
	assert self_pair.status_code == 400


@pytest.mark.asyncio
async def test_health_and_metrics(api_client):
	response = await api_client.get("/health")
	assert response.status_code == 200
	assert response.json()["status"] == "ok"
	assert response.headers["X-Request-Id"]

	metrics = await api_client.get("/metrics")
	assert metrics.status_code == 200
	assert "nearu_http_requests_total" in metrics.text


@pytest.mark.asyncio
async def test_simulated_spots_put_users_near_each_other(api_client, services):
	for user_id, spot in (("bob", "MC"), ("alice", "DC Library")):
		response = await api_client.post("/location/simulate", json={"spot": spot}, headers=_headers(user_id))
		assert response.status_code == 200
		assert response.json()["accepted"] is True
		await services.tracking.wait_idle(user_id)

	response = await api_client.get("/proximity/nearby", headers=_headers("alice"))
	assert [item["user_id"] for item in response.json()["items"]] == ["bob"]

	unknown = await api_client.post("/location/simulate", json={"spot": "Mars"}, headers=_headers("alice"))
	assert unknown.status_code == 400


@pytest.mark.asyncio
async def test_simulation_disabled_in_production(api_client, monkeypatch):
	from nearu.infra.jwt import encode_access
	from nearu.settings import settings

	monkeypatch.setattr(settings, "environment", "production")
	monkeypatch.setattr(settings, "test_mode", False)
	token = encode_access({"sub": "alice"})
	response = await api_client.post(
		"/location/simulate", json={"spot": "MC"}, headers={"Authorization": f"Bearer {token}"}
	)
	assert response.status_code == 404


@pytest.mark.asyncio
async def test_location_errors_are_reported_with_typed_reasons(api_client, services):
	response = await api_client.post("/location/error", json={"code": 3}, headers=_headers("alice"))
	assert response.status_code == 200
	assert response.json() == {"reason": "timeout", "tracking": False}

	await _heartbeat(api_client, "alice", DC)
	response = await api_client.post(
		"/location/error", json={"code": 1, "message": "User denied Geolocation"}, headers=_headers("alice")
	)
	assert response.json() == {"reason": "permission_denied", "tracking": True}
	assert services.tracking.get("alice").last_error.reason == "permission_denied"

	response = await api_client.post("/location/error", json={"code": 2}, headers=_headers("alice"))
	assert response.json()["reason"] == "position_unavailable"

	invalid = await api_client.post("/location/error", json={"code": 0}, headers=_headers("alice"))
	assert invalid.status_code == 422
