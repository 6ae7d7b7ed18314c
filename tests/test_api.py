"""
Integration tests for API endpoints.

These run the full application over the in-memory event store, with the
lifespan (dispatcher and sweeper) active.
"""

from conftest import OPERATOR_PASSWORD


def _login(client, password=OPERATOR_PASSWORD):
    return client.post(
        "/v1/auth/login",
        json={"username": "operator", "password": password}
    )


def _bearer(client):
    token = _login(client).json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


class TestEventSubmission:
    """Tests for POST /v1/events."""

    def test_submit_event(self, client):
        response = client.post("/v1/events", json={
            "type": "login_failed",
            "message": "Failed login for user alice",
            "severity": "warning"
        })

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "accepted"
        assert body["id"] == 1

    def test_event_is_enriched_from_request(self, client):
        response = client.post(
            "/v1/events",
            json={"type": "option_update", "message": "siteurl changed"},
            headers={"X-Forwarded-For": "198.51.100.23, 10.0.0.1"}
        )
        event = client.get(f"/v1/events/{response.json()['id']}").json()

        assert event["source_address"] == "198.51.100.23"
        assert event["actor"] == "Guest"
        assert event["severity"] == "info"

    def test_authenticated_actor(self, client):
        response = client.post(
            "/v1/events",
            json={"type": "option_update", "message": "siteurl changed"},
            headers=_bearer(client)
        )
        event = client.get(f"/v1/events/{response.json()['id']}").json()

        assert event["actor"] == "operator"

    def test_unknown_severity_is_stored_as_info(self, client):
        client.post("/v1/events", json={
            "type": "scan", "message": "file changed", "severity": "critical"
        })

        items = client.get("/v1/events").json()["items"]

        assert items[0]["severity"] == "info"

    def test_non_string_severity_is_stored_as_info(self, client):
        response = client.post("/v1/events", json={
            "type": "scan", "message": "file changed", "severity": 5
        })

        assert response.status_code == 201
        event = client.get(f"/v1/events/{response.json()['id']}").json()
        assert event["severity"] == "info"

    def test_huge_page_number(self, client):
        client.post("/v1/events", json={"type": "scan", "message": "one"})

        body = client.get("/v1/events", params={"page": 10 ** 19}).json()

        assert body["items"] == []
        assert body["total"] == 1
        assert body["degraded"] is False

    def test_invalid_type_tag(self, client):
        response = client.post("/v1/events", json={"type": "bad type!", "message": "x"})

        assert response.status_code == 422

    def test_missing_type(self, client):
        response = client.post("/v1/events", json={"message": "x"})

        assert response.status_code == 422

    def test_degraded_store_returns_202(self, client):
        client.app.state.container.store.provisioned = False

        response = client.post("/v1/events", json={"type": "lockout", "message": "x"})

        assert response.status_code == 202
        assert response.json() == {"status": "degraded", "id": None}


class TestEventQuery:
    """Tests for GET /v1/events."""

    def _seed(self, client):
        for severity in ("info", "warning", "error", "warning"):
            client.post("/v1/events", json={
                "type": "login_failed",
                "message": f"{severity} event",
                "severity": severity
            })

    def test_page_shape(self, client):
        self._seed(client)

        body = client.get("/v1/events").json()

        assert body["total"] == 4
        assert body["totalPages"] == 1
        assert body["perPage"] == 20
        assert body["page"] == 1
        assert body["degraded"] is False
        assert [item["id"] for item in body["items"]] == [4, 3, 2, 1]

    def test_severity_filter(self, client):
        self._seed(client)

        body = client.get("/v1/events", params={"severity": "warning"}).json()

        assert body["total"] == 2
        assert {item["severity"] for item in body["items"]} == {"warning"}

    def test_warning_event_filtered_by_severity(self, client):
        client.post("/v1/events", json={
            "type": "option_update", "message": "siteurl changed", "severity": "warning"
        })

        warnings = client.get("/v1/events", params={"severity": "warning"}).json()
        errors = client.get("/v1/events", params={"severity": "error"}).json()

        assert [item["message"] for item in warnings["items"]] == ["siteurl changed"]
        assert errors["items"] == []
        assert errors["total"] == 0

    def test_all_means_no_filter(self, client):
        self._seed(client)

        body = client.get("/v1/events", params={"severity": "all", "type": "all"}).json()

        assert body["total"] == 4

    def test_search_and_type(self, client):
        self._seed(client)
        client.post("/v1/events", json={"type": "option_update", "message": "Error page edited"})

        body = client.get("/v1/events", params={"type": "login_failed", "search": "ERROR"}).json()

        assert body["total"] == 1
        assert body["items"][0]["message"] == "error event"

    def test_per_page_is_clamped(self, client):
        body = client.get("/v1/events", params={"per_page": 500, "page": 0}).json()

        assert body["perPage"] == 100
        assert body["page"] == 1

    def test_empty_result(self, client):
        body = client.get("/v1/events", params={"type": "nothing_here"}).json()

        assert body["items"] == []
        assert body["total"] == 0
        assert body["totalPages"] == 1

    def test_page_beyond_end(self, client):
        self._seed(client)

        body = client.get("/v1/events", params={"page": 5, "per_page": 2}).json()

        assert body["items"] == []
        assert body["total"] == 4
        assert body["totalPages"] == 2

    def test_degraded_query(self, client):
        client.app.state.container.store.provisioned = False

        response = client.get("/v1/events")

        assert response.status_code == 200
        assert response.json()["degraded"] is True
        assert response.json()["items"] == []

    def test_get_missing_event(self, client):
        assert client.get("/v1/events/999").status_code == 404


class TestEventPurge:
    """Tests for DELETE /v1/events."""

    def test_requires_authentication(self, client):
        response = client.delete("/v1/events", params={"before": "2099-01-01T00:00:00Z"})

        assert response.status_code == 401

    def test_wrong_admin_token(self, client):
        response = client.delete(
            "/v1/events",
            params={"before": "2099-01-01T00:00:00Z"},
            headers={"X-Admin-Token": "nope"}
        )

        assert response.status_code == 401

    def test_purge_with_admin_token(self, client, admin_headers):
        client.post("/v1/events", json={"type": "scan", "message": "one"})
        client.post("/v1/events", json={"type": "scan", "message": "two"})

        response = client.delete(
            "/v1/events",
            params={"before": "2099-01-01T00:00:00"},
            headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json()["deleted"] == 2
        assert client.get("/v1/events").json()["total"] == 0

    def test_purge_with_bearer_token(self, client):
        client.post("/v1/events", json={"type": "scan", "message": "one"})

        response = client.delete(
            "/v1/events",
            params={"before": "2000-01-01T00:00:00Z"},
            headers=_bearer(client)
        )

        assert response.status_code == 200
        assert response.json()["deleted"] == 0

    def test_purge_on_degraded_store(self, client, admin_headers):
        client.app.state.container.store.provisioned = False

        response = client.delete(
            "/v1/events",
            params={"before": "2099-01-01T00:00:00Z"},
            headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json()["degraded"] is True


class TestAuth:
    """Tests for operator login."""

    def test_login(self, client):
        response = _login(client)

        assert response.status_code == 200
        assert response.json()["token_type"] == "bearer"

    def test_wrong_password(self, client):
        assert _login(client, password="wrong").status_code == 401

    def test_me(self, client):
        response = client.get("/v1/auth/me", headers=_bearer(client))

        assert response.json() == {"username": "operator", "role": "admin"}


class TestAdmin:
    """Tests for the /v1/admin endpoints."""

    def test_get_settings(self, client, admin_headers):
        body = client.get("/v1/admin/settings", headers=admin_headers).json()

        assert body["retention"]["retention_days"] == 30
        assert body["notification"]["enabled"] is False
        assert body["notification"]["minimum_severity"] == "warning"

    def test_update_settings(self, client, admin_headers):
        response = client.put("/v1/admin/settings", headers=admin_headers, json={
            "notification": {
                "enabled": True,
                "channel": "webhook",
                "destination": "https://hooks.example.com/audit",
                "minimum_severity": "error"
            }
        })

        assert response.status_code == 200
        body = client.get("/v1/admin/settings", headers=admin_headers).json()
        assert body["notification"]["channel"] == "webhook"
        assert body["retention"]["retention_days"] == 30

    def test_invalid_settings_are_rejected(self, client, admin_headers):
        response = client.put("/v1/admin/settings", headers=admin_headers, json={
            "notification": {"enabled": True, "channel": "email", "destination": "not-an-address"}
        })

        assert response.status_code == 422
        body = client.get("/v1/admin/settings", headers=admin_headers).json()
        assert body["notification"]["enabled"] is False

    def test_retention_out_of_range(self, client, admin_headers):
        response = client.put("/v1/admin/settings", headers=admin_headers, json={
            "retention": {"retention_days": 0}
        })

        assert response.status_code == 422

    def test_settings_require_auth(self, client):
        assert client.get("/v1/admin/settings").status_code == 401

    def test_manual_sweep(self, client, admin_headers):
        client.post("/v1/events", json={"type": "scan", "message": "fresh"})

        body = client.post("/v1/admin/retention/sweep", headers=admin_headers).json()

        assert body == {"deleted": 0, "retention_days": 30}

    def test_stats(self, client, admin_headers):
        client.post("/v1/events", json={"type": "lockout", "message": "x", "severity": "error"})
        client.post("/v1/events", json={"type": "lockout", "message": "y", "severity": "error"})

        body = client.get("/v1/admin/stats", headers=admin_headers).json()

        assert body["total_events"] == 2
        assert body["by_severity"]["error"] == 2
        assert body["by_type"] == [{"type": "lockout", "count": 2}]

    def test_stats_degraded(self, client, admin_headers):
        client.app.state.container.store.provisioned = False

        assert client.get("/v1/admin/stats", headers=admin_headers).status_code == 503


class TestMonitoring:
    """Tests for health and metrics endpoints."""

    def test_health(self, client):
        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["storage"] == "available"

    def test_ready_when_degraded(self, client):
        client.app.state.container.store.provisioned = False

        assert client.get("/health/ready").status_code == 503
        assert client.get("/health").json()["storage"] == "unavailable"

    def test_live(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_metrics(self, client):
        client.post("/v1/events", json={"type": "scan", "message": "x"})

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "audit_events_written_total" in response.text

    def test_root(self, client):
        assert client.get("/").json()["status"] == "running"
