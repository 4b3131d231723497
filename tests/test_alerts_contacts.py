"""
Tests for the emergency alert and contact routes.

Tests cover:
- Create, get, list (user filter), delete for both entities
- Duplicate ids (409) and missing ids (404)
- Alert status changes with resolution bookkeeping
- Request validation (422)
- Database failures surfaced as 500
"""

import pytest
from sqlalchemy.exc import SQLAlchemyError

from meshsync.crud import EntityRepository
from meshsync.errors import StorageError
from meshsync.models import EmergencyAlert


@pytest.fixture
def alert_body() -> dict:
    return {
        "id": "a1",
        "user_id": "u1",
        "device_id": "dev-a",
        "alert_type": "SOS",
        "message": "Trapped on second floor",
        "lat": 12.97,
        "lon": 77.59,
        "timestamp": "2024-01-01T00:00:00Z",
    }


@pytest.fixture
def contact_body() -> dict:
    return {"id": "c1", "user_id": "u1", "name": "Asha", "phone": "+919876543210"}


class TestAlerts:

    def test_create_alert(self, client, alert_body):
        response = client.post("/alerts", json=alert_body)

        assert response.status_code == 201
        data = response.json()
        assert data["id"] == "a1"
        assert data["status"] == "active"
        assert data["resolved"] is False
        assert data["resolved_by"] is None
        assert data["created_at"] == data["updated_at"]

    def test_duplicate_alert_rejected(self, client, alert_body):
        client.post("/alerts", json=alert_body)

        response = client.post("/alerts", json=alert_body)

        assert response.status_code == 409
        assert response.json() == {"detail": "Alert already exists"}

    def test_get_alert(self, client, alert_body):
        client.post("/alerts", json=alert_body)

        response = client.get("/alerts/a1")

        assert response.status_code == 200
        assert response.json()["message"] == "Trapped on second floor"

    def test_get_missing_alert(self, client):
        response = client.get("/alerts/nope")

        assert response.status_code == 404
        assert response.json() == {"detail": "Alert not found"}

    def test_list_alerts_newest_first(self, client, alert_body):
        client.post("/alerts", json=alert_body)
        client.post("/alerts", json=dict(alert_body, id="a2", timestamp="2024-01-02T00:00:00Z"))
        client.post("/alerts", json=dict(alert_body, id="a3", user_id="u2"))

        all_alerts = client.get("/alerts").json()
        user_alerts = client.get("/alerts", params={"user_id": "u1"}).json()

        assert len(all_alerts) == 3
        assert [a["id"] for a in user_alerts] == ["a2", "a1"]

    def test_resolve_alert(self, client, alert_body):
        client.post("/alerts", json=alert_body)

        response = client.put("/alerts/a1", json={"status": "resolved", "resolved_by": "rescuer-7"})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "resolved"
        assert data["resolved"] is True
        assert data["resolved_by"] == "rescuer-7"
        assert data["resolved_at"] is not None
        assert data["updated_at"] >= data["created_at"]

    def test_reopen_alert_clears_resolution(self, client, alert_body):
        client.post("/alerts", json=alert_body)
        client.put("/alerts/a1", json={"status": "resolved", "resolved_by": "rescuer-7"})

        data = client.put("/alerts/a1", json={"status": "active"}).json()

        assert data["resolved"] is False
        assert data["resolved_by"] is None
        assert data["resolved_at"] is None

    def test_update_missing_alert(self, client):
        response = client.put("/alerts/nope", json={"status": "resolved"})

        assert response.status_code == 404

    def test_invalid_status_rejected(self, client, alert_body):
        client.post("/alerts", json=alert_body)

        response = client.put("/alerts/a1", json={"status": "closed"})

        assert response.status_code == 422

    def test_invalid_alert_type_rejected(self, client, alert_body):
        response = client.post("/alerts", json=dict(alert_body, alert_type="PANIC"))

        assert response.status_code == 422

    def test_invalid_timestamp_rejected(self, client, alert_body):
        response = client.post("/alerts", json=dict(alert_body, timestamp="tomorrow"))

        assert response.status_code == 422

    def test_delete_alert(self, client, alert_body):
        client.post("/alerts", json=alert_body)

        response = client.delete("/alerts/a1")

        assert response.status_code == 200
        assert response.json() == {"success": True, "deleted_id": "a1"}
        assert client.get("/alerts/a1").status_code == 404

    def test_delete_missing_alert(self, client):
        assert client.delete("/alerts/nope").status_code == 404


class TestContacts:

    def test_create_contact(self, client, contact_body):
        response = client.post("/contacts", json=contact_body)

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "Asha"
        assert data["created_at"].endswith("Z")

    def test_duplicate_contact_rejected(self, client, contact_body):
        client.post("/contacts", json=contact_body)

        assert client.post("/contacts", json=contact_body).status_code == 409

    def test_missing_fields_rejected(self, client):
        response = client.post("/contacts", json={"id": "c1", "user_id": "u1"})

        assert response.status_code == 422

    def test_list_contacts_for_user(self, client, contact_body):
        client.post("/contacts", json=contact_body)
        client.post("/contacts", json=dict(contact_body, id="c2", name="Bala"))
        client.post("/contacts", json=dict(contact_body, id="c3", user_id="u2", name="Chen"))

        data = client.get("/contacts", params={"user_id": "u1"}).json()

        assert [c["name"] for c in data] == ["Asha", "Bala"]

    def test_delete_contact(self, client, contact_body):
        client.post("/contacts", json=contact_body)

        response = client.delete("/contacts/c1")

        assert response.status_code == 200
        assert client.get("/contacts/c1").status_code == 404


class TestRepositoryStorageFailures:

    @pytest.fixture
    def broken_session(self, db_session, monkeypatch):
        def failing_query(*args, **kwargs):
            raise SQLAlchemyError("database is locked")

        monkeypatch.setattr(db_session, "query", failing_query)
        return db_session

    @pytest.mark.parametrize("call", [
        lambda repo: repo.get("a1"),
        lambda repo: repo.list(user_id="u1"),
        lambda repo: repo.delete("a1"),
    ])
    def test_reads_and_deletes_raise_storage_error(self, broken_session, call):
        repo = EntityRepository(broken_session, EmergencyAlert)

        with pytest.raises(StorageError, match="database is locked"):
            call(repo)

    @pytest.mark.parametrize("method, path", [
        ("get", "/alerts"),
        ("get", "/alerts/a1"),
        ("delete", "/alerts/a1"),
        ("get", "/contacts"),
    ])
    def test_routes_report_storage_failure(self, client, monkeypatch, method, path):
        def fail(self, *args, **kwargs):
            raise StorageError("database is locked")

        for name in ("get", "list", "delete"):
            monkeypatch.setattr(EntityRepository, name, fail)

        response = getattr(client, method)(path)

        assert response.status_code == 500
        assert response.json()["detail"].startswith("Failed to")
