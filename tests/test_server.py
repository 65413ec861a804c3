import pytest

from edilcheck.server.server import get_server_config, set_server_setting
from edilcheck.shared.utils import today_local

EMAIL = "demo@example.com"
PASSWORD = "secret"
AUTH = {"X-User-Email": EMAIL, "X-User-Password": PASSWORD}


@pytest.fixture
def client(api_client):
    response = api_client.post("/auth/register", json={"email": EMAIL, "password": PASSWORD})
    assert response.status_code == 201
    return api_client


def _create(client, path, payload, headers=AUTH):
    response = client.post(path, json=payload, headers=headers)
    assert response.status_code == 201, response.get_json()
    return response.get_json()["data"]


def test_health_is_public(api_client):
    response = api_client.get("/health")

    body = response.get_json()
    assert response.status_code == 200
    assert body["success"] is True
    assert body["data"]["status"] == "healthy"


def test_register_rejects_duplicates_and_missing_fields(client):
    duplicate = client.post("/auth/register", json={"email": EMAIL, "password": "other"})
    missing = client.post("/auth/register", json={"email": "x@example.com"})

    assert duplicate.status_code == 409
    assert duplicate.get_json()["error"] == "Email already registered"
    assert missing.status_code == 400


def test_login_checks_password_hash(client):
    ok = client.post("/auth/login", json={"email": EMAIL, "password": PASSWORD})
    bad = client.post("/auth/login", json={"email": EMAIL, "password": "wrong"})

    assert ok.status_code == 200
    assert ok.get_json()["data"]["user"]["email"] == EMAIL
    assert bad.status_code == 401


def test_data_routes_require_credentials(client):
    assert client.get("/workers").status_code == 401
    assert client.get("/workers", headers={**AUTH, "X-User-Password": "wrong"}).status_code == 401

    me = client.get("/auth/me", headers=AUTH)
    assert me.get_json()["data"]["user"]["email"] == EMAIL


def test_worker_crud(client):
    worker = _create(client, "/workers", {"name": "Marco Rossi", "email": "marco@example.com",
                                          "hourlyRate": 18.5, "created_at": "2024-01-01T00:00:00.000Z"})

    assert worker["hourlyRate"] == 18.5
    assert worker["created_at"] == "2024-01-01T00:00:00.000Z"

    updated = client.put(f"/workers/{worker['id']}", json={"role": "Capocantiere"}, headers=AUTH)
    assert updated.status_code == 200
    assert updated.get_json()["data"]["role"] == "Capocantiere"
    assert updated.get_json()["data"]["name"] == "Marco Rossi"

    workers = client.get("/workers", headers=AUTH).get_json()["data"]
    assert [w["email"] for w in workers] == ["marco@example.com"]

    assert client.delete(f"/workers/{worker['id']}", headers=AUTH).status_code == 200
    assert client.get("/workers", headers=AUTH).get_json()["data"] == []


def test_create_stamps_created_at_when_missing(client):
    site = _create(client, "/sites", {"name": "Villa", "address": "Via Roma 1"})

    assert site["created_at"]
    assert site["startDate"] == ""


def test_update_of_missing_or_foreign_record_is_404(client):
    other = {"X-User-Email": "other@example.com", "X-User-Password": "pw"}
    client.post("/auth/register", json={"email": "other@example.com", "password": "pw"})
    worker = _create(client, "/workers", {"name": "Mine", "email": "mine@example.com"})

    assert client.put("/workers/999", json={"name": "X"}, headers=AUTH).status_code == 404
    assert client.put(f"/workers/{worker['id']}", json={"name": "X"}, headers=other).status_code == 404
    assert client.get("/workers", headers=other).get_json()["data"] == []


def test_time_entries_and_payments_carry_names(client):
    worker = _create(client, "/workers", {"name": "Marco Rossi", "email": "marco@example.com"})
    site = _create(client, "/sites", {"name": "Villa Moderna", "address": "Via Roma 123"})
    _create(client, "/time-entries", {"workerId": worker["id"], "siteId": site["id"], "date": "2024-03-01",
                                      "startTime": "08:00", "endTime": "17:00", "totalHours": 8})
    _create(client, "/time-entries", {"workerId": 999, "siteId": site["id"], "date": "2024-03-02"})
    _create(client, "/payments", {"workerId": worker["id"], "week": "Settimana 9/2024", "totalAmount": 740})

    entries = client.get("/time-entries", headers=AUTH).get_json()["data"]
    payments = client.get("/payments", headers=AUTH).get_json()["data"]

    assert [(e["workerName"], e["siteName"]) for e in entries] == [
        ("Marco Rossi", "Villa Moderna"), ("Unknown", "Villa Moderna")]
    assert payments[0]["workerName"] == "Marco Rossi"
    assert payments[0]["totalAmount"] == 740


def test_delete_worker_cascades(client):
    worker = _create(client, "/workers", {"name": "Marco", "email": "marco@example.com"})
    site = _create(client, "/sites", {"name": "Villa", "address": "Via Roma 1"})
    _create(client, "/time-entries", {"workerId": worker["id"], "siteId": site["id"], "date": "2024-03-01"})
    _create(client, "/payments", {"workerId": worker["id"], "week": "W9"})

    client.delete(f"/workers/{worker['id']}", headers=AUTH)

    assert client.get("/time-entries", headers=AUTH).get_json()["data"] == []
    assert client.get("/payments", headers=AUTH).get_json()["data"] == []
    assert len(client.get("/sites", headers=AUTH).get_json()["data"]) == 1


def test_delete_site_cascades_to_time_entries(client):
    worker = _create(client, "/workers", {"name": "Marco", "email": "marco@example.com"})
    site = _create(client, "/sites", {"name": "Villa", "address": "Via Roma 1"})
    _create(client, "/time-entries", {"workerId": worker["id"], "siteId": site["id"], "date": "2024-03-01"})

    client.delete(f"/sites/{site['id']}", headers=AUTH)

    assert client.get("/time-entries", headers=AUTH).get_json()["data"] == []
    assert len(client.get("/workers", headers=AUTH).get_json()["data"]) == 1


def test_site_workers_lists_workers_with_entries(client):
    marco = _create(client, "/workers", {"name": "Marco", "email": "marco@example.com"})
    _create(client, "/workers", {"name": "Giuseppe", "email": "giuseppe@example.com"})
    site = _create(client, "/sites", {"name": "Villa", "address": "Via Roma 1"})
    for day in ("2024-03-01", "2024-03-02"):
        _create(client, "/time-entries", {"workerId": marco["id"], "siteId": site["id"], "date": day})

    workers = client.get(f"/sites/{site['id']}/workers", headers=AUTH).get_json()["data"]

    assert [w["name"] for w in workers] == ["Marco"]


def test_dashboard_stats(client):
    worker = _create(client, "/workers", {"name": "Marco", "email": "marco@example.com"})
    _create(client, "/workers", {"name": "Luca", "email": "luca@example.com", "status": "Inattivo"})
    site = _create(client, "/sites", {"name": "Villa", "address": "Via Roma 1"})
    _create(client, "/time-entries", {"workerId": worker["id"], "siteId": site["id"],
                                      "date": today_local(), "totalHours": 6.5})
    _create(client, "/payments", {"workerId": worker["id"], "week": "W9"})

    stats = client.get("/dashboard/stats", headers=AUTH).get_json()["data"]

    assert stats == {"activeWorkers": 1, "activeSites": 1, "pendingPayments": 1, "todayHours": 6.5}


def test_post_without_body_is_bad_request(client):
    response = client.post("/workers", headers=AUTH)

    assert response.status_code == 400
    assert response.get_json()["success"] is False


def test_unknown_route_returns_envelope(api_client):
    response = api_client.get("/nope")

    assert response.status_code == 404
    assert response.get_json() == {"success": False, "data": None, "error": "Not found"}


def test_server_config_defaults_and_env_override(server_app, monkeypatch):
    db_path = server_app.config["DATABASE"]
    monkeypatch.delenv("EDILCHECK_HOST", raising=False)
    monkeypatch.delenv("EDILCHECK_PORT", raising=False)

    assert get_server_config(db_path) == {"host": "0.0.0.0", "port": 3002}

    set_server_setting("port", "4100", db_path)
    assert get_server_config(db_path)["port"] == 4100

    monkeypatch.setenv("EDILCHECK_HOST", "127.0.0.1")
    monkeypatch.setenv("EDILCHECK_PORT", "4200")
    assert get_server_config(db_path) == {"host": "127.0.0.1", "port": 4200}
