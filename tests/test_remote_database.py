from unittest.mock import MagicMock

import pytest
import requests

from edilcheck.client.remote_database import (CredentialsNotSetError,
                                              RemoteDatabase,
                                              RemoteDatabaseError)
from edilcheck.shared.models import RemoteConfig, TimeEntryView, Worker


def _response(status=200, body=None, reason="OK"):
    response = MagicMock()
    response.status_code = status
    response.ok = status < 400
    response.reason = reason
    if isinstance(body, Exception):
        response.json.side_effect = body
    else:
        response.json.return_value = body
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def remote(session):
    client = RemoteDatabase(RemoteConfig(host="backup.local", port=3002), session=session)
    client.set_credentials("demo@example.com", "secret")
    return client


def test_data_calls_require_credentials(session):
    client = RemoteDatabase(session=session)

    with pytest.raises(CredentialsNotSetError):
        client.get_workers()
    session.request.assert_not_called()


def test_requests_carry_credential_headers(remote, session):
    session.request.return_value = _response(body={"success": True, "data": []})

    remote.get_sites()

    method, url = session.request.call_args.args
    headers = session.request.call_args.kwargs["headers"]
    assert method == "GET"
    assert url == "http://backup.local:3002/sites"
    assert headers["X-User-Email"] == "demo@example.com"
    assert headers["X-User-Password"] == "secret"
    assert session.request.call_args.kwargs["timeout"] == 10


def test_get_time_entries_parses_joined_views(remote, session):
    session.request.return_value = _response(body={"success": True, "data": [
        {"id": 3, "workerId": 1, "siteId": 2, "date": "2024-03-01", "startTime": "08:00",
         "totalHours": 8, "workerName": "Marco Rossi", "siteName": "Villa Moderna", "user_id": 1},
    ]})

    entries = remote.get_time_entries()

    assert isinstance(entries[0], TimeEntryView)
    assert entries[0].worker_name == "Marco Rossi"
    assert entries[0].business_key() == (1, "2024-03-01", "08:00")


def test_add_record_sends_payload_without_id_or_names(remote, session):
    session.request.return_value = _response(status=201, body={"success": True, "data": {"id": 9}})
    entry = TimeEntryView(id=4, worker_id=1, site_id=1, date="2024-03-01",
                          created_at="2024-03-01T08:00:00.000Z", worker_name="Marco")

    created = remote.add_time_entry(entry)

    payload = session.request.call_args.kwargs["json"]
    assert "id" not in payload
    assert "workerName" not in payload
    assert payload["created_at"] == "2024-03-01T08:00:00.000Z"
    assert created.id == 9


def test_update_with_partial_dict_uses_wire_names(remote, session):
    session.request.return_value = _response(body={"success": True, "data": {"id": 2, "hourlyRate": 25}})

    updated = remote.update_worker(2, {"hourly_rate": 25, "id": 77})

    method, url = session.request.call_args.args
    assert method == "PUT"
    assert url.endswith("/workers/2")
    assert session.request.call_args.kwargs["json"] == {"hourlyRate": 25.0}
    assert isinstance(updated, Worker)


def test_transport_failure_names_host_and_port(remote, session):
    session.request.side_effect = requests.exceptions.ConnectionError("refused")

    with pytest.raises(RemoteDatabaseError) as excinfo:
        remote.get_workers()

    assert str(excinfo.value) == "Cannot connect to server backup.local:3002"
    assert excinfo.value.status_code is None


def test_error_message_prefers_server_error_text(remote, session):
    session.request.return_value = _response(status=404, body={"success": False, "error": "workers 5 not found"},
                                             reason="NOT FOUND")

    with pytest.raises(RemoteDatabaseError) as excinfo:
        remote.update_worker(5, {"name": "X"})

    assert excinfo.value.message == "workers 5 not found"
    assert excinfo.value.status_code == 404


def test_error_message_falls_back_to_reason(remote, session):
    session.request.return_value = _response(status=502, body=ValueError("not json"), reason="Bad Gateway")

    with pytest.raises(RemoteDatabaseError) as excinfo:
        remote.delete_payment(1)

    assert excinfo.value.message == "Bad Gateway"


def test_test_connection_never_raises(session):
    session.request.side_effect = requests.exceptions.Timeout()
    client = RemoteDatabase(session=session)

    assert client.test_connection() is False

    session.request.side_effect = None
    session.request.return_value = _response(body={"success": True, "data": {"status": "healthy"}})
    assert client.test_connection() is True


def test_login_success_sets_credentials(session):
    session.request.return_value = _response(body={"success": True, "data": {"user": {"id": 1, "email": "a@b.c"}}})
    client = RemoteDatabase(session=session)

    result = client.login("a@b.c", "pw")

    assert result == {"success": True, "error": None, "user": {"id": 1, "email": "a@b.c"}}
    assert client.has_credentials
    assert client.email == "a@b.c"


def test_login_failure_reports_error(session):
    session.request.return_value = _response(status=401, body={"success": False, "error": "Invalid credentials"},
                                             reason="UNAUTHORIZED")
    client = RemoteDatabase(session=session)

    result = client.login("a@b.c", "wrong")

    assert result["success"] is False
    assert result["error"] == "Invalid credentials"
    assert not client.has_credentials


def test_logout_clears_credentials_even_on_error(remote, session):
    session.request.side_effect = requests.exceptions.ConnectionError()

    remote.logout()

    assert not remote.has_credentials


def test_dashboard_stats_fall_back_to_zeros(remote, session):
    session.request.side_effect = requests.exceptions.ConnectionError()

    stats = remote.get_dashboard_stats()

    assert stats.to_dict() == {"activeWorkers": 0, "activeSites": 0, "pendingPayments": 0, "todayHours": 0.0}
