import pytest

from edilcheck.client.sync_service import (LAST_SYNC_SETTING, DatabaseSync,
                                           SyncError, build_key_map, is_newer)
from edilcheck.shared.models import Worker
from tests.fakes import FakeRemote

ACCOUNT = "demo"
LATER = "2099-01-01T00:00:00.000Z"


@pytest.fixture
def engine(local_db, fake_remote):
    return DatabaseSync(local_db, fake_remote)


def test_first_sync_pushes_seeded_data(engine, fake_remote):
    result = engine.sync(ACCOUNT)

    assert result.success
    assert result.local_to_remote == 5
    assert result.remote_to_local == 0
    assert result.conflicts == 0
    assert len(fake_remote.records["workers"]) == 2
    assert len(fake_remote.records["payments"]) == 1


def test_second_sync_is_a_noop(engine, fake_remote):
    engine.sync(ACCOUNT)
    fake_remote.calls.clear()

    result = engine.sync(ACCOUNT)

    assert result.to_dict() == {"success": True, "localToRemote": 0, "remoteToLocal": 0,
                                "conflicts": 0, "failed": 0, "error": None}
    assert fake_remote.writes() == []


def test_remote_only_records_are_pulled(local_db, engine, fake_remote):
    fake_remote.seed("workers", name="Luca Verdi", email="luca@example.com", created_at="2024-01-01T00:00:00.000Z")

    result = engine.sync(ACCOUNT)

    assert result.remote_to_local == 1
    pulled = [w for w in local_db.get_workers(ACCOUNT) if w.email == "luca@example.com"][0]
    assert pulled.id >= 100
    assert pulled.created_at == "2024-01-01T00:00:00.000Z"


def test_newer_remote_record_overwrites_local(local_db, engine, fake_remote):
    engine.sync(ACCOUNT)
    marco = [w for w in fake_remote.records["workers"] if w.email == "marco.rossi@email.com"][0]
    marco.role = "Capocantiere"
    marco.created_at = LATER

    result = engine.sync(ACCOUNT)

    assert result.remote_to_local == 1
    assert result.local_to_remote == 0
    local_marco = local_db.get_workers(ACCOUNT)[0]
    assert local_marco.id == 1
    assert local_marco.role == "Capocantiere"
    assert engine.sync(ACCOUNT).remote_to_local == 0


def test_newer_local_record_overwrites_remote(local_db, engine, fake_remote):
    engine.sync(ACCOUNT)
    local_db.update_worker(ACCOUNT, 2, {"phone": "+39 333 0000000", "created_at": LATER})
    fake_remote.calls.clear()

    result = engine.sync(ACCOUNT)

    assert result.local_to_remote == 1
    assert result.remote_to_local == 0
    assert [c[0] for c in fake_remote.writes()] == ["update"]
    giuseppe = [w for w in fake_remote.records["workers"] if w.email == "giuseppe.bianchi@email.com"][0]
    assert giuseppe.phone == "+39 333 0000000"


def test_equal_timestamps_never_overwrite(local_db, engine, fake_remote):
    engine.sync(ACCOUNT)
    marco = [w for w in fake_remote.records["workers"] if w.email == "marco.rossi@email.com"][0]
    marco.role = "Different but same timestamp"

    result = engine.sync(ACCOUNT)

    assert result.local_to_remote == 0
    assert result.remote_to_local == 0
    assert local_db.get_workers(ACCOUNT)[0].role == "Muratore"


def test_local_only_payment_creates_one_remote_record(local_db, engine, fake_remote):
    engine.sync(ACCOUNT)
    local_db.add_payment(ACCOUNT, {"workerId": 2, "week": "Settimana 4/2024", "hours": 40,
                                   "hourlyRate": 22, "totalAmount": 880})
    fake_remote.calls.clear()

    result = engine.sync(ACCOUNT)

    assert result.local_to_remote == 1
    assert result.remote_to_local == 0
    assert fake_remote.writes() == [("add", "payments")]


def test_unreachable_remote_raises_sync_error(local_db):
    engine = DatabaseSync(local_db, FakeRemote(reachable=False))

    with pytest.raises(SyncError) as excinfo:
        engine.sync(ACCOUNT)

    assert "backup.test:3002" in str(excinfo.value)
    status = engine.get_status()
    assert status.status == "error"
    assert status.is_remote_available is False


def test_missing_remote_raises_sync_error(local_db):
    engine = DatabaseSync(local_db)

    with pytest.raises(SyncError):
        engine.sync(ACCOUNT)


def test_record_failures_are_counted_not_raised(local_db):
    engine = DatabaseSync(local_db, FakeRemote(fail_writes=True))

    result = engine.sync(ACCOUNT)

    assert result.success is False
    assert result.failed == 5
    assert result.local_to_remote == 0
    assert result.error == "5 records could not be synchronized"
    assert local_db.get_setting(LAST_SYNC_SETTING) is None
    assert engine.get_status().status == "error"


def test_success_records_last_sync_and_counts(local_db, engine):
    emitted = []
    engine.status_changed.connect(lambda status: emitted.append(status))

    engine.sync(ACCOUNT)

    status = engine.get_status()
    assert status.status == "success"
    assert status.last_sync == local_db.get_setting(LAST_SYNC_SETTING)
    assert status.local_count == 5
    assert emitted[0]["status"] == "syncing"
    assert emitted[-1]["status"] == "success"


def test_build_key_map_keeps_first_record_per_key():
    first = Worker(id=1, email="dup@example.com")
    second = Worker(id=2, email="dup@example.com")

    assert build_key_map([first, second]) == {("dup@example.com",): first}


def test_is_newer_orders_invalid_timestamps_first():
    valid = Worker(created_at="2024-01-01T00:00:00.000Z")
    later = Worker(created_at="2024-01-02 00:00:00")
    invalid = Worker(created_at="yesterday")

    assert is_newer(later, valid)
    assert not is_newer(valid, later)
    assert not is_newer(valid, Worker(created_at="2024-01-01T00:00:00Z"))
    assert is_newer(valid, invalid)
    assert not is_newer(invalid, valid)
    assert not is_newer(invalid, Worker(created_at=None))
