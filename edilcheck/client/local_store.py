"""
Local-first storage for Edil-Check.

Each account owns one serialized container (four collections plus the shared
id counter) stored as a single JSON blob under ``edilcheck_data_<account>``
in a SQLite key/value table. Every mutation reads the container, changes it
and writes the whole blob back; the last save wins.
"""

import json
import sqlite3
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from edilcheck.shared.logging_config import get_store_logger
from edilcheck.shared.models import (COLLECTIONS, RECORD_TYPES, DashboardStats,
                                     DatabaseData, Payment, PaymentStatus,
                                     PaymentView, Site, SiteStatus, TimeEntry,
                                     TimeEntryStatus, TimeEntryView, Worker,
                                     WorkerStatus, enrich_payment,
                                     enrich_time_entry)
from edilcheck.shared.utils import (get_data_path, now_iso, today_local,
                                    validate_account)

logger = get_store_logger()

STORAGE_KEY_PREFIX = 'edilcheck_data_'
DB_BUSY_TIMEOUT_MS = 5000

_NOT_FOUND_LABELS = {
    'workers': 'Worker',
    'sites': 'Site',
    'timeEntries': 'Time entry',
    'payments': 'Payment',
}


class DatabaseException(Exception):
    """Custom exception for local database operations"""
    pass


class RecordNotFoundError(DatabaseException):
    """Raised when an update addresses an id that is not stored"""

    def __init__(self, collection: str, record_id: int):
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"{_NOT_FOUND_LABELS.get(collection, collection)} not found: {record_id}")


def get_db_path() -> Path:
    """Default location of the local database file"""
    return get_data_path('edilcheck.db')


def seed_data() -> DatabaseData:
    """Sample data for an account that has nothing stored yet"""
    now = now_iso()
    return DatabaseData(
        workers=[
            Worker(id=1, name="Marco Rossi", role="Muratore", phone="+39 333 1234567",
                   email="marco.rossi@email.com", status=WorkerStatus.ACTIVE.value,
                   hourly_rate=18.50, created_at=now),
            Worker(id=2, name="Giuseppe Bianchi", role="Elettricista", phone="+39 333 2345678",
                   email="giuseppe.bianchi@email.com", status=WorkerStatus.ACTIVE.value,
                   hourly_rate=22.00, created_at=now),
        ],
        sites=[
            Site(id=1, name="Villa Moderna", owner="Famiglia Rossi", address="Via Roma 123, Milano",
                 status=SiteStatus.ACTIVE.value, start_date="2024-01-15", estimated_end="2024-06-30",
                 created_at=now),
        ],
        time_entries=[
            TimeEntry(id=1, worker_id=1, site_id=1, date=today_local(), start_time="08:00",
                      end_time="17:00", total_hours=8, status=TimeEntryStatus.CONFIRMED.value,
                      created_at=now),
        ],
        payments=[
            Payment(id=1, worker_id=1, week="Settimana 3/2024", hours=40, hourly_rate=18.50,
                    total_amount=740, overtime=0, status=PaymentStatus.DUE.value, created_at=now),
        ],
        next_id=100,
    )


class LocalDatabase:
    """
    Per-account CRUD over workers, sites, time entries and payments.

    All operations are synchronous. A missing record on update raises
    RecordNotFoundError; deletes of missing ids are no-ops.
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        self.db_path = Path(db_path) if db_path else get_db_path()
        self.init_database()

    # Connection management
    def get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory"""
        conn = sqlite3.connect(str(self.db_path))
        conn.execute(f"PRAGMA busy_timeout = {DB_BUSY_TIMEOUT_MS}")
        conn.row_factory = sqlite3.Row
        return conn

    def init_database(self):
        """Create the storage and settings tables"""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self.get_connection()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS storage (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise DatabaseException(f"Failed to initialize database: {e}")
        finally:
            conn.close()

    # Settings functions
    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get a setting value from the database"""
        conn = self.get_connection()
        try:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
            return row['value'] if row else default
        finally:
            conn.close()

    def set_setting(self, key: str, value: Optional[str]):
        """Set a setting value in the database (None removes it)"""
        conn = self.get_connection()
        try:
            if value is None:
                conn.execute("DELETE FROM settings WHERE key = ?", (key,))
            else:
                conn.execute("INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)", (key, value))
            conn.commit()
        finally:
            conn.close()

    # Container persistence
    @staticmethod
    def storage_key(account: str) -> str:
        try:
            return f"{STORAGE_KEY_PREFIX}{validate_account(account)}"
        except ValueError as e:
            raise DatabaseException(str(e))

    def _read_blob(self, key: str) -> Optional[str]:
        conn = self.get_connection()
        try:
            row = conn.execute("SELECT value FROM storage WHERE key = ?", (key,)).fetchone()
            return row['value'] if row else None
        finally:
            conn.close()

    def load(self, account: str) -> DatabaseData:
        """Return the stored container, seeding sample data on first use.

        The seeded container is persisted immediately so its created_at
        timestamps stay stable across loads.
        """
        key = self.storage_key(account)
        stored = self._read_blob(key)

        if stored:
            try:
                return DatabaseData.from_dict(json.loads(stored))
            except (ValueError, TypeError, AttributeError) as e:
                logger.error(f"Error parsing stored data for {account}: {e}")

        logger.info(f"Seeding sample data for account {account}")
        data = seed_data()
        self.save(account, data)
        return data

    def save(self, account: str, data: DatabaseData):
        """Persist the container, fully overwriting prior state"""
        key = self.storage_key(account)
        blob = json.dumps(data.to_dict())
        conn = self.get_connection()
        try:
            conn.execute(
                "INSERT OR REPLACE INTO storage (key, value, updated_at) VALUES (?, ?, ?)",
                (key, blob, now_iso())
            )
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise DatabaseException(f"Failed to save data for {account}: {e}")
        finally:
            conn.close()

    def replace_all(self, account: str, data: DatabaseData):
        """Replace everything stored for the account"""
        logger.info(f"Replacing all local data for {account} ({data.record_count()} records)")
        self.save(account, data)

    def clear_user_data(self, account: str):
        """Remove the account's container; the next load seeds sample data again"""
        key = self.storage_key(account)
        conn = self.get_connection()
        try:
            conn.execute("DELETE FROM storage WHERE key = ?", (key,))
            conn.commit()
        finally:
            conn.close()

    def count_records(self, account: str) -> int:
        return self.load(account).record_count()

    # Generic record operations
    @staticmethod
    def _coerce_fields(collection: str, values: Union[Dict[str, Any], Any]) -> Dict[str, Any]:
        """Turn a dict or record into normalized attribute names for the stored type"""
        record_type = RECORD_TYPES[collection]
        if not isinstance(values, dict):
            values = values.stored().to_payload()
        normalized = record_type.normalize_fields(values)
        normalized.pop('id', None)
        return normalized

    def _enrich(self, data: DatabaseData, collection: str, record):
        if collection == 'timeEntries':
            return enrich_time_entry(record, data.workers, data.sites)
        if collection == 'payments':
            return enrich_payment(record, data.workers)
        return record

    def _add(self, account: str, collection: str, values, keep_created_at: bool = False):
        data = self.load(account)
        attrs = self._coerce_fields(collection, values)
        created_at = attrs.pop('created_at', None)
        if not keep_created_at or not created_at:
            created_at = now_iso()

        record = RECORD_TYPES[collection](**attrs)
        record = replace(record, id=data.allocate_id(), created_at=created_at)
        data.collection(collection).append(record)
        self.save(account, data)
        logger.debug(f"Added {collection} record {record.id} for {account}")
        return self._enrich(data, collection, record)

    def _update(self, account: str, collection: str, record_id: int, updates):
        data = self.load(account)
        records = data.collection(collection)

        for index, record in enumerate(records):
            if record.id == record_id:
                break
        else:
            raise RecordNotFoundError(collection, record_id)

        merged = replace(record, **self._coerce_fields(collection, updates))
        records[index] = merged
        self.save(account, data)
        logger.debug(f"Updated {collection} record {record_id} for {account}")
        return self._enrich(data, collection, merged)

    def _get(self, account: str, collection: str) -> list:
        data = self.load(account)
        return [self._enrich(data, collection, record) for record in data.collection(collection)]

    def import_record(self, account: str, collection: str, values):
        """Add a record under a fresh local id, keeping its created_at when supplied"""
        if collection not in COLLECTIONS:
            raise DatabaseException(f"Unknown collection: {collection}")
        return self._add(account, collection, values, keep_created_at=True)

    def update_record(self, account: str, collection: str, record_id: int, updates):
        if collection not in COLLECTIONS:
            raise DatabaseException(f"Unknown collection: {collection}")
        return self._update(account, collection, record_id, updates)

    def get_records(self, account: str, collection: str) -> list:
        if collection not in COLLECTIONS:
            raise DatabaseException(f"Unknown collection: {collection}")
        return self._get(account, collection)

    # Workers
    def get_workers(self, account: str) -> List[Worker]:
        return self._get(account, 'workers')

    def add_worker(self, account: str, worker) -> Worker:
        return self._add(account, 'workers', worker)

    def update_worker(self, account: str, worker_id: int, updates) -> Worker:
        return self._update(account, 'workers', worker_id, updates)

    def delete_worker(self, account: str, worker_id: int):
        """Delete a worker with its time entries and payments"""
        data = self.load(account)
        data.workers = [w for w in data.workers if w.id != worker_id]
        data.time_entries = [te for te in data.time_entries if te.worker_id != worker_id]
        data.payments = [p for p in data.payments if p.worker_id != worker_id]
        self.save(account, data)

    # Sites
    def get_sites(self, account: str) -> List[Site]:
        return self._get(account, 'sites')

    def add_site(self, account: str, site) -> Site:
        return self._add(account, 'sites', site)

    def update_site(self, account: str, site_id: int, updates) -> Site:
        return self._update(account, 'sites', site_id, updates)

    def delete_site(self, account: str, site_id: int):
        """Delete a site with its time entries"""
        data = self.load(account)
        data.sites = [s for s in data.sites if s.id != site_id]
        data.time_entries = [te for te in data.time_entries if te.site_id != site_id]
        self.save(account, data)

    # Time entries
    def get_time_entries(self, account: str) -> List[TimeEntryView]:
        return self._get(account, 'timeEntries')

    def add_time_entry(self, account: str, entry) -> TimeEntryView:
        return self._add(account, 'timeEntries', entry)

    def update_time_entry(self, account: str, entry_id: int, updates) -> TimeEntryView:
        return self._update(account, 'timeEntries', entry_id, updates)

    def delete_time_entry(self, account: str, entry_id: int):
        data = self.load(account)
        data.time_entries = [te for te in data.time_entries if te.id != entry_id]
        self.save(account, data)

    # Payments
    def get_payments(self, account: str) -> List[PaymentView]:
        return self._get(account, 'payments')

    def add_payment(self, account: str, payment) -> PaymentView:
        return self._add(account, 'payments', payment)

    def update_payment(self, account: str, payment_id: int, updates) -> PaymentView:
        return self._update(account, 'payments', payment_id, updates)

    def delete_payment(self, account: str, payment_id: int):
        data = self.load(account)
        data.payments = [p for p in data.payments if p.id != payment_id]
        self.save(account, data)

    # Dashboard
    def get_dashboard_stats(self, account: str) -> DashboardStats:
        """Counts of active workers/sites, pending payments and hours logged today"""
        data = self.load(account)
        today = today_local()

        return DashboardStats(
            active_workers=sum(1 for w in data.workers if w.status == WorkerStatus.ACTIVE.value),
            active_sites=sum(1 for s in data.sites if s.status == SiteStatus.ACTIVE.value),
            pending_payments=sum(1 for p in data.payments if p.status == PaymentStatus.DUE.value),
            today_hours=sum(te.total_hours for te in data.time_entries if te.date == today),
        )


# Global store instance
_local_database = None


def get_local_database() -> LocalDatabase:
    """Get the default store backed by the user data directory"""
    global _local_database
    if _local_database is None:
        _local_database = LocalDatabase()
    return _local_database
