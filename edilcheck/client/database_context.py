"""
Database context for Edil-Check front ends.

Holds the database mode, remote configuration, current account and backup
status. CRUD always targets the local store; the backup server is only used by
explicit backup, restore and sync calls.
"""

import json
import threading
from typing import Callable, Dict, Optional, Union

from PyQt6.QtCore import QObject, pyqtSignal

from edilcheck.client.local_store import (DatabaseException, LocalDatabase,
                                          get_local_database)
from edilcheck.client.remote_database import (RemoteDatabase,
                                              RemoteDatabaseError)
from edilcheck.client.sync_service import DatabaseSync
from edilcheck.shared.logging_config import get_context_logger
from edilcheck.shared.models import (COLLECTIONS, DEFAULT_NEXT_ID,
                                     BackupResult, DatabaseData, DatabaseMode,
                                     RemoteConfig, SyncResult, SyncState,
                                     SyncStatus)
from edilcheck.shared.utils import now_iso

logger = get_context_logger()

ANONYMOUS_ACCOUNT = 'anonymous'

MODE_SETTING = 'edilcheck_database_mode'
REMOTE_CONFIG_SETTING = 'edilcheck_remote_config'
LAST_BACKUP_SETTING = 'edilcheck_last_backup'
LAST_RESTORE_SETTING = 'edilcheck_last_restore'


class DatabaseContext(QObject):
    """
    Process-wide data access for one UI session:
    - local-only or local-with-backup mode
    - CRUD dispatch to the local store for the current account
    - one-shot backup / restore / sync against the backup server
    """

    status_changed = pyqtSignal(dict)       # SyncStatus snapshots
    connection_changed = pyqtSignal(bool)   # Remote availability

    def __init__(self, local_store: Optional[LocalDatabase] = None,
                 remote_factory: Callable[[RemoteConfig], RemoteDatabase] = RemoteDatabase,
                 parent=None):
        super().__init__(parent)

        self.local = local_store or get_local_database()
        self._remote_factory = remote_factory
        self._credentials: Optional[Dict[str, str]] = None

        self.account = ANONYMOUS_ACCOUNT
        self.mode = DatabaseMode.parse(self.local.get_setting(MODE_SETTING))
        self.remote_config = self._load_remote_config()
        self.remote: Optional[RemoteDatabase] = None
        self.is_connected = self.mode == DatabaseMode.LOCAL_ONLY
        self.connection_error: Optional[str] = None

        self.sync_engine = DatabaseSync(self.local)
        self.sync_engine.status_changed.connect(self._on_sync_status)

        self._status = SyncStatus(
            last_sync=self.sync_engine.get_status().last_sync,
            last_backup=self.local.get_setting(LAST_BACKUP_SETTING),
            last_restore=self.local.get_setting(LAST_RESTORE_SETTING),
        )

        if self.mode == DatabaseMode.LOCAL_WITH_BACKUP:
            self._create_remote()

    # Configuration
    def _load_remote_config(self) -> RemoteConfig:
        """Load the backup server location from settings"""
        stored = self.local.get_setting(REMOTE_CONFIG_SETTING)
        if stored:
            try:
                return RemoteConfig.from_dict(json.loads(stored))
            except (ValueError, TypeError) as e:
                logger.warning(f"Ignoring invalid remote configuration: {e}")
        return RemoteConfig()

    def _create_remote(self):
        self.remote = self._remote_factory(self.remote_config)
        if self._credentials:
            self.remote.set_credentials(self._credentials['email'], self._credentials['password'])
        self.sync_engine.set_remote(self.remote)

    def set_mode(self, mode: Union[DatabaseMode, str]) -> Optional[threading.Thread]:
        """Switch between local-only and local-with-backup; returns the probe thread, if any"""
        new_mode = mode if isinstance(mode, DatabaseMode) else DatabaseMode.parse(mode)
        logger.info(f"Switching database mode: {self.mode.value} -> {new_mode.value}")
        self.mode = new_mode
        self.local.set_setting(MODE_SETTING, new_mode.value)

        if new_mode == DatabaseMode.LOCAL_ONLY:
            self.remote = None
            self.sync_engine.set_remote(None)
            self._set_connected(True, None)
            return None
        else:
            self._create_remote()
            self.is_connected = False
            return self.probe_remote()

    def set_remote_config(self, host: str, port: Union[int, str], timeout: int = None) -> Optional[threading.Thread]:
        """Update the backup server location; raises ValueError for invalid values"""
        config = RemoteConfig(host=host, port=port, timeout=timeout or self.remote_config.timeout)
        logger.info(f"Updating remote config: {config.host}:{config.port}")
        self.remote_config = config
        self.local.set_setting(REMOTE_CONFIG_SETTING, json.dumps(config.to_dict()))

        if self.mode == DatabaseMode.LOCAL_WITH_BACKUP:
            self._create_remote()
            return self.probe_remote()
        return None

    # Account and credentials
    def set_account(self, account: Optional[str]):
        self.account = account or ANONYMOUS_ACCOUNT

    def set_credentials(self, email: str, password: str):
        """Use these credentials for backup calls and make email the current account"""
        self._credentials = {'email': email, 'password': password}
        if self.remote:
            self.remote.set_credentials(email, password)
        self.set_account(email)

    def _require_remote(self) -> RemoteDatabase:
        if self.mode != DatabaseMode.LOCAL_WITH_BACKUP or self.remote is None:
            raise RemoteDatabaseError("Backup mode is not enabled")
        return self.remote

    def login(self, email: str, password: str) -> Dict:
        result = self._require_remote().login(email, password)
        if result['success']:
            self.set_credentials(email, password)
        return result

    def register(self, email: str, password: str) -> Dict:
        result = self._require_remote().register(email, password)
        if result['success']:
            self.set_credentials(email, password)
        return result

    def logout(self):
        if self.remote:
            self.remote.logout()
        self._credentials = None
        self.set_account(None)

    # Status
    def get_status(self) -> SyncStatus:
        return SyncStatus(**self._status.to_dict())

    def _update_status(self, **changes):
        for name, value in changes.items():
            setattr(self._status, name, value)
        self.status_changed.emit(self._status.to_dict())

    def _on_sync_status(self, status: dict):
        """Fold sync engine status into the context status"""
        self._update_status(**{k: v for k, v in status.items() if k not in ('last_backup', 'last_restore')})

    def _set_connected(self, connected: bool, error: Optional[str]):
        self.is_connected = connected
        self.connection_error = error
        self.connection_changed.emit(connected)

    def test_connection(self) -> bool:
        """Blocking availability check (always true in local-only mode)"""
        if self.mode == DatabaseMode.LOCAL_ONLY:
            self._set_connected(True, None)
            return True

        if self.remote is None:
            self._set_connected(False, "Remote database not configured")
            return False

        connected = self.remote.test_connection()
        error = None if connected else f"Cannot connect to remote server {self.remote_config.host}:{self.remote_config.port}"
        self._set_connected(connected, error)
        self._update_status(is_remote_available=connected, error=error)
        if connected:
            logger.info("Remote database connected")
        else:
            logger.warning("Remote database connection failed")
        return connected

    def probe_remote(self) -> Optional[threading.Thread]:
        """Check remote availability in a background thread so callers never block"""
        if self.mode == DatabaseMode.LOCAL_ONLY:
            return None

        def background_check():
            try:
                self.test_connection()
            except Exception as e:
                logger.debug(f"Background connection check error: {e}")

        check_thread = threading.Thread(target=background_check, daemon=True)
        check_thread.start()
        return check_thread

    # Local CRUD
    def get_workers(self):
        return self.local.get_workers(self.account)

    def add_worker(self, worker):
        return self.local.add_worker(self.account, worker)

    def update_worker(self, worker_id: int, updates):
        return self.local.update_worker(self.account, worker_id, updates)

    def delete_worker(self, worker_id: int):
        self.local.delete_worker(self.account, worker_id)

    def get_sites(self):
        return self.local.get_sites(self.account)

    def add_site(self, site):
        return self.local.add_site(self.account, site)

    def update_site(self, site_id: int, updates):
        return self.local.update_site(self.account, site_id, updates)

    def delete_site(self, site_id: int):
        self.local.delete_site(self.account, site_id)

    def get_time_entries(self):
        return self.local.get_time_entries(self.account)

    def add_time_entry(self, entry):
        return self.local.add_time_entry(self.account, entry)

    def update_time_entry(self, entry_id: int, updates):
        return self.local.update_time_entry(self.account, entry_id, updates)

    def delete_time_entry(self, entry_id: int):
        self.local.delete_time_entry(self.account, entry_id)

    def get_payments(self):
        return self.local.get_payments(self.account)

    def add_payment(self, payment):
        return self.local.add_payment(self.account, payment)

    def update_payment(self, payment_id: int, updates):
        return self.local.update_payment(self.account, payment_id, updates)

    def delete_payment(self, payment_id: int):
        self.local.delete_payment(self.account, payment_id)

    def get_dashboard_stats(self):
        return self.local.get_dashboard_stats(self.account)

    # Backup / restore / sync
    def _require_available(self, operation: str) -> RemoteDatabase:
        remote = self._require_remote()
        if not self.is_connected and not self.test_connection():
            raise RemoteDatabaseError(f"Remote server not available for {operation}")
        return remote

    def backup(self) -> BackupResult:
        """Push every local record to the server, overwriting business-key matches"""
        remote = self._require_available('backup')
        logger.info(f"Starting backup of {self.account} to remote server")
        self._update_status(status=SyncState.SYNCING.value, error=None)

        items_processed = 0
        conflicts = 0
        try:
            for collection in COLLECTIONS:
                local_records = [r.stored() for r in self.local.get_records(self.account, collection)]
                remote_by_key = {}
                for record in remote.get_records(collection):
                    remote_by_key.setdefault(record.business_key(), record)

                for record in local_records:
                    existing = remote_by_key.get(record.business_key())
                    try:
                        if existing is not None:
                            remote.update_record(collection, existing.id, record)
                        else:
                            remote.add_record(collection, record)
                        items_processed += 1
                    except RemoteDatabaseError as e:
                        conflicts += 1
                        logger.warning(f"Failed to back up {collection} record {record.id}: {e}")
        except (RemoteDatabaseError, DatabaseException) as e:
            logger.error(f"Backup failed: {e}")
            self._update_status(status=SyncState.ERROR.value, error=str(e))
            return BackupResult(operation='backup', success=False, error=str(e))

        now = now_iso()
        self.local.set_setting(LAST_BACKUP_SETTING, now)
        self._update_status(
            status=SyncState.SUCCESS.value,
            last_backup=now,
            local_count=self.local.count_records(self.account)
        )
        logger.info(f"Backup completed: {items_processed} records, {conflicts} conflicts")
        return BackupResult(operation='backup', items_processed=items_processed, conflicts=conflicts)

    def restore(self, replace: bool = False) -> BackupResult:
        """Pull every server record into the local store.

        replace=True swaps the local container for the server data (server
        ids kept); otherwise records whose business key already exists
        locally are skipped and the rest imported.
        """
        remote = self._require_available('restore')
        logger.info(f"Starting restore of {self.account} from remote server (replace={replace})")
        self._update_status(status=SyncState.SYNCING.value, error=None)

        try:
            remote_data = {collection: [r.stored() for r in remote.get_records(collection)]
                           for collection in COLLECTIONS}
        except RemoteDatabaseError as e:
            logger.error(f"Restore failed: {e}")
            self._update_status(status=SyncState.ERROR.value, error=str(e))
            return BackupResult(operation='restore', success=False, error=str(e))

        remote_count = sum(len(records) for records in remote_data.values())
        items_processed = 0
        conflicts = 0

        if replace:
            container = DatabaseData()
            max_id = 0
            for collection, records in remote_data.items():
                container.set_collection(collection, records)
                max_id = max([max_id] + [r.id or 0 for r in records])
            container.next_id = max(DEFAULT_NEXT_ID, max_id + 1)
            self.local.replace_all(self.account, container)
            items_processed = remote_count
        else:
            for collection, records in remote_data.items():
                local_keys = {r.business_key() for r in self.local.get_records(self.account, collection)}
                for record in records:
                    key = record.business_key()
                    if key in local_keys:
                        continue
                    try:
                        self.local.import_record(self.account, collection, record)
                        local_keys.add(key)
                        items_processed += 1
                    except DatabaseException as e:
                        conflicts += 1
                        logger.warning(f"Failed to restore {collection} record {record.id}: {e}")

        now = now_iso()
        self.local.set_setting(LAST_RESTORE_SETTING, now)
        self._update_status(
            status=SyncState.SUCCESS.value,
            last_restore=now,
            remote_count=remote_count,
            local_count=self.local.count_records(self.account)
        )
        logger.info(f"Restore completed: {items_processed} records, {conflicts} conflicts")
        return BackupResult(operation='restore', items_processed=items_processed, conflicts=conflicts)

    def sync(self) -> SyncResult:
        """Run one bidirectional reconciliation pass for the current account"""
        self._require_remote()
        return self.sync_engine.sync(self.account)


# Global context instance
_context = None


def get_database_context() -> DatabaseContext:
    """Get the default context backed by the default local store"""
    global _context
    if _context is None:
        _context = DatabaseContext()
    return _context
