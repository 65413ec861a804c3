"""
Bidirectional reconciliation between the local store and the backup server.

One pass walks workers, sites, time entries and payments in that order. Records
are matched by business key (never by id, since each side assigns its own ids)
and the side with the strictly later created_at wins. A failed create/update is
logged and skipped; the next pass re-evaluates everything from scratch.
"""

from typing import Dict, Optional, Tuple

from PyQt6.QtCore import QObject, pyqtSignal

from edilcheck.client.local_store import DatabaseException, LocalDatabase
from edilcheck.client.remote_database import (RemoteDatabase,
                                              RemoteDatabaseError)
from edilcheck.shared.logging_config import get_sync_logger
from edilcheck.shared.models import (COLLECTIONS, SyncResult, SyncState,
                                     SyncStatus)
from edilcheck.shared.utils import now_iso, parse_datetime

logger = get_sync_logger()

LAST_SYNC_SETTING = 'edilcheck_last_sync'


class SyncError(Exception):
    """The pass could not run at all (remote missing, unreachable, or a fetch failed)"""
    pass


def build_key_map(records) -> Dict[Tuple, object]:
    """Index records by business key; the first record with a given key wins"""
    key_map = {}
    for record in records:
        key_map.setdefault(record.business_key(), record)
    return key_map


def is_newer(candidate, other) -> bool:
    """True when candidate.created_at is strictly later than other.created_at.

    Unparseable or missing timestamps sort before any valid one; equal
    timestamps are never newer.
    """
    candidate_ts = parse_datetime(candidate.created_at)
    other_ts = parse_datetime(other.created_at)
    if candidate_ts is None:
        return False
    if other_ts is None:
        return True
    return candidate_ts > other_ts


class DatabaseSync(QObject):
    """
    Sync engine that handles:
    - Pushing local records the server lacks or holds an older copy of
    - Pulling server records the local store lacks or holds an older copy of
    - Status reporting to observers
    """

    status_changed = pyqtSignal(dict)  # Emits SyncStatus snapshots

    def __init__(self, local_store: LocalDatabase, remote: Optional[RemoteDatabase] = None, parent=None):
        super().__init__(parent)

        self.local = local_store
        self.remote = remote
        self._status = SyncStatus(last_sync=self.local.get_setting(LAST_SYNC_SETTING))

    def set_remote(self, remote: Optional[RemoteDatabase]):
        """Attach (or detach) the backup server client"""
        self.remote = remote

    def get_status(self) -> SyncStatus:
        return SyncStatus(**self._status.to_dict())

    def _update_status(self, **changes):
        for name, value in changes.items():
            setattr(self._status, name, value)
        self.status_changed.emit(self._status.to_dict())

    def test_connection(self) -> bool:
        """Check whether the backup server answers"""
        if self.remote is None:
            self._update_status(is_remote_available=False, error="Remote database not configured")
            return False

        connected = self.remote.test_connection()
        self._update_status(
            is_remote_available=connected,
            error=None if connected else "Remote server not reachable"
        )
        return connected

    def sync(self, account: str) -> SyncResult:
        """Run one reconciliation pass for the account.

        Raises SyncError when the pass cannot start or a collection cannot be
        fetched. Per-record failures are counted in SyncResult.failed.
        """
        if self.remote is None:
            self._update_status(status=SyncState.ERROR.value, error="Remote database not configured")
            raise SyncError("Remote database not configured")

        logger.info(f"Starting sync for {account}")
        self._update_status(status=SyncState.SYNCING.value, error=None)

        if not self.test_connection():
            message = f"Cannot reach backup server {self.remote.config.host}:{self.remote.config.port}"
            logger.error(f"Sync aborted: {message}")
            self._update_status(status=SyncState.ERROR.value, error=message)
            raise SyncError(message)

        result = SyncResult()
        remote_count = 0
        try:
            for collection in COLLECTIONS:
                remote_count += self._sync_collection(account, collection, result)
        except (RemoteDatabaseError, DatabaseException) as e:
            logger.error(f"Sync failed: {e}")
            self._update_status(status=SyncState.ERROR.value, error=str(e))
            raise SyncError(str(e)) from e

        local_count = self.local.count_records(account)

        if result.failed:
            result.success = False
            result.error = f"{result.failed} records could not be synchronized"
            logger.warning(f"Sync finished with failures: {result.to_dict()}")
            self._update_status(status=SyncState.ERROR.value, error=result.error,
                                local_count=local_count, remote_count=remote_count)
        else:
            last_sync = now_iso()
            self.local.set_setting(LAST_SYNC_SETTING, last_sync)
            logger.info(f"Sync completed: {result.local_to_remote} pushed, {result.remote_to_local} pulled")
            self._update_status(status=SyncState.SUCCESS.value, last_sync=last_sync,
                                local_count=local_count, remote_count=remote_count)

        return result

    def _sync_collection(self, account: str, collection: str, result: SyncResult) -> int:
        """Reconcile one collection; returns the number of remote records fetched"""
        local_records = [r.stored() for r in self.local.get_records(account, collection)]
        remote_records = [r.stored() for r in self.remote.get_records(collection)]
        logger.debug(f"{collection}: {len(local_records)} local, {len(remote_records)} remote")

        local_map = build_key_map(local_records)
        remote_map = build_key_map(remote_records)

        # Local -> Remote
        for key, local_record in local_map.items():
            remote_record = remote_map.get(key)
            try:
                if remote_record is None:
                    self.remote.add_record(collection, local_record)
                    result.local_to_remote += 1
                elif is_newer(local_record, remote_record):
                    self.remote.update_record(collection, remote_record.id, local_record)
                    result.local_to_remote += 1
            except (RemoteDatabaseError, ValueError) as e:
                result.failed += 1
                logger.warning(f"Failed to push {collection} record {local_record.id} {key}: {e}")

        # Remote -> Local
        for key, remote_record in remote_map.items():
            local_record = local_map.get(key)
            try:
                if local_record is None:
                    self.local.import_record(account, collection, remote_record)
                    result.remote_to_local += 1
                elif is_newer(remote_record, local_record):
                    self.local.update_record(account, collection, local_record.id, remote_record)
                    result.remote_to_local += 1
            except (DatabaseException, ValueError) as e:
                result.failed += 1
                logger.warning(f"Failed to pull {collection} record {remote_record.id} {key}: {e}")

        return len(remote_records)
