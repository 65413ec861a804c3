"""Client package for Edil-Check.

Provides the local store, the backup server client, the sync engine and the
database context that ties them together.
"""
from .database_context import DatabaseContext, get_database_context
from .local_store import DatabaseException, LocalDatabase, RecordNotFoundError, get_local_database
from .remote_database import CredentialsNotSetError, RemoteDatabase, RemoteDatabaseError
from .sync_service import DatabaseSync, SyncError

__all__ = [
    "DatabaseContext", "get_database_context",
    "LocalDatabase", "get_local_database", "DatabaseException", "RecordNotFoundError",
    "RemoteDatabase", "RemoteDatabaseError", "CredentialsNotSetError",
    "DatabaseSync", "SyncError",
]
