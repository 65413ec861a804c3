"""Server package for Edil-Check.

Provides the backup server REST API. All server modes use the Waitress WSGI
server.
"""
from .server import (DEFAULT_SERVER_PORT, create_app, get_server_config,
                     init_server_db, run_server)

__all__ = ["create_app", "init_server_db", "run_server", "get_server_config", "DEFAULT_SERVER_PORT"]
