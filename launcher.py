#!/usr/bin/env python3
"""
Edil-Check Launcher
Provides simple entry points for the backup server and one-shot data operations.
"""

import json
import os
import sys
from pathlib import Path

# Add the project root to Python path for clean imports
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

USAGE = """Edil-Check Launcher

Usage:
  python launcher.py server [host] [port]     # Run the backup server (Waitress)
  python launcher.py backup                   # Push local data to the backup server
  python launcher.py restore [--replace]      # Pull data from the backup server
  python launcher.py sync                     # Two-way sync with the backup server
  python launcher.py stats                    # Print local dashboard stats

Environment:
  EDILCHECK_REMOTE_HOST / EDILCHECK_REMOTE_PORT   Backup server location
  EDILCHECK_EMAIL / EDILCHECK_PASSWORD            Backup account credentials
  EDILCHECK_DATA_DIR                              Data directory override
"""


def _backup_context():
    """Database context in backup mode with credentials from the environment"""
    from edilcheck.client import get_database_context
    from edilcheck.shared.models import DatabaseMode

    context = get_database_context()
    host = os.getenv('EDILCHECK_REMOTE_HOST')
    port = os.getenv('EDILCHECK_REMOTE_PORT')
    if host or port:
        context.set_remote_config(host or context.remote_config.host, port or context.remote_config.port)
    if context.mode != DatabaseMode.LOCAL_WITH_BACKUP:
        context.set_mode(DatabaseMode.LOCAL_WITH_BACKUP)

    email = os.getenv('EDILCHECK_EMAIL')
    password = os.getenv('EDILCHECK_PASSWORD')
    if email and password:
        context.set_credentials(email, password)
    return context


def main():
    """Main launcher with command-line arguments"""
    from edilcheck.shared.logging_config import get_launcher_logger
    logger = get_launcher_logger()

    if len(sys.argv) < 2:
        print(USAGE)
        sys.exit(1)

    command = sys.argv[1].lower()
    args = sys.argv[2:]

    if command == 'server':
        from edilcheck.server import run_server
        host = args[0] if len(args) > 0 else None
        port = int(args[1]) if len(args) > 1 else None
        run_server(host=host, port=port)
        return

    if command == 'stats':
        from edilcheck.client import get_database_context
        print(json.dumps(get_database_context().get_dashboard_stats().to_dict(), indent=2))
        return

    if command not in ('backup', 'restore', 'sync'):
        print(f"Unknown command: {command}")
        print("Use 'server', 'backup', 'restore', 'sync' or 'stats'")
        sys.exit(1)

    from edilcheck.client import RemoteDatabaseError, SyncError

    context = _backup_context()
    try:
        if command == 'backup':
            result = context.backup()
        elif command == 'restore':
            result = context.restore(replace='--replace' in args)
        else:
            result = context.sync()
    except (RemoteDatabaseError, SyncError) as e:
        logger.error(f"{command.capitalize()} failed: {e}")
        sys.exit(2)

    print(json.dumps(result.to_dict(), indent=2))
    if not result.success:
        sys.exit(2)


if __name__ == '__main__':
    main()
