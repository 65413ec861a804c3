"""
Edil-Check Backup Server
REST API that stores a per-account copy of workers, sites, time entries and
payments for the local-first clients.
"""

import os
import sqlite3
from dataclasses import fields
from datetime import datetime
from functools import wraps
from pathlib import Path
from typing import Optional, Union

from flask import Blueprint, Flask, current_app, g, jsonify, request
from flask_cors import CORS
from werkzeug.security import check_password_hash, generate_password_hash

import edilcheck
from edilcheck.shared.logging_config import get_server_logger
from edilcheck.shared.models import (UNKNOWN_NAME, ApiResponse, DashboardStats,
                                     Payment, PaymentStatus, PaymentView, Site,
                                     SiteStatus, TimeEntry, TimeEntryView,
                                     Worker, WorkerStatus)
from edilcheck.shared.utils import (format_datetime, get_data_path, now_iso,
                                    to_int_optional, today_local)

# Setup standardized logging
logger = get_server_logger()

# Server configuration constants
DB_BUSY_TIMEOUT_MS: int = 5000
DEFAULT_SERVER_HOST: str = '0.0.0.0'
DEFAULT_SERVER_PORT: int = 3002
WAITRESS_THREADS: int = 6
WAITRESS_CHANNEL_TIMEOUT: int = 60
WAITRESS_CLEANUP_INTERVAL: int = 30

EMAIL_HEADER = 'X-User-Email'
PASSWORD_HEADER = 'X-User-Password'

# Resource name -> (table, stored record type, response type)
RESOURCES = {
    'workers': ('workers', Worker, Worker),
    'sites': ('sites', Site, Site),
    'time-entries': ('time_entries', TimeEntry, TimeEntryView),
    'payments': ('payments', Payment, PaymentView),
}

# Read queries join in display names; "Unknown" when the referent is gone
SELECT_QUERIES = {
    'workers': "SELECT * FROM workers WHERE user_id = ?",
    'sites': "SELECT * FROM sites WHERE user_id = ?",
    'time_entries': f"""
        SELECT te.*,
               COALESCE(w.name, '{UNKNOWN_NAME}') AS worker_name,
               COALESCE(s.name, '{UNKNOWN_NAME}') AS site_name
        FROM time_entries te
        LEFT JOIN workers w ON w.id = te.worker_id AND w.user_id = te.user_id
        LEFT JOIN sites s ON s.id = te.site_id AND s.user_id = te.user_id
        WHERE te.user_id = ?
    """,
    'payments': f"""
        SELECT p.*,
               COALESCE(w.name, '{UNKNOWN_NAME}') AS worker_name
        FROM payments p
        LEFT JOIN workers w ON w.id = p.worker_id AND w.user_id = p.user_id
        WHERE p.user_id = ?
    """,
}

# Table aliases used by SELECT_QUERIES
TABLE_ALIASES = {'workers': '', 'sites': '', 'time_entries': 'te.', 'payments': 'p.'}

api = Blueprint('api', __name__)


def get_server_db_path() -> Path:
    """Default location of the server database file"""
    return get_data_path('edilcheck_server.db')


def _connect(db_path: Union[str, Path]) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path))
    conn.execute(f"PRAGMA busy_timeout = {DB_BUSY_TIMEOUT_MS}")
    conn.execute("PRAGMA foreign_keys = ON")
    conn.row_factory = sqlite3.Row
    return conn


def get_db() -> sqlite3.Connection:
    """Get database connection (for Flask context)"""
    if 'db' not in g:
        g.db = _connect(current_app.config['DATABASE'])
    return g.db


def close_db(error):
    """Close database connection"""
    db = g.pop('db', None)
    if db is not None:
        db.close()


def init_server_db(db_path: Optional[Union[str, Path]] = None):
    """Create the server tables and default settings"""
    db_path = Path(db_path) if db_path else get_server_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = _connect(db_path)

    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                email TEXT UNIQUE NOT NULL,
                password_hash TEXT NOT NULL,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS workers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                role TEXT DEFAULT '',
                phone TEXT DEFAULT '',
                email TEXT DEFAULT '',
                status TEXT DEFAULT 'Attivo',
                hourly_rate REAL DEFAULT 0.0,
                created_at TEXT,
                FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS sites (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                owner TEXT DEFAULT '',
                address TEXT DEFAULT '',
                status TEXT DEFAULT 'Attivo',
                start_date TEXT DEFAULT '',
                estimated_end TEXT DEFAULT '',
                created_at TEXT,
                FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE
            )
        """)

        # worker_id / site_id are not foreign keys: sync may push a time entry
        # before (or without) its referents
        conn.execute("""
            CREATE TABLE IF NOT EXISTS time_entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                worker_id INTEGER,
                site_id INTEGER,
                date TEXT NOT NULL,
                start_time TEXT DEFAULT '',
                end_time TEXT DEFAULT '',
                total_hours REAL DEFAULT 0.0,
                status TEXT DEFAULT 'Confermato',
                created_at TEXT,
                FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS payments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                worker_id INTEGER,
                week TEXT NOT NULL,
                hours REAL DEFAULT 0.0,
                hourly_rate REAL DEFAULT 0.0,
                total_amount REAL DEFAULT 0.0,
                overtime REAL DEFAULT 0.0,
                status TEXT DEFAULT 'Da Pagare',
                paid_date TEXT,
                method TEXT,
                created_at TEXT,
                FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE
            )
        """)

        # Settings table for server configuration
        conn.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """)

        default_settings = [
            ('host', DEFAULT_SERVER_HOST),
            ('port', str(DEFAULT_SERVER_PORT)),
        ]
        for key, value in default_settings:
            conn.execute("INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?)", (key, value))

        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        logger.error(f"Failed to initialize server database: {e}")
        raise
    finally:
        conn.close()


def get_server_setting(key: str, default=None, db_path: Optional[Union[str, Path]] = None):
    """Get a server setting from the database"""
    conn = _connect(db_path or get_server_db_path())
    try:
        row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return row['value'] if row else default
    except sqlite3.Error as e:
        logger.warning(f"Failed to read server setting {key}: {e}")
        return default
    finally:
        conn.close()


def set_server_setting(key: str, value: str, db_path: Optional[Union[str, Path]] = None):
    """Set a server setting in the database"""
    conn = _connect(db_path or get_server_db_path())
    try:
        conn.execute("""
            INSERT OR REPLACE INTO settings (key, value, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
        """, (key, value))
        conn.commit()
    finally:
        conn.close()


def get_server_config(db_path: Optional[Union[str, Path]] = None) -> dict:
    """Host and port from the settings table, overridden by EDILCHECK_HOST / EDILCHECK_PORT"""
    host = os.getenv('EDILCHECK_HOST') or get_server_setting('host', DEFAULT_SERVER_HOST, db_path)
    port = to_int_optional(os.getenv('EDILCHECK_PORT')) \
        or to_int_optional(get_server_setting('port', None, db_path)) \
        or DEFAULT_SERVER_PORT
    return {'host': host, 'port': port}


def error_response(message: str, status: int):
    return jsonify(ApiResponse(False, error=message).to_dict()), status


def authenticate_request() -> Optional[int]:
    """Resolve the X-User-Email / X-User-Password headers to a user id"""
    email = request.headers.get(EMAIL_HEADER)
    password = request.headers.get(PASSWORD_HEADER)
    if not email or not password:
        logger.debug("Auth failed: credentials headers missing")
        return None

    row = get_db().execute(
        "SELECT id, password_hash FROM users WHERE email = ?", (email,)
    ).fetchone()
    if not row or not check_password_hash(row['password_hash'], password):
        logger.warning(f"Auth failed for {email}")
        return None
    return row['id']


def require_auth(f):
    """Decorator to require authentication"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id = authenticate_request()
        if not user_id:
            return error_response("Unauthorized", 401)
        g.user_id = user_id
        return f(*args, **kwargs)
    return decorated_function


@api.app_errorhandler(400)
def bad_request(error):
    return error_response("Bad request", 400)


@api.app_errorhandler(404)
def not_found(error):
    return error_response("Not found", 404)


@api.app_errorhandler(405)
def method_not_allowed(error):
    return error_response("Method not allowed", 405)


@api.app_errorhandler(500)
def internal_error(error):
    logger.error(f"Internal error: {error}")
    return error_response("Internal server error", 500)


# Health check endpoint
@api.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint"""
    return jsonify(ApiResponse(True, data={
        "status": "healthy",
        "version": edilcheck.__VERSION__,
        "timestamp": format_datetime(datetime.now())
    }).to_dict())


# Auth endpoints
def _read_credentials():
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip()
    password = data.get('password') or ''
    return email, password


@api.route('/auth/register', methods=['POST'])
def register():
    """Create an account"""
    email, password = _read_credentials()
    if not email or not password:
        return error_response("Email and password are required", 400)

    db = get_db()
    try:
        cursor = db.execute(
            "INSERT INTO users (email, password_hash, created_at) VALUES (?, ?, ?)",
            (email, generate_password_hash(password), now_iso())
        )
        db.commit()
    except sqlite3.IntegrityError:
        db.rollback()
        return error_response("Email already registered", 409)

    logger.info(f"Registered user {email}")
    return jsonify(ApiResponse(True, data={
        "user": {"id": cursor.lastrowid, "email": email}
    }).to_dict()), 201


@api.route('/auth/login', methods=['POST'])
def login():
    """Verify credentials"""
    email, password = _read_credentials()
    if not email or not password:
        return error_response("Email and password are required", 400)

    row = get_db().execute(
        "SELECT id, email, password_hash FROM users WHERE email = ?", (email,)
    ).fetchone()
    if not row or not check_password_hash(row['password_hash'], password):
        return error_response("Invalid credentials", 401)

    logger.info(f"User {email} logged in")
    return jsonify(ApiResponse(True, data={
        "user": {"id": row['id'], "email": row['email']}
    }).to_dict())


@api.route('/auth/logout', methods=['POST'])
def logout():
    """Stateless; credentials live on the client"""
    return jsonify(ApiResponse(True, data={"message": "Logged out"}).to_dict())


@api.route('/auth/me', methods=['GET'])
@require_auth
def current_user():
    row = get_db().execute("SELECT id, email, created_at FROM users WHERE id = ?", (g.user_id,)).fetchone()
    return jsonify(ApiResponse(True, data={"user": dict(row)}).to_dict())


# Generic record handling
def _columns(record_type) -> list:
    """Writable columns of a table (record attributes minus id)"""
    return [f.name for f in fields(record_type) if f.name != 'id']


def _fetch(table: str, response_type, record_id: Optional[int] = None) -> list:
    query = SELECT_QUERIES[table]
    params = [g.user_id]
    if record_id is not None:
        query += f" AND {TABLE_ALIASES[table]}id = ?"
        params.append(record_id)
    query += f" ORDER BY {TABLE_ALIASES[table]}id"
    rows = get_db().execute(query, params).fetchall()
    return [response_type.from_dict(dict(row)) for row in rows]


def _record_values(record_type, data: dict) -> dict:
    values = record_type.normalize_fields(data)
    values.pop('id', None)
    return values


def list_records(resource: str):
    table, _, response_type = RESOURCES[resource]
    try:
        records = _fetch(table, response_type)
    except sqlite3.Error as e:
        logger.error(f"Error fetching {resource}: {e}")
        return error_response(str(e), 500)
    return jsonify(ApiResponse(True, data=[r.to_dict() for r in records]).to_dict())


def create_record(resource: str):
    table, record_type, response_type = RESOURCES[resource]
    data = request.get_json(silent=True)
    if not data or not isinstance(data, dict):
        return error_response("No data provided", 400)

    values = _record_values(record_type, data)
    record = record_type(**values)
    if not record.created_at:
        record.created_at = now_iso()

    columns = _columns(record_type)
    db = get_db()
    try:
        cursor = db.execute(
            f"INSERT INTO {table} (user_id, {', '.join(columns)}) "
            f"VALUES (?, {', '.join('?' for _ in columns)})",
            [g.user_id] + [getattr(record, c) for c in columns]
        )
        db.commit()
    except sqlite3.IntegrityError as e:
        db.rollback()
        return error_response(f"Invalid {resource} data: {e}", 400)
    except sqlite3.Error as e:
        db.rollback()
        logger.error(f"Error creating {resource}: {e}")
        return error_response(str(e), 500)

    created = _fetch(table, response_type, cursor.lastrowid)[0]
    logger.debug(f"Created {resource} {created.id} for user {g.user_id}")
    return jsonify(ApiResponse(True, data=created.to_dict()).to_dict()), 201


def update_record(resource: str, record_id: int):
    """Merge the supplied fields into the caller's record"""
    table, record_type, response_type = RESOURCES[resource]
    data = request.get_json(silent=True)
    if not data or not isinstance(data, dict):
        return error_response("No data provided", 400)

    values = _record_values(record_type, data)
    if not values:
        return error_response("No fields to update", 400)

    db = get_db()
    try:
        cursor = db.execute(
            f"UPDATE {table} SET {', '.join(f'{c} = ?' for c in values)} WHERE id = ? AND user_id = ?",
            list(values.values()) + [record_id, g.user_id]
        )
        db.commit()
    except sqlite3.IntegrityError as e:
        db.rollback()
        return error_response(f"Invalid {resource} data: {e}", 400)
    except sqlite3.Error as e:
        db.rollback()
        logger.error(f"Error updating {resource} {record_id}: {e}")
        return error_response(str(e), 500)

    if cursor.rowcount == 0:
        return error_response(f"{resource} {record_id} not found", 404)

    updated = _fetch(table, response_type, record_id)[0]
    return jsonify(ApiResponse(True, data=updated.to_dict()).to_dict())


def delete_record(resource: str, record_id: int, cascades=()):
    """Delete the caller's record and its dependents ((table, column) pairs)"""
    table = RESOURCES[resource][0]
    db = get_db()
    try:
        cursor = db.execute(f"DELETE FROM {table} WHERE id = ? AND user_id = ?", (record_id, g.user_id))
        if cursor.rowcount:
            for dependent, column in cascades:
                db.execute(f"DELETE FROM {dependent} WHERE {column} = ? AND user_id = ?", (record_id, g.user_id))
        db.commit()
    except sqlite3.Error as e:
        db.rollback()
        logger.error(f"Error deleting {resource} {record_id}: {e}")
        return error_response(str(e), 500)

    return jsonify(ApiResponse(True, data={"deleted": cursor.rowcount > 0}).to_dict())


# Worker endpoints
@api.route('/workers', methods=['GET'])
@require_auth
def get_workers():
    return list_records('workers')


@api.route('/workers', methods=['POST'])
@require_auth
def create_worker():
    return create_record('workers')


@api.route('/workers/<int:worker_id>', methods=['PUT'])
@require_auth
def update_worker(worker_id):
    return update_record('workers', worker_id)


@api.route('/workers/<int:worker_id>', methods=['DELETE'])
@require_auth
def delete_worker(worker_id):
    return delete_record('workers', worker_id,
                         cascades=(('time_entries', 'worker_id'), ('payments', 'worker_id')))


# Site endpoints
@api.route('/sites', methods=['GET'])
@require_auth
def get_sites():
    return list_records('sites')


@api.route('/sites', methods=['POST'])
@require_auth
def create_site():
    return create_record('sites')


@api.route('/sites/<int:site_id>', methods=['PUT'])
@require_auth
def update_site(site_id):
    return update_record('sites', site_id)


@api.route('/sites/<int:site_id>', methods=['DELETE'])
@require_auth
def delete_site(site_id):
    return delete_record('sites', site_id, cascades=(('time_entries', 'site_id'),))


@api.route('/sites/<int:site_id>/workers', methods=['GET'])
@require_auth
def get_site_workers(site_id):
    """Workers with at least one time entry on the site"""
    rows = get_db().execute("""
        SELECT DISTINCT w.* FROM workers w
        JOIN time_entries te ON te.worker_id = w.id AND te.user_id = w.user_id
        WHERE te.site_id = ? AND w.user_id = ?
        ORDER BY w.id
    """, (site_id, g.user_id)).fetchall()
    workers = [Worker.from_dict(dict(row)).to_dict() for row in rows]
    return jsonify(ApiResponse(True, data=workers).to_dict())


# Time entry endpoints
@api.route('/time-entries', methods=['GET'])
@require_auth
def get_time_entries():
    return list_records('time-entries')


@api.route('/time-entries', methods=['POST'])
@require_auth
def create_time_entry():
    return create_record('time-entries')


@api.route('/time-entries/<int:entry_id>', methods=['PUT'])
@require_auth
def update_time_entry(entry_id):
    return update_record('time-entries', entry_id)


@api.route('/time-entries/<int:entry_id>', methods=['DELETE'])
@require_auth
def delete_time_entry(entry_id):
    return delete_record('time-entries', entry_id)


# Payment endpoints
@api.route('/payments', methods=['GET'])
@require_auth
def get_payments():
    return list_records('payments')


@api.route('/payments', methods=['POST'])
@require_auth
def create_payment():
    return create_record('payments')


@api.route('/payments/<int:payment_id>', methods=['PUT'])
@require_auth
def update_payment(payment_id):
    return update_record('payments', payment_id)


@api.route('/payments/<int:payment_id>', methods=['DELETE'])
@require_auth
def delete_payment(payment_id):
    return delete_record('payments', payment_id)


# Dashboard
@api.route('/dashboard/stats', methods=['GET'])
@require_auth
def dashboard_stats():
    """Active workers/sites, pending payments and hours logged on the server's today"""
    db = get_db()

    def count(table, status):
        row = db.execute(
            f"SELECT COUNT(*) AS count FROM {table} WHERE user_id = ? AND status = ?",
            (g.user_id, status)
        ).fetchone()
        return row['count']

    today_hours = db.execute(
        "SELECT COALESCE(SUM(total_hours), 0) AS total FROM time_entries WHERE user_id = ? AND date = ?",
        (g.user_id, today_local())
    ).fetchone()['total']

    stats = DashboardStats(
        active_workers=count('workers', WorkerStatus.ACTIVE.value),
        active_sites=count('sites', SiteStatus.ACTIVE.value),
        pending_payments=count('payments', PaymentStatus.DUE.value),
        today_hours=float(today_hours),
    )
    return jsonify(ApiResponse(True, data=stats.to_dict()).to_dict())


def create_app(db_path: Optional[Union[str, Path]] = None) -> Flask:
    """Build the backup server app around a SQLite file"""
    app = Flask(__name__)
    CORS(app)  # Enable CORS for all routes

    app.config['DATABASE'] = str(db_path or get_server_db_path())
    init_server_db(app.config['DATABASE'])

    app.register_blueprint(api)
    app.teardown_appcontext(close_db)
    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None, db_path=None):
    """Run server with Waitress WSGI server (blocks until stopped)"""
    from waitress import create_server

    app = create_app(db_path)
    config = get_server_config(app.config['DATABASE'])
    host = host or config['host']
    port = port or config['port']

    logger.info(f"Starting Edil-Check backup server on {host}:{port}")
    logger.info(f"Database: {app.config['DATABASE']}")

    server = create_server(
        app,
        host=host,
        port=port,
        threads=WAITRESS_THREADS,
        channel_timeout=WAITRESS_CHANNEL_TIMEOUT,
        cleanup_interval=WAITRESS_CLEANUP_INTERVAL,
    )
    try:
        server.run()
    except KeyboardInterrupt:
        logger.info("Server stopped")
    finally:
        server.close()


if __name__ == '__main__':
    run_server()
