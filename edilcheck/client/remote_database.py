"""
HTTP client for the Edil-Check backup server.

Mirrors the local store's CRUD surface. Every authenticated request carries the
account credentials in the X-User-Email / X-User-Password headers; there is no
session or bearer token.
"""

from typing import Any, Dict, List, Optional

import requests

from edilcheck.shared.logging_config import get_remote_logger
from edilcheck.shared.models import (RECORD_TYPES, DashboardStats, Payment,
                                     PaymentView, RemoteConfig, Site,
                                     TimeEntry, TimeEntryView, Worker)

logger = get_remote_logger()

EMAIL_HEADER = 'X-User-Email'
PASSWORD_HEADER = 'X-User-Password'

ENDPOINTS = {
    'workers': '/workers',
    'sites': '/sites',
    'timeEntries': '/time-entries',
    'payments': '/payments',
}

# Records are parsed into the joined view types where the server sends names
RESPONSE_TYPES = {
    'workers': Worker,
    'sites': Site,
    'timeEntries': TimeEntryView,
    'payments': PaymentView,
}


class RemoteDatabaseError(Exception):
    """Network failure or non-2xx response from the backup server"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class CredentialsNotSetError(RemoteDatabaseError):
    """A data call was attempted before set_credentials()"""

    def __init__(self):
        super().__init__("Credentials not set")


class RemoteDatabase:
    """Client for one backup server (http://host:port)"""

    def __init__(self, config: Optional[RemoteConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or RemoteConfig()
        self._credentials: Optional[Dict[str, str]] = None

        self._session = session or requests.Session()
        self._session.headers.update({
            'Content-Type': 'application/json',
            'User-Agent': 'EdilCheck-Client/1.0'
        })

    @property
    def base_url(self) -> str:
        return self.config.base_url

    # Credentials
    def set_credentials(self, email: str, password: str):
        self._credentials = {'email': email, 'password': password}

    def clear_credentials(self):
        self._credentials = None

    @property
    def has_credentials(self) -> bool:
        return self._credentials is not None

    @property
    def email(self) -> Optional[str]:
        return self._credentials['email'] if self._credentials else None

    def _require_credentials(self):
        if not self._credentials:
            raise CredentialsNotSetError()

    # Transport
    def _error_from_response(self, response: requests.Response) -> RemoteDatabaseError:
        """Server error text first, then the reason phrase, then the bare status"""
        message = None
        try:
            body = response.json()
            if isinstance(body, dict):
                message = body.get('error') or body.get('message')
            message = message or f"HTTP {response.status_code}"
        except ValueError:
            message = response.reason or f"HTTP {response.status_code}"
        return RemoteDatabaseError(message, response.status_code)

    def _request(self, method: str, endpoint: str, payload: Optional[Dict[str, Any]] = None,
                 authenticated: bool = True) -> Any:
        """Send one request and return the unwrapped response data"""
        if authenticated:
            self._require_credentials()

        url = f"{self.base_url}{endpoint}"
        headers = {}
        if self._credentials:
            headers[EMAIL_HEADER] = self._credentials['email']
            headers[PASSWORD_HEADER] = self._credentials['password']

        logger.debug(f"Remote API: {method} {url}")
        try:
            response = self._session.request(
                method,
                url,
                json=payload,
                headers=headers,
                timeout=self.config.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"Remote API transport error on {method} {url}: {e}")
            raise RemoteDatabaseError(f"Cannot connect to server {self.config.host}:{self.config.port}")

        logger.debug(f"Response: {response.status_code} {response.reason}")

        if not response.ok:
            error = self._error_from_response(response)
            logger.warning(f"Remote API error on {method} {endpoint}: {error.message}")
            raise error

        try:
            body = response.json()
        except ValueError:
            raise RemoteDatabaseError("Invalid response from server", response.status_code)

        # Unwrap the {success, data, error} envelope
        if isinstance(body, dict) and 'success' in body:
            if not body.get('success'):
                raise RemoteDatabaseError(body.get('error') or "Request failed", response.status_code)
            return body.get('data')
        return body

    def test_connection(self) -> bool:
        """Liveness check against /health; never raises"""
        try:
            self._request('GET', '/health', authenticated=False)
            return True
        except Exception as e:
            logger.debug(f"Connection check failed: {e}")
            return False

    # Auth
    def _auth(self, endpoint: str, email: str, password: str, failure: str) -> Dict[str, Any]:
        try:
            data = self._request('POST', endpoint, {'email': email, 'password': password},
                                 authenticated=False)
        except RemoteDatabaseError as e:
            return {'success': False, 'error': e.message or failure, 'user': None}

        self.set_credentials(email, password)
        user = data.get('user') if isinstance(data, dict) else None
        return {'success': True, 'error': None, 'user': user}

    def register(self, email: str, password: str) -> Dict[str, Any]:
        """Create an account on the server; sets credentials on success"""
        return self._auth('/auth/register', email, password, "Registration failed")

    def login(self, email: str, password: str) -> Dict[str, Any]:
        """Verify credentials with the server; sets them on success"""
        return self._auth('/auth/login', email, password, "Login failed")

    def logout(self):
        try:
            self._request('POST', '/auth/logout', authenticated=False)
        except RemoteDatabaseError as e:
            logger.error(f"Logout error: {e}")
        self.clear_credentials()

    # Generic collection access
    @staticmethod
    def _payload(collection: str, values) -> Dict[str, Any]:
        """Writable wire fields from a record or a (partial) dict"""
        if not isinstance(values, dict):
            return values.stored().to_payload()

        record_type = RECORD_TYPES[collection]
        normalized = record_type.normalize_fields(values)
        normalized.pop('id', None)
        return {record_type.WIRE_NAMES.get(attr, attr): value for attr, value in normalized.items()}

    @staticmethod
    def _parse_list(collection: str, data) -> list:
        if isinstance(data, dict):
            data = data.get(collection) or []
        response_type = RESPONSE_TYPES[collection]
        return [response_type.from_dict(row) for row in data or []]

    def get_records(self, collection: str) -> list:
        return self._parse_list(collection, self._request('GET', ENDPOINTS[collection]))

    def add_record(self, collection: str, values):
        data = self._request('POST', ENDPOINTS[collection], self._payload(collection, values))
        return RESPONSE_TYPES[collection].from_dict(data or {})

    def update_record(self, collection: str, record_id: int, values):
        data = self._request('PUT', f"{ENDPOINTS[collection]}/{record_id}", self._payload(collection, values))
        return RESPONSE_TYPES[collection].from_dict(data or {})

    def delete_record(self, collection: str, record_id: int):
        self._request('DELETE', f"{ENDPOINTS[collection]}/{record_id}")

    # Workers
    def get_workers(self) -> List[Worker]:
        return self.get_records('workers')

    def add_worker(self, worker) -> Worker:
        return self.add_record('workers', worker)

    def update_worker(self, worker_id: int, worker) -> Worker:
        return self.update_record('workers', worker_id, worker)

    def delete_worker(self, worker_id: int):
        self.delete_record('workers', worker_id)

    # Sites
    def get_sites(self) -> List[Site]:
        return self.get_records('sites')

    def add_site(self, site) -> Site:
        return self.add_record('sites', site)

    def update_site(self, site_id: int, site) -> Site:
        return self.update_record('sites', site_id, site)

    def delete_site(self, site_id: int):
        self.delete_record('sites', site_id)

    # Time entries
    def get_time_entries(self) -> List[TimeEntryView]:
        return self.get_records('timeEntries')

    def add_time_entry(self, entry) -> TimeEntry:
        return self.add_record('timeEntries', entry)

    def update_time_entry(self, entry_id: int, entry) -> TimeEntry:
        return self.update_record('timeEntries', entry_id, entry)

    def delete_time_entry(self, entry_id: int):
        self.delete_record('timeEntries', entry_id)

    # Payments
    def get_payments(self) -> List[PaymentView]:
        return self.get_records('payments')

    def add_payment(self, payment) -> Payment:
        return self.add_record('payments', payment)

    def update_payment(self, payment_id: int, payment) -> Payment:
        return self.update_record('payments', payment_id, payment)

    def delete_payment(self, payment_id: int):
        self.delete_record('payments', payment_id)

    # Dashboard
    def get_dashboard_stats(self) -> DashboardStats:
        """Server-side stats; zeros when the server cannot answer"""
        self._require_credentials()
        try:
            return DashboardStats.from_dict(self._request('GET', '/dashboard/stats') or {})
        except RemoteDatabaseError as e:
            logger.error(f"Failed to get dashboard stats: {e}")
            return DashboardStats()
