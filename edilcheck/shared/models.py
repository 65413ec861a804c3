"""
Shared data models for the Edil-Check data layer.
Used by the local store, the remote client, the sync engine and the backup server.

Records serialize with the camelCase field names used by the stored
container and the backup API (``hourlyRate``, ``workerId`` ...), while
``created_at`` keeps its snake_case name.
"""

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from edilcheck.shared.utils import to_float, to_int_optional


class WorkerStatus(Enum):
    ACTIVE = "Attivo"
    ON_LEAVE = "In Permesso"
    INACTIVE = "Inattivo"


class SiteStatus(Enum):
    ACTIVE = "Attivo"
    PAUSED = "In Pausa"
    COMPLETED = "Completato"


class TimeEntryStatus(Enum):
    CONFIRMED = "Confermato"
    PENDING = "In Attesa"


class PaymentStatus(Enum):
    DUE = "Da Pagare"
    PAID = "Pagato"


class SyncState(Enum):
    """Status of the most recent sync, backup or restore operation"""
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"
    SUCCESS = "success"


class DatabaseMode(Enum):
    """Local-only never touches the network; local-with-backup enables backup/restore/sync"""
    LOCAL_ONLY = "local-only"
    LOCAL_WITH_BACKUP = "local-with-backup"

    @classmethod
    def parse(cls, value: Optional[str]) -> 'DatabaseMode':
        """Parse a stored mode, falling back to local-only"""
        for mode in cls:
            if mode.value == value:
                return mode
        # Older settings used 'local' / 'remote'
        if value == 'remote':
            return cls.LOCAL_WITH_BACKUP
        return cls.LOCAL_ONLY


class _Record:
    """Camel-case (de)serialization shared by the four record kinds.

    Subclasses list their serialized names in ``WIRE_NAMES`` (attribute ->
    wire name) and their numeric attributes in ``INT_FIELDS`` / ``FLOAT_FIELDS``.
    """

    WIRE_NAMES: Dict[str, str] = {}
    INT_FIELDS: Tuple[str, ...] = ('id',)
    FLOAT_FIELDS: Tuple[str, ...] = ()
    # Fields produced by the read-side join, never stored or sent
    JOINED_FIELDS: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase dictionary used for storage and the API"""
        data = {}
        for attr, value in asdict(self).items():
            data[self.WIRE_NAMES.get(attr, attr)] = value
        return data

    def to_payload(self) -> Dict[str, Any]:
        """Writable fields only: no id, no joined names, created_at when known"""
        data = self.to_dict()
        data.pop('id', None)
        for attr in self.JOINED_FIELDS:
            data.pop(self.WIRE_NAMES.get(attr, attr), None)
        if not data.get('created_at'):
            data.pop('created_at', None)
        return data

    def stored(self):
        """The stored shape of this record (drops joined fields)"""
        return self

    @classmethod
    def normalize_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        """Map camelCase or snake_case keys onto attribute names, coercing numbers.

        Unknown keys are dropped, so API rows with extra columns
        (``user_id``...) are accepted.
        """
        by_name = {}
        for f in fields(cls):
            by_name[f.name] = f.name
            by_name[cls.WIRE_NAMES.get(f.name, f.name)] = f.name

        result = {}
        for key, value in data.items():
            attr = by_name.get(key)
            if attr is None:
                continue
            if attr in cls.INT_FIELDS:
                value = to_int_optional(value)
            elif attr in cls.FLOAT_FIELDS:
                value = to_float(value)
            result[attr] = value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        """Create a record from a stored or API dictionary"""
        return cls(**cls.normalize_fields(data))


@dataclass
class Worker(_Record):
    """A crew member; matched across stores by email"""
    id: Optional[int] = None
    name: str = ""
    role: str = ""
    phone: str = ""
    email: str = ""
    status: str = WorkerStatus.ACTIVE.value
    hourly_rate: float = 0.0
    created_at: Optional[str] = None

    WIRE_NAMES = {'hourly_rate': 'hourlyRate'}
    FLOAT_FIELDS = ('hourly_rate',)

    def business_key(self) -> Tuple:
        return (self.email,)


@dataclass
class Site(_Record):
    """A job site; matched across stores by name and address"""
    id: Optional[int] = None
    name: str = ""
    owner: str = ""
    address: str = ""
    status: str = SiteStatus.ACTIVE.value
    start_date: str = ""
    estimated_end: str = ""
    created_at: Optional[str] = None

    WIRE_NAMES = {'start_date': 'startDate', 'estimated_end': 'estimatedEnd'}

    def business_key(self) -> Tuple:
        return (self.name, self.address)


@dataclass
class TimeEntry(_Record):
    """Hours worked by one worker on one site on one day"""
    id: Optional[int] = None
    worker_id: Optional[int] = None
    site_id: Optional[int] = None
    date: str = ""
    start_time: str = ""
    end_time: str = ""
    total_hours: float = 0.0
    status: str = TimeEntryStatus.CONFIRMED.value
    created_at: Optional[str] = None

    WIRE_NAMES = {
        'worker_id': 'workerId',
        'site_id': 'siteId',
        'start_time': 'startTime',
        'end_time': 'endTime',
        'total_hours': 'totalHours',
    }
    INT_FIELDS = ('id', 'worker_id', 'site_id')
    FLOAT_FIELDS = ('total_hours',)

    def business_key(self) -> Tuple:
        return (self.worker_id, self.date, self.start_time)


@dataclass
class Payment(_Record):
    """Weekly pay owed to (or paid to) a worker"""
    id: Optional[int] = None
    worker_id: Optional[int] = None
    week: str = ""
    hours: float = 0.0
    hourly_rate: float = 0.0
    total_amount: float = 0.0
    overtime: float = 0.0
    status: str = PaymentStatus.DUE.value
    paid_date: Optional[str] = None
    method: Optional[str] = None
    created_at: Optional[str] = None

    WIRE_NAMES = {
        'worker_id': 'workerId',
        'hourly_rate': 'hourlyRate',
        'total_amount': 'totalAmount',
        'paid_date': 'paidDate',
    }
    INT_FIELDS = ('id', 'worker_id')
    FLOAT_FIELDS = ('hours', 'hourly_rate', 'total_amount', 'overtime')

    def business_key(self) -> Tuple:
        return (self.worker_id, self.week)


UNKNOWN_NAME = "Unknown"


@dataclass
class TimeEntryView(TimeEntry):
    """Time entry joined with its worker and site names"""
    worker_name: str = UNKNOWN_NAME
    site_name: str = UNKNOWN_NAME

    WIRE_NAMES = {**TimeEntry.WIRE_NAMES, 'worker_name': 'workerName', 'site_name': 'siteName'}
    JOINED_FIELDS = ('worker_name', 'site_name')

    def stored(self) -> TimeEntry:
        return TimeEntry(**{f.name: getattr(self, f.name) for f in fields(TimeEntry)})


@dataclass
class PaymentView(Payment):
    """Payment joined with its worker name"""
    worker_name: str = UNKNOWN_NAME

    WIRE_NAMES = {**Payment.WIRE_NAMES, 'worker_name': 'workerName'}
    JOINED_FIELDS = ('worker_name',)

    def stored(self) -> Payment:
        return Payment(**{f.name: getattr(self, f.name) for f in fields(Payment)})


def _names_by_id(records) -> Dict[int, str]:
    return {record.id: record.name for record in records}


def enrich_time_entry(entry: TimeEntry, workers: List[Worker], sites: List[Site]) -> TimeEntryView:
    """Read-side join of a time entry with worker and site names"""
    base = {f.name: getattr(entry, f.name) for f in fields(TimeEntry)}
    return TimeEntryView(
        **base,
        worker_name=_names_by_id(workers).get(entry.worker_id) or UNKNOWN_NAME,
        site_name=_names_by_id(sites).get(entry.site_id) or UNKNOWN_NAME,
    )


def enrich_payment(payment: Payment, workers: List[Worker]) -> PaymentView:
    """Read-side join of a payment with its worker name"""
    base = {f.name: getattr(payment, f.name) for f in fields(Payment)}
    return PaymentView(**base, worker_name=_names_by_id(workers).get(payment.worker_id) or UNKNOWN_NAME)


# Collection name (as stored in the container) -> record type
COLLECTIONS = ('workers', 'sites', 'timeEntries', 'payments')
RECORD_TYPES = {
    'workers': Worker,
    'sites': Site,
    'timeEntries': TimeEntry,
    'payments': Payment,
}

DEFAULT_NEXT_ID = 100


@dataclass
class DatabaseData:
    """Everything stored for one account: four collections and the shared id counter"""
    workers: List[Worker] = field(default_factory=list)
    sites: List[Site] = field(default_factory=list)
    time_entries: List[TimeEntry] = field(default_factory=list)
    payments: List[Payment] = field(default_factory=list)
    next_id: int = DEFAULT_NEXT_ID

    _ATTRS = {
        'workers': 'workers',
        'sites': 'sites',
        'timeEntries': 'time_entries',
        'payments': 'payments',
    }

    def collection(self, name: str) -> list:
        """Get a collection by its stored name ('workers', 'timeEntries' ...)"""
        return getattr(self, self._ATTRS[name])

    def set_collection(self, name: str, records: list):
        setattr(self, self._ATTRS[name], records)

    def allocate_id(self) -> int:
        """Hand out the next id from the shared counter"""
        new_id = self.next_id
        self.next_id += 1
        return new_id

    def record_count(self) -> int:
        return sum(len(self.collection(name)) for name in COLLECTIONS)

    def to_dict(self) -> Dict[str, Any]:
        data = {name: [r.stored().to_dict() for r in self.collection(name)] for name in COLLECTIONS}
        data['nextId'] = self.next_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DatabaseData':
        container = cls(next_id=to_int_optional(data.get('nextId')) or DEFAULT_NEXT_ID)
        for name in COLLECTIONS:
            record_type = RECORD_TYPES[name]
            container.set_collection(name, [record_type.from_dict(row) for row in data.get(name) or []])
        return container


@dataclass
class DashboardStats:
    active_workers: int = 0
    active_sites: int = 0
    pending_payments: int = 0
    today_hours: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'activeWorkers': self.active_workers,
            'activeSites': self.active_sites,
            'pendingPayments': self.pending_payments,
            'todayHours': self.today_hours,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DashboardStats':
        return cls(
            active_workers=to_int_optional(data.get('activeWorkers')) or 0,
            active_sites=to_int_optional(data.get('activeSites')) or 0,
            pending_payments=to_int_optional(data.get('pendingPayments')) or 0,
            today_hours=to_float(data.get('todayHours')),
        )


@dataclass
class SyncResult:
    """Aggregate counts of one reconciliation pass.

    ``conflicts`` is reserved; every divergence is resolved by timestamp so
    the pass never increments it.
    """
    success: bool = True
    local_to_remote: int = 0
    remote_to_local: int = 0
    conflicts: int = 0
    failed: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'localToRemote': self.local_to_remote,
            'remoteToLocal': self.remote_to_local,
            'conflicts': self.conflicts,
            'failed': self.failed,
            'error': self.error,
        }


@dataclass
class BackupResult:
    """Outcome of a one-way backup or restore"""
    operation: str
    success: bool = True
    items_processed: int = 0
    conflicts: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'operation': self.operation,
            'success': self.success,
            'itemsProcessed': self.items_processed,
            'conflicts': self.conflicts,
            'error': self.error,
        }


@dataclass
class SyncStatus:
    """Status snapshot published to observers"""
    is_remote_available: bool = False
    status: str = SyncState.IDLE.value
    last_sync: Optional[str] = None
    last_backup: Optional[str] = None
    last_restore: Optional[str] = None
    local_count: int = 0
    remote_count: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ApiResponse:
    """Standard API response wrapper"""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RemoteConfig:
    """Backup server location with validation"""
    host: str = "localhost"
    port: int = 3002
    timeout: int = 10  # seconds

    def __post_init__(self) -> None:
        if not self.host or not str(self.host).strip():
            raise ValueError("Remote host cannot be empty")
        self.host = str(self.host).strip()

        port = to_int_optional(self.port)
        if port is None or not (1 <= port <= 65535):
            raise ValueError(f"Port must be between 1 and 65535, got {self.port}")
        self.port = port

        if not (1 <= self.timeout <= 120):
            raise ValueError(f"Timeout must be between 1 and 120 seconds, got {self.timeout}")

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RemoteConfig':
        known = {k: v for k, v in data.items() if k in ('host', 'port', 'timeout')}
        return cls(**known)
