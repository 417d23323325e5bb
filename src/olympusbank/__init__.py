"""Family Mount Olympus Bank: family pocket-money state with local and remote sync."""

from .account import FamilyAccount
from .channel import ChangeChannel, ChangeEvent
from .chores import ChoreApproval, ChoreBoard
from .exceptions import (
    IncorrectPasswordError,
    InsufficientFundsError,
    NotFoundError,
    OlympusBankError,
    PersistenceError,
    RemoteConnectionError,
    StructuralError,
    ValidationError,
)
from .local_store import AuthState, LocalStore
from .models import (
    ApprovalType,
    Chore,
    ChoreFrequency,
    FamilyRecord,
    Goal,
    PendingApproval,
    Role,
    Settings,
    Transaction,
    TransactionType,
    default_record,
    parse_record,
    validate,
)
from .ops import StructuredLogger, SyncHealth
from .reconciler import Bootstrap, Reconciler, RecordSource
from .remote_store import MemoryRemoteStore, RemoteStore, SQLRemoteStore, create_remote_store
from .scheduler import SyncScheduler, SyncTrigger
from .service import BankEvent, FamilyBank, Result

__all__ = [
    "ApprovalType",
    "AuthState",
    "BankEvent",
    "Bootstrap",
    "ChangeChannel",
    "ChangeEvent",
    "Chore",
    "ChoreApproval",
    "ChoreBoard",
    "ChoreFrequency",
    "FamilyAccount",
    "FamilyBank",
    "FamilyRecord",
    "Goal",
    "IncorrectPasswordError",
    "InsufficientFundsError",
    "LocalStore",
    "MemoryRemoteStore",
    "NotFoundError",
    "OlympusBankError",
    "PendingApproval",
    "PersistenceError",
    "Reconciler",
    "RecordSource",
    "RemoteConnectionError",
    "RemoteStore",
    "Result",
    "Role",
    "SQLRemoteStore",
    "Settings",
    "StructuralError",
    "StructuredLogger",
    "SyncHealth",
    "SyncScheduler",
    "SyncTrigger",
    "Transaction",
    "TransactionType",
    "ValidationError",
    "create_remote_store",
    "default_record",
    "parse_record",
    "validate",
]
