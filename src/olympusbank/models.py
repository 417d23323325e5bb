"""Record model shared by every storage backend and the family service.

A :class:`FamilyRecord` is the single document persisted per family. It is
serialised with camelCase keys so the local copy, the remote document and
exported snapshots all share one layout. Keys the model does not know about
are carried in ``extra`` and written back untouched.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
from uuid import uuid4

from .exceptions import ValidationError
from .money import ZERO, require_positive, to_decimal, to_float

DATA_VERSION = 1
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

REQUIRED_RECORD_KEYS = ("balance", "transactions", "chores", "pendingTransactions", "settings")


class TransactionType(str, Enum):
    """Enumerates the supported types of ledger entries."""

    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    CHORE = "chore"
    GOAL = "goal"
    INTEREST = "interest"
    SYSTEM = "system"


# ``system`` entries are only written internally (history clearing).
SUBMITTABLE_TYPES = frozenset(
    {
        TransactionType.DEPOSIT,
        TransactionType.WITHDRAWAL,
        TransactionType.CHORE,
        TransactionType.GOAL,
        TransactionType.INTEREST,
    }
)
CREDIT_TYPES = frozenset({TransactionType.DEPOSIT, TransactionType.CHORE, TransactionType.INTEREST})
DEBIT_TYPES = frozenset({TransactionType.WITHDRAWAL})
REASON_REQUIRED_TYPES = frozenset({TransactionType.DEPOSIT, TransactionType.WITHDRAWAL})


class ChoreFrequency(str, Enum):
    """How often a chore is expected to be done. Descriptive only."""

    OCCURRENCE = "occurrence"
    DAY = "day"
    WEEK = "week"


class ApprovalType(str, Enum):
    TRANSACTION = "transaction"
    CHORE = "chore"


class Role(str, Enum):
    """Signed-in household member: the parent (Zeus) or the child (Hermes)."""

    PARENT = "parent"
    CHILD = "child"


GOAL_ICONS: Dict[str, tuple[str, str]] = {
    "default": ("Treasure", "\U0001f4b0"),
    "toy": ("Toy", "\U0001f3ae"),
    "book": ("Book", "\U0001f4da"),
    "trip": ("Trip", "\U0001f697"),
    "gift": ("Gift", "\U0001f381"),
    "tech": ("Tech", "\U0001f4f1"),
    "clothes": ("Clothes", "\U0001f455"),
    "sports": ("Sports", "⚽"),
}


# ---------------------------------------------------------------------------
# Timestamp and identifier helpers
# ---------------------------------------------------------------------------
def utcnow() -> datetime:
    """Return the current UTC time truncated to millisecond precision."""

    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (``Z`` suffix allowed); invalid input gives ``None``."""

    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def format_timestamp(moment: Optional[datetime]) -> Optional[str]:
    if moment is None:
        return None
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_id() -> str:
    return uuid4().hex


def _extra(payload: Mapping[str, Any], known: frozenset[str]) -> Dict[str, Any]:
    return {key: copy.deepcopy(value) for key, value in payload.items() if key not in known}


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise TypeError(f"Expected a string, got {type(value)!r}")
    return value


def _rate(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise TypeError("Interest rate must be numeric.")
    try:
        rate = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid interest rate: {value!r}") from exc
    if not rate.is_finite():
        raise ValueError("Interest rate must be finite.")
    return rate


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------
_TRANSACTION_KEYS = frozenset(
    {"id", "type", "amount", "date", "reason", "description", "pending", "approvedDate", "choreId", "goalId"}
)


@dataclass(slots=True)
class Transaction:
    """A single ledger entry, either posted or awaiting approval."""

    id: str
    type: TransactionType
    amount: Decimal
    date: Optional[datetime] = None
    reason: Optional[str] = None
    description: Optional[str] = None
    pending: Optional[bool] = None
    approved_date: Optional[datetime] = None
    chore_id: Optional[str] = None
    goal_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.type = TransactionType(self.type)
        self.amount = to_decimal(self.amount)

    @property
    def is_pending(self) -> bool:
        return bool(self.pending)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(copy.deepcopy(self.extra))
        payload.update(
            {
                "id": self.id,
                "type": self.type.value,
                "amount": to_float(self.amount),
                "date": format_timestamp(self.date),
            }
        )
        optional = {
            "reason": self.reason,
            "description": self.description,
            "pending": self.pending,
            "approvedDate": format_timestamp(self.approved_date),
            "choreId": self.chore_id,
            "goalId": self.goal_id,
        }
        payload.update({key: value for key, value in optional.items() if value is not None})
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Transaction":
        pending = payload.get("pending")
        return cls(
            id=str(payload["id"]),
            type=TransactionType(payload["type"]),
            amount=to_decimal(payload.get("amount", 0)),
            date=parse_timestamp(payload.get("date")),
            reason=_optional_str(payload.get("reason")),
            description=_optional_str(payload.get("description")),
            pending=None if pending is None else bool(pending),
            approved_date=parse_timestamp(payload.get("approvedDate")),
            chore_id=_optional_str(payload.get("choreId")),
            goal_id=_optional_str(payload.get("goalId")),
            extra=_extra(payload, _TRANSACTION_KEYS),
        )


_CHORE_KEYS = frozenset(
    {"id", "name", "value", "frequency", "completed", "pending", "eventCount", "completedDate"}
)


@dataclass(slots=True)
class Chore:
    """A recurring reward slot the child can claim and the parent approves."""

    id: str
    name: str
    value: Decimal
    frequency: ChoreFrequency = ChoreFrequency.OCCURRENCE
    completed: bool = False
    pending: bool = False
    event_count: Optional[int] = None
    completed_date: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.value = to_decimal(self.value)
        self.frequency = ChoreFrequency(self.frequency)

    @property
    def reward(self) -> Decimal:
        """Value owed for the submitted completion."""

        return to_decimal(self.value * (self.event_count or 1))

    def clear_submission(self) -> None:
        self.completed = False
        self.pending = False
        self.event_count = None
        self.completed_date = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(copy.deepcopy(self.extra))
        payload.update(
            {
                "id": self.id,
                "name": self.name,
                "value": to_float(self.value),
                "frequency": self.frequency.value,
                "completed": self.completed,
                "pending": self.pending,
            }
        )
        if self.event_count is not None:
            payload["eventCount"] = self.event_count
        if self.completed_date is not None:
            payload["completedDate"] = format_timestamp(self.completed_date)
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Chore":
        event_count = payload.get("eventCount")
        return cls(
            id=str(payload["id"]),
            name=str(payload["name"]),
            value=to_decimal(payload["value"]),
            frequency=ChoreFrequency(payload.get("frequency", ChoreFrequency.OCCURRENCE.value)),
            completed=bool(payload.get("completed", False)),
            pending=bool(payload.get("pending", False)),
            event_count=None if event_count is None else int(event_count),
            completed_date=parse_timestamp(payload.get("completedDate")),
            extra=_extra(payload, _CHORE_KEYS),
        )


_GOAL_KEYS = frozenset(
    {
        "id",
        "name",
        "targetAmount",
        "currentAmount",
        "iconId",
        "iconEmoji",
        "completed",
        "createdDate",
        "completedDate",
    }
)


@dataclass(slots=True)
class Goal:
    """A savings quest funded by contributions from the balance."""

    id: str
    name: str
    target_amount: Decimal
    current_amount: Decimal = ZERO
    icon_id: str = "default"
    icon_emoji: Optional[str] = None
    completed: bool = False
    created_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.target_amount = to_decimal(self.target_amount)
        self.current_amount = to_decimal(self.current_amount)

    @property
    def remaining(self) -> Decimal:
        remainder = self.target_amount - self.current_amount
        return remainder if remainder > ZERO else ZERO

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(copy.deepcopy(self.extra))
        payload.update(
            {
                "id": self.id,
                "name": self.name,
                "targetAmount": to_float(self.target_amount),
                "currentAmount": to_float(self.current_amount),
                "iconId": self.icon_id,
                "completed": self.completed,
                "createdDate": format_timestamp(self.created_date),
            }
        )
        if self.icon_emoji is not None:
            payload["iconEmoji"] = self.icon_emoji
        if self.completed_date is not None:
            payload["completedDate"] = format_timestamp(self.completed_date)
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Goal":
        return cls(
            id=str(payload["id"]),
            name=str(payload["name"]),
            target_amount=to_decimal(payload["targetAmount"]),
            current_amount=to_decimal(payload.get("currentAmount", 0)),
            icon_id=str(payload.get("iconId") or "default"),
            icon_emoji=_optional_str(payload.get("iconEmoji")),
            completed=bool(payload.get("completed", False)),
            created_date=parse_timestamp(payload.get("createdDate")),
            completed_date=parse_timestamp(payload.get("completedDate")),
            extra=_extra(payload, _GOAL_KEYS),
        )


_SETTINGS_KEYS = frozenset({"parentPassword", "interestRate", "lastInterestPaid"})


@dataclass(slots=True)
class Settings:
    """Household settings. The parent password is stored in plain text."""

    parent_password: str
    interest_rate: Decimal = Decimal("0.10")
    last_interest_paid: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(copy.deepcopy(self.extra))
        payload.update(
            {
                "parentPassword": self.parent_password,
                "interestRate": float(self.interest_rate),
                "lastInterestPaid": format_timestamp(self.last_interest_paid),
            }
        )
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Settings":
        password = payload["parentPassword"]
        if not isinstance(password, str):
            raise TypeError("parentPassword must be a string")
        return cls(
            parent_password=password,
            interest_rate=_rate(payload.get("interestRate", "0.10")),
            last_interest_paid=parse_timestamp(payload.get("lastInterestPaid")),
            extra=_extra(payload, _SETTINGS_KEYS),
        )


_RECORD_KEYS = frozenset(
    {"balance", "transactions", "pendingTransactions", "chores", "goals", "settings", "dataVersion"}
)


@dataclass(slots=True)
class FamilyRecord:
    """Complete state of one household."""

    balance: Decimal
    settings: Settings
    transactions: List[Transaction] = field(default_factory=list)
    pending_transactions: List[Transaction] = field(default_factory=list)
    chores: List[Chore] = field(default_factory=list)
    goals: List[Goal] = field(default_factory=list)
    data_version: int = DATA_VERSION
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.balance = to_decimal(self.balance)

    def clone(self) -> "FamilyRecord":
        """Return an independent structural copy of the record."""

        return copy.deepcopy(self)

    def find_chore(self, chore_id: str) -> Optional[Chore]:
        return next((chore for chore in self.chores if chore.id == chore_id), None)

    def find_goal(self, goal_id: str) -> Optional[Goal]:
        return next((goal for goal in self.goals if goal.id == goal_id), None)

    def find_pending(self, transaction_id: str) -> Optional[Transaction]:
        return next((tx for tx in self.pending_transactions if tx.id == transaction_id), None)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(copy.deepcopy(self.extra))
        payload.update(
            {
                "balance": to_float(self.balance),
                "transactions": [tx.to_dict() for tx in self.transactions],
                "pendingTransactions": [tx.to_dict() for tx in self.pending_transactions],
                "chores": [chore.to_dict() for chore in self.chores],
                "goals": [goal.to_dict() for goal in self.goals],
                "settings": self.settings.to_dict(),
                "dataVersion": self.data_version,
            }
        )
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "FamilyRecord":
        def _items(key: str) -> List[Mapping[str, Any]]:
            value = payload.get(key, [])
            if not isinstance(value, list) or not all(isinstance(item, Mapping) for item in value):
                raise TypeError(f"{key} must be a list of objects")
            return value

        settings = payload["settings"]
        if not isinstance(settings, Mapping):
            raise TypeError("settings must be an object")
        return cls(
            balance=to_decimal(payload["balance"]),
            settings=Settings.from_dict(settings),
            transactions=[Transaction.from_dict(item) for item in _items("transactions")],
            pending_transactions=[Transaction.from_dict(item) for item in _items("pendingTransactions")],
            chores=[Chore.from_dict(item) for item in _items("chores")],
            goals=[Goal.from_dict(item) for item in _items("goals")],
            data_version=int(payload.get("dataVersion", DATA_VERSION)),
            extra=_extra(payload, _RECORD_KEYS),
        )


# ---------------------------------------------------------------------------
# Structural validation
# ---------------------------------------------------------------------------
def validate(payload: Any) -> bool:
    """Return ``True`` when ``payload`` has the shape of a persisted record."""

    if not isinstance(payload, Mapping):
        return False
    if any(key not in payload for key in REQUIRED_RECORD_KEYS):
        return False
    settings = payload.get("settings")
    if not isinstance(settings, Mapping):
        return False
    return isinstance(settings.get("parentPassword"), str)


def parse_record(payload: Any) -> Optional[FamilyRecord]:
    """Convert ``payload`` into a record, or ``None`` when it is not usable."""

    if not validate(payload):
        return None
    try:
        return FamilyRecord.from_dict(payload)
    except (KeyError, TypeError, ValueError, ArithmeticError):
        return None


def parse_record_json(text: str | bytes) -> Optional[FamilyRecord]:
    try:
        payload = json.loads(text)
    except (TypeError, ValueError):
        return None
    return parse_record(payload)


# ---------------------------------------------------------------------------
# Compiled-in default data
# ---------------------------------------------------------------------------
_DEFAULT_CHORES = (
    ("chore-1", "Help with laundry", "1.00", ChoreFrequency.OCCURRENCE),
    ("chore-2", "Fold laundry", "2.00", ChoreFrequency.OCCURRENCE),
    ("chore-3", "Help dad with boxmore", "2.00", ChoreFrequency.OCCURRENCE),
    ("chore-4", "Trash in/out", "0.50", ChoreFrequency.OCCURRENCE),
    ("chore-5", "Finish all school work", "2.00", ChoreFrequency.WEEK),
    ("chore-6", "Dishes to sink without reminder", "0.25", ChoreFrequency.DAY),
    ("chore-7", "Water plants", "2.00", ChoreFrequency.WEEK),
)

DEFAULT_BALANCE = Decimal("385.80")
DEFAULT_PARENT_PASSWORD = "olympus"


def default_record() -> FamilyRecord:
    """Return a fresh copy of the compiled-in starting data."""

    return FamilyRecord(
        balance=DEFAULT_BALANCE,
        settings=Settings(parent_password=DEFAULT_PARENT_PASSWORD),
        chores=[
            Chore(id=chore_id, name=name, value=Decimal(value), frequency=frequency)
            for chore_id, name, value, frequency in _DEFAULT_CHORES
        ],
    )


# ---------------------------------------------------------------------------
# Input rules for mutating operations
# ---------------------------------------------------------------------------
def _amount(value: Any, errors: list[str], message: str, *, allow_zero: bool = False) -> Decimal:
    try:
        amount = to_decimal(value)
        require_positive(amount, allow_zero=allow_zero)
    except (TypeError, ValueError):
        errors.append(message)
        return ZERO
    return amount


def build_transaction(payload: Mapping[str, Any], *, now: datetime) -> Transaction:
    """Validate a submitted transaction and fill in id, date and description."""

    errors: list[str] = []
    raw_type = payload.get("type")
    try:
        tx_type = TransactionType(raw_type)
    except ValueError:
        tx_type = None
    if tx_type not in SUBMITTABLE_TYPES:
        errors.append("Invalid transaction type")
    amount = _amount(payload.get("amount"), errors, "Amount must be a positive number")
    reason = payload.get("reason") or None
    if tx_type in REASON_REQUIRED_TYPES and not reason:
        errors.append("Reason is required for deposit and withdrawal transactions")
    if errors:
        raise ValidationError("; ".join(errors), errors=tuple(errors))

    description = payload.get("description") or None
    if description is None and tx_type is TransactionType.DEPOSIT:
        description = f"Deposit: {reason}"
    elif description is None and tx_type is TransactionType.WITHDRAWAL:
        description = f"Withdrawal: {reason}"
    known = {"id", "type", "amount", "date", "reason", "description", "pending"}
    return Transaction(
        id=str(payload.get("id") or new_id()),
        type=tx_type,
        amount=amount,
        date=parse_timestamp(payload.get("date")) or now,
        reason=reason,
        description=description,
        pending=bool(payload["pending"]) if "pending" in payload else None,
        extra={key: copy.deepcopy(value) for key, value in payload.items() if key not in known},
    )


def build_chore(payload: Mapping[str, Any]) -> Chore:
    errors: list[str] = []
    name = str(payload.get("name") or "").strip()
    if not name:
        errors.append("Chore name is required")
    value = _amount(payload.get("value"), errors, "Value must be a positive number")
    try:
        frequency = ChoreFrequency(payload.get("frequency") or ChoreFrequency.OCCURRENCE.value)
    except ValueError:
        frequency = ChoreFrequency.OCCURRENCE
        errors.append("Invalid frequency")
    if errors:
        raise ValidationError("; ".join(errors), errors=tuple(errors))
    return Chore(
        id=str(payload.get("id") or new_id()),
        name=name,
        value=value,
        frequency=frequency,
        completed=bool(payload.get("completed", False)),
        pending=bool(payload.get("pending", False)),
    )


def build_goal(payload: Mapping[str, Any], *, now: datetime) -> Goal:
    errors: list[str] = []
    name = str(payload.get("name") or "").strip()
    if not name:
        errors.append("Goal name is required")
    target = _amount(payload.get("targetAmount"), errors, "Target amount must be a positive number")
    current = _amount(
        payload.get("currentAmount", 0),
        errors,
        "Current amount must be a non-negative number",
        allow_zero=True,
    )
    if errors:
        raise ValidationError("; ".join(errors), errors=tuple(errors))
    icon_id = str(payload.get("iconId") or "default")
    if icon_id not in GOAL_ICONS:
        icon_id = "default"
    return Goal(
        id=str(payload.get("id") or new_id()),
        name=name,
        target_amount=target,
        current_amount=current,
        icon_id=icon_id,
        icon_emoji=payload.get("iconEmoji") or GOAL_ICONS[icon_id][1],
        completed=False,
        created_date=now,
    )


@dataclass(slots=True)
class PendingApproval:
    """Entry of the parent's approval queue."""

    approval_type: ApprovalType
    id: str
    date: Optional[datetime]
    transaction: Optional[Transaction] = None
    chore: Optional[Chore] = None

    @property
    def sort_key(self) -> datetime:
        return self.date or EPOCH

    def as_dict(self) -> Dict[str, Any]:
        if self.transaction is not None:
            payload = self.transaction.to_dict()
        else:
            assert self.chore is not None
            payload = {
                "id": self.chore.id,
                "type": "chore",
                "name": self.chore.name,
                "value": to_float(self.chore.value),
                "eventCount": self.chore.event_count or 1,
                "date": format_timestamp(self.chore.completed_date),
            }
        payload["approvalType"] = self.approval_type.value
        return payload


__all__ = [
    "ApprovalType",
    "Chore",
    "ChoreFrequency",
    "CREDIT_TYPES",
    "DATA_VERSION",
    "DEBIT_TYPES",
    "DEFAULT_BALANCE",
    "DEFAULT_PARENT_PASSWORD",
    "EPOCH",
    "FamilyRecord",
    "GOAL_ICONS",
    "Goal",
    "PendingApproval",
    "Role",
    "Settings",
    "Transaction",
    "TransactionType",
    "build_chore",
    "build_goal",
    "build_transaction",
    "default_record",
    "format_timestamp",
    "new_id",
    "parse_record",
    "parse_record_json",
    "parse_timestamp",
    "utcnow",
    "validate",
]
