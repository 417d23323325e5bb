from datetime import datetime, timezone
from decimal import Decimal

import pytest

from olympusbank.exceptions import ValidationError
from olympusbank.models import (
    ApprovalType,
    Chore,
    PendingApproval,
    TransactionType,
    build_chore,
    build_goal,
    build_transaction,
    default_record,
    parse_record,
    parse_record_json,
    parse_timestamp,
    validate,
)
from olympusbank.money import format_currency, to_decimal

NOW = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)


def test_default_record_matches_starting_data() -> None:
    record = default_record()

    assert record.balance == Decimal("385.80")
    assert record.settings.parent_password == "olympus"
    assert record.settings.interest_rate == Decimal("0.10")
    assert record.settings.last_interest_paid is None
    assert len(record.chores) == 7
    assert record.transactions == []
    assert record.pending_transactions == []
    assert record.goals == []


def test_default_record_returns_independent_copies() -> None:
    first = default_record()
    second = default_record()

    first.chores[0].pending = True

    assert second.chores[0].pending is False


def test_validate_requires_record_shape() -> None:
    payload = default_record().to_dict()
    assert validate(payload)

    missing = dict(payload)
    del missing["pendingTransactions"]
    assert not validate(missing)

    broken_settings = dict(payload, settings={"parentPassword": 1234})
    assert not validate(broken_settings)
    assert not validate(["not", "a", "record"])
    assert not validate(None)


def test_parse_record_keeps_unknown_fields() -> None:
    payload = default_record().to_dict()
    payload["theme"] = "thunder"
    payload["chores"][0]["emoji"] = "⚡"

    record = parse_record(payload)

    assert record is not None
    restored = record.to_dict()
    assert restored["theme"] == "thunder"
    assert restored["chores"][0]["emoji"] == "⚡"


def test_parse_record_rejects_bad_values() -> None:
    payload = default_record().to_dict()
    payload["balance"] = "lots"

    assert parse_record(payload) is None
    assert parse_record_json("{not json") is None


def test_record_json_round_trip_is_equal() -> None:
    record = default_record()
    record.settings.last_interest_paid = NOW
    record.transactions.append(build_transaction({"type": "chore", "amount": 2, "description": "Chore"}, now=NOW))

    assert parse_record_json(record.to_json()) == record


def test_build_transaction_fills_description_and_identity() -> None:
    transaction = build_transaction({"type": "deposit", "amount": "20", "reason": "Birthday"}, now=NOW)

    assert transaction.type is TransactionType.DEPOSIT
    assert transaction.amount == Decimal("20.00")
    assert transaction.description == "Deposit: Birthday"
    assert transaction.date == NOW
    assert transaction.id


def test_build_transaction_collects_errors() -> None:
    with pytest.raises(ValidationError) as excinfo:
        build_transaction({"type": "withdrawal", "amount": -3}, now=NOW)

    assert "Amount must be a positive number" in excinfo.value.errors
    assert "Reason is required for deposit and withdrawal transactions" in excinfo.value.errors

    with pytest.raises(ValidationError):
        build_transaction({"type": "system", "amount": 1}, now=NOW)


def test_build_chore_and_goal_validation() -> None:
    chore = build_chore({"name": "Feed Cerberus", "value": "1.5", "frequency": "day"})
    assert chore.value == Decimal("1.50")

    with pytest.raises(ValidationError):
        build_chore({"name": "", "value": 1, "frequency": "hourly"})

    goal = build_goal({"name": "Bike", "targetAmount": 50, "iconId": "unknown"}, now=NOW)
    assert goal.icon_id == "default"
    assert goal.current_amount == Decimal("0.00")
    assert goal.created_date == NOW


def test_amounts_are_rounded_to_cents() -> None:
    assert to_decimal("0.005") == Decimal("0.01")
    assert to_decimal(0.1) + to_decimal(0.2) == Decimal("0.30")
    assert format_currency(Decimal("1234.5")) == "$1,234.50"

    with pytest.raises(TypeError):
        to_decimal(True)
    with pytest.raises(ValueError):
        to_decimal("abc")


def test_parse_timestamp_handles_bad_input() -> None:
    assert parse_timestamp("2024-03-01T09:30:00.000Z") == NOW
    assert parse_timestamp("yesterday") is None
    assert parse_timestamp(None) is None


def test_pending_chore_approval_dict() -> None:
    chore = Chore(id="chore-9", name="Polish shield", value=Decimal("0.75"), pending=True, event_count=2)
    approval = PendingApproval(ApprovalType.CHORE, chore.id, None, chore=chore)

    payload = approval.as_dict()

    assert payload["approvalType"] == "chore"
    assert payload["eventCount"] == 2
    assert payload["value"] == 0.75
    assert approval.sort_key.year == 1970
