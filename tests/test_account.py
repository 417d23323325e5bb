from datetime import datetime, timezone
from decimal import Decimal

import pytest

from olympusbank.account import FamilyAccount
from olympusbank.chores import ChoreBoard
from olympusbank.exceptions import InsufficientFundsError, NotFoundError, ValidationError
from olympusbank.models import Goal, Transaction, TransactionType, default_record

NOW = datetime(2024, 6, 1, 8, 0, tzinfo=timezone.utc)


def test_credit_and_debit_types_move_balance() -> None:
    account = FamilyAccount(default_record(), now=NOW)

    account.add_transaction(Transaction(id="t1", type=TransactionType.INTEREST, amount=Decimal("1.10")))
    account.add_transaction(Transaction(id="t2", type=TransactionType.WITHDRAWAL, amount=Decimal("0.90")))
    account.add_transaction(Transaction(id="t3", type=TransactionType.GOAL, amount=Decimal("5.00")))

    assert account.balance == Decimal("386.00")
    assert [tx.id for tx in account.record.transactions] == ["t3", "t2", "t1"]


def test_withdrawal_may_overdraw() -> None:
    account = FamilyAccount(default_record(), now=NOW)

    account.add_transaction(Transaction(id="big", type=TransactionType.WITHDRAWAL, amount=Decimal("400")))

    assert account.balance == Decimal("-14.20")


def test_contribution_requires_funds() -> None:
    record = default_record()
    record.balance = Decimal("3.00")
    account = FamilyAccount(record, now=NOW)
    account.add_goal(Goal(id="g1", name="Laurel wreath", target_amount=Decimal("5")))

    with pytest.raises(InsufficientFundsError):
        account.contribute_to_goal("g1", "3.01")
    with pytest.raises(ValidationError):
        account.contribute_to_goal("g1", 0)
    with pytest.raises(NotFoundError):
        account.contribute_to_goal("g2", 1)

    goal = account.contribute_to_goal("g1", 3)
    assert goal.current_amount == Decimal("3.00")
    assert account.balance == Decimal("0.00")


def test_duplicate_goal_rejected() -> None:
    account = FamilyAccount(default_record(), now=NOW)
    account.add_goal(Goal(id="g1", name="Owl", target_amount=Decimal("5")))

    with pytest.raises(ValidationError):
        account.add_goal(Goal(id="g1", name="Owl again", target_amount=Decimal("5")))


def test_chore_board_lifecycle() -> None:
    record = default_record()
    board = ChoreBoard(record)

    board.complete("chore-6", 4, at=NOW)
    assert [chore.id for chore in board.pending()] == ["chore-6"]

    approval = board.approve("chore-6")

    assert approval.reward == Decimal("1.00")
    assert approval.description == "Completed Dishes to sink without reminder (x4)"
    assert board.pending() == []
    with pytest.raises(NotFoundError):
        board.get("chore-99")


def test_single_completion_has_no_multiplier_suffix() -> None:
    board = ChoreBoard(default_record())
    board.complete("chore-1", 1, at=NOW)

    assert board.approve("chore-1").description == "Completed Help with laundry"


def test_reset_drops_approval_marker() -> None:
    record = default_record()
    record.chores[0].extra["approvedDate"] = "2024-05-01T00:00:00.000Z"
    board = ChoreBoard(record)

    chore = board.reset("chore-1")

    assert "approvedDate" not in chore.extra
    assert chore.pending is False and chore.completed is False
