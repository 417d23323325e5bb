"""Ledger rules applied to a family's working record."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from .exceptions import InsufficientFundsError, NotFoundError, ValidationError
from .models import (
    CREDIT_TYPES,
    DEBIT_TYPES,
    FamilyRecord,
    Goal,
    Transaction,
    TransactionType,
    new_id,
)
from .money import AmountLike, ZERO, format_currency, require_positive, to_decimal


class FamilyAccount:
    """Apply balance, transaction and goal changes to a :class:`FamilyRecord`.

    The account mutates the record it wraps. The family service hands it a
    structural copy and only keeps the copy when every step succeeded, so a
    raised error never leaves a half-applied change behind.
    """

    __slots__ = ("record", "_now")

    def __init__(self, record: FamilyRecord, *, now: datetime) -> None:
        self.record = record
        self._now = now

    @property
    def balance(self) -> Decimal:
        return self.record.balance

    # ------------------------------------------------------------------
    # Balance
    # ------------------------------------------------------------------
    def mutate_balance(self, delta: AmountLike, kind: TransactionType | None = None) -> Decimal:
        """Shift the balance by ``delta`` and re-round to cents."""

        try:
            change = to_decimal(delta)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid balance change: {delta!r}") from exc
        self.record.balance = to_decimal(self.record.balance + change)
        return self.record.balance

    def set_balance(self, amount: AmountLike) -> Decimal:
        try:
            value = to_decimal(amount)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Invalid balance amount") from exc
        self.record.balance = value
        return value

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------
    def add_transaction(self, transaction: Transaction) -> Transaction:
        """Record ``transaction``; only posted entries move the balance."""

        self._ensure_unique_id(transaction.id)
        if transaction.is_pending:
            self.record.pending_transactions.insert(0, transaction)
            return transaction
        self.record.transactions.insert(0, transaction)
        self._apply_effect(transaction)
        return transaction

    def add_pending_transaction(self, transaction: Transaction) -> Transaction:
        transaction.pending = True
        return self.add_transaction(transaction)

    def approve_pending_transaction(self, transaction_id: str) -> Transaction:
        transaction = self._pop_pending(transaction_id)
        transaction.pending = False
        transaction.approved_date = self._now
        self.record.transactions.insert(0, transaction)
        if transaction.type is TransactionType.DEPOSIT:
            self.mutate_balance(transaction.amount, transaction.type)
        elif transaction.type is TransactionType.WITHDRAWAL:
            self.mutate_balance(-transaction.amount, transaction.type)
        return transaction

    def reject_pending_transaction(self, transaction_id: str) -> Transaction:
        return self._pop_pending(transaction_id)

    def clear_transactions(self, *, description: str = "Transaction history cleared by Zeus") -> Transaction:
        """Drop the history, leaving a single zero-amount marker. The balance is kept."""

        marker = Transaction(
            id=new_id(),
            type=TransactionType.SYSTEM,
            amount=ZERO,
            date=self._now,
            description=description,
        )
        self.record.transactions = [marker]
        return marker

    def credit(
        self,
        amount: Decimal,
        transaction_type: TransactionType,
        description: str,
        *,
        chore_id: Optional[str] = None,
        goal_id: Optional[str] = None,
    ) -> Transaction:
        value = to_decimal(amount)
        self.mutate_balance(value, transaction_type)
        return self._log_transaction(value, transaction_type, description, chore_id=chore_id, goal_id=goal_id)

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------
    def add_goal(self, goal: Goal) -> Goal:
        if self.record.find_goal(goal.id) is not None:
            raise ValidationError(f"A goal with id '{goal.id}' already exists.")
        self.record.goals.append(goal)
        return goal

    def contribute_to_goal(self, goal_id: str, amount: AmountLike) -> Goal:
        """Move ``amount`` from the balance into the goal."""

        try:
            value = require_positive(to_decimal(amount))
        except (TypeError, ValueError) as exc:
            raise ValidationError("Invalid contribution amount.") from exc
        goal = self._require_goal(goal_id)
        self._ensure_sufficient_funds(value)

        goal.current_amount = to_decimal(goal.current_amount + value)
        if goal.current_amount >= goal.target_amount and not goal.completed:
            goal.completed = True
            goal.completed_date = self._now
        self.mutate_balance(-value, TransactionType.GOAL)
        self._log_transaction(
            value,
            TransactionType.GOAL,
            f"Contribution to goal: {goal.name}",
            goal_id=goal.id,
        )
        return goal

    def delete_goal(self, goal_id: str) -> Goal:
        """Remove a goal, refunding whatever was saved towards it."""

        goal = self._require_goal(goal_id)
        if goal.current_amount > ZERO:
            self.credit(
                goal.current_amount,
                TransactionType.GOAL,
                f"Returned funds from deleted goal: {goal.name}",
            )
        self.record.goals.remove(goal)
        return goal

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _apply_effect(self, transaction: Transaction) -> None:
        if transaction.type in CREDIT_TYPES:
            self.mutate_balance(transaction.amount, transaction.type)
        elif transaction.type in DEBIT_TYPES:
            self.mutate_balance(-transaction.amount, transaction.type)

    def _pop_pending(self, transaction_id: str) -> Transaction:
        transaction = self.record.find_pending(transaction_id)
        if transaction is None:
            raise NotFoundError(f"Pending transaction with ID {transaction_id} not found.")
        self.record.pending_transactions.remove(transaction)
        return transaction

    def _require_goal(self, goal_id: str) -> Goal:
        goal = self.record.find_goal(goal_id)
        if goal is None:
            raise NotFoundError(f"Goal with ID {goal_id} not found.")
        return goal

    def _ensure_unique_id(self, transaction_id: str) -> None:
        known = {tx.id for tx in self.record.transactions} | {tx.id for tx in self.record.pending_transactions}
        if transaction_id in known:
            raise ValidationError(f"A transaction with id '{transaction_id}' already exists.")

    def _log_transaction(
        self,
        amount: Decimal,
        transaction_type: TransactionType,
        description: str,
        *,
        chore_id: Optional[str] = None,
        goal_id: Optional[str] = None,
    ) -> Transaction:
        transaction = Transaction(
            id=new_id(),
            type=transaction_type,
            amount=amount,
            date=self._now,
            description=description,
            chore_id=chore_id,
            goal_id=goal_id,
        )
        self.record.transactions.insert(0, transaction)
        return transaction

    def _ensure_sufficient_funds(self, amount: Decimal) -> None:
        if self.record.balance < amount:
            raise InsufficientFundsError(
                f"Insufficient balance for {format_currency(amount)} "
                f"(available {format_currency(self.record.balance)})."
            )


__all__ = ["FamilyAccount"]
