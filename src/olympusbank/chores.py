"""Chore submission and approval lifecycle."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List

from .exceptions import NotFoundError, ValidationError
from .models import Chore, FamilyRecord


@dataclass(slots=True)
class ChoreApproval:
    """What a parent approved: the chore as submitted and the reward owed."""

    chore_id: str
    name: str
    event_count: int
    reward: Decimal

    @property
    def description(self) -> str:
        suffix = f" (x{self.event_count})" if self.event_count > 1 else ""
        return f"Completed {self.name}{suffix}"


class ChoreBoard:
    """Operate on the chores of a working :class:`FamilyRecord`.

    A chore moves from available to pending when the child submits it and
    back to available when the parent approves, rejects or resets it.
    """

    __slots__ = ("record",)

    def __init__(self, record: FamilyRecord) -> None:
        self.record = record

    @property
    def chores(self) -> List[Chore]:
        return self.record.chores

    def pending(self) -> List[Chore]:
        return [chore for chore in self.chores if chore.pending]

    def get(self, chore_id: str) -> Chore:
        chore = self.record.find_chore(chore_id)
        if chore is None:
            raise NotFoundError(f"Chore with ID {chore_id} not found.")
        return chore

    def add(self, chore: Chore) -> Chore:
        if self.record.find_chore(chore.id) is not None:
            raise ValidationError(f"A chore with id '{chore.id}' already exists.")
        self.chores.append(chore)
        return chore

    def complete(self, chore_id: str, event_count: int, *, at: datetime) -> Chore:
        """Submit ``event_count`` repetitions of a chore for approval."""

        if isinstance(event_count, bool) or not isinstance(event_count, int) or event_count < 1:
            raise ValidationError("Event count must be a whole number of at least 1.")
        chore = self.get(chore_id)
        chore.completed = False
        chore.pending = True
        chore.event_count = event_count
        chore.completed_date = at
        return chore

    def approve(self, chore_id: str) -> ChoreApproval:
        chore = self.get(chore_id)
        if not chore.pending:
            raise ValidationError(f"Chore '{chore.name}' is not awaiting approval.")
        approval = ChoreApproval(
            chore_id=chore.id,
            name=chore.name,
            event_count=chore.event_count or 1,
            reward=chore.reward,
        )
        chore.clear_submission()
        return approval

    def reject(self, chore_id: str) -> Chore:
        chore = self.get(chore_id)
        chore.clear_submission()
        return chore

    def reset(self, chore_id: str) -> Chore:
        chore = self.get(chore_id)
        chore.clear_submission()
        chore.extra.pop("approvedDate", None)
        return chore

    def delete(self, chore_id: str) -> Chore:
        chore = self.get(chore_id)
        self.chores.remove(chore)
        return chore


__all__ = ["ChoreApproval", "ChoreBoard"]
