"""Per chat-user session state kept in memory."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(slots=True)
class Membership:
    bill_id: int
    participant_id: int


class UserStateManager:
    def __init__(self) -> None:
        self._current_bill: dict[int, int] = {}
        self._memberships: dict[int, dict[int, int]] = {}

    def set_current_bill(self, user_id: int, bill_id: int) -> None:
        self._current_bill[user_id] = bill_id

    def get_current_bill(self, user_id: int) -> Optional[int]:
        return self._current_bill.get(user_id)

    def join(self, user_id: int, bill_id: int, participant_id: int) -> None:
        self._memberships.setdefault(user_id, {})[bill_id] = participant_id
        self.set_current_bill(user_id, bill_id)

    def get_participant(self, user_id: int, bill_id: int) -> Optional[int]:
        return self._memberships.get(user_id, {}).get(bill_id)

    def current_membership(self, user_id: int) -> Optional[Membership]:
        bill_id = self.get_current_bill(user_id)
        if bill_id is None:
            return None
        participant_id = self.get_participant(user_id, bill_id)
        if participant_id is None:
            return None
        return Membership(bill_id=bill_id, participant_id=participant_id)

    def clear_user(self, user_id: int) -> None:
        self._current_bill.pop(user_id, None)
        self._memberships.pop(user_id, None)


state = UserStateManager()
