from __future__ import annotations

import asyncio
import copy
import itertools
from contextlib import asynccontextmanager
from dataclasses import replace
from decimal import Decimal
from typing import Mapping, Optional, Sequence

import pytest

from billsplit.db.models import Bill, BillStatus, Claim, Item, ItemSource, Participant, ShareType
from billsplit.services.errors import StorageFailure


class InMemoryStore:
    """Dict-backed stand-in for BillRepository.

    Transactions hold one lock and restore a snapshot when the body raises,
    which is what the row lock plus rollback give us in Postgres.
    """

    def __init__(self) -> None:
        self.bills: dict[int, Bill] = {}
        self.items: dict[int, Item] = {}
        self.participants: dict[int, Participant] = {}
        self.claims: dict[int, Claim] = {}
        self.fail_on: Optional[str] = None
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    def _maybe_fail(self, name: str) -> None:
        if self.fail_on == name:
            raise StorageFailure(f"{name} failed")

    @asynccontextmanager
    async def transaction(self):
        async with self._lock:
            snapshot = copy.deepcopy((self.bills, self.items, self.participants, self.claims))
            try:
                yield self
            except BaseException:
                self.bills, self.items, self.participants, self.claims = snapshot
                raise

    def seed(
        self,
        items: Sequence[tuple[str, str, int]],
        participants: Sequence[tuple[str, int]],
        tax: str = "0",
        tip: str = "0",
        organizer_id: Optional[int] = None,
    ) -> tuple[Bill, list[Item], list[Participant]]:
        bill = Bill(
            id=next(self._ids),
            code=f"CODE{len(self.bills) + 1:02d}",
            organizer_access_code=f"{len(self.bills) + 1:016X}",
            tax_amount=Decimal(tax),
            tip_amount=Decimal(tip),
            organizer_id=organizer_id,
        )
        self.bills[bill.id] = bill
        created_items = []
        for order, (name, price, quantity) in enumerate(items):
            item = Item(
                id=next(self._ids),
                bill_id=bill.id,
                name=name,
                price=Decimal(price),
                quantity=quantity,
                display_order=order,
            )
            self.items[item.id] = item
            created_items.append(item)
        created_participants = []
        for index, (name, plus_ones) in enumerate(participants, start=1):
            participant = Participant(
                id=next(self._ids),
                bill_id=bill.id,
                name=name,
                phone_number=f"UNSET-{bill.code}-{index}",
                plus_one_count=plus_ones,
            )
            self.participants[participant.id] = participant
            created_participants.append(participant)
        return bill, created_items, created_participants

    # bills

    async def create_bill(
        self,
        code: str,
        organizer_access_code: str,
        tax_amount: Decimal,
        tip_amount: Decimal,
        organizer_id: Optional[int] = None,
        organizer_phone: Optional[str] = None,
        receipt_analyzed: bool = False,
    ) -> Bill:
        bill = Bill(
            id=next(self._ids),
            code=code,
            organizer_access_code=organizer_access_code,
            tax_amount=tax_amount,
            tip_amount=tip_amount,
            organizer_id=organizer_id,
            organizer_phone=organizer_phone,
            receipt_analyzed=receipt_analyzed,
        )
        self.bills[bill.id] = bill
        return replace(bill)

    async def get_bill(self, bill_id: int) -> Bill | None:
        bill = self.bills.get(bill_id)
        return replace(bill) if bill else None

    async def get_bill_by_code(self, code: str) -> Bill | None:
        return next((replace(b) for b in self.bills.values() if b.code == code.upper()), None)

    async def get_bill_by_organizer_code(self, organizer_code: str) -> Bill | None:
        return next(
            (replace(b) for b in self.bills.values() if b.organizer_access_code == organizer_code.upper()),
            None,
        )

    async def set_bill_status(self, bill_id: int, status: BillStatus) -> None:
        self.bills[bill_id].status = status

    # items

    async def add_item(self, bill_id, name, price, quantity, source: ItemSource, display_order) -> Item:
        item = Item(
            id=next(self._ids),
            bill_id=bill_id,
            name=name,
            price=price,
            quantity=quantity,
            source=source,
            display_order=display_order,
        )
        self.items[item.id] = item
        return replace(item)

    async def lock_item(self, item_id: int) -> Item | None:
        # give other tasks a chance to interleave, as a network round trip would
        await asyncio.sleep(0)
        item = self.items.get(item_id)
        return replace(item) if item else None

    async def list_bill_items(self, bill_id: int) -> list[Item]:
        items = [replace(i) for i in self.items.values() if i.bill_id == bill_id]
        return sorted(items, key=lambda i: (i.display_order, i.id))

    # participants

    async def add_participant(self, bill_id, name, phone_number, plus_one_count) -> Participant:
        participant = Participant(
            id=next(self._ids),
            bill_id=bill_id,
            name=name,
            phone_number=phone_number,
            plus_one_count=plus_one_count,
        )
        self.participants[participant.id] = participant
        return replace(participant)

    async def get_participant(self, participant_id: int) -> Participant | None:
        participant = self.participants.get(participant_id)
        return replace(participant) if participant else None

    async def list_bill_participants(self, bill_id: int) -> list[Participant]:
        return [replace(p) for p in self.participants.values() if p.bill_id == bill_id]

    async def count_participant_claims(self, participant_id: int) -> int:
        return sum(1 for c in self.claims.values() if c.participant_id == participant_id)

    async def set_participant_responded(self, participant_id: int, responded: bool) -> None:
        self._maybe_fail("set_participant_responded")
        self.participants[participant_id].has_responded = responded

    # claims

    async def list_item_claims(self, item_id: int) -> list[Claim]:
        return [replace(c) for c in self.claims.values() if c.item_id == item_id]

    async def list_bill_claims(self, bill_id: int) -> list[Claim]:
        return [replace(c) for c in self.claims.values() if self.items[c.item_id].bill_id == bill_id]

    async def list_participant_claims(self, participant_id: int) -> list[tuple[Claim, Item]]:
        return [
            (replace(c), replace(self.items[c.item_id]))
            for c in self.claims.values()
            if c.participant_id == participant_id
        ]

    async def insert_claim(
        self,
        item_id: int,
        participant_id: int,
        share_type: ShareType,
        share_with_participant_ids: Sequence[int],
        quantity_claimed: Decimal,
    ) -> Claim:
        self._maybe_fail("insert_claim")
        if any(c.item_id == item_id and c.participant_id == participant_id for c in self.claims.values()):
            raise StorageFailure("duplicate key value violates unique constraint")
        claim = Claim(
            id=next(self._ids),
            item_id=item_id,
            participant_id=participant_id,
            share_type=share_type,
            share_with_participant_ids=tuple(share_with_participant_ids),
            quantity_claimed=quantity_claimed,
        )
        self.claims[claim.id] = claim
        return replace(claim)

    async def update_claim(
        self,
        claim_id: int,
        share_type: ShareType,
        share_with_participant_ids: Sequence[int],
        quantity_claimed: Decimal,
    ) -> Claim:
        claim = self.claims[claim_id]
        claim.share_type = share_type
        claim.share_with_participant_ids = tuple(share_with_participant_ids)
        claim.quantity_claimed = quantity_claimed
        return replace(claim)

    async def delete_claims(self, claim_ids: Sequence[int]) -> None:
        for claim_id in claim_ids:
            self.claims.pop(claim_id, None)

    async def set_claim_amounts(self, amounts: Mapping[int, Decimal]) -> None:
        self._maybe_fail("set_claim_amounts")
        for claim_id, amount in amounts.items():
            self.claims[claim_id].amount_owed = amount


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()
