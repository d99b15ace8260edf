from __future__ import annotations

import re
import secrets
from dataclasses import dataclass, field
from decimal import Decimal
from typing import AsyncContextManager, Optional, Protocol, Sequence

from billsplit.db.models import Bill, BillStatus, Claim, Item, ItemSource, Participant
from billsplit.logging import get_logger
from billsplit.services.allocation import (
    bill_subtotal,
    calculate_splits,
    itemized_shares,
    ParticipantBreakdown,
    remaining_quantity,
    unclaimed_items,
)
from billsplit.services.errors import Forbidden, InvalidRequest, InvalidState, NotFound
from billsplit.services.money import ZERO, percent_of, round_money, to_money

BILL_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
BILL_CODE_LENGTH = 6
_E164 = re.compile(r"^\+[1-9]\d{1,14}$")

log = get_logger(__name__)


class BillStore(Protocol):
    def transaction(self) -> AsyncContextManager["BillStore"]: ...

    async def get_bill(self, bill_id: int) -> Bill | None: ...

    async def get_bill_by_code(self, code: str) -> Bill | None: ...

    async def get_bill_by_organizer_code(self, organizer_code: str) -> Bill | None: ...

    async def set_bill_status(self, bill_id: int, status: BillStatus) -> None: ...

    async def list_bill_items(self, bill_id: int) -> list[Item]: ...

    async def list_bill_participants(self, bill_id: int) -> list[Participant]: ...

    async def list_bill_claims(self, bill_id: int) -> list[Claim]: ...

    async def create_bill(
        self,
        code: str,
        organizer_access_code: str,
        tax_amount: Decimal,
        tip_amount: Decimal,
        organizer_id: Optional[int] = None,
        organizer_phone: Optional[str] = None,
        receipt_analyzed: bool = False,
    ) -> Bill: ...

    async def add_item(
        self,
        bill_id: int,
        name: str,
        price: Decimal,
        quantity: int,
        source: ItemSource,
        display_order: int,
    ) -> Item: ...

    async def add_participant(
        self,
        bill_id: int,
        name: str,
        phone_number: str,
        plus_one_count: int,
    ) -> Participant: ...


@dataclass(slots=True)
class ItemDraft:
    name: str
    price: Decimal
    quantity: int = 1


@dataclass(slots=True)
class ParticipantDraft:
    name: str
    phone: Optional[str] = None
    plus_one_count: int = 0


@dataclass(slots=True)
class BillDraft:
    items: Sequence[ItemDraft]
    participants: Sequence[ParticipantDraft]
    tax_amount: Decimal | str | int | float | None = None
    tip_amount: Decimal | str | int | float | None = None
    organizer_id: Optional[int] = None
    organizer_phone: Optional[str] = None
    from_receipt: bool = False


@dataclass(slots=True)
class CreatedBill:
    bill: Bill
    items: list[Item]
    participants: list[Participant]

    @property
    def organizer_access_code(self) -> str:
        return self.bill.organizer_access_code


@dataclass(frozen=True, slots=True)
class BillSelector:
    bill_id: Optional[int] = None
    code: Optional[str] = None
    organizer_code: Optional[str] = None


@dataclass(slots=True)
class BillAggregate:
    bill: Bill
    items: list[Item] = field(default_factory=list)
    participants: list[Participant] = field(default_factory=list)
    claims: list[Claim] = field(default_factory=list)

    @property
    def subtotal(self) -> Decimal:
        return bill_subtotal(self.items)

    @property
    def total(self) -> Decimal:
        return round_money(self.subtotal + self.bill.tax_amount + self.bill.tip_amount)

    @property
    def tax_percent(self) -> Decimal:
        return percent_of(self.bill.tax_amount, self.subtotal)

    @property
    def tip_percent(self) -> Decimal:
        return percent_of(self.bill.tip_amount, self.subtotal)

    def splits(self, *, weight_solo_claims: bool = False) -> dict[int, Decimal]:
        return calculate_splits(
            self.items,
            self.participants,
            self.claims,
            self.bill.tax_amount,
            self.bill.tip_amount,
            weight_solo_claims=weight_solo_claims,
        )

    def itemized(self, *, weight_solo_claims: bool = False) -> dict[int, ParticipantBreakdown]:
        return itemized_shares(self.items, self.participants, self.claims, weight_solo_claims=weight_solo_claims)

    def unclaimed_items(self) -> list[Item]:
        return unclaimed_items(self.items, self.claims)

    def remaining(self, item: Item) -> Decimal:
        return remaining_quantity(item, self.claims)

    def item(self, item_id: int) -> Item | None:
        return next((item for item in self.items if item.id == item_id), None)

    def item_by_number(self, number: int) -> Item | None:
        """Items are shown to people numbered from 1 in display order."""
        if 1 <= number <= len(self.items):
            return self.items[number - 1]
        return None

    def participant(self, participant_id: int) -> Participant | None:
        return next((p for p in self.participants if p.id == participant_id), None)

    def participant_by_number(self, number: int) -> Participant | None:
        if 1 <= number <= len(self.participants):
            return self.participants[number - 1]
        return None


def generate_bill_code() -> str:
    return "".join(secrets.choice(BILL_CODE_ALPHABET) for _ in range(BILL_CODE_LENGTH))


def generate_access_code() -> str:
    return secrets.token_hex(8).upper()


def format_phone_number(phone: str) -> str:
    """Normalize to E.164, assuming a US number when there are 10 digits."""
    digits = re.sub(r"\D", "", phone)
    if len(digits) == 11 and digits[0] == "1":
        return f"+{digits}"
    if len(digits) == 10:
        return f"+1{digits}"
    return f"+{digits}"


def validate_phone_number(phone: str) -> bool:
    return bool(_E164.match(phone))


def _extra_amount(value: Decimal | str | int | float | None) -> Decimal:
    amount = to_money(value, default=ZERO)
    return amount if amount >= 0 else ZERO


async def _unique_code(store: BillStore) -> str:
    for _ in range(10):
        code = generate_bill_code()
        if await store.get_bill_by_code(code) is None:
            return code
    raise InvalidState("Could not allocate a bill code, try again")


async def create_bill(store: BillStore, draft: BillDraft) -> CreatedBill:
    if not draft.items:
        raise InvalidRequest("A bill needs at least one item")
    if not draft.participants:
        raise InvalidRequest("A bill needs at least one participant")
    for item in draft.items:
        if not item.name.strip():
            raise InvalidRequest("Every item needs a name")
        if item.price < 0:
            raise InvalidRequest(f"Price of {item.name} cannot be negative")
        if item.quantity < 1:
            raise InvalidRequest(f"Quantity of {item.name} must be at least 1")
    for participant in draft.participants:
        if not participant.name.strip():
            raise InvalidRequest("Every participant needs a name")

    organizer_phone = format_phone_number(draft.organizer_phone) if draft.organizer_phone else None
    if organizer_phone is not None and not validate_phone_number(organizer_phone):
        raise InvalidRequest("Organizer phone number is not valid")

    source = ItemSource.OCR if draft.from_receipt else ItemSource.MANUAL

    async with store.transaction() as tx:
        code = await _unique_code(tx)
        bill = await tx.create_bill(
            code=code,
            organizer_access_code=generate_access_code(),
            tax_amount=_extra_amount(draft.tax_amount),
            tip_amount=_extra_amount(draft.tip_amount),
            organizer_id=draft.organizer_id,
            organizer_phone=organizer_phone,
            receipt_analyzed=draft.from_receipt,
        )
        items = [
            await tx.add_item(
                bill.id,
                item.name.strip(),
                round_money(item.price),
                item.quantity or 1,
                source,
                index,
            )
            for index, item in enumerate(draft.items)
        ]
        participants = [
            await tx.add_participant(
                bill.id,
                p.name.strip(),
                format_phone_number(p.phone) if p.phone else f"UNSET-{code}-{index + 1}",
                max(p.plus_one_count or 0, 0),
            )
            for index, p in enumerate(draft.participants)
        ]

    log.info("bill.created", bill_id=bill.id, code=bill.code, items=len(items), participants=len(participants))
    return CreatedBill(bill=bill, items=items, participants=participants)


async def find_bill(store: BillStore, selector: BillSelector) -> Bill:
    if selector.bill_id:
        bill = await store.get_bill(selector.bill_id)
    elif selector.code:
        bill = await store.get_bill_by_code(selector.code)
    elif selector.organizer_code:
        bill = await store.get_bill_by_organizer_code(selector.organizer_code)
    else:
        raise InvalidRequest("Bill ID, code, or organizer code required")
    if bill is None:
        raise NotFound("Bill not found")
    return bill


async def get_bill_aggregate(store: BillStore, selector: BillSelector) -> BillAggregate:
    """The bill with its items, participants and claims, as currently stored."""
    bill = await find_bill(store, selector)
    return BillAggregate(
        bill=bill,
        items=await store.list_bill_items(bill.id),
        participants=await store.list_bill_participants(bill.id),
        claims=await store.list_bill_claims(bill.id),
    )


async def set_bill_status(store: BillStore, bill_id: int, organizer_id: int, status: BillStatus) -> Bill:
    bill = await store.get_bill(bill_id)
    if bill is None:
        raise NotFound("Bill not found")
    if bill.organizer_id != organizer_id:
        raise Forbidden("Only the organizer can close this bill")
    if not bill.is_active:
        raise InvalidState(f"This bill is already {bill.status.value}")
    await store.set_bill_status(bill_id, status)
    bill.status = status
    log.info("bill.status", bill_id=bill_id, status=status.value)
    return bill
