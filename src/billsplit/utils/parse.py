from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from billsplit.db.models import ShareType
from billsplit.services.bills import BillDraft, ItemDraft, ParticipantDraft
from billsplit.services.money import to_money

NEWBILL_USAGE = (
    "Send /newbill followed by one line per entry:\n"
    "Burger | 12.50 | 2   (name | line price | quantity)\n"
    "guest: Alice +1      (participant with one extra guest)\n"
    "guest: Bob | 555 123 4567\n"
    "tax: 3.20\n"
    "tip: 5"
)

CLAIM_USAGE = "Usage: /claim <item #> [quantity | all | with <participant #> ...]"

_PLUS_ONES = re.compile(r"^(?P<name>.*?)\s*\+(?P<count>\d+)$")


@dataclass(slots=True)
class ClaimCommand:
    item_number: int
    share_type: ShareType = ShareType.SOLO
    quantity: Optional[Decimal] = None
    with_numbers: tuple[int, ...] = ()


def _positive_int(value: str, what: str) -> int:
    try:
        number = int(value.lstrip("#"))
    except ValueError as exc:
        raise ValueError(f"{what} must be a number") from exc
    if number < 1:
        raise ValueError(f"{what} must be 1 or more")
    return number


def parse_claim_command(args: str) -> ClaimCommand:
    """Parse what follows /claim.

    - ``3`` claims one unit of item 3
    - ``3 2`` claims two units
    - ``3 all`` splits item 3 between everyone
    - ``3 with 2 4`` splits item 3 with participants 2 and 4
    """
    parts = args.split()
    if not parts:
        raise ValueError(CLAIM_USAGE)

    command = ClaimCommand(item_number=_positive_int(parts[0], "Item number"))
    rest = [part.lower() for part in parts[1:]]
    if not rest:
        return command

    if rest[0] in {"all", "everyone"}:
        if len(rest) > 1:
            raise ValueError(CLAIM_USAGE)
        command.share_type = ShareType.SPLIT_WITH_ALL
        return command

    if rest[0] == "with":
        numbers = [_positive_int(part.strip(","), "Participant number") for part in rest[1:]]
        if not numbers:
            raise ValueError("Say who to split with, e.g. /claim 3 with 2 4")
        command.share_type = ShareType.SPLIT_WITH_SPECIFIC
        command.with_numbers = tuple(dict.fromkeys(numbers))
        return command

    if len(rest) > 1:
        raise ValueError(CLAIM_USAGE)
    try:
        command.quantity = to_money(rest[0])
    except ValueError as exc:
        raise ValueError(CLAIM_USAGE) from exc
    return command


def _parse_guest(text: str) -> ParticipantDraft:
    name_part, _, phone = (part.strip() for part in text.partition("|"))
    plus_ones = 0
    match = _PLUS_ONES.match(name_part)
    if match:
        name_part = match.group("name").strip()
        plus_ones = int(match.group("count"))
    if not name_part:
        raise ValueError("Guest name is missing")
    return ParticipantDraft(name=name_part, phone=phone or None, plus_one_count=plus_ones)


def _parse_item(text: str) -> ItemDraft:
    parts = [part.strip() for part in text.split("|")]
    if len(parts) < 2 or not parts[0]:
        raise ValueError(f"Cannot read item line: {text!r}")
    try:
        price = to_money(parts[1].lstrip("$€£"))
    except ValueError as exc:
        raise ValueError(f"Invalid price for {parts[0]}") from exc
    if price < 0:
        raise ValueError(f"Price of {parts[0]} cannot be negative")
    quantity = _positive_int(parts[2], f"Quantity of {parts[0]}") if len(parts) > 2 and parts[2] else 1
    return ItemDraft(name=parts[0], price=price, quantity=quantity)


def parse_bill_draft(text: str, organizer_id: Optional[int] = None) -> BillDraft:
    items: list[ItemDraft] = []
    participants: list[ParticipantDraft] = []
    tax: Decimal | None = None
    tip: Decimal | None = None

    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue
        key, sep, value = line.partition(":")
        key = key.strip().lower()
        if sep and key in {"tax", "tip"}:
            try:
                amount = to_money(value.strip().lstrip("$€£"))
            except ValueError as exc:
                raise ValueError(f"Invalid {key} amount") from exc
            if amount < 0:
                raise ValueError(f"{key.capitalize()} cannot be negative")
            if key == "tax":
                tax = amount
            else:
                tip = amount
        elif sep and key in {"guest", "participant"}:
            participants.append(_parse_guest(value.strip()))
        else:
            items.append(_parse_item(line))

    if not items or not participants:
        raise ValueError(NEWBILL_USAGE)
    return BillDraft(items=items, participants=participants, tax_amount=tax, tip_amount=tip, organizer_id=organizer_id)
