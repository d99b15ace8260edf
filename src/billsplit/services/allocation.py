from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Mapping, Optional, Sequence

from billsplit.db.models import Claim, Item, Participant, ShareType
from billsplit.services.money import ONE, ZERO, extras_multiplier, round_money


@dataclass(slots=True)
class ItemAllocation:
    item_id: int
    # amount stored on each claim row: the claimer's own share
    claim_amounts: dict[int, Decimal] = field(default_factory=dict)
    # everyone's share of the item, including split_with_all beneficiaries
    participant_amounts: dict[int, Decimal] = field(default_factory=dict)

    @property
    def total(self) -> Decimal:
        return sum(self.participant_amounts.values(), ZERO)


@dataclass(slots=True)
class ItemShareLine:
    item_id: int
    name: str
    amount: Decimal


@dataclass(slots=True)
class ParticipantBreakdown:
    items: list[ItemShareLine] = field(default_factory=list)
    subtotal: Decimal = ZERO


def bill_subtotal(items: Iterable[Item]) -> Decimal:
    # price is the line total, quantity is not a multiplier
    return sum((item.price for item in items), ZERO)


def bill_multiplier(items: Iterable[Item], tax: Decimal, tip: Decimal) -> Decimal:
    return extras_multiplier(bill_subtotal(items), tax or ZERO, tip or ZERO)


def _add(target: dict[int, Decimal], key: int, amount: Decimal) -> None:
    target[key] = target.get(key, ZERO) + amount


def _claim_shares(
    item: Item,
    claim: Claim,
    participants: Mapping[int, Participant],
    item_value: Decimal,
    total_weight: int,
    weight_solo_claims: bool,
) -> dict[int, Decimal]:
    """Unrounded shares of one claim, keyed by participant id."""
    claimer = participants.get(claim.participant_id)
    if claimer is None:
        return {}

    if claim.share_type == ShareType.SOLO:
        item_quantity = Decimal(item.quantity or 1)
        quantity = max(claim.quantity_claimed, ZERO)
        amount = item_value * quantity / item_quantity
        if weight_solo_claims:
            amount *= claimer.person_weight
        return {claimer.id: amount}

    if claim.share_type == ShareType.SPLIT_WITH_ALL:
        if total_weight <= 0:
            return {p.id: ZERO for p in participants.values()}
        return {p.id: item_value * p.person_weight / total_weight for p in participants.values()}

    if claim.share_type == ShareType.SPLIT_WITH_SPECIFIC:
        sharers = [claimer]
        for participant_id in dict.fromkeys(claim.share_with_participant_ids):
            sharer = participants.get(participant_id)
            if sharer is not None and sharer.id != claimer.id:
                sharers.append(sharer)
        weight = sum(sharer.person_weight for sharer in sharers)
        if weight <= 0:
            return {sharer.id: ZERO for sharer in sharers}
        per_unit = item_value / weight
        return {sharer.id: per_unit * sharer.person_weight for sharer in sharers}

    raise ValueError(f"unknown share type: {claim.share_type!r}")


def allocate_item(
    item: Item,
    claims: Sequence[Claim],
    participants: Sequence[Participant],
    multiplier: Decimal = ONE,
    *,
    weight_solo_claims: bool = False,
) -> ItemAllocation:
    """Compute every claim's ``amount_owed`` for one item.

    ``participants`` must be all participants of the bill: a split_with_all
    claim divides the item among every one of them, weighted by person count.
    Each amount is rounded on its own; the rounded shares may differ from the
    item total by a cent per participant.
    """
    by_id = {p.id: p for p in participants}
    total_weight = sum(p.person_weight for p in participants)
    item_value = item.price * multiplier

    allocation = ItemAllocation(item_id=item.id)
    raw_participants: dict[int, Decimal] = {}
    for claim in claims:
        if claim.item_id != item.id:
            continue
        shares = _claim_shares(item, claim, by_id, item_value, total_weight, weight_solo_claims)
        allocation.claim_amounts[claim.id] = round_money(max(shares.get(claim.participant_id, ZERO), ZERO))
        for participant_id, amount in shares.items():
            _add(raw_participants, participant_id, amount)

    allocation.participant_amounts = {
        participant_id: round_money(max(amount, ZERO)) for participant_id, amount in raw_participants.items()
    }
    return allocation


def calculate_splits(
    items: Sequence[Item],
    participants: Sequence[Participant],
    claims: Sequence[Claim],
    tax: Decimal,
    tip: Decimal,
    *,
    weight_solo_claims: bool = False,
) -> dict[int, Decimal]:
    """Total owed by each participant across the whole bill, tax and tip included."""
    splits = {p.id: ZERO for p in participants}
    items_by_id = {item.id: item for item in items}
    by_id = {p.id: p for p in participants}
    total_weight = sum(p.person_weight for p in participants)
    multiplier = bill_multiplier(items, tax, tip)

    for claim in claims:
        item = items_by_id.get(claim.item_id)
        if item is None:
            continue
        item_value = item.price * multiplier
        for participant_id, amount in _claim_shares(
            item, claim, by_id, item_value, total_weight, weight_solo_claims
        ).items():
            _add(splits, participant_id, amount)

    return {participant_id: round_money(amount) for participant_id, amount in splits.items()}


def itemized_shares(
    items: Sequence[Item],
    participants: Sequence[Participant],
    claims: Sequence[Claim],
    *,
    weight_solo_claims: bool = False,
) -> dict[int, ParticipantBreakdown]:
    """Pre-tax breakdown of what each participant took, item by item."""
    result = {p.id: ParticipantBreakdown() for p in participants}
    items_by_id = {item.id: item for item in items}
    by_id = {p.id: p for p in participants}
    total_weight = sum(p.person_weight for p in participants)

    for claim in claims:
        item = items_by_id.get(claim.item_id)
        if item is None:
            continue
        for participant_id, amount in _claim_shares(
            item, claim, by_id, item.price, total_weight, weight_solo_claims
        ).items():
            breakdown = result[participant_id]
            breakdown.items.append(ItemShareLine(item_id=item.id, name=item.name, amount=round_money(amount)))
            breakdown.subtotal += amount

    for breakdown in result.values():
        breakdown.subtotal = round_money(breakdown.subtotal)
    return result


def claimed_quantity(claims: Iterable[Claim], exclude_claim_id: Optional[int] = None) -> Decimal:
    return sum(
        (claim.quantity_claimed for claim in claims if claim.id != exclude_claim_id),
        ZERO,
    )


def remaining_quantity(item: Item, claims: Iterable[Claim], exclude_claim_id: Optional[int] = None) -> Decimal:
    item_claims = [claim for claim in claims if claim.item_id == item.id]
    return Decimal(item.quantity or 1) - claimed_quantity(item_claims, exclude_claim_id)


def unclaimed_items(items: Sequence[Item], claims: Sequence[Claim]) -> list[Item]:
    claimed = {claim.item_id for claim in claims}
    return [item for item in items if item.id not in claimed]
