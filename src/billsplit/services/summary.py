from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional

from billsplit.db.models import BillStatus, Claim, Item, ShareType
from billsplit.services.bills import BillAggregate
from billsplit.services.money import format_money

STATUS_LABELS = {
    BillStatus.ACTIVE: "open for claims",
    BillStatus.COMPLETED: "settled",
    BillStatus.CANCELLED: "cancelled",
}

SHARE_LABELS = {
    ShareType.SOLO: "solo",
    ShareType.SPLIT_WITH_ALL: "split with everyone",
    ShareType.SPLIT_WITH_SPECIFIC: "shared",
}


def _quantity(value: Decimal) -> str:
    normalized = value.normalize()
    return f"{normalized:f}"


def _claim_label(aggregate: BillAggregate, claim: Claim) -> str:
    participant = aggregate.participant(claim.participant_id)
    name = participant.name if participant else f"#{claim.participant_id}"
    if participant and participant.plus_one_count > 0:
        name += f" +{participant.plus_one_count}"
    if claim.share_type == ShareType.SOLO:
        return f"{name} ×{_quantity(claim.quantity_claimed)}"
    if claim.share_type == ShareType.SPLIT_WITH_SPECIFIC:
        others = [aggregate.participant(pid) for pid in claim.share_with_participant_ids]
        names = ", ".join(p.name for p in others if p is not None)
        return f"{name} with {names}" if names else name
    return f"{name} (everyone)"


def format_item_line(aggregate: BillAggregate, number: int, item: Item, currency: str) -> str:
    line = f"{number}. {item.name} — {format_money(item.price, currency)}"
    if item.quantity > 1:
        line += f" (qty {item.quantity}, {_quantity(aggregate.remaining(item))} left)"
    claims = [claim for claim in aggregate.claims if claim.item_id == item.id]
    if claims:
        line += "\n   " + "; ".join(_claim_label(aggregate, claim) for claim in claims)
    return line


def format_bill_summary(
    aggregate: BillAggregate,
    currency: str = "USD",
    *,
    weight_solo_claims: bool = False,
    participant_id: Optional[int] = None,
    itemized: bool = False,
) -> str:
    """Bill card. ``itemized`` adds the organizer's per-person breakdown before tax and tip."""
    bill = aggregate.bill
    lines = [
        f"Bill {bill.code} — {STATUS_LABELS.get(bill.status, bill.status.value)}",
        f"Subtotal: {format_money(aggregate.subtotal, currency)}",
    ]
    if bill.tax_amount:
        lines.append(f"Tax: {format_money(bill.tax_amount, currency)} ({aggregate.tax_percent}%)")
    if bill.tip_amount:
        lines.append(f"Tip: {format_money(bill.tip_amount, currency)} ({aggregate.tip_percent}%)")
    lines.append(f"Total: {format_money(aggregate.total, currency)}")

    lines.append("")
    lines.append("Items:")
    for number, item in enumerate(aggregate.items, start=1):
        lines.append(format_item_line(aggregate, number, item, currency))

    splits = aggregate.splits(weight_solo_claims=weight_solo_claims)
    lines.append("")
    lines.append("Who owes what:")
    for number, participant in enumerate(aggregate.participants, start=1):
        marker = "✓" if participant.has_responded else "…"
        you = " (you)" if participant.id == participant_id else ""
        lines.append(
            f"{number}. {marker} {participant.name}{you}: {format_money(splits.get(participant.id, Decimal(0)), currency)}"
        )

    if itemized:
        lines.append("")
        lines.extend(format_itemized(aggregate, currency, weight_solo_claims=weight_solo_claims))

    unclaimed = aggregate.unclaimed_items()
    if unclaimed:
        lines.append("")
        lines.append("Unclaimed: " + ", ".join(item.name for item in unclaimed))
    return "\n".join(lines)


def format_participant_claims(
    claims: Iterable[tuple[Claim, Item]],
    currency: str = "USD",
    owed: Optional[Decimal] = None,
) -> str:
    """One participant's claim rows.

    ``owed`` is their total from the bill splits, which also counts their part
    of items other people split with them.
    """
    rows = list(claims)
    if not rows:
        if owed:
            return f"You have not claimed anything yet, but you owe {format_money(owed, currency)} for shared items."
        return "You have not claimed anything yet."
    lines = []
    total = Decimal(0)
    for claim, item in rows:
        label = SHARE_LABELS.get(claim.share_type, claim.share_type.value)
        if claim.share_type == ShareType.SOLO and item.quantity > 1:
            label += f" ×{_quantity(claim.quantity_claimed)}"
        lines.append(f"• {item.name} ({label}): {format_money(claim.amount_owed, currency)}")
        total += claim.amount_owed
    lines.append(f"Your claims total: {format_money(total, currency)}")
    if owed is not None:
        lines.append(f"You owe with tax, tip and shared items: {format_money(owed, currency)}")
    return "\n".join(lines)


def humanize_status(status: BillStatus) -> str:
    return STATUS_LABELS.get(status, status.value)


def format_itemized(
    aggregate: BillAggregate,
    currency: str = "USD",
    *,
    weight_solo_claims: bool = False,
) -> list[str]:
    breakdown = aggregate.itemized(weight_solo_claims=weight_solo_claims)
    lines = ["Itemized (before tax and tip):"]
    for participant in aggregate.participants:
        shares = breakdown.get(participant.id)
        if shares is None or not shares.items:
            lines.append(f"{participant.name}: nothing claimed")
            continue
        lines.append(f"{participant.name}: {format_money(shares.subtotal, currency)}")
        lines.extend(f"   {line.name}: {format_money(line.amount, currency)}" for line in shares.items)
    return lines
