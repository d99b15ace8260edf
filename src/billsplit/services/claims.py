from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import AsyncContextManager, Iterable, Mapping, Optional, Protocol, Sequence

from billsplit.db.models import (
    Bill,
    Claim,
    ClaimRequest,
    Item,
    Participant,
    ShareType,
    SoloClaim,
    SplitWithAll,
    SplitWithSpecific,
    Unclaim,
)
from billsplit.logging import get_logger
from billsplit.services.allocation import allocate_item, bill_multiplier, claimed_quantity
from billsplit.services.errors import BillSplitError, Conflict, InvalidRequest, InvalidState, NotFound
from billsplit.services.money import ONE, to_money
from billsplit.services.responders import ResponderStore, refresh_many


class ClaimStore(ResponderStore, Protocol):
    def transaction(self) -> AsyncContextManager["ClaimStore"]: ...

    async def get_bill(self, bill_id: int) -> Bill | None: ...

    async def lock_item(self, item_id: int) -> Item | None: ...

    async def list_bill_items(self, bill_id: int) -> list[Item]: ...

    async def get_participant(self, participant_id: int) -> Participant | None: ...

    async def list_bill_participants(self, bill_id: int) -> list[Participant]: ...

    async def list_item_claims(self, item_id: int) -> list[Claim]: ...

    async def list_participant_claims(self, participant_id: int) -> list[tuple[Claim, Item]]: ...

    async def insert_claim(
        self,
        item_id: int,
        participant_id: int,
        share_type: ShareType,
        share_with_participant_ids: Sequence[int],
        quantity_claimed: Decimal,
    ) -> Claim: ...

    async def update_claim(
        self,
        claim_id: int,
        share_type: ShareType,
        share_with_participant_ids: Sequence[int],
        quantity_claimed: Decimal,
    ) -> Claim: ...

    async def delete_claims(self, claim_ids: Sequence[int]) -> None: ...

    async def set_claim_amounts(self, amounts: Mapping[int, Decimal]) -> None: ...


class ClaimAction(str, Enum):
    CLAIMED = "claimed"
    UPDATED = "updated"
    UNCLAIMED = "unclaimed"
    UNCHANGED = "unchanged"


@dataclass(slots=True)
class ClaimResult:
    action: ClaimAction
    claim: Optional[Claim] = None
    claim_id: Optional[int] = None
    # recomputed amount_owed of every claim left on the item
    amounts: dict[int, Decimal] = field(default_factory=dict)
    # participants whose claims were cleared by a split_with_all
    cleared_participant_ids: tuple[int, ...] = ()


SPLIT_TAKEN = "This item is already split equally by someone else."
NOT_ENOUGH_LEFT = "Not enough quantity remaining for this item."

# claims.quantity_claimed is numeric(10, 3)
QUANTITY_STEP = Decimal("0.001")


def build_request(
    share_type: str | ShareType | None = None,
    share_with_ids: Iterable[int | str] | None = None,
    quantity_claimed: Decimal | int | float | str | None = None,
) -> ClaimRequest:
    """Turn loosely typed input into a claim request.

    A missing or non-numeric quantity counts as 1. Zero or a negative quantity
    is an unclaim whatever the share type. Quantities keep three decimals.
    """
    quantity = to_money(quantity_claimed, default=ONE)
    if quantity <= 0:
        return Unclaim()
    if quantity < QUANTITY_STEP:
        raise InvalidRequest(f"Quantity must be at least {QUANTITY_STEP}")
    try:
        quantity = quantity.quantize(QUANTITY_STEP, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise InvalidRequest("Quantity is too large") from exc

    try:
        kind = ShareType(share_type) if share_type else ShareType.SOLO
    except ValueError as exc:
        raise InvalidRequest(f"Unknown share type: {share_type}") from exc

    if kind == ShareType.SOLO:
        return SoloClaim(quantity=quantity)
    if kind == ShareType.SPLIT_WITH_ALL:
        return SplitWithAll()
    try:
        with_ids = frozenset(int(pid) for pid in share_with_ids or ())
    except (TypeError, ValueError) as exc:
        raise InvalidRequest("Participant ids to split with must be numbers") from exc
    return SplitWithSpecific(with_ids=with_ids)


class ClaimService:
    def __init__(self, store: ClaimStore, *, weight_solo_claims: bool = False) -> None:
        self.store = store
        self.weight_solo_claims = weight_solo_claims
        self._log = get_logger(__name__)

    async def submit(
        self,
        item_id: int,
        participant_id: int,
        share_type: str | ShareType | None = None,
        share_with_ids: Iterable[int | str] | None = None,
        quantity_claimed: Decimal | int | float | str | None = None,
    ) -> ClaimResult:
        try:
            request = build_request(share_type, share_with_ids, quantity_claimed)
        except BillSplitError as exc:
            self._log.info("claim.rejected", item_id=item_id, participant_id=participant_id, code=exc.code)
            raise
        return await self.submit_claim(item_id, participant_id, request)

    async def submit_claim(self, item_id: int, participant_id: int, request: ClaimRequest) -> ClaimResult:
        """Create, update or remove the claim of one participant on one item.

        The item row stays locked for the whole operation, so concurrent
        submissions on the same item are applied one after another and the
        quantity checks always see committed claims.
        """
        if not item_id or not participant_id:
            raise InvalidRequest("Missing required fields")

        try:
            async with self.store.transaction() as tx:
                result = await self._submit(tx, item_id, participant_id, request)
        except BillSplitError as exc:
            self._log.info(
                "claim.rejected",
                item_id=item_id,
                participant_id=participant_id,
                code=exc.code,
                reason=exc.reason,
            )
            raise

        self._log.info(
            "claim.submitted",
            item_id=item_id,
            participant_id=participant_id,
            action=result.action.value,
            claim_id=result.claim_id,
        )
        return result

    async def recalculate(self, item_id: int) -> dict[int, Decimal]:
        """Recompute amount_owed for every claim on an item. Missing items are a no-op."""
        async with self.store.transaction() as tx:
            item = await tx.lock_item(item_id)
            if item is None:
                return {}
            bill = await tx.get_bill(item.bill_id)
            if bill is None:
                return {}
            return await self._recompute(tx, item, bill)

    async def list_claims_for_participant(self, participant_id: int) -> list[tuple[Claim, Item]]:
        if not participant_id:
            raise InvalidRequest("Participant ID required")
        return await self.store.list_participant_claims(participant_id)

    async def _submit(
        self,
        tx: ClaimStore,
        item_id: int,
        participant_id: int,
        request: ClaimRequest,
    ) -> ClaimResult:
        item = await tx.lock_item(item_id)
        if item is None:
            raise NotFound("Item not found")
        bill = await tx.get_bill(item.bill_id)
        if bill is None:
            raise NotFound("Bill not found")
        if not bill.is_active:
            raise InvalidState(f"This bill is {bill.status.value} and no longer accepts claims.")
        participant = await tx.get_participant(participant_id)
        if participant is None or participant.bill_id != item.bill_id:
            raise NotFound("Participant not found on this bill")

        claims = await tx.list_item_claims(item.id)
        existing = next((c for c in claims if c.participant_id == participant_id), None)
        split_all = next((c for c in claims if c.share_type == ShareType.SPLIT_WITH_ALL), None)

        if not isinstance(request, SplitWithAll) and split_all and split_all.participant_id != participant_id:
            raise Conflict(SPLIT_TAKEN)

        if isinstance(request, Unclaim):
            if existing is None:
                return ClaimResult(action=ClaimAction.UNCHANGED)
            await tx.delete_claims([existing.id])
            amounts = await self._recompute(tx, item, bill)
            await refresh_many(tx, [participant_id])
            return ClaimResult(action=ClaimAction.UNCLAIMED, claim_id=existing.id, amounts=amounts)

        share_type, share_with, quantity = await self._resolve(tx, item, participant, request, existing)

        others = [c for c in claims if existing is None or c.id != existing.id]
        cleared: list[Claim] = []
        if isinstance(request, SplitWithAll):
            cleared = others
        elif quantity > Decimal(item.quantity) - claimed_quantity(others):
            raise InvalidState(NOT_ENOUGH_LEFT)

        # all checks passed, start writing
        if cleared:
            await tx.delete_claims([c.id for c in cleared])

        if existing is None:
            claim = await tx.insert_claim(item.id, participant_id, share_type, share_with, quantity)
            action = ClaimAction.CLAIMED
        else:
            claim = await tx.update_claim(existing.id, share_type, share_with, quantity)
            action = ClaimAction.UPDATED

        amounts = await self._recompute(tx, item, bill)
        claim.amount_owed = amounts.get(claim.id, claim.amount_owed)

        cleared_ids = tuple(dict.fromkeys(c.participant_id for c in cleared))
        await refresh_many(tx, [*cleared_ids, participant_id])

        return ClaimResult(
            action=action,
            claim=claim,
            claim_id=claim.id,
            amounts=amounts,
            cleared_participant_ids=cleared_ids,
        )

    async def _resolve(
        self,
        tx: ClaimStore,
        item: Item,
        participant: Participant,
        request: SoloClaim | SplitWithAll | SplitWithSpecific,
        existing: Claim | None,
    ) -> tuple[ShareType, tuple[int, ...], Decimal]:
        """Share type, co-sharers and quantity the claim row should end up with."""
        if isinstance(request, SoloClaim):
            return ShareType.SOLO, (), request.quantity

        if isinstance(request, SplitWithAll):
            return ShareType.SPLIT_WITH_ALL, (), Decimal(item.quantity)

        with_ids = set(request.with_ids)
        if not with_ids and existing is not None and existing.share_type == ShareType.SPLIT_WITH_SPECIFIC:
            with_ids = set(existing.share_with_participant_ids)
        with_ids.discard(participant.id)
        if not with_ids:
            raise InvalidRequest("Pick at least one other participant to split with")

        bill_participants = {p.id for p in await tx.list_bill_participants(item.bill_id)}
        unknown = with_ids - bill_participants
        if unknown:
            raise InvalidRequest(f"Unknown participants: {', '.join(str(pid) for pid in sorted(unknown))}")

        # a shared split covers the whole line
        return ShareType.SPLIT_WITH_SPECIFIC, tuple(sorted(with_ids)), Decimal(item.quantity)

    async def _recompute(self, tx: ClaimStore, item: Item, bill: Bill) -> dict[int, Decimal]:
        items = await tx.list_bill_items(bill.id)
        participants = await tx.list_bill_participants(bill.id)
        claims = await tx.list_item_claims(item.id)
        allocation = allocate_item(
            item,
            claims,
            participants,
            bill_multiplier(items, bill.tax_amount, bill.tip_amount),
            weight_solo_claims=self.weight_solo_claims,
        )
        await tx.set_claim_amounts(allocation.claim_amounts)
        self._log.info("claim.recalculated", item_id=item.id, claims=len(claims))
        return allocation.claim_amounts
