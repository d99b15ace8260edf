from __future__ import annotations

from aiogram import F, Router
from aiogram.filters import Command, CommandObject
from aiogram.types import CallbackQuery, Message

from billsplit.config import get_settings
from billsplit.db.models import ClaimRequest, ShareType, SoloClaim, SplitWithAll, Unclaim
from billsplit.db.repo import get_global_repository
from billsplit.handlers.bills import render_bill
from billsplit.services.bills import BillAggregate, BillSelector, get_bill_aggregate
from billsplit.services.claims import ClaimAction, ClaimResult, ClaimService, build_request
from billsplit.services.errors import BillSplitError
from billsplit.services.money import format_money
from billsplit.services.summary import format_participant_claims
from billsplit.state import Membership, state
from billsplit.utils.parse import parse_claim_command

claims_router = Router()

NOT_JOINED = "Join a bill first with /join <bill code> <your number>"

ACTION_LABELS = {
    ClaimAction.CLAIMED: "Claimed",
    ClaimAction.UPDATED: "Updated",
    ClaimAction.UNCLAIMED: "Removed",
    ClaimAction.UNCHANGED: "Nothing to change",
}


def claim_service() -> ClaimService:
    return ClaimService(get_global_repository(), weight_solo_claims=get_settings().weight_solo_claims)


def _describe(result: ClaimResult, item_name: str) -> str:
    text = f"{ACTION_LABELS[result.action]}: {item_name}"
    if result.claim is not None:
        text += f", you owe {format_money(result.claim.amount_owed, get_settings().currency)}"
    return text


async def _membership(message: Message, user_id: int) -> tuple[Membership, BillAggregate] | None:
    membership = state.current_membership(user_id)
    if membership is None:
        await message.answer(NOT_JOINED)
        return None
    aggregate = await get_bill_aggregate(get_global_repository(), BillSelector(bill_id=membership.bill_id))
    return membership, aggregate


@claims_router.message(Command("claim"))
async def cmd_claim(message: Message, command: CommandObject) -> None:
    user = message.from_user
    if not user:
        return

    try:
        parsed = parse_claim_command(command.args or "")
    except ValueError as exc:
        await message.answer(str(exc))
        return

    try:
        joined = await _membership(message, user.id)
        if joined is None:
            return
        membership, aggregate = joined

        item = aggregate.item_by_number(parsed.item_number)
        if item is None:
            await message.answer(f"There is no item #{parsed.item_number} on this bill")
            return

        share_with: list[int] = []
        for number in parsed.with_numbers:
            participant = aggregate.participant_by_number(number)
            if participant is None:
                await message.answer(f"There is no participant #{number} on this bill")
                return
            share_with.append(participant.id)

        request = build_request(parsed.share_type, share_with, parsed.quantity)
        result = await claim_service().submit_claim(item.id, membership.participant_id, request)
    except BillSplitError as exc:
        await message.answer(f"Could not claim: {exc.reason}")
        return

    await message.answer(_describe(result, item.name))
    await render_bill(message, user.id, BillSelector(bill_id=membership.bill_id))


@claims_router.message(Command("unclaim"))
async def cmd_unclaim(message: Message, command: CommandObject) -> None:
    user = message.from_user
    if not user:
        return
    arg = (command.args or "").strip().lstrip("#")
    if not arg.isdigit():
        await message.answer("Usage: /unclaim <item #>")
        return

    try:
        joined = await _membership(message, user.id)
        if joined is None:
            return
        membership, aggregate = joined
        item = aggregate.item_by_number(int(arg))
        if item is None:
            await message.answer(f"There is no item #{arg} on this bill")
            return
        result = await claim_service().submit_claim(item.id, membership.participant_id, Unclaim())
    except BillSplitError as exc:
        await message.answer(f"Could not unclaim: {exc.reason}")
        return

    await message.answer(_describe(result, item.name))


@claims_router.message(Command("myclaims"))
async def cmd_myclaims(message: Message) -> None:
    user = message.from_user
    if not user:
        return
    membership = state.current_membership(user.id)
    if membership is None:
        await message.answer(NOT_JOINED)
        return
    settings = get_settings()
    try:
        claims = await claim_service().list_claims_for_participant(membership.participant_id)
        aggregate = await get_bill_aggregate(get_global_repository(), BillSelector(bill_id=membership.bill_id))
    except BillSplitError as exc:
        await message.answer(exc.reason)
        return
    owed = aggregate.splits(weight_solo_claims=settings.weight_solo_claims).get(membership.participant_id)
    await message.answer(format_participant_claims(claims, settings.currency, owed))


@claims_router.callback_query(F.data.startswith("claim:") | F.data.startswith("splitall:"))
async def cb_toggle_claim(callback: CallbackQuery) -> None:
    """Inline buttons: tapping an item toggles a one-unit solo claim."""
    if not callback.data or not isinstance(callback.message, Message):
        return
    action, raw_item_id = callback.data.split(":", 1)
    if not raw_item_id.isdigit():
        await callback.answer("Unknown item", show_alert=True)
        return
    item_id = int(raw_item_id)
    membership = state.current_membership(callback.from_user.id)
    if membership is None:
        await callback.answer(NOT_JOINED, show_alert=True)
        return

    try:
        aggregate = await get_bill_aggregate(get_global_repository(), BillSelector(bill_id=membership.bill_id))
        current = next(
            (
                claim
                for claim in aggregate.claims
                if claim.item_id == item_id and claim.participant_id == membership.participant_id
            ),
            None,
        )
        wanted = ShareType.SPLIT_WITH_ALL if action == "splitall" else ShareType.SOLO
        request: ClaimRequest
        if current is not None and current.share_type == wanted:
            request = Unclaim()
        elif wanted == ShareType.SPLIT_WITH_ALL:
            request = SplitWithAll()
        else:
            request = SoloClaim()
        result = await claim_service().submit_claim(item_id, membership.participant_id, request)
        await render_bill(callback.message, callback.from_user.id, BillSelector(bill_id=membership.bill_id), edit=True)
    except BillSplitError as exc:
        await callback.answer(exc.reason, show_alert=True)
        return

    item = aggregate.item(item_id)
    await callback.answer(_describe(result, item.name if item else "item"))
