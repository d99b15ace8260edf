from __future__ import annotations

from typing import Optional

from aiogram import F, Router
from aiogram.exceptions import TelegramBadRequest
from aiogram.filters import Command, CommandObject
from aiogram.types import CallbackQuery, Message

from billsplit.config import get_settings
from billsplit.db.models import BillStatus
from billsplit.db.repo import get_global_repository
from billsplit.keyboards import build_claim_keyboard, organizer_keyboard
from billsplit.logging import get_logger
from billsplit.services.bills import BillSelector, create_bill, get_bill_aggregate, set_bill_status
from billsplit.services.errors import BillSplitError
from billsplit.services.summary import format_bill_summary, humanize_status
from billsplit.state import state
from billsplit.utils.parse import NEWBILL_USAGE, parse_bill_draft

bills_router = Router()
log = get_logger(__name__)


async def render_bill(message: Message, user_id: int, selector: BillSelector, *, edit: bool = False) -> None:
    """Reply with a fresh summary of the bill and the claim buttons.

    Opening the bill by its organizer code adds the itemized breakdown.
    """
    settings = get_settings()
    repo = get_global_repository()
    aggregate = await get_bill_aggregate(repo, selector)
    participant_id = state.get_participant(user_id, aggregate.bill.id)
    text = format_bill_summary(
        aggregate,
        settings.currency,
        weight_solo_claims=settings.weight_solo_claims,
        participant_id=participant_id,
        itemized=selector.organizer_code is not None,
    )
    keyboard = build_claim_keyboard(aggregate, participant_id)
    if edit:
        try:
            await message.edit_text(text, reply_markup=keyboard)
        except TelegramBadRequest as exc:
            if "message is not modified" not in str(exc):
                raise
    else:
        await message.answer(text, reply_markup=keyboard)


@bills_router.message(Command("newbill"))
async def cmd_newbill(message: Message, command: CommandObject) -> None:
    user = message.from_user
    if not user:
        return
    if not command.args:
        await message.answer(NEWBILL_USAGE)
        return

    try:
        draft = parse_bill_draft(command.args, organizer_id=user.id)
        created = await create_bill(get_global_repository(), draft)
    except ValueError as exc:
        await message.answer(str(exc))
        return
    except BillSplitError as exc:
        await message.answer(exc.reason)
        return

    state.set_current_bill(user.id, created.bill.id)
    names = "\n".join(f"{n}. {p.name}" for n, p in enumerate(created.participants, start=1))
    await message.answer(
        f"Bill {created.bill.code} created.\n"
        f"Share the code; everyone joins with /join {created.bill.code} <their number>:\n{names}\n\n"
        f"Organizer code (keep it private): {created.organizer_access_code}",
        reply_markup=organizer_keyboard(created.bill.id),
    )


@bills_router.message(Command("join"))
async def cmd_join(message: Message, command: CommandObject) -> None:
    user = message.from_user
    if not user:
        return
    parts = (command.args or "").split()
    if len(parts) != 2:
        await message.answer("Usage: /join <bill code> <your number on the bill>")
        return

    try:
        number = int(parts[1])
        aggregate = await get_bill_aggregate(get_global_repository(), BillSelector(code=parts[0]))
    except ValueError:
        await message.answer("Your number must be a number")
        return
    except BillSplitError as exc:
        await message.answer(exc.reason)
        return

    participant = aggregate.participant_by_number(number)
    if participant is None:
        await message.answer(f"There is no participant #{number} on this bill")
        return

    state.join(user.id, aggregate.bill.id, participant.id)
    log.info("bill.joined", bill_id=aggregate.bill.id, participant_id=participant.id, tg_id=user.id)
    await message.answer(f"Welcome, {participant.name}! Tap the items you had.")
    await render_bill(message, user.id, BillSelector(bill_id=aggregate.bill.id))


@bills_router.message(Command("bill"))
async def cmd_bill(message: Message, command: CommandObject) -> None:
    user = message.from_user
    if not user:
        return

    selector: Optional[BillSelector] = None
    arg = (command.args or "").strip()
    if arg:
        # organizer codes are 16 characters, bill codes 6
        selector = BillSelector(organizer_code=arg) if len(arg) > 6 else BillSelector(code=arg)
    else:
        bill_id = state.get_current_bill(user.id)
        if bill_id is not None:
            selector = BillSelector(bill_id=bill_id)
    if selector is None:
        await message.answer("Usage: /bill <bill code>")
        return

    try:
        await render_bill(message, user.id, selector)
    except BillSplitError as exc:
        await message.answer(exc.reason)


@bills_router.callback_query(F.data.startswith("bill:"))
async def cb_refresh(callback: CallbackQuery) -> None:
    if not callback.data or not isinstance(callback.message, Message):
        return
    try:
        bill_id = int(callback.data.split(":", 1)[1])
    except ValueError:
        await callback.answer("Unknown bill", show_alert=True)
        return
    try:
        await render_bill(callback.message, callback.from_user.id, BillSelector(bill_id=bill_id), edit=True)
    except BillSplitError as exc:
        await callback.answer(exc.reason, show_alert=True)
        return
    await callback.answer()


async def _change_status(user_id: int, bill_id: Optional[int], status: BillStatus) -> str:
    if bill_id is None:
        return "Open a bill with /bill <code> first"
    try:
        bill = await set_bill_status(get_global_repository(), bill_id, user_id, status)
    except BillSplitError as exc:
        return exc.reason
    return f"Bill {bill.code} is now {humanize_status(bill.status)}."


@bills_router.message(Command("close"))
async def cmd_close(message: Message) -> None:
    user = message.from_user
    if not user:
        return
    await message.answer(await _change_status(user.id, state.get_current_bill(user.id), BillStatus.COMPLETED))


@bills_router.message(Command("cancelbill"))
async def cmd_cancel(message: Message) -> None:
    user = message.from_user
    if not user:
        return
    await message.answer(await _change_status(user.id, state.get_current_bill(user.id), BillStatus.CANCELLED))


@bills_router.callback_query(F.data.startswith("close:") | F.data.startswith("cancel:"))
async def cb_status(callback: CallbackQuery) -> None:
    if not callback.data:
        return
    action, raw_bill_id = callback.data.split(":", 1)
    if not raw_bill_id.isdigit():
        await callback.answer("Unknown bill", show_alert=True)
        return
    status = BillStatus.COMPLETED if action == "close" else BillStatus.CANCELLED
    await callback.answer(await _change_status(callback.from_user.id, int(raw_bill_id), status), show_alert=True)
