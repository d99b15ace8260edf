from __future__ import annotations

from aiogram import Router
from aiogram.filters import Command, CommandObject, CommandStart
from aiogram.types import Message

from billsplit.handlers.bills import render_bill
from billsplit.services.bills import BillSelector
from billsplit.services.errors import BillSplitError
from billsplit.state import state

basic_router = Router()

HELP_TEXT = (
    "How it works:\n"
    "1. The organizer sends /newbill with the receipt items and the guests.\n"
    "2. Everyone sends /join <bill code> <their number>.\n"
    "3. Tap the items you had, or use:\n"
    "   /claim 3 — one of item 3\n"
    "   /claim 3 2 — two of item 3\n"
    "   /claim 3 all — split item 3 between everyone\n"
    "   /claim 3 with 2 4 — split item 3 with participants 2 and 4\n"
    "   /unclaim 3 — drop your claim on item 3\n"
    "4. /bill shows who owes what, tax and tip included. /myclaims lists yours.\n"
    "Organizer: /close when settled, /cancelbill to cancel."
)


@basic_router.message(CommandStart())
async def cmd_start(message: Message, command: CommandObject) -> None:
    user = message.from_user
    if not user:
        return

    # deep link: t.me/<bot>?start=bill_<code>
    if command.args and command.args.startswith("bill_"):
        try:
            await render_bill(message, user.id, BillSelector(code=command.args[5:]))
        except BillSplitError as exc:
            await message.answer(exc.reason)
        return

    state.clear_user(user.id)
    await message.answer(f"Hi, {user.first_name}! I split restaurant bills by what each person had.\n\n{HELP_TEXT}")


@basic_router.message(Command("help"))
async def cmd_help(message: Message) -> None:
    await message.answer(HELP_TEXT)
