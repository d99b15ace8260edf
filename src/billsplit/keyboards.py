from __future__ import annotations

from typing import Optional

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup

from billsplit.db.models import ShareType
from billsplit.services.bills import BillAggregate


def _short(name: str, limit: int = 24) -> str:
    return name if len(name) <= limit else name[: limit - 1] + "…"


def build_claim_keyboard(aggregate: BillAggregate, participant_id: Optional[int]) -> InlineKeyboardMarkup:
    """One row per item: toggle a solo claim, or split it with everyone."""
    rows: list[list[InlineKeyboardButton]] = []
    if aggregate.bill.is_active and participant_id is not None:
        mine = {
            claim.item_id: claim
            for claim in aggregate.claims
            if claim.participant_id == participant_id
        }
        for number, item in enumerate(aggregate.items, start=1):
            claim = mine.get(item.id)
            if claim is None:
                text = f"{number}. {_short(item.name)}"
            elif claim.share_type == ShareType.SPLIT_WITH_ALL:
                text = f"· {number}. {_short(item.name)} (everyone)"
            else:
                text = f"· {number}. {_short(item.name)}"
            rows.append(
                [
                    InlineKeyboardButton(text=text, callback_data=f"claim:{item.id}"),
                    InlineKeyboardButton(text="÷ all", callback_data=f"splitall:{item.id}"),
                ]
            )
    rows.append([InlineKeyboardButton(text="Refresh", callback_data=f"bill:{aggregate.bill.id}")])
    return InlineKeyboardMarkup(inline_keyboard=rows)


def organizer_keyboard(bill_id: int) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [InlineKeyboardButton(text="Mark settled", callback_data=f"close:{bill_id}")],
            [InlineKeyboardButton(text="Cancel bill", callback_data=f"cancel:{bill_id}")],
        ]
    )
