from types import SimpleNamespace

import pytest
from aiogram.exceptions import TelegramBadRequest
from aiogram.methods import EditMessageText
from aiogram.types import Message

from billsplit.db.models import SplitWithAll
from billsplit.handlers import bills as bill_handlers
from billsplit.handlers import claims as claim_handlers
from billsplit.services.bills import BillSelector
from billsplit.services.claims import ClaimService


class StubMessage:
    def __init__(self, edit_error: str | None = None) -> None:
        self.edit_error = edit_error
        self.answers: list[str] = []
        self.edits: list[str] = []

    async def answer(self, text: str, **kwargs) -> None:
        self.answers.append(text)

    async def edit_text(self, text: str, **kwargs) -> None:
        if self.edit_error:
            raise TelegramBadRequest(method=EditMessageText(text=text), message=self.edit_error)
        self.edits.append(text)


class StubCallback:
    def __init__(self, data: str) -> None:
        self.data = data
        self.message = Message.model_construct()
        self.from_user = SimpleNamespace(id=777)
        self.alerts: list[str] = []

    async def answer(self, text: str | None = None, show_alert: bool = False) -> None:
        self.alerts.append(text or "")


@pytest.fixture
def wired(store, monkeypatch):
    settings = SimpleNamespace(currency="USD", weight_solo_claims=False)
    monkeypatch.setattr(bill_handlers, "get_global_repository", lambda: store)
    monkeypatch.setattr(bill_handlers, "get_settings", lambda: settings)
    return store


@pytest.mark.asyncio
async def test_organizer_code_shows_itemized_breakdown(wired):
    bill, (pizza,), (alice, bob) = wired.seed([("Pizza", "30", 1)], [("Alice", 0), ("Bob", 1)])
    await ClaimService(wired).submit_claim(pizza.id, alice.id, SplitWithAll())

    by_code = StubMessage()
    await bill_handlers.render_bill(by_code, 1, BillSelector(code=bill.code))
    organizer = StubMessage()
    await bill_handlers.render_bill(organizer, 1, BillSelector(organizer_code=bill.organizer_access_code))

    assert "Itemized" not in by_code.answers[0]
    text = organizer.answers[0]
    assert "Itemized (before tax and tip):" in text
    assert "Bob: $20.00" in text
    assert "   Pizza: $10.00" in text


@pytest.mark.asyncio
async def test_unchanged_edit_is_ignored(wired):
    bill, _, _ = wired.seed([("Pizza", "30", 1)], [("Alice", 0)])

    message = StubMessage(edit_error="Bad Request: message is not modified")
    await bill_handlers.render_bill(message, 1, BillSelector(bill_id=bill.id), edit=True)
    assert message.edits == []

    message = StubMessage(edit_error="Bad Request: message to edit not found")
    with pytest.raises(TelegramBadRequest):
        await bill_handlers.render_bill(message, 1, BillSelector(bill_id=bill.id), edit=True)


@pytest.mark.asyncio
async def test_malformed_callback_data_is_answered():
    claim = StubCallback("claim:abc")
    await claim_handlers.cb_toggle_claim(claim)  # type: ignore[arg-type]
    assert claim.alerts == ["Unknown item"]

    refresh = StubCallback("bill:")
    await bill_handlers.cb_refresh(refresh)  # type: ignore[arg-type]
    assert refresh.alerts == ["Unknown bill"]

    status = StubCallback("close:1x")
    await bill_handlers.cb_status(status)  # type: ignore[arg-type]
    assert status.alerts == ["Unknown bill"]
