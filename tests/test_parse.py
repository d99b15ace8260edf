from decimal import Decimal

import pytest

from billsplit.db.models import ShareType
from billsplit.utils.parse import parse_bill_draft, parse_claim_command


def test_parse_claim_command_solo():
    command = parse_claim_command("3")
    assert command.item_number == 3
    assert command.share_type == ShareType.SOLO
    assert command.quantity is None

    command = parse_claim_command("#2 0.5")
    assert command.item_number == 2
    assert command.quantity == Decimal("0.5")


def test_parse_claim_command_splits():
    assert parse_claim_command("4 all").share_type == ShareType.SPLIT_WITH_ALL

    command = parse_claim_command("4 with 2, 3 2")
    assert command.share_type == ShareType.SPLIT_WITH_SPECIFIC
    assert command.with_numbers == (2, 3)


@pytest.mark.parametrize("args", ["", "x", "0", "3 all extra", "3 with", "3 two", "3 1 2"])
def test_parse_claim_command_rejects(args):
    with pytest.raises(ValueError):
        parse_claim_command(args)


def test_parse_bill_draft():
    draft = parse_bill_draft(
        "\n".join(
            [
                "Margherita | $14.50",
                "IPA | 18 | 3",
                "guest: Alice +1",
                "guest: Bob | 555 123 4567",
                "tax: 2.90",
                "tip: 5",
            ]
        ),
        organizer_id=42,
    )

    assert [(i.name, i.price, i.quantity) for i in draft.items] == [
        ("Margherita", Decimal("14.50"), 1),
        ("IPA", Decimal("18"), 3),
    ]
    assert [(p.name, p.plus_one_count, p.phone) for p in draft.participants] == [
        ("Alice", 1, None),
        ("Bob", 0, "555 123 4567"),
    ]
    assert draft.tax_amount == Decimal("2.90")
    assert draft.tip_amount == Decimal("5")
    assert draft.organizer_id == 42


@pytest.mark.parametrize(
    "text",
    [
        "Pizza | 10",
        "guest: Alice",
        "Pizza | ten\nguest: Alice",
        "Pizza | 10 | 0\nguest: Alice",
        "Pizza | 10\nguest: Alice\ntax: -1",
        "Pizza\nguest: Alice",
    ],
)
def test_parse_bill_draft_rejects(text):
    with pytest.raises(ValueError):
        parse_bill_draft(text)
