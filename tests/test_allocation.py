from decimal import Decimal

from billsplit.db.models import Claim, Item, Participant, ShareType
from billsplit.services.allocation import (
    allocate_item,
    bill_multiplier,
    calculate_splits,
    itemized_shares,
    remaining_quantity,
    unclaimed_items,
)


def _item(item_id: int, price: str, quantity: int = 1, name: str = "Item") -> Item:
    return Item(id=item_id, bill_id=1, name=name, price=Decimal(price), quantity=quantity)


def _person(participant_id: int, plus_ones: int = 0, name: str = "") -> Participant:
    return Participant(
        id=participant_id,
        bill_id=1,
        name=name or f"P{participant_id}",
        phone_number="UNSET",
        plus_one_count=plus_ones,
    )


def _claim(claim_id, item_id, participant_id, share_type=ShareType.SOLO, quantity="1", with_ids=()):
    return Claim(
        id=claim_id,
        item_id=item_id,
        participant_id=participant_id,
        share_type=share_type,
        share_with_participant_ids=tuple(with_ids),
        quantity_claimed=Decimal(quantity),
    )


def test_solo_claim_carries_tax_and_tip():
    item = _item(10, "30")
    multiplier = bill_multiplier([item], Decimal("3"), Decimal("3"))
    assert multiplier == Decimal("1.2")

    allocation = allocate_item(item, [_claim(1, 10, 100)], [_person(100), _person(200, 1)], multiplier)

    assert allocation.claim_amounts == {1: Decimal("36.00")}
    assert allocation.participant_amounts == {100: Decimal("36.00")}


def test_split_with_all_weights_plus_ones():
    item = _item(10, "30")
    people = [_person(100), _person(200, plus_ones=1)]
    claim = _claim(1, 10, 100, ShareType.SPLIT_WITH_ALL)

    allocation = allocate_item(item, [claim], people, Decimal("1.2"))

    assert allocation.claim_amounts == {1: Decimal("12.00")}
    assert allocation.participant_amounts == {100: Decimal("12.00"), 200: Decimal("24.00")}


def test_split_with_specific_rounds_each_share():
    item = _item(10, "20")
    people = [_person(100), _person(200, plus_ones=1), _person(300)]
    claim = _claim(1, 10, 100, ShareType.SPLIT_WITH_SPECIFIC, with_ids=[200])

    allocation = allocate_item(item, [claim], people)

    assert allocation.claim_amounts == {1: Decimal("6.67")}
    assert allocation.participant_amounts == {100: Decimal("6.67"), 200: Decimal("13.33")}
    assert abs(allocation.total - Decimal("20")) <= Decimal("0.01")


def test_split_with_specific_ignores_unknown_and_duplicate_sharers():
    item = _item(10, "30")
    claim = _claim(1, 10, 100, ShareType.SPLIT_WITH_SPECIFIC, with_ids=[200, 200, 999, 100])

    allocation = allocate_item(item, [claim], [_person(100), _person(200)])

    assert allocation.participant_amounts == {100: Decimal("15.00"), 200: Decimal("15.00")}


def test_partial_quantities_split_the_line_price():
    item = _item(10, "9", quantity=3)
    claims = [_claim(1, 10, 100, quantity="2"), _claim(2, 10, 200, quantity="1")]

    allocation = allocate_item(item, claims, [_person(100), _person(200)])

    assert allocation.claim_amounts == {1: Decimal("6.00"), 2: Decimal("3.00")}
    assert allocation.total == Decimal("9.00")


def test_solo_weighting_is_opt_in():
    item = _item(10, "10", quantity=2)
    claims = [_claim(1, 10, 100, quantity="1")]
    people = [_person(100, plus_ones=1)]

    assert allocate_item(item, claims, people).claim_amounts == {1: Decimal("5.00")}
    weighted = allocate_item(item, claims, people, weight_solo_claims=True)
    assert weighted.claim_amounts == {1: Decimal("10.00")}


def test_claims_on_other_items_and_unknown_claimers_get_nothing():
    item = _item(10, "10")
    claims = [_claim(1, 11, 100), _claim(2, 10, 999)]

    allocation = allocate_item(item, claims, [_person(100)])

    assert allocation.claim_amounts == {2: Decimal("0.00")}
    assert allocation.participant_amounts == {}


def test_split_with_all_without_participants_is_zero():
    item = _item(10, "10")
    allocation = allocate_item(item, [_claim(1, 10, 100, ShareType.SPLIT_WITH_ALL)], [])
    assert allocation.claim_amounts == {1: Decimal("0.00")}


def test_calculate_splits_whole_bill():
    items = [_item(10, "30", name="Pasta"), _item(11, "20", name="Wine"), _item(12, "10", name="Bread")]
    people = [_person(100), _person(200, plus_ones=1), _person(300)]
    claims = [
        _claim(1, 10, 100),
        _claim(2, 11, 200, ShareType.SPLIT_WITH_SPECIFIC, with_ids=[300]),
        _claim(3, 12, 300, ShareType.SPLIT_WITH_ALL),
    ]

    # subtotal 60, extras 12 -> multiplier 1.2
    splits = calculate_splits(items, people, claims, Decimal("6"), Decimal("6"))

    # pasta 36; wine 24 split 2:1 -> 16 / 8; bread 12 split 1:2:1 -> 3 / 6 / 3
    assert splits == {100: Decimal("39.00"), 200: Decimal("22.00"), 300: Decimal("11.00")}
    assert sum(splits.values()) == Decimal("72.00")


def test_calculate_splits_lists_everyone():
    splits = calculate_splits([_item(10, "5")], [_person(100), _person(200)], [], Decimal(0), Decimal(0))
    assert splits == {100: Decimal("0.00"), 200: Decimal("0.00")}


def test_itemized_shares_are_pre_tax():
    items = [_item(10, "30", name="Pasta"), _item(11, "12", name="Wine")]
    people = [_person(100), _person(200)]
    claims = [_claim(1, 10, 100), _claim(2, 11, 100, ShareType.SPLIT_WITH_SPECIFIC, with_ids=[200])]

    shares = itemized_shares(items, people, claims)

    assert [line.name for line in shares[100].items] == ["Pasta", "Wine"]
    assert shares[100].subtotal == Decimal("36.00")
    assert shares[200].subtotal == Decimal("6.00")


def test_quantity_helpers():
    items = [_item(10, "9", quantity=3), _item(11, "4")]
    claims = [_claim(1, 10, 100, quantity="2")]

    assert remaining_quantity(items[0], claims) == Decimal(1)
    assert remaining_quantity(items[0], claims, exclude_claim_id=1) == Decimal(3)
    assert unclaimed_items(items, claims) == [items[1]]
