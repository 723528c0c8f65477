from dataclasses import dataclass
from decimal import Decimal

import pytest

from receiptbot.domain.entities import Summary, SummaryCategory, SummaryLine, to_money


@dataclass
class FakeItem:
    id: int
    name_localized: str
    total: Decimal
    currency: str
    suggested_category: str


def items():
    return [
        FakeItem(1, "Bread", Decimal("3.00"), "EUR", "Groceries"),
        FakeItem(2, "Soap", Decimal("4.50"), "EUR", "Household"),
        FakeItem(3, "Milk", Decimal("1.20"), "EUR", "Groceries"),
        FakeItem(4, "Milk", Decimal("2.40"), "EUR", "Groceries"),
    ]


def test_to_money_rounds_and_rejects_garbage():
    assert to_money("12.345") == Decimal("12.35")
    assert to_money(7) == Decimal("7.00")
    for bad in (True, "abc", None, float("nan")):
        with pytest.raises(ValueError):
            to_money(bad)


def test_from_items_groups_by_suggestion_in_first_seen_order():
    summary = Summary.from_items(items())

    assert summary.category_names() == ["Groceries", "Household"]
    assert [line.name for line in summary.categories[0].items] == ["Bread", "Milk", "Milk"]
    assert summary.total_amount == Decimal("11.10")
    assert summary.currency == "EUR"
    assert summary.line_count() == 4


def test_dict_round_trip_keeps_total_and_drops_empty_categories():
    data = Summary.from_items(items()).to_dict()
    data["categories"].append({"name": "Empty", "items": []})

    restored = Summary.from_dict(data)

    assert restored.category_names() == ["Groceries", "Household"]
    assert restored.total_amount == Decimal("11.10")


def test_from_dict_rejects_nameless_category():
    with pytest.raises(ValueError):
        Summary.from_dict({"categories": [{"name": "", "items": [{"name": "x", "total": 1}]}]})


def test_relative_drift():
    summary = Summary([SummaryCategory("A", [SummaryLine("x", Decimal("208.00"))])], Decimal("210.00"), "RSD")
    assert summary.relative_drift(Decimal("210.00")) < Decimal("0.01")

    empty = Summary([], Decimal("0"), "RSD")
    assert empty.relative_drift(Decimal("0")) == 0
    assert summary.relative_drift(Decimal("0")) == Decimal("Infinity")


def test_assign_categories_uses_each_line_once():
    summary = Summary(
        categories=[
            SummaryCategory("Dairy", [SummaryLine("Milk", Decimal("2.40"))]),
            SummaryCategory("Groceries", [SummaryLine("Bread", Decimal("3.00")), SummaryLine("Milk", Decimal("1.20"))]),
        ],
        total_amount=Decimal("11.10"),
        currency="EUR",
    )

    assignment = summary.assign_categories(items())

    assert assignment == {1: "Groceries", 2: "Household", 3: "Groceries", 4: "Dairy"}
