from datetime import date
from decimal import Decimal

from receiptbot import crud
from receiptbot.domain.entities import ExpenseRecord
from receiptbot.expenses import LedgerExpenseSink
from receiptbot.models import ItemStatus

from conftest import recognized


def test_create_items_stores_amounts_and_alternatives(db, group_id, seed_job):
    job_id = seed_job(group_id, [recognized("Bread", "3.00", "Groceries", ["Household"])], currency="eur")

    [item] = crud.list_items(db, job_id)
    assert item.total == Decimal("3.00")
    assert item.currency == "EUR"
    assert item.status == ItemStatus.PENDING
    assert crud.load_possible_categories(item) == ["Household"]


def test_confirm_item_is_idempotent(db, group_id, seed_job):
    job_id = seed_job(group_id, [recognized("Bread", "3.00", "Groceries")])
    item = crud.next_pending_item(db, job_id)

    assert crud.confirm_item(db, item.id, "Groceries") is True
    assert crud.confirm_item(db, item.id, "Household") is False
    assert crud.get_item(db, item.id).confirmed_category == "Groceries"
    assert crud.next_pending_item(db, job_id) is None


def test_only_one_item_per_group_waits_for_input(db, group_id, seed_job):
    first_job = seed_job(group_id, [recognized("Bread", "3.00", "Groceries")])
    second_job = seed_job(group_id, [recognized("Soap", "4.00", "Household")])
    bread = crud.next_pending_item(db, first_job)
    soap = crud.next_pending_item(db, second_job)

    crud.arm_category_input(db, bread.id)
    crud.arm_category_input(db, soap.id)

    waiting = [item for job in (first_job, second_job) for item in crud.list_items(db, job) if item.waiting_for_category_input]
    assert [item.id for item in waiting] == [soap.id]
    assert crud.find_item_waiting_for_input(db, group_id).id == soap.id


def test_arming_correction_clears_item_input_and_vice_versa(db, group_id, seed_job):
    job_id = seed_job(group_id, [recognized("Bread", "3.00", "Groceries")])
    bread = crud.next_pending_item(db, job_id)

    crud.arm_category_input(db, bread.id)
    crud.set_waiting_for_correction(db, job_id, True)
    assert crud.find_item_waiting_for_input(db, group_id) is None
    assert crud.find_job_waiting_for_correction(db, group_id).id == job_id

    crud.arm_category_input(db, bread.id)
    assert crud.find_job_waiting_for_correction(db, group_id) is None
    assert crud.find_item_waiting_for_input(db, group_id).id == bread.id


def test_confirmed_categories_are_distinct_and_ordered(db, group_id, seed_job):
    job_id = seed_job(
        group_id,
        [
            recognized("Bread", "3.00", "Groceries"),
            recognized("Soap", "4.00", "Household"),
            recognized("Milk", "1.00", "Groceries"),
        ],
    )
    bread, soap, milk = crud.list_items(db, job_id)
    crud.confirm_item(db, bread.id, "Groceries")
    crud.confirm_item(db, soap.id, None)
    crud.confirm_item(db, milk.id, "Groceries")

    assert crud.confirmed_categories(db, job_id) == ["Groceries"]


def test_get_or_create_category_is_case_insensitive(db, group_id):
    existing = crud.get_or_create_category(db, group_id, "groceries")
    created = crud.get_or_create_category(db, group_id, "pet food")

    assert existing.name == "Groceries"
    assert created.name == "Pet food"
    assert "Pet food" in crud.list_category_names(db, group_id)


def test_ledger_sink_writes_expense(session_factory, group_id):
    sink = LedgerExpenseSink(session_factory)
    record = ExpenseRecord(
        date=date(2026, 10, 1),
        category="Hardware",
        comment="Tools",
        amount=Decimal("30.00"),
        currency="eur",
        item_id=None,
    )

    sink.commit(group_id, record)

    with session_factory() as db:
        [expense] = crud.list_expenses(db, group_id)
    assert (expense.category, expense.currency, expense.comment) == ("Hardware", "EUR", "Tools")
    assert Decimal(str(expense.amount)) == Decimal("30.00")
