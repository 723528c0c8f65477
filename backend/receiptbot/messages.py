"""Chat wording for the receipt flow. All dynamic text is HTML-escaped."""

from __future__ import annotations

import html
from decimal import Decimal

from .domain.actions import (
    AcceptMatch,
    AcceptSummary,
    ConfirmItem,
    CorrectSummary,
    CreateCategory,
    ItemwiseSummary,
    OtherCategory,
    SkipItem,
    SUGGESTED_OPTION,
)
from .domain.entities import Summary
from .models import ItemModel
from .notifier import Button, Prompt

MAX_NAMES_PER_CATEGORY = 3


def _money(amount: Decimal | float, currency: str) -> str:
    return f"{Decimal(str(amount)):.2f} {html.escape(currency)}"


def _quantity(value: Decimal) -> str:
    text = f"{Decimal(str(value)):f}"
    return text.rstrip("0").rstrip(".") if "." in text else text


def item_prompt(item: ItemModel, alternatives: list[str], position: int, count: int) -> Prompt:
    name = html.escape(item.name_localized)
    lines = [f"🧾 <b>Item {position} of {count}</b>", f"<b>{name}</b>"]
    if item.name_original and item.name_original != item.name_localized:
        lines.append(f"<i>{html.escape(item.name_original)}</i>")
    lines.append(
        f"{_quantity(item.quantity)} × {_money(item.unit_price, item.currency)} = <b>{_money(item.total, item.currency)}</b>"
    )
    lines.append(f"Suggested category: <b>{html.escape(item.suggested_category)}</b>")

    buttons = [[Button(f"✅ {item.suggested_category}", ConfirmItem(item.id, SUGGESTED_OPTION))]]
    row: list[Button] = []
    for index, category in enumerate(alternatives):
        row.append(Button(category, ConfirmItem(item.id, index)))
        if len(row) == 2:
            buttons.append(row)
            row = []
    if row:
        buttons.append(row)
    buttons.append([Button("✏️ Other", OtherCategory(item.id)), Button("⏭ Skip", SkipItem(item.id))])
    return Prompt("\n".join(lines), buttons)


def summary_prompt(job_id: int, summary: Summary) -> Prompt:
    lines = [f"🧾 <b>Receipt with {summary.line_count()} items</b>", ""]
    for category in summary.categories:
        lines.append(f"<b>{html.escape(category.name)}</b>: {_money(category.total, summary.currency)}")
        names = [html.escape(line.name) for line in category.items[:MAX_NAMES_PER_CATEGORY]]
        rest = len(category.items) - len(names)
        listing = ", ".join(names)
        if rest > 0:
            listing += f" and {rest} more"
        lines.append(f"    {listing}")
    lines.append("")
    lines.append(f"<b>Total: {_money(summary.total_amount, summary.currency)}</b>")

    buttons = [
        [Button("✅ Accept all", AcceptSummary(job_id))],
        [Button("✏️ Correct", CorrectSummary(job_id)), Button("📋 One by one", ItemwiseSummary(job_id))],
    ]
    return Prompt("\n".join(lines), buttons)


def error_prompt(message: str) -> Prompt:
    return Prompt(f"⚠️ {html.escape(message)}")


def category_input_prompt(item: ItemModel) -> Prompt:
    return Prompt(f"✏️ Type a category for <b>{html.escape(item.name_localized)}</b>.")


def category_match_prompt(item: ItemModel, typed: str, match: str) -> Prompt:
    text = (
        f"No category named <b>{html.escape(typed)}</b>. "
        f"Did you mean <b>{html.escape(match)}</b>?"
    )
    buttons = [
        [Button(f"✅ {match}", AcceptMatch(item.id))],
        [Button(f"➕ Create {typed}", CreateCategory(item.id))],
    ]
    return Prompt(text, buttons)


def item_confirmed_prompt(item: ItemModel, category: str | None) -> Prompt:
    name = html.escape(item.name_localized)
    if category is None:
        return Prompt(f"⏭ Skipped <b>{name}</b>.")
    return Prompt(f"✅ <b>{name}</b>: {html.escape(category)}, {_money(item.total, item.currency)}")


def correction_request_prompt() -> Prompt:
    return Prompt(
        "✏️ Describe how to regroup the items, for example "
        "<i>move the milk to Groceries</i> or <i>merge Snacks into Food</i>."
    )


def correction_rejected_prompt(reason: str) -> Prompt:
    return Prompt(
        f"❌ Correction not applied: {html.escape(reason)}\n"
        "Send another instruction to try again, or pick an option on the summary."
    )


def job_done_prompt(saved: int, total: Decimal, currency: str) -> Prompt:
    return Prompt(f"✅ Receipt saved: {saved} items, {_money(total, currency)}.")
