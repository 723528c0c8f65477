from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Protocol

from ..models import PayloadKind

CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Coerce a number or numeric string into a two-place Decimal."""
    if isinstance(value, bool):
        raise ValueError("Boolean is not an amount.")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Not an amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Not an amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(slots=True, frozen=True)
class Payload:
    """What a job recognises: a photo handle, a receipt URL or raw receipt text."""

    kind: PayloadKind
    value: str

    @property
    def is_photo(self) -> bool:
        return self.kind == PayloadKind.PHOTO


@dataclass(slots=True)
class RecognizedItem:
    """A line item as produced by the extraction model, before it is stored."""

    name_localized: str
    quantity: Decimal
    unit_price: Decimal
    total: Decimal
    category: str
    name_original: str | None = None
    possible_categories: list[str] = field(default_factory=list)


@dataclass(slots=True)
class RecognitionResult:
    items: list[RecognizedItem]
    currency: str | None = None
    source: str = ""

    @property
    def total(self) -> Decimal:
        return sum((item.total for item in self.items), Decimal("0"))


class SummarisableItem(Protocol):
    id: int
    name_localized: str
    total: Decimal
    currency: str
    suggested_category: str


@dataclass(slots=True)
class SummaryLine:
    name: str
    total: Decimal

    def to_dict(self) -> dict[str, object]:
        return {"name": self.name, "total": float(self.total)}


@dataclass(slots=True)
class SummaryCategory:
    name: str
    items: list[SummaryLine] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((line.total for line in self.items), Decimal("0"))

    def to_dict(self) -> dict[str, object]:
        return {"name": self.name, "items": [line.to_dict() for line in self.items]}


@dataclass(slots=True)
class Summary:
    """Bulk view of a receipt: item lines grouped by category."""

    categories: list[SummaryCategory]
    total_amount: Decimal
    currency: str

    @classmethod
    def from_items(cls, items: Iterable[SummarisableItem], default_currency: str = "EUR") -> "Summary":
        grouped: dict[str, list[SummaryLine]] = {}
        currency = None
        for item in items:
            currency = currency or item.currency
            grouped.setdefault(item.suggested_category, []).append(
                SummaryLine(name=item.name_localized, total=to_money(item.total))
            )
        categories = [SummaryCategory(name=name, items=lines) for name, lines in grouped.items()]
        total = sum((category.total for category in categories), Decimal("0"))
        return cls(categories=categories, total_amount=total, currency=currency or default_currency)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Summary":
        categories: list[SummaryCategory] = []
        for raw_category in data.get("categories") or []:
            if not isinstance(raw_category, dict):
                raise ValueError("Summary category is not an object.")
            name = str(raw_category.get("name") or "").strip()
            if not name:
                raise ValueError("Summary category without a name.")
            lines = [
                SummaryLine(name=str(raw_line.get("name") or "").strip(), total=to_money(raw_line.get("total")))
                for raw_line in raw_category.get("items") or []
                if isinstance(raw_line, dict)
            ]
            if lines:
                categories.append(SummaryCategory(name=name, items=lines))
        total_raw = data.get("totalAmount", data.get("total_amount"))
        summary = cls(
            categories=categories,
            total_amount=Decimal("0"),
            currency=str(data.get("currency") or ""),
        )
        summary.total_amount = to_money(total_raw) if total_raw is not None else summary.computed_total()
        return summary

    def to_dict(self) -> dict[str, object]:
        return {
            "categories": [category.to_dict() for category in self.categories],
            "totalAmount": float(self.total_amount),
            "currency": self.currency,
        }

    def computed_total(self) -> Decimal:
        return sum((category.total for category in self.categories), Decimal("0"))

    def category_names(self) -> list[str]:
        return [category.name for category in self.categories]

    def line_count(self) -> int:
        return sum(len(category.items) for category in self.categories)

    def relative_drift(self, original_total: Decimal) -> Decimal:
        """Relative difference between the recomputed total and ``original_total``."""
        new_total = self.computed_total()
        if original_total == 0:
            return Decimal("0") if new_total == 0 else Decimal("Infinity")
        return abs(new_total - original_total) / abs(original_total)

    def assign_categories(self, items: Iterable[SummarisableItem]) -> dict[int, str]:
        """Map item ids to the category their line sits in.

        Lines are matched by name and total first, then by name alone; every
        line is used at most once. Items without a line keep their suggestion.
        """
        free: defaultdict[str, list[tuple[Decimal, str]]] = defaultdict(list)
        for category in self.categories:
            for line in category.items:
                free[line.name.casefold()].append((line.total, category.name))

        assignment: dict[int, str] = {}
        for item in items:
            candidates = free.get(item.name_localized.casefold(), [])
            total = to_money(item.total)
            chosen = next((entry for entry in candidates if entry[0] == total), None)
            if chosen is None and candidates:
                chosen = candidates[0]
            if chosen is None:
                assignment[item.id] = item.suggested_category
                continue
            candidates.remove(chosen)
            assignment[item.id] = chosen[1]
        return assignment


@dataclass(slots=True, frozen=True)
class CorrectionEntry:
    user: str
    result: str

    def to_dict(self) -> dict[str, str]:
        return {"user": self.user, "result": self.result}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CorrectionEntry":
        return cls(user=str(data.get("user", "")), result=str(data.get("result", "")))


@dataclass(slots=True, frozen=True)
class ExpenseRecord:
    """Data handed to the expense persistence collaborator."""

    date: date
    category: str
    comment: str
    amount: Decimal
    currency: str
    item_id: int | None = None

    def get_details(self) -> str:
        comment_part = f" ({self.comment})" if self.comment else ""
        return f"{self.category} on {self.date.isoformat()}: {self.amount:.2f} {self.currency}{comment_part}"
