from __future__ import annotations

import json
import logging
import time
from decimal import Decimal
from typing import Callable

from pydantic import ValidationError

from ..domain.categories import CategoryMatcher, FuzzyCategoryMatcher, find_exact, normalize_category_name
from ..domain.entities import RecognitionResult, RecognizedItem, to_money
from ..exceptions import ExtractionError
from ..schemas import ExtractedItemPayload, ExtractionPayload
from .llm import ChatModel, parse_json_block

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a receipt parser. Extract items from receipts and return valid JSON only."

MAX_ALTERNATIVES = 3


def build_extraction_prompt(text: str, categories: list[str], language: str) -> str:
    if categories:
        category_rules = (
            "Existing categories in this group:\n"
            + "\n".join(f"- {name}" for name in categories)
            + "\n\nEvery category and possibleCategories entry MUST be one of the existing categories "
            "above, spelled exactly as listed. Never invent a new category."
        )
    else:
        category_rules = "The group has no categories yet; suggest short, general category names."

    example = {
        "items": [
            {
                "nameLocalized": f"Product name in {language}",
                "nameOriginal": "Original product name",
                "quantity": 1.5,
                "price": 100.5,
                "total": 150.75,
                "category": "Category",
                "possibleCategories": ["Alternative 1", "Alternative 2"],
            }
        ],
        "currency": "EUR",
    }
    return (
        "Extract all items from this receipt and return a JSON object with this structure:\n\n"
        f"{json.dumps(example, ensure_ascii=False, indent=2)}\n\n"
        "Instructions:\n"
        f"1. Translate every product name to {language} (nameLocalized).\n"
        "2. Keep the printed name in nameOriginal when it is in a different language.\n"
        "3. Extract quantity, price per unit and total amount for each item. Fold discounts into the item they apply to.\n"
        "4. Assign the most appropriate category to each item.\n"
        f"5. Give 1-{MAX_ALTERNATIVES} alternative categories in possibleCategories.\n"
        "6. Detect the ISO currency code of the receipt (e.g. RSD, EUR, USD).\n\n"
        f"{category_rules}\n\n"
        f"Receipt text:\n{text}\n\n"
        "Return ONLY valid JSON, no additional text or explanations."
    )


def fold_discounts(items: list[RecognizedItem]) -> list[RecognizedItem]:
    """Merge negative lines into the item before them.

    A negative line that would push that item below zero, or that has no
    item before it, is dropped. Zero-total lines are dropped too.
    """
    kept: list[RecognizedItem] = []
    for item in items:
        if item.total > 0:
            kept.append(item)
            continue
        if item.total < 0 and kept and kept[-1].total + item.total >= 0:
            previous = kept[-1]
            previous.total = previous.total + item.total
            logger.info("Folded %r (%s) into %r", item.name_localized, item.total, previous.name_localized)
            continue
        logger.warning("Dropping line %r with total %s", item.name_localized, item.total)
    for item in kept:
        if item.quantity <= 0:
            item.quantity = Decimal("1.000")
    return kept


class ReceiptExtractor:
    """Structured item extraction with bounded retries and a fallback model."""

    def __init__(
        self,
        chat_model: ChatModel,
        models: list[str],
        language: str = "English",
        default_category: str = "Misc",
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        matcher: CategoryMatcher | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.chat_model = chat_model
        self.models = list(dict.fromkeys(model for model in models if model))
        self.language = language
        self.default_category = default_category
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.matcher = matcher or FuzzyCategoryMatcher()
        self._sleep = sleep

    def extract(self, text: str, categories: list[str]) -> RecognitionResult:
        prompt = build_extraction_prompt(text, categories, self.language)
        last_error: Exception | None = None

        for model in self.models:
            for attempt in range(1, self.max_attempts + 1):
                logger.info(
                    "Sending %s chars to %s (attempt %s/%s)", len(text), model, attempt, self.max_attempts
                )
                try:
                    content = self.chat_model.complete(model, SYSTEM_PROMPT, prompt, temperature=0.3, max_tokens=4000)
                    payload = ExtractionPayload.model_validate(parse_json_block(content))
                    if not payload.items:
                        raise ExtractionError("Items array is empty.")
                    return self._to_result(payload, categories, source=model)
                except (ExtractionError, ValidationError, ValueError) as exc:
                    last_error = exc
                    logger.warning("Extraction attempt %s/%s with %s failed: %s", attempt, self.max_attempts, model, exc)
                if attempt < self.max_attempts:
                    self._sleep(self.backoff_seconds * 2 ** (attempt - 1))
            logger.warning("Model %s exhausted its attempts", model)

        raise ExtractionError(f"Failed to extract receipt data: {last_error}")

    def _to_result(self, payload: ExtractionPayload, categories: list[str], source: str) -> RecognitionResult:
        items = fold_discounts([self._to_item(raw, categories) for raw in payload.items])
        if not items:
            raise ExtractionError("No item with a positive total.")
        return RecognitionResult(items=items, currency=payload.currency, source=source)

    def _to_item(self, raw: ExtractedItemPayload, categories: list[str]) -> RecognizedItem:
        category = self.resolve_category(raw.category, categories)

        alternatives: list[str] = []
        for name in raw.possible_categories:
            known = find_exact(name, categories) if categories else normalize_category_name(name)
            if known and known != category and known not in alternatives:
                alternatives.append(known)

        return RecognizedItem(
            name_localized=raw.name_localized,
            name_original=(raw.name_original or "").strip() or None,
            quantity=Decimal(str(raw.quantity)).quantize(Decimal("0.001")),
            unit_price=to_money(raw.price),
            total=to_money(raw.total),
            category=category,
            possible_categories=alternatives[:MAX_ALTERNATIVES],
        )

    def resolve_category(self, proposed: str, categories: list[str]) -> str:
        """Map a proposed category onto the known set."""
        if not categories:
            return normalize_category_name(proposed)
        exact = find_exact(proposed, categories)
        if exact:
            return exact
        closest = self.matcher.closest(proposed, categories)
        replacement = closest or self.default_category
        logger.warning("Model proposed unknown category %r; using %r", proposed, replacement)
        return replacement
