"""AI-assisted regrouping of a bulk receipt summary, gated on total drift."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable

from sqlalchemy.orm import Session

from . import crud
from .domain.categories import find_exact
from .domain.entities import CorrectionEntry, Summary
from .exceptions import CorrectionError, ExtractionError
from .recognition.llm import ChatModel, parse_json_block

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a JSON processor. Apply user corrections to receipt summaries. "
    "Return only valid JSON, no explanations."
)


@dataclass(slots=True)
class CorrectionOutcome:
    accepted: bool
    summary: Summary | None = None
    reason: str = ""
    drift: Decimal | None = None


def build_correction_prompt(
    summary: Summary,
    instruction: str,
    allowed: list[str],
    history: list[CorrectionEntry],
) -> str:
    history_text = (
        "\n".join(f'- User: "{entry.user}" -> {entry.result}' for entry in history)
        if history
        else "No previous corrections."
    )
    total = f"{summary.total_amount:.2f}"
    return (
        "You are applying a user's correction to a receipt expense summary.\n\n"
        f"CURRENT SUMMARY (JSON):\n{json.dumps(summary.to_dict(), ensure_ascii=False, indent=2)}\n\n"
        f"AVAILABLE CATEGORIES: {', '.join(allowed)}\n\n"
        f'USER CORRECTION:\n"{instruction}"\n\n'
        f"CORRECTION HISTORY:\n{history_text}\n\n"
        "TASK: apply the correction and return the updated JSON.\n"
        "RULES:\n"
        "- Use ONLY categories from the available list.\n"
        "- Keep every item; only move items between categories.\n"
        "- To merge categories, move all items of one category into the other.\n"
        "- Remove categories that become empty.\n"
        "- NEVER change an item's total; these are the receipt amounts.\n"
        f"- totalAmount must stay {total}.\n"
        f"- currency must stay {summary.currency}.\n\n"
        "RESPONSE FORMAT (strict JSON, no markdown, no commentary):\n"
        '{"categories": [{"name": "Category", "items": [{"name": "Item", "total": 100}]}], '
        f'"totalAmount": {total}, "currency": "{summary.currency}"}}'
    )


class CorrectionEngine:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        chat_model: ChatModel,
        models: list[str],
        tolerance: float = 0.01,
    ) -> None:
        self.session_factory = session_factory
        self.chat_model = chat_model
        self.models = list(dict.fromkeys(model for model in models if model))
        self.tolerance = Decimal(str(tolerance))

    def evaluate(
        self,
        summary: Summary,
        instruction: str,
        allowed: list[str],
        history: list[CorrectionEntry],
    ) -> CorrectionOutcome:
        """Ask the model for a regrouped summary and check it against ``summary``.

        Does not touch storage. Raises ``CorrectionError`` when no model
        produced a parseable summary.
        """
        candidate = self._request(summary, instruction, allowed, history)

        unknown = [name for name in candidate.category_names() if not find_exact(name, allowed)]
        if unknown:
            return CorrectionOutcome(False, reason=f"unknown categories: {', '.join(unknown)}")
        for category in candidate.categories:
            category.name = find_exact(category.name, allowed) or category.name

        drift = candidate.relative_drift(summary.total_amount)
        if drift > self.tolerance:
            new_total = candidate.computed_total()
            logger.warning(
                "Rejected correction %r: total %s drifted from %s (%s)",
                instruction,
                new_total,
                summary.total_amount,
                drift,
            )
            return CorrectionOutcome(
                False,
                reason=(
                    f"the new total {new_total:.2f} differs from the receipt total "
                    f"{summary.total_amount:.2f} {summary.currency} by more than {self.tolerance:.0%}"
                ),
                drift=drift,
            )

        candidate.total_amount = summary.total_amount
        candidate.currency = summary.currency
        return CorrectionOutcome(True, summary=candidate, drift=drift)

    def apply(self, job_id: int, instruction: str) -> CorrectionOutcome:
        with self.session_factory() as db:
            job = crud.get_job(db, job_id)
            summary = crud.load_summary(job) if job else None
            if job is None or summary is None:
                return CorrectionOutcome(False, reason="this receipt has no summary to correct")
            history = crud.load_correction_history(job)
            allowed = list(dict.fromkeys(crud.list_category_names(db, job.group_id) + summary.category_names()))

        try:
            outcome = self.evaluate(summary, instruction, allowed, history)
        except CorrectionError as exc:
            logger.warning("Correction for job %s failed: %s", job_id, exc)
            return CorrectionOutcome(False, reason="the correction could not be processed, please rephrase it")

        if not outcome.accepted:
            return outcome

        with self.session_factory() as db:
            crud.set_summary(db, job_id, outcome.summary)
            crud.append_correction(
                db,
                job_id,
                CorrectionEntry(user=instruction, result=", ".join(outcome.summary.category_names())),
            )
        logger.info("Correction applied to job %s: %r", job_id, instruction)
        return outcome

    def _request(
        self,
        summary: Summary,
        instruction: str,
        allowed: list[str],
        history: list[CorrectionEntry],
    ) -> Summary:
        prompt = build_correction_prompt(summary, instruction, allowed, history)
        last_error: Exception | None = None
        for model in self.models:
            try:
                content = self.chat_model.complete(model, SYSTEM_PROMPT, prompt, temperature=0.3, max_tokens=2000)
                data = parse_json_block(content)
                if not isinstance(data.get("categories"), list):
                    raise ValueError("Summary has no categories array")
                return Summary.from_dict(data)
            except (ExtractionError, ValueError) as exc:
                last_error = exc
                logger.warning("Correction request to %s failed: %s", model, exc)
        raise CorrectionError(f"No model returned a usable summary: {last_error}")
