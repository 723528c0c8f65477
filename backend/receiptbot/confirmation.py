"""Confirmation state machine for recognised receipt items.

Small receipts are confirmed one item at a time; larger ones are shown as a
category summary that can be accepted, corrected in free text, or expanded
into the item-by-item flow. Every confirmed item is handed to the expense
sink exactly once.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from decimal import Decimal
from typing import Callable

from sqlalchemy.orm import Session

from . import crud, messages
from .config import Settings
from .correction import CorrectionEngine
from .domain.actions import (
    SUGGESTED_OPTION,
    AcceptMatch,
    AcceptSummary,
    Action,
    ConfirmItem,
    CorrectSummary,
    CreateCategory,
    ItemwiseSummary,
    OtherCategory,
    SkipItem,
)
from .domain.categories import CategoryMatcher, FuzzyCategoryMatcher, find_exact, normalize_category_name
from .domain.entities import ExpenseRecord, Summary, to_money
from .exceptions import ActionRejected, InvalidAction, InvalidStatusTransition
from .expenses import ExpenseSink
from .models import ItemModel, ItemStatus, JobModel, JobStatus
from .notifier import ChatTarget, Notifier

logger = logging.getLogger(__name__)


class ConfirmationService:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        notifier: Notifier,
        sink: ExpenseSink,
        correction: CorrectionEngine,
        settings: Settings,
        matcher: CategoryMatcher | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.notifier = notifier
        self.sink = sink
        self.correction = correction
        self.settings = settings
        self.matcher = matcher or FuzzyCategoryMatcher()

    # Entry points

    async def start(self, job_id: int) -> None:
        """Present freshly recognised items in the mode their count calls for."""
        summary: Summary | None = None
        with self.session_factory() as db:
            job = self._active_job(db, job_id)
            pending = crud.list_pending_items(db, job_id)
            target = self._target(db, job)
            if len(pending) > self.settings.itemwise_threshold:
                group = crud.get_group(db, job.group_id)
                summary = Summary.from_items(pending, group.default_currency if group else self.settings.default_currency)
                crud.set_summary(db, job_id, summary)
                crud.set_summary_mode(db, job_id, True)
            else:
                crud.set_summary_mode(db, job_id, False)

        if summary is None:
            await self.show_next_item(job_id)
            return

        logger.info("Job %s: %s items, showing summary", job_id, summary.line_count())
        message_id = await self.notifier.send(target, messages.summary_prompt(job_id, summary))
        with self.session_factory() as db:
            crud.set_summary_message(db, job_id, message_id)

    async def show_next_item(self, job_id: int) -> None:
        with self.session_factory() as db:
            job = crud.get_job(db, job_id)
            if job is None or job.status != JobStatus.PROCESSING:
                return
            item = crud.next_pending_item(db, job_id)
            if item is None:
                prompt = None
            else:
                items = crud.list_items(db, job_id)
                position = sum(1 for entry in items if entry.status == ItemStatus.CONFIRMED) + 1
                prompt = messages.item_prompt(item, self._alternatives(db, item), position, len(items))
            target = self._target(db, job)

        if prompt is None:
            await self._complete(job_id)
            return
        await self.notifier.send(target, prompt)

    async def handle_action(self, action: Action) -> None:
        if isinstance(action, ConfirmItem):
            await self.confirm_option(action.item_id, action.option)
        elif isinstance(action, OtherCategory):
            await self.request_category_input(action.item_id)
        elif isinstance(action, SkipItem):
            await self.skip_item(action.item_id)
        elif isinstance(action, AcceptMatch):
            await self.accept_match(action.item_id)
        elif isinstance(action, CreateCategory):
            await self.create_typed_category(action.item_id)
        elif isinstance(action, AcceptSummary):
            await self.accept_summary(action.job_id)
        elif isinstance(action, CorrectSummary):
            await self.request_correction(action.job_id)
        elif isinstance(action, ItemwiseSummary):
            await self.switch_to_itemwise(action.job_id)
        else:
            raise InvalidAction(f"Unsupported action {action!r}.")

    async def handle_text(self, group_id: int, text: str) -> bool:
        """Consume a group's text message if the flow is waiting for one."""
        typed = text.strip()
        if not typed:
            return False

        with self.session_factory() as db:
            item = crud.find_item_waiting_for_input(db, group_id)
            job = None if item else crud.find_job_waiting_for_correction(db, group_id)

        if item is not None:
            await self._receive_category(group_id, item, typed)
            return True
        if job is not None:
            await self._receive_correction(job.id, typed)
            return True
        return False

    # Item-by-item flow

    async def confirm_option(self, item_id: int, option: int) -> None:
        with self.session_factory() as db:
            item = self._item_for_action(db, item_id)
            if item is None:
                return
            if option == SUGGESTED_OPTION:
                category = item.suggested_category
            else:
                alternatives = self._alternatives(db, item)
                if option >= len(alternatives):
                    raise ActionRejected(f"Item {item_id} has no category option {option}.")
                category = alternatives[option]
        await self._confirm_and_advance(item_id, category)

    async def request_category_input(self, item_id: int) -> None:
        with self.session_factory() as db:
            item = self._item_for_action(db, item_id)
            if item is None:
                return
            crud.arm_category_input(db, item_id)
            target = self._target(db, item.job)
        await self.notifier.send(target, messages.category_input_prompt(item))

    async def skip_item(self, item_id: int) -> None:
        with self.session_factory() as db:
            item = self._item_for_action(db, item_id)
            if item is None:
                return
            skipped = crud.confirm_item(db, item_id, None)
            target = self._target(db, item.job)
        if not skipped:
            return
        logger.info("Item %s skipped", item_id)
        await self.notifier.send(target, messages.item_confirmed_prompt(item, None))
        await self.show_next_item(item.job_id)

    async def accept_match(self, item_id: int) -> None:
        with self.session_factory() as db:
            item = self._item_for_action(db, item_id)
            if item is None:
                return
            match = item.pending_category_match
        if not match:
            raise ActionRejected(f"Item {item_id} has no category match to accept.")
        await self._confirm_and_advance(item_id, match)

    async def create_typed_category(self, item_id: int) -> None:
        with self.session_factory() as db:
            item = self._item_for_action(db, item_id)
            if item is None:
                return
            typed = item.pending_category_input
        if not typed:
            raise ActionRejected(f"Item {item_id} has no typed category to create.")
        await self._confirm_and_advance(item_id, normalize_category_name(typed))

    async def _receive_category(self, group_id: int, item: ItemModel, typed: str) -> None:
        match = None
        with self.session_factory() as db:
            names = crud.list_category_names(db, group_id)
            exact = find_exact(typed, names)
            if exact is None:
                match = self.matcher.closest(typed, names)
                if match:
                    crud.set_pending_category_choice(db, item.id, typed, match)
                    target = self._target(db, crud.get_job(db, item.job_id))

        if exact:
            await self._confirm_and_advance(item.id, exact)
        elif match:
            await self.notifier.send(target, messages.category_match_prompt(item, typed, match))
        else:
            await self._confirm_and_advance(item.id, normalize_category_name(typed))

    async def _confirm_and_advance(self, item_id: int, category: str) -> None:
        confirmed = self._confirm(item_id, category)
        if confirmed is None:
            return
        item, saved_as = confirmed
        with self.session_factory() as db:
            job = crud.get_job(db, item.job_id)
            target = self._target(db, job)
        await self.notifier.send(target, messages.item_confirmed_prompt(item, saved_as))
        await self.show_next_item(item.job_id)

    def _confirm(self, item_id: int, category: str) -> tuple[ItemModel, str] | None:
        """Mark the item confirmed, then commit it as an expense.

        Only the caller whose conditional update wins commits. Returns ``None``
        when the item was already confirmed.
        """
        with self.session_factory() as db:
            item = crud.get_item(db, item_id)
            if item is None or item.status == ItemStatus.CONFIRMED:
                return None
            group_id = item.job.group_id
            saved_as = crud.get_or_create_category(db, group_id, category).name

        with self.session_factory() as db:
            if not crud.confirm_item(db, item_id, saved_as):
                logger.warning("Item %s was confirmed concurrently", item_id)
                return None

        record = ExpenseRecord(
            date=date.today(),
            category=saved_as,
            comment=item.name_localized,
            amount=to_money(item.total),
            currency=item.currency,
            item_id=item.id,
        )
        self.sink.commit(group_id, record)
        logger.info("Item %s confirmed as %s", item_id, saved_as)
        return item, saved_as

    # Summary flow

    async def accept_summary(self, job_id: int) -> None:
        with self.session_factory() as db:
            job = self._active_job(db, job_id)
            pending = crud.list_pending_items(db, job_id)
            summary = crud.load_summary(job) or Summary.from_items(pending, self.settings.default_currency)
            assignment = summary.assign_categories(pending)
            crud.set_waiting_for_correction(db, job_id, False)

        for item in pending:
            self._confirm(item.id, assignment[item.id])
        logger.info("Job %s: summary accepted for %s items", job_id, len(pending))
        await self._complete(job_id)

    async def request_correction(self, job_id: int) -> None:
        with self.session_factory() as db:
            job = self._active_job(db, job_id)
            if not job.summary_mode:
                raise ActionRejected(f"Job {job_id} is not in summary mode.")
            crud.set_waiting_for_correction(db, job_id, True)
            target = self._target(db, job)
        await self.notifier.send(target, messages.correction_request_prompt())

    async def switch_to_itemwise(self, job_id: int) -> None:
        with self.session_factory() as db:
            self._active_job(db, job_id)
            crud.set_waiting_for_correction(db, job_id, False)
            crud.set_summary_mode(db, job_id, False)
        await self.show_next_item(job_id)

    async def _receive_correction(self, job_id: int, instruction: str) -> None:
        """Apply a typed correction. A rejected one leaves the job waiting for another attempt."""
        outcome = await asyncio.to_thread(self.correction.apply, job_id, instruction)

        with self.session_factory() as db:
            job = crud.get_job(db, job_id)
            target = self._target(db, job)
            previous_message = job.summary_message_id

        if not outcome.accepted:
            await self.notifier.send(target, messages.correction_rejected_prompt(outcome.reason))
            return

        message_id = await self.notifier.replace(
            target, previous_message, messages.summary_prompt(job_id, outcome.summary)
        )
        with self.session_factory() as db:
            crud.set_summary_message(db, job_id, message_id)
            crud.set_waiting_for_correction(db, job_id, False)

    # Helpers

    async def _complete(self, job_id: int) -> None:
        with self.session_factory() as db:
            job = crud.get_job(db, job_id)
            if job is None or crud.next_pending_item(db, job_id) is not None:
                return
            try:
                crud.mark_done(db, job_id)
            except InvalidStatusTransition:
                return
            saved = [item for item in crud.list_items(db, job_id) if item.confirmed_category]
            total = sum((Decimal(str(item.total)) for item in saved), Decimal("0"))
            currency = saved[0].currency if saved else self.settings.default_currency
            target = self._target(db, job)

        logger.info("Job %s done: %s items saved", job_id, len(saved))
        await self.notifier.send(target, messages.job_done_prompt(len(saved), total, currency))

    def _alternatives(self, db: Session, item: ItemModel) -> list[str]:
        """Possible categories, then categories already used on this receipt, without the suggestion."""
        merged = crud.load_possible_categories(item) + crud.confirmed_categories(db, item.job_id)
        suggested = item.suggested_category.casefold()
        alternatives: list[str] = []
        for name in merged:
            if name.casefold() != suggested and find_exact(name, alternatives) is None:
                alternatives.append(name)
        return alternatives

    def _active_job(self, db: Session, job_id: int) -> JobModel:
        job = crud.get_job(db, job_id)
        if job is None:
            raise ActionRejected(f"Job {job_id} does not exist.")
        if job.status != JobStatus.PROCESSING:
            raise ActionRejected(f"Job {job_id} is {job.status.value}.")
        return job

    def _item_for_action(self, db: Session, item_id: int) -> ItemModel | None:
        item = crud.get_item(db, item_id)
        if item is None:
            raise ActionRejected(f"Item {item_id} does not exist.")
        if item.status == ItemStatus.CONFIRMED:
            logger.info("Item %s is already confirmed; ignoring action", item_id)
            return None
        return item

    def _target(self, db: Session, job: JobModel) -> ChatTarget:
        group = crud.get_group(db, job.group_id)
        if group is None:
            raise ActionRejected(f"Group {job.group_id} does not exist.")
        return ChatTarget(chat_id=group.telegram_chat_id, thread_id=job.thread_id, message_id=job.source_message_id)

