"""Single-flight worker that drains the receipt job queue."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable

from sqlalchemy.orm import Session

from . import crud, messages
from .config import Settings
from .confirmation import ConfirmationService
from .domain.entities import Payload
from .exceptions import InvalidStatusTransition, RecognitionError
from .models import JobModel
from .notifier import ChatTarget, Notifier, Reaction
from .recognition.chain import RecognitionChain

logger = logging.getLogger(__name__)

GENERIC_FAILURE = "Something went wrong while reading this receipt. Please try again."


class PhotoSource(ABC):
    @abstractmethod
    async def download(self, file_id: str) -> bytes:
        """Return the raw bytes of a chat photo."""


class Dispatcher:
    """Processes pending jobs one at a time; overlapping ticks are skipped."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        chain: RecognitionChain,
        notifier: Notifier,
        confirmation: ConfirmationService,
        photos: PhotoSource,
        settings: Settings,
    ) -> None:
        self.session_factory = session_factory
        self.chain = chain
        self.notifier = notifier
        self.confirmation = confirmation
        self.photos = photos
        self.settings = settings
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def tick(self) -> bool:
        """Drain up to ``max_jobs_per_tick`` jobs. Returns False if a tick was already running."""
        if self._lock.locked():
            logger.debug("Dispatcher busy; skipping tick")
            return False
        async with self._lock:
            for _ in range(self.settings.max_jobs_per_tick):
                with self.session_factory() as db:
                    job = crud.claim_next_pending(db)
                if job is None:
                    break
                await self._process(job)
        return True

    async def _process(self, job: JobModel) -> None:
        try:
            with self.session_factory() as db:
                crud.mark_processing(db, job.id)
        except InvalidStatusTransition as exc:
            logger.warning("Job %s was claimed elsewhere: %s", job.id, exc)
            return

        target = ChatTarget(chat_id=0, thread_id=job.thread_id, message_id=job.source_message_id)
        try:
            with self.session_factory() as db:
                group = crud.get_group(db, job.group_id)
                categories = crud.list_category_names(db, job.group_id)
            target = ChatTarget(chat_id=group.telegram_chat_id, thread_id=job.thread_id, message_id=job.source_message_id)
            logger.info("Processing job %s (%s) for group %s", job.id, job.payload_kind.value, job.group_id)

            await self.notifier.react(target, Reaction.SEEN)

            payload = Payload(kind=job.payload_kind, value=job.payload)
            image = await self.photos.download(payload.value) if payload.is_photo else None
            result = await asyncio.to_thread(
                self.chain.recognize, payload, image, categories, group.default_currency
            )

            with self.session_factory() as db:
                crud.create_items(db, job.id, result, group.default_currency)
            await self.confirmation.start(job.id)
        except Exception as exc:  # noqa: BLE001
            if isinstance(exc, RecognitionError):
                logger.warning("Job %s: recognition failed: %s", job.id, exc.cause or exc)
                user_message = exc.user_message
            else:
                logger.exception("Job %s failed", job.id)
                user_message = GENERIC_FAILURE
            await self._fail(job.id, target, user_message)

    async def _fail(self, job_id: int, target: ChatTarget, user_message: str) -> None:
        try:
            with self.session_factory() as db:
                crud.mark_error(db, job_id, user_message)
        except Exception:  # noqa: BLE001
            logger.exception("Could not mark job %s as failed", job_id)
        if not target.chat_id:
            return
        await self.notifier.send(target, messages.error_prompt(user_message))
        await self.notifier.react(target, Reaction.NO_RESULT)
