"""
Pytest configuration for receiptbot tests.

Environment variables are set before the package is imported so that the
module-level settings never point at a real database or bot.
"""
import os
from decimal import Decimal

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TELEGRAM_BOT"] = ""
os.environ["OPENAI_API_KEY"] = ""
os.environ["DEFAULT_CURRENCY"] = "EUR"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from receiptbot import crud
from receiptbot.config import get_settings
from receiptbot.db import Base
from receiptbot.domain.entities import Payload, RecognitionResult, RecognizedItem
from receiptbot.expenses import ExpenseSink
from receiptbot.models import PayloadKind
from receiptbot.notifier import Notifier

GROUP_CHAT_ID = -1001234


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []
        self.replaced = []
        self.reactions = []
        self._next_message_id = 500

    async def send(self, target, prompt):
        self._next_message_id += 1
        self.sent.append((target, prompt))
        return self._next_message_id

    async def replace(self, target, message_id, prompt):
        self.replaced.append((target, message_id, prompt))
        return await self.send(target, prompt)

    async def react(self, target, reaction):
        self.reactions.append((target, reaction))

    @property
    def texts(self):
        return [prompt.text for _, prompt in self.sent]

    @property
    def last_prompt(self):
        return self.sent[-1][1]


class RecordingSink(ExpenseSink):
    def __init__(self):
        self.records = []

    def commit(self, group_id, record):
        self.records.append((group_id, record))


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def settings():
    return get_settings().model_copy(update={"itemwise_threshold": 5, "correction_tolerance": 0.01})


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def group_id(session_factory):
    with session_factory() as db:
        group = crud.get_or_create_group(db, GROUP_CHAT_ID, "Flatmates")
        for name in ("Groceries", "Household", "Hardware"):
            crud.get_or_create_category(db, group.id, name)
        return group.id


def recognized(name, total, category, alternatives=(), quantity="1"):
    amount = Decimal(str(total))
    return RecognizedItem(
        name_localized=name,
        quantity=Decimal(quantity),
        unit_price=amount,
        total=amount,
        category=category,
        possible_categories=list(alternatives),
    )


@pytest.fixture
def seed_job(session_factory):
    """Create a processing job with recognised items; returns the job id."""

    def _seed(group_id, items, currency="EUR", source_message_id=42):
        with session_factory() as db:
            job = crud.enqueue_job(
                db,
                group_id=group_id,
                submitter_id=7,
                source_message_id=source_message_id,
                payload=Payload(PayloadKind.PHOTO, "file-id"),
            )
            crud.mark_processing(db, job.id)
            crud.create_items(db, job.id, RecognitionResult(items=list(items), currency=currency), "EUR")
            return job.id

    return _seed
