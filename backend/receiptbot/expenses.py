from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable

from sqlalchemy.orm import Session

from . import crud
from .domain.entities import ExpenseRecord

logger = logging.getLogger(__name__)


class ExpenseSink(ABC):
    """Receives confirmed receipt items as expenses."""

    @abstractmethod
    def commit(self, group_id: int, record: ExpenseRecord) -> None:
        ...


class LedgerExpenseSink(ExpenseSink):
    """Writes expenses to the local ledger table."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory

    def commit(self, group_id: int, record: ExpenseRecord) -> None:
        with self.session_factory() as db:
            expense = crud.create_expense(db, group_id, record)
        logger.info("Expense %s saved for group %s: %s", expense.id, group_id, record.get_details())
