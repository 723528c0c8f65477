import json

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .config import get_settings
from .domain.categories import normalize_category_name
from .domain.entities import CorrectionEntry, ExpenseRecord, Payload, RecognitionResult, Summary
from .exceptions import InvalidStatusTransition
from .models import (
    CategoryModel,
    ExpenseModel,
    GroupModel,
    ItemModel,
    ItemStatus,
    JobModel,
    JobStatus,
)

settings = get_settings()


# Groups and categories


def get_group(db: Session, group_id: int) -> GroupModel | None:
    return db.get(GroupModel, group_id)


def get_group_by_chat(db: Session, telegram_chat_id: int) -> GroupModel | None:
    return db.scalar(select(GroupModel).where(GroupModel.telegram_chat_id == telegram_chat_id))


def get_or_create_group(db: Session, telegram_chat_id: int, title: str | None = None) -> GroupModel:
    group = get_group_by_chat(db, telegram_chat_id)
    if group:
        if title and group.title != title:
            group.title = title
            db.commit()
        return group
    group = GroupModel(
        telegram_chat_id=telegram_chat_id,
        title=title,
        default_currency=settings.default_currency,
    )
    db.add(group)
    db.commit()
    db.refresh(group)
    return group


def list_category_names(db: Session, group_id: int) -> list[str]:
    stmt = select(CategoryModel.name).where(CategoryModel.group_id == group_id).order_by(CategoryModel.name)
    return list(db.scalars(stmt))


def find_category(db: Session, group_id: int, name: str) -> CategoryModel | None:
    stmt = select(CategoryModel).where(
        CategoryModel.group_id == group_id,
        func.lower(CategoryModel.name) == name.strip().lower(),
    )
    return db.scalar(stmt)


def get_or_create_category(db: Session, group_id: int, name: str) -> CategoryModel:
    existing = find_category(db, group_id, name)
    if existing:
        return existing
    category = CategoryModel(group_id=group_id, name=normalize_category_name(name))
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


# Ingestion queue


def enqueue_job(
    db: Session,
    group_id: int,
    submitter_id: int,
    source_message_id: int,
    payload: Payload,
    thread_id: int | None = None,
) -> JobModel:
    job = JobModel(
        group_id=group_id,
        submitter_id=submitter_id,
        source_message_id=source_message_id,
        thread_id=thread_id,
        payload_kind=payload.kind,
        payload=payload.value,
        status=JobStatus.PENDING,
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def get_job(db: Session, job_id: int) -> JobModel | None:
    return db.get(JobModel, job_id)


def list_jobs_for_group(db: Session, group_id: int, status: JobStatus | None = None) -> list[JobModel]:
    stmt = select(JobModel).where(JobModel.group_id == group_id)
    if status:
        stmt = stmt.where(JobModel.status == status)
    stmt = stmt.order_by(JobModel.created_at.desc(), JobModel.id.desc())
    return list(db.scalars(stmt))


def claim_next_pending(db: Session) -> JobModel | None:
    stmt = (
        select(JobModel)
        .where(JobModel.status == JobStatus.PENDING)
        .order_by(JobModel.created_at, JobModel.id)
        .limit(1)
    )
    return db.scalar(stmt)


def _transition(
    db: Session,
    job_id: int,
    expected: tuple[JobStatus, ...],
    target: JobStatus,
    **values: object,
) -> None:
    stmt = (
        update(JobModel)
        .where(JobModel.id == job_id, JobModel.status.in_(expected))
        .values(status=target, **values)
        .execution_options(synchronize_session="fetch")
    )
    result = db.execute(stmt)
    db.commit()
    if result.rowcount != 1:
        raise InvalidStatusTransition(job_id, "/".join(status.value for status in expected), target.value)


def mark_processing(db: Session, job_id: int) -> None:
    _transition(db, job_id, (JobStatus.PENDING,), JobStatus.PROCESSING)


def mark_done(db: Session, job_id: int) -> None:
    _transition(db, job_id, (JobStatus.PROCESSING,), JobStatus.DONE, waiting_for_correction=False)


def mark_error(db: Session, job_id: int, message: str) -> None:
    _transition(
        db,
        job_id,
        (JobStatus.PENDING, JobStatus.PROCESSING),
        JobStatus.ERROR,
        error_message=message,
        waiting_for_correction=False,
    )


# Summary and correction history


def set_summary(db: Session, job_id: int, summary: Summary) -> None:
    db.execute(
        update(JobModel)
        .where(JobModel.id == job_id)
        .values(ai_summary=json.dumps(summary.to_dict(), ensure_ascii=False))
        .execution_options(synchronize_session="fetch")
    )
    db.commit()


def load_summary(job: JobModel) -> Summary | None:
    if not job.ai_summary:
        return None
    return Summary.from_dict(json.loads(job.ai_summary))


def load_correction_history(job: JobModel) -> list[CorrectionEntry]:
    raw = json.loads(job.correction_history or "[]")
    return [CorrectionEntry.from_dict(entry) for entry in raw]


def append_correction(db: Session, job_id: int, entry: CorrectionEntry) -> list[CorrectionEntry]:
    job = get_job(db, job_id)
    if job is None:
        return []
    history = load_correction_history(job)
    history.append(entry)
    job.correction_history = json.dumps([item.to_dict() for item in history], ensure_ascii=False)
    db.commit()
    return history


def set_summary_message(db: Session, job_id: int, message_id: int | None) -> None:
    db.execute(
        update(JobModel)
        .where(JobModel.id == job_id)
        .values(summary_message_id=message_id)
        .execution_options(synchronize_session="fetch")
    )
    db.commit()


def set_summary_mode(db: Session, job_id: int, enabled: bool) -> None:
    db.execute(
        update(JobModel)
        .where(JobModel.id == job_id)
        .values(summary_mode=enabled)
        .execution_options(synchronize_session="fetch")
    )
    db.commit()


def _group_job_ids(group_id: int):
    return select(JobModel.id).where(JobModel.group_id == group_id)


def _clear_group_waiting_flags(db: Session, group_id: int) -> None:
    db.execute(
        update(ItemModel)
        .where(ItemModel.job_id.in_(_group_job_ids(group_id)))
        .values(waiting_for_category_input=False, pending_category_input=None, pending_category_match=None)
        .execution_options(synchronize_session="fetch")
    )
    db.execute(
        update(JobModel)
        .where(JobModel.group_id == group_id)
        .values(waiting_for_correction=False)
        .execution_options(synchronize_session="fetch")
    )


def set_waiting_for_correction(db: Session, job_id: int, waiting: bool) -> None:
    """Arm or disarm bulk correction; arming clears every other waiting flag of the group."""
    job = get_job(db, job_id)
    if job is None:
        return
    if waiting:
        _clear_group_waiting_flags(db, job.group_id)
    db.execute(
        update(JobModel)
        .where(JobModel.id == job_id)
        .values(waiting_for_correction=waiting)
        .execution_options(synchronize_session="fetch")
    )
    db.commit()


def find_job_waiting_for_correction(db: Session, group_id: int) -> JobModel | None:
    stmt = (
        select(JobModel)
        .where(
            JobModel.group_id == group_id,
            JobModel.waiting_for_correction.is_(True),
            JobModel.status == JobStatus.PROCESSING,
        )
        .order_by(JobModel.id.desc())
        .limit(1)
    )
    return db.scalar(stmt)


# Item store


def create_items(db: Session, job_id: int, result: RecognitionResult, default_currency: str) -> list[ItemModel]:
    currency = (result.currency or default_currency).upper()
    items = [
        ItemModel(
            job_id=job_id,
            name_localized=recognized.name_localized,
            name_original=recognized.name_original,
            quantity=recognized.quantity,
            unit_price=recognized.unit_price,
            total=recognized.total,
            currency=currency,
            suggested_category=recognized.category,
            possible_categories=json.dumps(recognized.possible_categories, ensure_ascii=False),
            status=ItemStatus.PENDING,
        )
        for recognized in result.items
    ]
    db.add_all(items)
    db.commit()
    for item in items:
        db.refresh(item)
    return items


def get_item(db: Session, item_id: int) -> ItemModel | None:
    return db.get(ItemModel, item_id)


def list_items(db: Session, job_id: int) -> list[ItemModel]:
    return list(db.scalars(select(ItemModel).where(ItemModel.job_id == job_id).order_by(ItemModel.id)))


def list_pending_items(db: Session, job_id: int) -> list[ItemModel]:
    stmt = (
        select(ItemModel)
        .where(ItemModel.job_id == job_id, ItemModel.status == ItemStatus.PENDING)
        .order_by(ItemModel.id)
    )
    return list(db.scalars(stmt))


def next_pending_item(db: Session, job_id: int) -> ItemModel | None:
    stmt = (
        select(ItemModel)
        .where(ItemModel.job_id == job_id, ItemModel.status == ItemStatus.PENDING)
        .order_by(ItemModel.id)
        .limit(1)
    )
    return db.scalar(stmt)


def confirmed_categories(db: Session, job_id: int) -> list[str]:
    stmt = (
        select(ItemModel.confirmed_category)
        .where(
            ItemModel.job_id == job_id,
            ItemModel.status == ItemStatus.CONFIRMED,
            ItemModel.confirmed_category.is_not(None),
        )
        .order_by(ItemModel.id)
    )
    return list(dict.fromkeys(db.scalars(stmt)))


def load_possible_categories(item: ItemModel) -> list[str]:
    return [str(name) for name in json.loads(item.possible_categories or "[]")]


def confirm_item(db: Session, item_id: int, category: str | None) -> bool:
    """Move a pending item to confirmed. Returns False if it was already confirmed."""
    stmt = (
        update(ItemModel)
        .where(ItemModel.id == item_id, ItemModel.status == ItemStatus.PENDING)
        .values(
            status=ItemStatus.CONFIRMED,
            confirmed_category=category,
            waiting_for_category_input=False,
            pending_category_input=None,
            pending_category_match=None,
        )
        .execution_options(synchronize_session="fetch")
    )
    result = db.execute(stmt)
    db.commit()
    return result.rowcount == 1


def arm_category_input(db: Session, item_id: int) -> ItemModel | None:
    """Make ``item_id`` the only thing in its group waiting for typed input."""
    item = get_item(db, item_id)
    if item is None:
        return None
    _clear_group_waiting_flags(db, item.job.group_id)
    item.waiting_for_category_input = True
    db.commit()
    db.refresh(item)
    return item


def find_item_waiting_for_input(db: Session, group_id: int) -> ItemModel | None:
    stmt = (
        select(ItemModel)
        .join(JobModel, ItemModel.job_id == JobModel.id)
        .where(
            JobModel.group_id == group_id,
            ItemModel.waiting_for_category_input.is_(True),
            ItemModel.status == ItemStatus.PENDING,
        )
        .limit(1)
    )
    return db.scalar(stmt)


def set_pending_category_choice(db: Session, item_id: int, typed: str, match: str) -> None:
    db.execute(
        update(ItemModel)
        .where(ItemModel.id == item_id)
        .values(pending_category_input=typed, pending_category_match=match)
        .execution_options(synchronize_session="fetch")
    )
    db.commit()


# Expenses


def create_expense(db: Session, group_id: int, record: ExpenseRecord) -> ExpenseModel:
    expense = ExpenseModel(
        group_id=group_id,
        item_id=record.item_id,
        amount=record.amount,
        currency=record.currency.upper(),
        date=record.date,
        category=record.category,
        comment=record.comment,
    )
    db.add(expense)
    db.commit()
    db.refresh(expense)
    return expense


def list_expenses(db: Session, group_id: int) -> list[ExpenseModel]:
    stmt = select(ExpenseModel).where(ExpenseModel.group_id == group_id).order_by(ExpenseModel.id)
    return list(db.scalars(stmt))
