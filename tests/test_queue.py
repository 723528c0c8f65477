import pytest

from receiptbot import crud
from receiptbot.domain.entities import Payload
from receiptbot.exceptions import InvalidStatusTransition
from receiptbot.models import JobStatus, PayloadKind


def _enqueue(db, group_id, message_id, kind=PayloadKind.PHOTO, value="file"):
    return crud.enqueue_job(db, group_id, submitter_id=1, source_message_id=message_id, payload=Payload(kind, value))


def test_enqueue_creates_pending_job(db, group_id):
    job = _enqueue(db, group_id, 10, PayloadKind.LINK, "https://example.com/r/1")

    assert job.status == JobStatus.PENDING
    assert job.payload_kind == PayloadKind.LINK
    assert job.payload == "https://example.com/r/1"
    assert job.summary_mode is False
    assert crud.load_correction_history(job) == []


def test_claim_returns_oldest_pending(db, group_id):
    first = _enqueue(db, group_id, 1)
    second = _enqueue(db, group_id, 2)

    assert crud.claim_next_pending(db).id == first.id
    crud.mark_processing(db, first.id)
    assert crud.claim_next_pending(db).id == second.id
    crud.mark_processing(db, second.id)
    assert crud.claim_next_pending(db) is None


def test_status_only_moves_forward(db, group_id):
    job = _enqueue(db, group_id, 1)

    with pytest.raises(InvalidStatusTransition):
        crud.mark_done(db, job.id)

    crud.mark_processing(db, job.id)
    with pytest.raises(InvalidStatusTransition):
        crud.mark_processing(db, job.id)

    crud.mark_done(db, job.id)
    with pytest.raises(InvalidStatusTransition):
        crud.mark_error(db, job.id, "late failure")
    assert crud.get_job(db, job.id).status == JobStatus.DONE


def test_mark_error_stores_message(db, group_id):
    job = _enqueue(db, group_id, 1)
    crud.mark_processing(db, job.id)

    crud.mark_error(db, job.id, "No QR code found")

    stored = crud.get_job(db, job.id)
    assert stored.status == JobStatus.ERROR
    assert stored.error_message == "No QR code found"


def test_list_jobs_filters_by_status(db, group_id):
    done = _enqueue(db, group_id, 1)
    crud.mark_processing(db, done.id)
    crud.mark_done(db, done.id)
    pending = _enqueue(db, group_id, 2)

    assert [job.id for job in crud.list_jobs_for_group(db, group_id, JobStatus.PENDING)] == [pending.id]
    assert {job.id for job in crud.list_jobs_for_group(db, group_id)} == {done.id, pending.id}
