from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from .. import crud
from ..db import get_db
from ..domain.entities import Payload
from ..models import JobModel, JobStatus, PayloadKind
from ..recognition.fetcher import is_url
from ..schemas import CorrectionOut, ExpenseOut, ItemOut, JobCreate, JobDetail, JobOut, SummaryOut

router = APIRouter(tags=["jobs"])


def _job_detail(db: Session, job: JobModel) -> JobDetail:
    summary = crud.load_summary(job)
    return JobDetail(
        **JobOut.model_validate(job).model_dump(),
        items=[ItemOut.model_validate(item) for item in crud.list_items(db, job.id)],
        summary=SummaryOut.model_validate(summary.to_dict()) if summary else None,
        correction_history=[CorrectionOut(**entry.to_dict()) for entry in crud.load_correction_history(job)],
    )


@router.post("/jobs", response_model=JobOut, status_code=status.HTTP_201_CREATED)
def create_job(data: JobCreate, db: Session = Depends(get_db)) -> JobOut:
    kind = PayloadKind(data.kind)
    if kind == PayloadKind.LINK and not is_url(data.payload):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Payload is not a URL.")
    group = crud.get_or_create_group(db, data.telegram_chat_id)
    job = crud.enqueue_job(
        db,
        group_id=group.id,
        submitter_id=data.submitter_id,
        source_message_id=data.source_message_id,
        payload=Payload(kind=kind, value=data.payload),
        thread_id=data.thread_id,
    )
    return JobOut.model_validate(job)


@router.get("/jobs/{job_id}", response_model=JobDetail)
def get_job(job_id: int, db: Session = Depends(get_db)) -> JobDetail:
    job = crud.get_job(db, job_id)
    if not job:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found.")
    return _job_detail(db, job)


@router.get("/groups/{group_id}/jobs", response_model=list[JobOut])
def list_group_jobs(
    group_id: int,
    db: Session = Depends(get_db),
    status_: JobStatus | None = Query(default=None, alias="status"),
) -> list[JobOut]:
    if not crud.get_group(db, group_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Group not found.")
    return [JobOut.model_validate(job) for job in crud.list_jobs_for_group(db, group_id, status_)]


@router.get("/groups/{group_id}/expenses", response_model=list[ExpenseOut])
def list_group_expenses(group_id: int, db: Session = Depends(get_db)) -> list[ExpenseOut]:
    if not crud.get_group(db, group_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Group not found.")
    return [ExpenseOut.model_validate(expense) for expense in crud.list_expenses(db, group_id)]
