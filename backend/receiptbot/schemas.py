from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import ItemStatus, JobStatus, PayloadKind


class JobCreate(BaseModel):
    telegram_chat_id: int
    submitter_id: int
    source_message_id: int = 0
    thread_id: Optional[int] = None
    kind: Literal["link", "text"] = "link"
    payload: str = Field(min_length=1)

    @field_validator("payload")
    @classmethod
    def strip_payload(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("Payload must not be blank.")
        return stripped


class ItemOut(BaseModel):
    id: int
    name_localized: str
    name_original: Optional[str] = None
    quantity: float
    unit_price: float
    total: float
    currency: str
    suggested_category: str
    status: ItemStatus
    confirmed_category: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class SummaryLineOut(BaseModel):
    name: str
    total: float


class SummaryCategoryOut(BaseModel):
    name: str
    items: list[SummaryLineOut]


class SummaryOut(BaseModel):
    categories: list[SummaryCategoryOut]
    totalAmount: float
    currency: str


class CorrectionOut(BaseModel):
    user: str
    result: str


class JobOut(BaseModel):
    id: int
    group_id: int
    submitter_id: int
    source_message_id: int
    thread_id: Optional[int] = None
    payload_kind: PayloadKind
    payload: str
    status: JobStatus
    error_message: Optional[str] = None
    summary_mode: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ExpenseOut(BaseModel):
    id: int
    group_id: int
    item_id: Optional[int] = None
    amount: float
    currency: str
    date: date
    category: str
    comment: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class JobDetail(JobOut):
    items: list[ItemOut] = Field(default_factory=list)
    summary: Optional[SummaryOut] = None
    correction_history: list[CorrectionOut] = Field(default_factory=list)


# Shapes the extraction model must answer with


class ExtractedItemPayload(BaseModel):
    name_localized: str = Field(min_length=1, validation_alias="nameLocalized")
    name_original: Optional[str] = Field(default=None, validation_alias="nameOriginal")
    quantity: float
    price: float
    total: float
    category: str = Field(min_length=1)
    possible_categories: list[str] = Field(default_factory=list, validation_alias="possibleCategories")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("name_localized", "category")
    @classmethod
    def not_blank(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("Must not be blank.")
        return stripped

    @field_validator("possible_categories", mode="before")
    @classmethod
    def coerce_alternatives(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return [str(entry).strip() for entry in value if str(entry).strip()]


class ExtractionPayload(BaseModel):
    items: list[ExtractedItemPayload]
    currency: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        stripped = value.strip().upper()
        return stripped or None
