from __future__ import annotations

import datetime as dt
import math
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .periods import parse_calendar_date


def _optional_overtime(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if math.isnan(number) or math.isinf(number) or number < 0:
        return None
    return number


def _timestamp_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        return value.replace(microsecond=0).isoformat()
    text = str(value).strip()
    return text or None


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=128)
    password: str = Field(min_length=1, max_length=256)


class AuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    role: str
    username: str
    email: str


class AuthMeResponse(BaseModel):
    id: int
    role: str
    username: str
    email: str


class AttendanceRecord(BaseModel):
    id: str
    date: dt.date
    overtime: Optional[float] = None
    job_order_no: Optional[str] = None
    destination: str = ""
    remarks: str = ""
    prepared_by: str = ""
    checked_by: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> str:
        text = str(value).strip() if value is not None else ""
        if not text:
            raise ValueError("id is required")
        return text

    @field_validator("date", mode="before")
    @classmethod
    def _normalize_date(cls, value: Any) -> dt.date:
        return parse_calendar_date(value)

    @field_validator("overtime", mode="before")
    @classmethod
    def _normalize_overtime(cls, value: Any) -> float | None:
        return _optional_overtime(value)

    @field_validator("job_order_no", mode="before")
    @classmethod
    def _normalize_job_order(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("destination", "remarks", "prepared_by", "checked_by", mode="before")
    @classmethod
    def _normalize_text(cls, value: Any) -> str:
        return str(value).strip() if value is not None else ""

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _normalize_timestamp(cls, value: Any) -> str | None:
        return _timestamp_text(value)


class AttendanceCreateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    date: dt.date
    overtime: Optional[float] = Field(default=None, ge=0)
    job_order_no: Optional[str] = Field(default=None, max_length=128)
    destination: str = Field(min_length=1, max_length=255)
    remarks: str = Field(min_length=1, max_length=1000)
    prepared_by: Optional[str] = Field(default=None, max_length=128)
    checked_by: str = Field(min_length=1, max_length=128)

    @field_validator("date", mode="before")
    @classmethod
    def _normalize_date(cls, value: Any) -> dt.date:
        return parse_calendar_date(value)


class AttendanceUpdateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    date: Optional[dt.date] = None
    overtime: Optional[float] = Field(default=None, ge=0)
    job_order_no: Optional[str] = Field(default=None, max_length=128)
    destination: Optional[str] = Field(default=None, min_length=1, max_length=255)
    remarks: Optional[str] = Field(default=None, min_length=1, max_length=1000)
    prepared_by: Optional[str] = Field(default=None, min_length=1, max_length=128)
    checked_by: Optional[str] = Field(default=None, min_length=1, max_length=128)

    @field_validator("date", mode="before")
    @classmethod
    def _normalize_date(cls, value: Any) -> dt.date | None:
        if value is None:
            return None
        return parse_calendar_date(value)


class DateRangeResponse(BaseModel):
    fromDate: Optional[str]
    toDate: Optional[str]
    label: Optional[str] = None


class AttendancePageResponse(BaseModel):
    records: List[AttendanceRecord]
    count: int
    page: int
    page_size: int
    total_pages: int
    sort_by: str
    direction: Literal["asc", "desc"]
    date_range: DateRangeResponse


class LookupResponse(BaseModel):
    field: str
    values: List[str]


class ReportCellItem(BaseModel):
    text: str
    tags: List[str]
    align: str


class ReportRowItem(BaseModel):
    kind: str
    date: Optional[str]
    cells: List[ReportCellItem]


class SummaryReportResponse(BaseModel):
    date_range: DateRangeResponse
    record_count: int
    total_overtime: str
    rows: List[ReportRowItem]


class UserItem(BaseModel):
    id: int
    email: str
    username: str
    role: str
    is_active: bool
    created_at: str
    updated_at: str
    last_login_at: Optional[str]


class UsersResponse(BaseModel):
    users: List[UserItem]


class CreateUserRequest(BaseModel):
    email: str = Field(min_length=5, max_length=255)
    username: str = Field(min_length=1, max_length=128)
    role: Literal["preparer", "checker"]
    temp_password: str = Field(min_length=8, max_length=256)


class UpdateUserActiveRequest(BaseModel):
    is_active: bool
