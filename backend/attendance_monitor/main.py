from __future__ import annotations

import logging
import re
from datetime import date
from pathlib import Path
from typing import Any, Literal

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .app_db import (
    create_user,
    get_user_by_id,
    get_user_by_login,
    init_app_db,
    list_usernames_by_role,
    list_users,
    set_user_active,
    touch_user_login,
)
from .auth import (
    TOKEN_COOKIE_NAME,
    AuthUser,
    auth_user_from_row,
    create_access_token,
    get_current_user,
    require_admin,
)
from .config import settings
from .db import (
    DBOperationalError,
    get_db_connection_error_payload,
    log_db_connection_target_once,
    validate_db_server_for_startup,
)
from .pdf_exports import build_summary_pdf
from .periods import DateRange, InvalidDateInput, default_period, format_range, resolve_range
from .records import (
    add_attendance_record,
    delete_attendance_record,
    fetch_attendance_for_range,
    fetch_attendance_page,
    fetch_attendance_record,
    fetch_distinct_values,
    update_attendance_record,
)
from .schemas import (
    AttendanceCreateRequest,
    AttendancePageResponse,
    AttendanceRecord,
    AttendanceUpdateRequest,
    AuthMeResponse,
    AuthResponse,
    CreateUserRequest,
    DateRangeResponse,
    LoginRequest,
    LookupResponse,
    ReportCellItem,
    ReportRowItem,
    SummaryReportResponse,
    UpdateUserActiveRequest,
    UserItem,
    UsersResponse,
)
from .security import verify_password
from .summary import ReportRow, build_report, total_row

logger = logging.getLogger(__name__)

_BACKEND_ENV_PATH = Path(__file__).resolve().parents[1] / ".env"
_DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"

_LOOKUP_FIELDS: dict[str, tuple[str, str | None]] = {
    "preparers": ("prepared_by", "preparer"),
    "checkers": ("checked_by", "checker"),
    "destinations": ("destination", None),
}

app = FastAPI(title="Attendance Monitoring API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup_event() -> None:
    load_dotenv(dotenv_path=_BACKEND_ENV_PATH, override=False)
    validate_db_server_for_startup()
    log_db_connection_target_once()
    init_app_db()


def _db_connection_failed_response() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=get_db_connection_error_payload(),
    )


def _build_inline_pdf_response(filename: str, payload: bytes) -> Response:
    response = Response(content=payload, media_type="application/pdf")
    response.headers["Content-Disposition"] = f'inline; filename="{filename}"'
    return response


def _sanitize_filename_part(value: str | None, fallback: str = "open") -> str:
    if value is None:
        return fallback

    text = value.strip().replace(" ", "-")
    text = re.sub(r"[^A-Za-z0-9\-_]", "", text)
    text = re.sub(r"-{2,}", "-", text)
    text = text.strip("-_")
    if not text:
        text = fallback
    return text[:40]


def _build_pdf_filename(date_range: DateRange) -> str:
    start = _sanitize_filename_part(date_range.from_date)
    end = _sanitize_filename_part(date_range.to_date)
    return f"attendance-monitoring-{start}-to-{end}.pdf"


def _resolve_range_or_400(from_date: str | None, to_date: str | None) -> DateRange:
    try:
        return resolve_range(from_date, to_date)
    except InvalidDateInput as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def _date_range_response(date_range: DateRange) -> DateRangeResponse:
    label = None
    if date_range.from_date and date_range.to_date:
        label = format_range(date_range.from_date, date_range.to_date)
    return DateRangeResponse(**date_range.as_payload(), label=label)


def _serialize_user(row: dict[str, Any]) -> UserItem:
    return UserItem(
        id=int(row["id"]),
        email=str(row.get("email") or ""),
        username=str(row.get("username") or ""),
        role=str(row.get("role") or ""),
        is_active=bool(row.get("is_active")),
        created_at=str(row.get("created_at") or ""),
        updated_at=str(row.get("updated_at") or ""),
        last_login_at=(str(row.get("last_login_at")) if row.get("last_login_at") else None),
    )


def _serialize_report_row(row: ReportRow) -> ReportRowItem:
    return ReportRowItem(
        kind=row.kind.value,
        date=row.date,
        cells=[
            ReportCellItem(text=cell.text, tags=[tag.value for tag in cell.tags], align=cell.align)
            for cell in row.cells
        ],
    )


@app.get("/healthz")
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/api/auth/login", response_model=AuthResponse)
def login(request: LoginRequest, response: Response) -> AuthResponse:
    login_id = request.username.strip()
    user = get_user_by_login(login_id)
    if not user:
        logger.warning("Login rejected for unknown user '%s'", login_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username/email or password",
        )

    if not bool(user.get("is_active")):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User is disabled",
        )

    if not verify_password(request.password, str(user.get("password_hash") or "")):
        logger.warning("Login rejected for '%s': wrong password", login_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username/email or password",
        )

    auth_user = auth_user_from_row(user)
    token, expires_in = create_access_token(auth_user)
    touch_user_login(auth_user["id"])

    response.set_cookie(
        key=TOKEN_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        domain=settings.cookie_domain,
        max_age=expires_in,
        path="/",
    )

    return AuthResponse(
        access_token=token,
        expires_in=expires_in,
        role=auth_user["role"],
        username=auth_user["username"],
        email=auth_user["email"],
    )


@app.post("/api/auth/logout")
def logout(response: Response) -> dict[str, str]:
    response.delete_cookie(
        key=TOKEN_COOKIE_NAME,
        domain=settings.cookie_domain,
        path="/",
    )
    return {"message": "Logged out"}


@app.get("/api/auth/me", response_model=AuthMeResponse)
def auth_me(user: AuthUser = Depends(get_current_user)) -> AuthMeResponse:
    return AuthMeResponse(
        id=user["id"],
        role=user["role"],
        username=user["username"],
        email=user["email"],
    )


@app.get("/api/periods/default", response_model=DateRangeResponse)
def get_default_period(
    reference: str | None = Query(default=None, pattern=_DATE_PATTERN),
    _user: AuthUser = Depends(get_current_user),
) -> DateRangeResponse:
    try:
        period = default_period(reference) if reference else default_period(date.today())
    except InvalidDateInput as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _date_range_response(period)


@app.get("/api/attendance", response_model=AttendancePageResponse)
def list_attendance(
    page: int = Query(default=1, ge=1),
    page_size: int | None = Query(default=None, ge=1),
    from_date: str | None = Query(default=None, pattern=_DATE_PATTERN),
    to_date: str | None = Query(default=None, pattern=_DATE_PATTERN),
    sort_by: Literal["date", "overtime", "created_at"] = Query(default="date"),
    direction: Literal["asc", "desc"] = Query(default="desc"),
    _user: AuthUser = Depends(get_current_user),
) -> AttendancePageResponse:
    date_range = _resolve_range_or_400(from_date, to_date)
    try:
        payload = fetch_attendance_page(
            page=page,
            page_size=page_size or settings.default_page_size,
            date_range=date_range,
            sort_by=sort_by,
            direction=direction,
        )
    except DBOperationalError:
        logger.exception("Attendance listing failed")
        return _db_connection_failed_response()
    return AttendancePageResponse(date_range=_date_range_response(date_range), **payload)


@app.post("/api/attendance", response_model=AttendanceRecord, status_code=status.HTTP_201_CREATED)
def create_attendance(
    payload: AttendanceCreateRequest,
    user: AuthUser = Depends(get_current_user),
) -> AttendanceRecord:
    data = payload.model_dump()
    data["prepared_by"] = payload.prepared_by or user["username"]

    try:
        record = add_attendance_record(data)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except DBOperationalError:
        logger.exception("Adding attendance record failed")
        return _db_connection_failed_response()
    return AttendanceRecord(**record)


@app.get("/api/attendance/{record_id}", response_model=AttendanceRecord)
def get_attendance(
    record_id: str,
    _user: AuthUser = Depends(get_current_user),
) -> AttendanceRecord:
    try:
        record = fetch_attendance_record(record_id)
    except DBOperationalError:
        logger.exception("Fetching attendance record %s failed", record_id)
        return _db_connection_failed_response()
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attendance record not found")
    return AttendanceRecord(**record)


@app.patch("/api/attendance/{record_id}", response_model=AttendanceRecord)
def patch_attendance(
    record_id: str,
    payload: AttendanceUpdateRequest,
    _user: AuthUser = Depends(get_current_user),
) -> AttendanceRecord:
    try:
        record = update_attendance_record(record_id, payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except DBOperationalError:
        logger.exception("Updating attendance record %s failed", record_id)
        return _db_connection_failed_response()
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attendance record not found")
    return AttendanceRecord(**record)


@app.delete("/api/attendance/{record_id}")
def remove_attendance(
    record_id: str,
    _user: AuthUser = Depends(get_current_user),
) -> dict[str, str]:
    try:
        deleted = delete_attendance_record(record_id)
    except DBOperationalError:
        logger.exception("Deleting attendance record %s failed", record_id)
        return _db_connection_failed_response()
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attendance record not found")
    return {"message": "Record deleted"}


@app.get("/api/lookups/{lookup}", response_model=LookupResponse)
def get_lookup(
    lookup: Literal["preparers", "checkers", "destinations"],
    _user: AuthUser = Depends(get_current_user),
) -> LookupResponse:
    field, role = _LOOKUP_FIELDS[lookup]
    try:
        values = fetch_distinct_values(field)
    except DBOperationalError:
        logger.exception("Lookup %s failed", lookup)
        return _db_connection_failed_response()

    if role:
        values = sorted(set(values) | set(list_usernames_by_role(role)))
    return LookupResponse(field=lookup, values=values)


@app.get("/api/reports/summary", response_model=SummaryReportResponse)
def get_summary_report(
    from_date: str | None = Query(default=None, pattern=_DATE_PATTERN),
    to_date: str | None = Query(default=None, pattern=_DATE_PATTERN),
    signatures: bool = Query(default=False),
    _user: AuthUser = Depends(get_current_user),
) -> SummaryReportResponse:
    date_range = _resolve_range_or_400(from_date, to_date)
    try:
        records = fetch_attendance_for_range(date_range)
    except DBOperationalError:
        logger.exception("Summary report query failed")
        return _db_connection_failed_response()

    rows = build_report(records, include_signatures=signatures)
    total = total_row(rows)
    return SummaryReportResponse(
        date_range=_date_range_response(date_range),
        record_count=len(records),
        total_overtime=total.overtime if total else "0.0",
        rows=[_serialize_report_row(row) for row in rows],
    )


@app.get("/api/export/summary.pdf")
def export_summary_pdf(
    from_date: str | None = Query(default=None, pattern=_DATE_PATTERN),
    to_date: str | None = Query(default=None, pattern=_DATE_PATTERN),
    signatures: bool = Query(default=True),
    _user: AuthUser = Depends(get_current_user),
) -> Response:
    date_range = _resolve_range_or_400(from_date, to_date)
    try:
        records = fetch_attendance_for_range(date_range)
    except DBOperationalError:
        logger.exception("Summary export query failed")
        return _db_connection_failed_response()

    rows = build_report(records, include_signatures=signatures)
    payload = build_summary_pdf(rows, date_range=date_range)
    logger.info(
        "Exported summary PDF for %s..%s (%d records)",
        date_range.from_date,
        date_range.to_date,
        len(records),
    )
    return _build_inline_pdf_response(filename=_build_pdf_filename(date_range), payload=payload)


@app.get("/api/admin/users", response_model=UsersResponse)
def get_users(_user: AuthUser = Depends(require_admin)) -> UsersResponse:
    return UsersResponse(users=[_serialize_user(row) for row in list_users()])


@app.post("/api/admin/users", response_model=UserItem, status_code=status.HTTP_201_CREATED)
def add_user(
    payload: CreateUserRequest,
    _user: AuthUser = Depends(require_admin),
) -> UserItem:
    if "@" not in payload.email:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="email is invalid",
        )

    try:
        user = create_user(
            email=payload.email,
            username=payload.username,
            password=payload.temp_password,
            role=payload.role,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return _serialize_user(user)


@app.patch("/api/admin/users/{user_id}/active", response_model=UserItem)
def set_user_active_flag(
    user_id: int,
    payload: UpdateUserActiveRequest,
    _user: AuthUser = Depends(require_admin),
) -> UserItem:
    target = get_user_by_id(user_id)
    if not target or str(target.get("role")) == "admin":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    set_user_active(user_id=user_id, is_active=payload.is_active)
    updated = get_user_by_id(user_id)
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    return _serialize_user(updated)
