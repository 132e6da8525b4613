from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Mapping, Sequence

from pydantic import ValidationError

from .config import settings
from .db import get_cursor
from .periods import DateRange, parse_calendar_date, to_iso
from .schemas import AttendanceRecord

logger = logging.getLogger(__name__)

_RECORD_COLUMNS = (
    "date",
    "overtime",
    "job_order_no",
    "destination",
    "remarks",
    "prepared_by",
    "checked_by",
    "created_at",
    "updated_at",
)
_EDITABLE_FIELDS = (
    "date",
    "overtime",
    "job_order_no",
    "destination",
    "remarks",
    "prepared_by",
    "checked_by",
)
_REQUIRED_TEXT_FIELDS = ("destination", "remarks", "prepared_by", "checked_by")
_SORT_COLUMNS = {
    "date": "[date]",
    "overtime": "[overtime]",
    "created_at": "[created_at]",
}
_DISTINCT_FIELDS = ("prepared_by", "checked_by", "destination")


def _table() -> str:
    return f"[{settings.attendance_table}]"


def _select_columns(alias: str | None = None) -> str:
    prefix = f"{alias}." if alias else ""
    columns = [f"CONVERT(VARCHAR(36), {prefix}[id]) AS id"]
    columns.extend(f"{prefix}[{column}] AS [{column}]" for column in _RECORD_COLUMNS)
    return ", ".join(columns)


def _range_where(date_range: DateRange | None) -> tuple[str, tuple[Any, ...]]:
    if date_range is None:
        return "", ()

    conditions: list[str] = []
    params: list[Any] = []
    if date_range.from_date:
        conditions.append("[date] >= %s")
        params.append(to_iso(parse_calendar_date(date_range.from_date)))
    if date_range.to_date:
        conditions.append("[date] <= %s")
        params.append(to_iso(parse_calendar_date(date_range.to_date)))

    if not conditions:
        return "", ()
    return "WHERE " + " AND ".join(conditions), tuple(params)


def _serialize_record(row: Mapping[str, Any]) -> Dict[str, Any] | None:
    try:
        record = AttendanceRecord.model_validate(dict(row))
    except ValidationError as exc:
        logger.warning("Skipping malformed attendance row %s: %s", row.get("id"), exc.errors()[:1])
        return None
    return record.model_dump()


def _serialize_rows(rows: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    records: List[Dict[str, Any]] = []
    for row in rows:
        record = _serialize_record(row)
        if record is not None:
            records.append(record)
    return records


def _normalize_page(page: int, page_size: int) -> tuple[int, int]:
    normalized_page = max(1, int(page))
    normalized_size = max(1, min(int(page_size), settings.max_page_size))
    return normalized_page, normalized_size


def _order_clause(sort_by: str, direction: str) -> str:
    column = _SORT_COLUMNS.get(sort_by)
    if column is None:
        raise ValueError(f"sort_by must be one of: {', '.join(sorted(_SORT_COLUMNS))}")
    normalized_direction = direction.lower()
    if normalized_direction not in {"asc", "desc"}:
        raise ValueError("direction must be 'asc' or 'desc'")
    return (
        f"ORDER BY CASE WHEN {column} IS NULL THEN 1 ELSE 0 END, "
        f"{column} {normalized_direction.upper()}, [id] ASC"
    )


def fetch_attendance_page(
    page: int = 1,
    page_size: int = 10,
    date_range: DateRange | None = None,
    sort_by: str = "date",
    direction: str = "desc",
) -> Dict[str, Any]:
    page, page_size = _normalize_page(page, page_size)
    order_clause = _order_clause(sort_by, direction)
    where_clause, params = _range_where(date_range)
    offset = (page - 1) * page_size

    count_sql = f"SELECT COUNT(*) AS total FROM {_table()} {where_clause}"
    data_sql = f"""
        SELECT {_select_columns()}
        FROM {_table()}
        {where_clause}
        {order_clause}
        OFFSET %d ROWS FETCH NEXT %d ROWS ONLY
    """

    with get_cursor() as cursor:
        cursor.execute(count_sql, params)
        count_row = cursor.fetchone() or {}
        cursor.execute(data_sql, params + (offset, page_size))
        rows = cursor.fetchall()

    count = int(count_row.get("total") or 0)
    return {
        "records": _serialize_rows(rows),
        "count": count,
        "page": page,
        "page_size": page_size,
        "total_pages": math.ceil(count / page_size) if count else 0,
        "sort_by": sort_by,
        "direction": direction.lower(),
    }


def fetch_attendance_for_range(date_range: DateRange | None) -> List[Dict[str, Any]]:
    where_clause, params = _range_where(date_range)
    sql = f"""
        SELECT {_select_columns()}
        FROM {_table()}
        {where_clause}
        ORDER BY [date] ASC, [created_at] ASC, [id] ASC
    """

    with get_cursor() as cursor:
        cursor.execute(sql, params)
        rows = cursor.fetchall()

    return _serialize_rows(rows)


def fetch_attendance_record(record_id: str) -> Dict[str, Any] | None:
    sql = f"""
        SELECT TOP 1 {_select_columns()}
        FROM {_table()}
        WHERE CONVERT(VARCHAR(36), [id]) = %s
    """

    with get_cursor() as cursor:
        cursor.execute(sql, (record_id.strip(),))
        row = cursor.fetchone()

    if not row:
        return None
    return _serialize_record(row)


def _db_value(field: str, value: Any) -> Any:
    if field == "date":
        return to_iso(parse_calendar_date(value))
    if field == "job_order_no":
        text = str(value).strip() if value is not None else ""
        return text or None
    if isinstance(value, str):
        return value.strip()
    return value


def add_attendance_record(payload: Mapping[str, Any]) -> Dict[str, Any]:
    for field in _REQUIRED_TEXT_FIELDS:
        if not str(payload.get(field) or "").strip():
            raise ValueError(f"{field} is required")
    if payload.get("date") is None:
        raise ValueError("date is required")

    values = tuple(_db_value(field, payload.get(field)) for field in _EDITABLE_FIELDS)
    columns = ", ".join(f"[{field}]" for field in _EDITABLE_FIELDS)
    placeholders = ", ".join("%s" for _ in _EDITABLE_FIELDS)
    sql = f"""
        INSERT INTO {_table()} ({columns}, [created_at], [updated_at])
        OUTPUT {_select_columns("INSERTED")}
        VALUES ({placeholders}, SYSUTCDATETIME(), SYSUTCDATETIME())
    """

    with get_cursor(commit=True) as cursor:
        cursor.execute(sql, values)
        row = cursor.fetchone()

    record = _serialize_record(row) if row else None
    if record is None:
        raise ValueError("failed to create attendance record")
    logger.info("Added attendance record %s for %s", record["id"], record["date"])
    return record


def update_attendance_record(record_id: str, changes: Mapping[str, Any]) -> Dict[str, Any] | None:
    updates = {field: changes[field] for field in _EDITABLE_FIELDS if field in changes}
    if not updates:
        raise ValueError("no editable fields supplied")
    for field in _REQUIRED_TEXT_FIELDS:
        if field in updates and not str(updates[field] or "").strip():
            raise ValueError(f"{field} cannot be empty")
    if "date" in updates and updates["date"] is None:
        raise ValueError("date cannot be empty")

    assignments = ", ".join(f"[{field}] = %s" for field in updates)
    values = tuple(_db_value(field, value) for field, value in updates.items())
    sql = f"""
        UPDATE {_table()}
        SET {assignments}, [updated_at] = SYSUTCDATETIME()
        OUTPUT {_select_columns("INSERTED")}
        WHERE CONVERT(VARCHAR(36), [id]) = %s
    """

    with get_cursor(commit=True) as cursor:
        cursor.execute(sql, values + (record_id.strip(),))
        row = cursor.fetchone()

    if not row:
        return None
    return _serialize_record(row)


def delete_attendance_record(record_id: str) -> bool:
    sql = f"DELETE FROM {_table()} WHERE CONVERT(VARCHAR(36), [id]) = %s"

    with get_cursor(commit=True) as cursor:
        cursor.execute(sql, (record_id.strip(),))
        deleted = int(cursor.rowcount or 0)

    if deleted:
        logger.info("Deleted attendance record %s", record_id)
    return deleted > 0


def fetch_distinct_values(field: str) -> List[str]:
    if field not in _DISTINCT_FIELDS:
        raise ValueError(f"field must be one of: {', '.join(_DISTINCT_FIELDS)}")

    sql = f"""
        SELECT DISTINCT LTRIM(RTRIM([{field}])) AS value
        FROM {_table()}
        WHERE [{field}] IS NOT NULL
          AND LTRIM(RTRIM([{field}])) <> ''
    """

    with get_cursor() as cursor:
        cursor.execute(sql)
        rows = cursor.fetchall()

    values = {str(row.get("value") or "").strip() for row in rows}
    return sorted(value for value in values if value)
