from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Iterable, Iterator, Mapping, Sequence

from .periods import format_long_day, is_saturday, is_sunday, to_iso
from .schemas import AttendanceRecord

SUNDAY_REMARK = "SUNDAY"
REST_DAY_REMARK = "REST DAY"
TOTAL_LABEL = "Total OT"
PREPARED_BY_CAPTION = "Prepared by:"
CHECKED_BY_CAPTION = "Checked By:"

JOB_ORDER_SEPARATOR = ", "
LINE_SEPARATOR = "\n"

REPORT_HEADERS = ("DATE", "O.T", "J.O. No.", "Destination", "REMARK")

_ZERO = Decimal("0")
_ONE_DECIMAL = Decimal("0.1")


class CellTag(str, Enum):
    EMPHASIS = "emphasis"
    WARNING = "warning"
    SUCCESS = "success"
    MUTED = "muted"
    TOTAL = "total"


class RowKind(str, Enum):
    DAY = "day"
    SUNDAY = "sunday"
    REST_DAY = "rest_day"
    TOTAL = "total"
    SIGNATURE = "signature"
    CAPTION = "caption"


class OrderedTextSet:
    """Insertion-ordered set of non-empty strings."""

    def __init__(self, values: Iterable[Any] = ()) -> None:
        self._items: dict[str, None] = {}
        for value in values:
            self.add(value)

    def add(self, value: Any) -> bool:
        if value is None:
            return False
        text = str(value).strip()
        if not text or text in self._items:
            return False
        self._items[text] = None
        return True

    def join(self, separator: str) -> str:
        return separator.join(self._items)

    def __contains__(self, value: object) -> bool:
        return value in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"OrderedTextSet({list(self._items)!r})"


def _overtime_decimal(value: float | None) -> Decimal:
    if value is None:
        return _ZERO
    return Decimal(str(value))


def format_hours(value: Decimal) -> str:
    rounded = value.quantize(_ONE_DECIMAL, rounding=ROUND_HALF_UP)
    return f"{rounded:.1f}"


def _is_contributing(record: AttendanceRecord) -> bool:
    if record.overtime:
        return True
    return bool(record.job_order_no or record.destination or record.remarks)


@dataclass
class DayGroup:
    date: date
    overtime_total: Decimal = _ZERO
    destinations: OrderedTextSet = field(default_factory=OrderedTextSet)
    job_orders: OrderedTextSet = field(default_factory=OrderedTextSet)
    remarks: OrderedTextSet = field(default_factory=OrderedTextSet)
    contributing_records: int = 0
    records: list[AttendanceRecord] = field(default_factory=list)

    @property
    def is_sunday(self) -> bool:
        return is_sunday(self.date)

    @property
    def is_saturday(self) -> bool:
        return is_saturday(self.date)

    def add(self, record: AttendanceRecord) -> None:
        self.records.append(record)
        self.overtime_total += _overtime_decimal(record.overtime)
        self.destinations.add(record.destination)
        self.job_orders.add(record.job_order_no)
        self.remarks.add(record.remarks)
        if _is_contributing(record):
            self.contributing_records += 1


@dataclass(frozen=True)
class ReportCell:
    text: str
    tags: tuple[CellTag, ...] = ()
    align: str = "left"


@dataclass(frozen=True)
class ReportRow:
    kind: RowKind
    label: str
    overtime: str = ""
    job_order: str = ""
    destination: str = ""
    remark: str = ""
    date: str | None = None

    @property
    def cells(self) -> tuple[ReportCell, ...]:
        if self.kind in (RowKind.SIGNATURE, RowKind.CAPTION):
            tags = (CellTag.EMPHASIS,) if self.kind is RowKind.CAPTION else ()
            return (ReportCell(self.label, tags),)

        label_tags: tuple[CellTag, ...] = ()
        value_tags: tuple[CellTag, ...] = ()
        remark_tags: tuple[CellTag, ...] = ()
        if self.kind is RowKind.SUNDAY:
            label_tags = (CellTag.EMPHASIS,)
            remark_tags = (CellTag.EMPHASIS, CellTag.WARNING)
        elif self.kind is RowKind.REST_DAY:
            label_tags = (CellTag.EMPHASIS,)
            remark_tags = (CellTag.EMPHASIS, CellTag.SUCCESS)
        elif self.kind is RowKind.TOTAL:
            label_tags = (CellTag.EMPHASIS, CellTag.TOTAL)
            value_tags = (CellTag.EMPHASIS, CellTag.TOTAL)
            remark_tags = (CellTag.TOTAL,)

        other_tags = (CellTag.TOTAL,) if self.kind is RowKind.TOTAL else ()
        return (
            ReportCell(self.label, label_tags),
            ReportCell(self.overtime, value_tags, align="center"),
            ReportCell(self.job_order, other_tags, align="center"),
            ReportCell(self.destination, other_tags),
            ReportCell(self.remark, remark_tags),
        )


def _coerce_record(record: AttendanceRecord | Mapping[str, Any], index: int) -> AttendanceRecord:
    if isinstance(record, AttendanceRecord):
        return record
    data = dict(record)
    if not data.get("id"):
        data["id"] = f"row-{index}"
    return AttendanceRecord.model_validate(data)


def sort_records(records: Sequence[AttendanceRecord | Mapping[str, Any]]) -> list[AttendanceRecord]:
    coerced = [_coerce_record(record, index) for index, record in enumerate(records)]
    return sorted(coerced, key=lambda item: item.date)


def _group_sorted(records: Iterable[AttendanceRecord]) -> list[DayGroup]:
    groups: dict[date, DayGroup] = {}
    for record in records:
        group = groups.get(record.date)
        if group is None:
            group = DayGroup(date=record.date)
            groups[record.date] = group
        group.add(record)
    return list(groups.values())


def group_by_day(records: Sequence[AttendanceRecord | Mapping[str, Any]]) -> list[DayGroup]:
    return _group_sorted(sort_records(records))


def _day_row(group: DayGroup) -> ReportRow:
    date_key = to_iso(group.date)
    label = format_long_day(group.date)

    if group.is_sunday:
        return ReportRow(
            kind=RowKind.SUNDAY,
            label=label,
            overtime=format_hours(_ZERO),
            remark=SUNDAY_REMARK,
            date=date_key,
        )

    if group.is_saturday and group.contributing_records == 0:
        return ReportRow(
            kind=RowKind.REST_DAY,
            label=label,
            overtime=format_hours(_ZERO),
            remark=REST_DAY_REMARK,
            date=date_key,
        )

    return ReportRow(
        kind=RowKind.DAY,
        label=label,
        overtime=format_hours(group.overtime_total),
        job_order=group.job_orders.join(JOB_ORDER_SEPARATOR),
        destination=group.destinations.join(LINE_SEPARATOR),
        remark=group.remarks.join(LINE_SEPARATOR),
        date=date_key,
    )


def build_report(
    records: Sequence[AttendanceRecord | Mapping[str, Any]],
    *,
    include_signatures: bool = False,
) -> list[ReportRow]:
    """Build the printable per-day rows for ``records``.

    Rows come out in ascending date order and are followed by the
    ``Total OT`` row. Sundays always render as ``SUNDAY``; Saturdays with no
    contributing record render as ``REST DAY``. The total is the sum of every
    day group's overtime, including days shown as ``SUNDAY``, rounded once
    when formatted.

    With ``include_signatures`` the ``prepared_by`` and ``checked_by`` of the
    chronologically last record are appended, each followed by its caption.
    """
    ordered = sort_records(records)
    groups = _group_sorted(ordered)

    rows = [_day_row(group) for group in groups]
    total = sum((group.overtime_total for group in groups), _ZERO)
    rows.append(
        ReportRow(
            kind=RowKind.TOTAL,
            label=TOTAL_LABEL,
            overtime=format_hours(total),
        )
    )

    if include_signatures:
        last = ordered[-1] if ordered else None
        rows.extend(
            [
                ReportRow(kind=RowKind.SIGNATURE, label=last.prepared_by if last else ""),
                ReportRow(kind=RowKind.CAPTION, label=PREPARED_BY_CAPTION),
                ReportRow(kind=RowKind.SIGNATURE, label=last.checked_by if last else ""),
                ReportRow(kind=RowKind.CAPTION, label=CHECKED_BY_CAPTION),
            ]
        )

    return rows


def total_row(rows: Sequence[ReportRow]) -> ReportRow | None:
    for row in rows:
        if row.kind is RowKind.TOTAL:
            return row
    return None
