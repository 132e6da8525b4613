from __future__ import annotations

from contextlib import contextmanager
from datetime import date

import pytest

from attendance_monitor import records
from attendance_monitor.periods import DateRange


class FakeCursor:
    def __init__(self, results=None, rowcount=0):
        self._results = list(results or [])
        self._current = []
        self.executed = []
        self.rowcount = rowcount

    def execute(self, sql, params=None):
        self.executed.append((" ".join(sql.split()), params))
        self._current = self._results.pop(0) if self._results else []

    def fetchone(self):
        return self._current[0] if self._current else None

    def fetchall(self):
        return list(self._current)


@pytest.fixture
def fake_cursor(monkeypatch):
    holder = {"cursor": FakeCursor(), "commits": []}

    @contextmanager
    def _get_cursor(commit=False):
        holder["commits"].append(commit)
        yield holder["cursor"]

    monkeypatch.setattr(records, "get_cursor", _get_cursor)
    return holder


def _row(record_id="1", day=date(2025, 3, 12), **fields):
    row = {
        "id": record_id,
        "date": day,
        "overtime": 1.5,
        "job_order_no": "JO-1",
        "destination": "Cebu",
        "remarks": "Delivery",
        "prepared_by": "Ana",
        "checked_by": "Ben",
        "created_at": None,
        "updated_at": None,
    }
    row.update(fields)
    return row


def test_fetch_page_filters_by_range_and_paginates(fake_cursor):
    fake_cursor["cursor"] = FakeCursor([[{"total": 23}], [_row()]])

    payload = records.fetch_attendance_page(
        page=3,
        page_size=10,
        date_range=DateRange("2025-03-11", "2025-03-25"),
        sort_by="overtime",
        direction="ASC",
    )

    count_sql, count_params = fake_cursor["cursor"].executed[0]
    data_sql, data_params = fake_cursor["cursor"].executed[1]
    assert "COUNT(*)" in count_sql
    assert "WHERE [date] >= %s AND [date] <= %s" in count_sql
    assert count_params == ("2025-03-11", "2025-03-25")
    assert "ORDER BY CASE WHEN [overtime] IS NULL THEN 1 ELSE 0 END, [overtime] ASC" in data_sql
    assert "OFFSET %d ROWS FETCH NEXT %d ROWS ONLY" in data_sql
    assert data_params == ("2025-03-11", "2025-03-25", 20, 10)

    assert payload["count"] == 23
    assert payload["total_pages"] == 3
    assert payload["direction"] == "asc"
    assert payload["records"][0]["date"] == date(2025, 3, 12)


def test_fetch_page_clamps_page_size(fake_cursor):
    fake_cursor["cursor"] = FakeCursor([[{"total": 0}], []])

    payload = records.fetch_attendance_page(page=0, page_size=10_000)

    assert payload["page"] == 1
    assert payload["page_size"] == records.settings.max_page_size
    assert payload["total_pages"] == 0
    assert fake_cursor["cursor"].executed[0][1] == ()


def test_fetch_page_rejects_unknown_sort_column(fake_cursor):
    with pytest.raises(ValueError):
        records.fetch_attendance_page(sort_by="destination; DROP TABLE x")

    assert fake_cursor["cursor"].executed == []


def test_fetch_for_range_skips_malformed_rows(fake_cursor):
    fake_cursor["cursor"] = FakeCursor([[_row("1"), _row("2", day="garbage")]])

    rows = records.fetch_attendance_for_range(DateRange("2025-03-01", None))

    assert [row["id"] for row in rows] == ["1"]
    sql, params = fake_cursor["cursor"].executed[0]
    assert "WHERE [date] >= %s" in sql
    assert "[date] <= %s" not in sql
    assert params == ("2025-03-01",)


def test_fetch_record_returns_none_when_missing(fake_cursor):
    fake_cursor["cursor"] = FakeCursor([[]])

    assert records.fetch_attendance_record("missing") is None


def test_add_record_inserts_normalized_values(fake_cursor):
    fake_cursor["cursor"] = FakeCursor([[_row("42", job_order_no=None)]])

    record = records.add_attendance_record(
        {
            "date": date(2025, 3, 12),
            "overtime": 1.5,
            "job_order_no": "  ",
            "destination": " Cebu ",
            "remarks": "Delivery",
            "prepared_by": "Ana",
            "checked_by": "Ben",
        }
    )

    sql, params = fake_cursor["cursor"].executed[0]
    assert sql.startswith(f"INSERT INTO {records._table()}")
    assert "OUTPUT CONVERT(VARCHAR(36), INSERTED.[id]) AS id" in sql
    assert params == ("2025-03-12", 1.5, None, "Cebu", "Delivery", "Ana", "Ben")
    assert fake_cursor["commits"] == [True]
    assert record["id"] == "42"


def test_add_record_requires_text_fields(fake_cursor):
    with pytest.raises(ValueError, match="checked_by"):
        records.add_attendance_record(
            {"date": "2025-03-12", "destination": "Cebu", "remarks": "x", "prepared_by": "Ana"}
        )


def test_update_record_sets_only_supplied_fields(fake_cursor):
    fake_cursor["cursor"] = FakeCursor([[_row("5", remarks="Pickup")]])

    record = records.update_attendance_record("5", {"remarks": "Pickup", "unknown": "x"})

    sql, params = fake_cursor["cursor"].executed[0]
    assert "SET [remarks] = %s, [updated_at] = SYSUTCDATETIME()" in sql
    assert params == ("Pickup", "5")
    assert record["remarks"] == "Pickup"


def test_update_record_returns_none_when_nothing_matched(fake_cursor):
    fake_cursor["cursor"] = FakeCursor([[]])

    assert records.update_attendance_record("404", {"overtime": 2}) is None


def test_update_record_rejects_empty_changes(fake_cursor):
    with pytest.raises(ValueError):
        records.update_attendance_record("5", {})
    with pytest.raises(ValueError):
        records.update_attendance_record("5", {"destination": "  "})


def test_delete_record_reports_rowcount(fake_cursor):
    fake_cursor["cursor"] = FakeCursor(rowcount=1)
    assert records.delete_attendance_record("5") is True

    fake_cursor["cursor"] = FakeCursor(rowcount=0)
    assert records.delete_attendance_record("6") is False


def test_distinct_values_are_sorted_and_whitelisted(fake_cursor):
    fake_cursor["cursor"] = FakeCursor([[{"value": "Manila"}, {"value": "Cebu"}, {"value": " "}]])

    assert records.fetch_distinct_values("destination") == ["Cebu", "Manila"]

    with pytest.raises(ValueError):
        records.fetch_distinct_values("password")
