"""
Tests for composable query criteria, SQL rendering and paging
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone, timedelta

from funds_transfer.query import (
    Field, FieldType, Eq, Gte, Lte, Between, AllOf, AnyOf, Ordering,
    SQLiteDialect, PostgreSQLDialect, PageRequest, Page,
    format_timestamp, parse_timestamp
)


ACCOUNT = Field("source_account_id")
AMOUNT = Field("amount", FieldType.NUMERIC)
WHEN = Field("transaction_date", FieldType.TIMESTAMP)


def record(source="a", amount="100.00", when=datetime(2023, 1, 2, 12, 0, tzinfo=timezone.utc), id="t1"):
    return {
        "id": id,
        "source_account_id": source,
        "amount": amount,
        "transaction_date": format_timestamp(when),
    }


class TestTimestamps:
    """Timestamp serialization"""

    def test_format_is_fixed_width_utc(self):
        """Whole-second and fractional values serialize to the same width"""
        whole = format_timestamp(datetime(2023, 1, 1, 12, 0, 0, tzinfo=timezone.utc))
        fractional = format_timestamp(datetime(2023, 1, 1, 12, 0, 0, 500, tzinfo=timezone.utc))
        assert whole == "2023-01-01T12:00:00.000000+00:00"
        assert len(whole) == len(fractional)
        assert whole < fractional

    def test_naive_values_are_utc(self):
        """Naive datetimes are treated as UTC"""
        assert format_timestamp(datetime(2023, 1, 1)) == "2023-01-01T00:00:00.000000+00:00"

    def test_offsets_are_converted(self):
        """Aware datetimes in other zones are converted to UTC"""
        plus_two = timezone(timedelta(hours=2))
        value = datetime(2023, 1, 1, 2, 0, tzinfo=plus_two)
        assert format_timestamp(value) == "2023-01-01T00:00:00.000000+00:00"

    def test_parse_round_trip(self):
        value = datetime(2023, 5, 6, 7, 8, 9, 123, tzinfo=timezone.utc)
        assert parse_timestamp(format_timestamp(value)) == value


class TestCriteriaMatching:
    """In-memory evaluation of criteria"""

    def test_eq_on_text(self):
        assert Eq(ACCOUNT, "a").matches(record(source="a"))
        assert not Eq(ACCOUNT, "a").matches(record(source="b"))

    def test_numeric_comparison_is_not_lexicographic(self):
        """'100.00' is greater than '20.00' numerically"""
        assert Gte(AMOUNT, "20").matches(record(amount="100.00"))
        assert not Lte(AMOUNT, "20").matches(record(amount="100.00"))

    def test_between_is_inclusive(self):
        between = Between(AMOUNT, Decimal("50"), Decimal("100"))
        assert between.matches(record(amount="50.00"))
        assert between.matches(record(amount="100.00"))
        assert not between.matches(record(amount="100.01"))

    def test_timestamp_comparison(self):
        cutoff = datetime(2023, 1, 2, 23, 59, 59, 999999, tzinfo=timezone.utc)
        assert Lte(WHEN, cutoff).matches(record(when=datetime(2023, 1, 2, 23, 0, tzinfo=timezone.utc)))
        assert not Lte(WHEN, cutoff).matches(record(when=datetime(2023, 1, 3, tzinfo=timezone.utc)))

    def test_missing_field_never_matches(self):
        assert not Eq(Field("missing"), "x").matches(record())

    def test_composition_operators(self):
        either = Eq(ACCOUNT, "a") | Eq(ACCOUNT, "b")
        both = either & Gte(AMOUNT, "100")
        assert isinstance(either, AnyOf)
        assert isinstance(both, AllOf)
        assert both.matches(record(source="b", amount="150.00"))
        assert not both.matches(record(source="c", amount="150.00"))
        assert not both.matches(record(source="a", amount="10.00"))

    def test_empty_junctions(self):
        assert AllOf().matches(record())
        assert not AnyOf().matches(record())

    def test_none_comparison_value_rejected(self):
        with pytest.raises(ValueError):
            Eq(ACCOUNT, None)

    def test_invalid_field_name_rejected(self):
        with pytest.raises(ValueError):
            Field("amount'); DROP TABLE transactions; --")


class TestSQLRendering:
    """SQL fragments for each dialect"""

    def test_sqlite_rendering(self):
        criterion = AllOf(
            AnyOf(Eq(ACCOUNT, "a"), Eq(Field("destination_account_id"), "a")),
            Between(AMOUNT, "10", "20"),
            Lte(WHEN, datetime(2023, 1, 2, tzinfo=timezone.utc))
        )
        sql, params = criterion.to_sql(SQLiteDialect())

        assert "json_extract(data, '$.source_account_id') = ?" in sql
        assert "CAST(json_extract(data, '$.amount') AS NUMERIC) BETWEEN ? AND ?" in sql
        assert "json_extract(data, '$.transaction_date') <= ?" in sql
        assert " OR " in sql and " AND " in sql
        assert params == ["a", "a", 10.0, 20.0, "2023-01-02T00:00:00.000000+00:00"]

    def test_postgresql_rendering(self):
        criterion = Gte(AMOUNT, "10.50") & Gte(WHEN, datetime(2023, 1, 1, tzinfo=timezone.utc))
        sql, params = criterion.to_sql(PostgreSQLDialect())

        assert "(data ->> 'amount')::numeric >= %s" in sql
        assert "(data ->> 'transaction_date')::timestamptz >= %s" in sql
        assert params[0] == Decimal("10.50")
        assert params[1] == datetime(2023, 1, 1, tzinfo=timezone.utc)

    def test_empty_rendering(self):
        assert AllOf().to_sql(SQLiteDialect()) == ("1 = 1", [])
        assert AnyOf().to_sql(SQLiteDialect()) == ("1 = 0", [])

    def test_ordering_sql(self):
        assert Ordering(WHEN, descending=True).to_sql(SQLiteDialect()) == (
            "json_extract(data, '$.transaction_date') DESC, id DESC"
        )


class TestOrderingAndPaging:
    """Sorting and page arithmetic"""

    def test_in_memory_sort(self):
        records = [
            record(id="t1", when=datetime(2023, 1, 3, tzinfo=timezone.utc)),
            record(id="t2", when=datetime(2023, 1, 1, tzinfo=timezone.utc)),
            record(id="t3", when=datetime(2023, 1, 2, tzinfo=timezone.utc)),
        ]
        ascending = Ordering(WHEN).sort(records)
        descending = Ordering(WHEN, descending=True).sort(records)
        assert [r["id"] for r in ascending] == ["t2", "t3", "t1"]
        assert [r["id"] for r in descending] == ["t1", "t3", "t2"]

    def test_page_request_offset(self):
        assert PageRequest(page=2, size=10).offset == 20

    def test_page_request_validation(self):
        with pytest.raises(ValueError):
            PageRequest(page=-1)
        with pytest.raises(ValueError):
            PageRequest(size=0)

    def test_page_totals(self):
        page = Page(items=[1, 2], page=0, size=2, total=5)
        assert page.total_pages == 3
        assert page.has_next
        assert not Page(items=[], page=0, size=20, total=0).has_next
        assert Page(items=[], page=0, size=20, total=0).total_pages == 0
