import uuid
from datetime import datetime, timedelta, timezone

import pytest

from finance_tracker.core.errors import ValidationError
from finance_tracker.models.category import Category
from finance_tracker.models.transaction import Transaction
from finance_tracker.services.aggregation import (
    bucket_trends,
    category_breakdown,
    group_by_currency,
    monthly_trends,
    naive_utc,
    period_key,
    resolve_granularity,
    summarize,
    top_expense_categories,
)


USER = uuid.uuid4()


def tx(amount, type="expense", date=datetime(2026, 3, 10), category_id=None, currency="USD", status="completed"):
    return Transaction(
        user_id=USER,
        title="t",
        amount=amount,
        type=type,
        status=status,
        currency=currency,
        category_id=category_id or uuid.uuid4(),
        payment_method="cash",
        date=date,
    )


def test_summarize():
    rows = [tx(100, "income"), tx(30), tx(20, status="pending"), tx(50, "transfer")]
    s = summarize(rows)
    assert s["total_income"] == 100
    assert s["total_expenses"] == 50
    assert s["total_transfers"] == 50
    assert s["net_amount"] == 50
    assert s["transaction_count"] == 4
    assert s["pending_count"] == 1
    assert s["average_transaction"] == 50
    assert s["by_type"]["expense"] == {"count": 2, "total": 50}


def test_summarize_empty():
    s = summarize([])
    assert s["transaction_count"] == 0
    assert s["average_transaction"] == 0.0
    assert s["by_type"] == {}


@pytest.mark.parametrize(
    "span, expected",
    [
        (timedelta(0), "day"),
        (timedelta(days=30), "day"),
        (timedelta(days=30, hours=1), "week"),
        (timedelta(days=31), "week"),
        (timedelta(days=90), "week"),
        (timedelta(days=90, minutes=1), "month"),
        (timedelta(days=365), "month"),
        (timedelta(days=365, hours=12), "quarter"),
        (timedelta(days=366), "quarter"),
    ],
)
def test_auto_granularity_follows_date_span(span, expected):
    start = datetime(2025, 1, 1)
    rows = [tx(1, date=start), tx(1, date=start + span)]
    assert resolve_granularity(rows, "auto") == expected


def test_explicit_granularity_accepts_plurals():
    assert resolve_granularity([], "months") == "month"
    assert resolve_granularity([], "Week") == "week"
    assert resolve_granularity([], None) == "day"


def test_unknown_granularity_is_rejected():
    with pytest.raises(ValidationError):
        resolve_granularity([], "hourly")


def test_period_keys():
    assert period_key(datetime(2026, 3, 5), "day") == "2026-03-05"
    # ISO week belongs to the following year
    assert period_key(datetime(2025, 12, 29), "week") == "2026-W01"
    assert period_key(datetime(2026, 3, 5), "month") == "2026-03"
    assert period_key(datetime(2026, 5, 3), "quarter") == "2026-Q2"


def test_bucket_trends_are_sorted_and_netted():
    rows = [
        tx(500, "income", date=datetime(2026, 2, 3)),
        tx(120, date=datetime(2026, 2, 20)),
        tx(80, date=datetime(2026, 1, 15)),
        tx(40, "transfer", date=datetime(2026, 1, 16)),
    ]
    assert bucket_trends(rows, "month") == [
        {"period": "2026-01", "income": 0, "expenses": 80, "net": -80},
        {"period": "2026-02", "income": 500, "expenses": 120, "net": 380},
    ]


def test_monthly_trends_zero_fill_across_year_boundary():
    rows = [tx(10, date=datetime(2025, 11, 4)), tx(200, "income", date=datetime(2026, 2, 1))]
    trends = monthly_trends(rows, datetime(2026, 2, 28, 23, 59))
    assert [t["month"] for t in trends] == ["2025-09", "2025-10", "2025-11", "2025-12", "2026-01", "2026-02"]
    assert trends[0] == {"month": "2025-09", "income": 0, "expenses": 0, "net": 0}
    assert trends[2]["expenses"] == 10
    assert trends[-1]["net"] == 200


def test_top_expense_categories():
    ids = [uuid.uuid4() for _ in range(7)]
    known = Category(id=ids[0], user_id=USER, name="Rent", color="#000000")
    rows = [tx(100 + i, category_id=cid) for i, cid in enumerate(ids)]
    rows.append(tx(10_000, "income", category_id=ids[1]))

    top = top_expense_categories(rows, {ids[0]: known})
    assert len(top) == 5
    assert [t["amount"] for t in top] == [106, 105, 104, 103, 102]
    assert top[0]["name"] == f"Category {str(ids[6])[:8]}"

    everything = top_expense_categories(rows, {ids[0]: known}, limit=10)
    assert everything[-1] == {"category_id": str(ids[0]), "name": "Rent", "amount": 100, "color": "#000000"}


def test_category_breakdown_percentages():
    a, b = uuid.uuid4(), uuid.uuid4()
    rows = [tx(75, category_id=a), tx(20, category_id=b), tx(5, category_id=b)]
    result = category_breakdown(rows, {})
    assert [r["total"] for r in result] == [75, 25]
    assert [r["percentage"] for r in result] == [75.0, 25.0]
    assert result[1]["count"] == 2


def test_group_by_currency_defaults_to_usd():
    rows = [tx(1, currency="EUR"), tx(2, currency=None), tx(3)]
    groups = group_by_currency(rows)
    assert sorted(groups) == ["EUR", "USD"]
    assert [t.amount for t in groups["USD"]] == [2, 3]


def test_naive_utc():
    aware = datetime(2026, 3, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
    assert naive_utc(aware) == datetime(2026, 3, 1, 10, 0)
    assert naive_utc(None) is None
