"""Pure aggregation helpers over already-fetched transaction rows."""
import math
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional

from dateutil.relativedelta import relativedelta

from ..core.errors import ValidationError
from ..models.category import DEFAULT_COLOR
from ..models.transaction import Transaction, TransactionStatus, TransactionType


GRANULARITIES = ("day", "week", "month", "quarter")
DEFAULT_CURRENCY = "USD"


def _r(value: float) -> float:
    return round(value, 2)


def naive_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """Stored datetimes are naive UTC; convert aware input to match."""
    if moment is None or moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def naive_dates(data: dict) -> dict:
    return {k: naive_utc(v) if isinstance(v, datetime) else v for k, v in data.items()}


def summarize(transactions: Iterable[Transaction]) -> dict:
    by_type: Dict[str, dict] = {}
    totals = defaultdict(float)
    count = 0
    pending = 0
    amount_sum = 0.0

    for t in transactions:
        key = TransactionType(t.type).value
        bucket = by_type.setdefault(key, {"count": 0, "total": 0.0})
        bucket["count"] += 1
        bucket["total"] += t.amount
        totals[key] += t.amount
        amount_sum += t.amount
        count += 1
        if t.status == TransactionStatus.PENDING:
            pending += 1

    income = totals[TransactionType.INCOME.value]
    expenses = totals[TransactionType.EXPENSE.value]
    return {
        "total_income": _r(income),
        "total_expenses": _r(expenses),
        "total_transfers": _r(totals[TransactionType.TRANSFER.value]),
        "net_amount": _r(income - expenses),
        "transaction_count": count,
        "pending_count": pending,
        "average_transaction": _r(amount_sum / count) if count else 0.0,
        "by_type": {k: {"count": v["count"], "total": _r(v["total"])} for k, v in by_type.items()},
    }


def _category_name(categories: Mapping, category_id) -> str:
    category = categories.get(category_id)
    if category is not None:
        return category.name
    return f"Category {str(category_id)[:8]}"


def _category_color(categories: Mapping, category_id) -> str:
    category = categories.get(category_id)
    return category.color if category is not None else DEFAULT_COLOR


def category_breakdown(transactions: Iterable[Transaction], categories: Mapping) -> List[dict]:
    grouped: Dict = {}
    for t in transactions:
        row = grouped.setdefault(t.category_id, {"count": 0, "total": 0.0})
        row["count"] += 1
        row["total"] += t.amount

    grand_total = sum(row["total"] for row in grouped.values())
    result = [
        {
            "category_id": str(category_id),
            "category_name": _category_name(categories, category_id),
            "color": _category_color(categories, category_id),
            "count": row["count"],
            "total": _r(row["total"]),
            "percentage": _r(row["total"] / grand_total * 100) if grand_total else 0.0,
        }
        for category_id, row in grouped.items()
    ]
    result.sort(key=lambda r: r["total"], reverse=True)
    return result


def top_expense_categories(transactions: Iterable[Transaction], categories: Mapping, limit: int = 5) -> List[dict]:
    spent = defaultdict(float)
    for t in transactions:
        if t.type == TransactionType.EXPENSE:
            spent[t.category_id] += t.amount

    ranked = sorted(spent.items(), key=lambda item: item[1], reverse=True)[:limit]
    return [
        {
            "category_id": str(category_id),
            "name": _category_name(categories, category_id),
            "amount": _r(amount),
            "color": _category_color(categories, category_id),
        }
        for category_id, amount in ranked
    ]


def group_by_currency(transactions: Iterable[Transaction]) -> Dict[str, List[Transaction]]:
    groups: Dict[str, List[Transaction]] = defaultdict(list)
    for t in transactions:
        groups[t.currency or DEFAULT_CURRENCY].append(t)
    return dict(groups)


def resolve_granularity(transactions: List[Transaction], granularity: Optional[str] = "auto") -> str:
    value = (granularity or "auto").strip().lower()
    if value.endswith("s") and value[:-1] in GRANULARITIES:
        value = value[:-1]
    if value in GRANULARITIES:
        return value
    if value != "auto":
        raise ValidationError(
            f"Invalid granularity '{granularity}'. Use one of: auto, {', '.join(GRANULARITIES)}"
        )

    if not transactions:
        return "day"
    dates = [t.date for t in transactions]
    span = math.ceil((max(dates) - min(dates)).total_seconds() / 86400)
    if span <= 30:
        return "day"
    if span <= 90:
        return "week"
    if span <= 365:
        return "month"
    return "quarter"


def period_key(moment: datetime, granularity: str) -> str:
    if granularity == "day":
        return moment.strftime("%Y-%m-%d")
    if granularity == "week":
        year, week, _ = moment.isocalendar()
        return f"{year}-W{week:02d}"
    if granularity == "month":
        return moment.strftime("%Y-%m")
    if granularity == "quarter":
        return f"{moment.year}-Q{(moment.month - 1) // 3 + 1}"
    raise ValidationError(f"Invalid granularity '{granularity}'")


def _flows(transactions: Iterable[Transaction], key) -> Dict[str, dict]:
    buckets: Dict[str, dict] = defaultdict(lambda: {"income": 0.0, "expenses": 0.0})
    for t in transactions:
        if t.type == TransactionType.INCOME:
            buckets[key(t.date)]["income"] += t.amount
        elif t.type == TransactionType.EXPENSE:
            buckets[key(t.date)]["expenses"] += t.amount
    return buckets


def bucket_trends(transactions: Iterable[Transaction], granularity: str) -> List[dict]:
    buckets = _flows(transactions, lambda d: period_key(d, granularity))
    return [
        {
            "period": key,
            "income": _r(b["income"]),
            "expenses": _r(b["expenses"]),
            "net": _r(b["income"] - b["expenses"]),
        }
        for key, b in sorted(buckets.items())
    ]


def monthly_trends(transactions: Iterable[Transaction], end: datetime, months: int = 6) -> List[dict]:
    buckets = _flows(transactions, lambda d: d.strftime("%Y-%m"))
    first = end.replace(day=1, hour=0, minute=0, second=0, microsecond=0) - relativedelta(months=months - 1)

    result = []
    for i in range(months):
        key = (first + relativedelta(months=i)).strftime("%Y-%m")
        b = buckets.get(key, {"income": 0.0, "expenses": 0.0})
        result.append({
            "month": key,
            "income": _r(b["income"]),
            "expenses": _r(b["expenses"]),
            "net": _r(b["income"] - b["expenses"]),
        })
    return result
