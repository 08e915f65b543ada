"""Dashboards, reports, insights and exports built on top of the transaction store.

Every public method takes the authenticated ``user_id`` and only ever reads that
user's non-deleted rows. Repository errors propagate unchanged.
"""
import csv
import io
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from dateutil.relativedelta import relativedelta
from sqlalchemy import func
from sqlmodel import Session, select

from ..config import settings
from ..core.errors import ReportTimeoutError, ValidationError
from ..models.transaction import Transaction, TransactionStatus, TransactionType
from .aggregation import (
    bucket_trends,
    category_breakdown,
    group_by_currency,
    monthly_trends,
    naive_utc,
    resolve_granularity,
    summarize,
    top_expense_categories,
)
from .budgets import BudgetService
from .categories import CategoryService
from .transactions import TransactionService


logger = logging.getLogger(__name__)

REPORT_TYPES = ("monthly", "quarterly", "yearly", "custom")
INSIGHT_PERIODS = {
    "week": relativedelta(weeks=1),
    "month": relativedelta(months=1),
    "quarter": relativedelta(months=3),
    "year": relativedelta(years=1),
}
EXPORT_FORMATS = ("csv", "json", "pdf")
CSV_COLUMNS = [
    "id", "date", "title", "type", "status", "amount", "currency", "fees", "tax",
    "total_amount", "category", "subcategory", "payment_method", "merchant_name",
    "tags", "notes",
]
PREDICTION_GROWTH = 1.05
PREDICTION_CONFIDENCE = 0.7
TREND_CONFIDENCE = 0.8


def _end_of(start: datetime, span: relativedelta) -> datetime:
    return start + span - timedelta(microseconds=1)


def month_range(now: datetime) -> Tuple[datetime, datetime]:
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return start, _end_of(start, relativedelta(months=1))


def period_start(period: str, now: datetime) -> datetime:
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "week":
        return midnight - timedelta(days=midnight.weekday())
    if period == "month":
        return midnight.replace(day=1)
    if period == "quarter":
        return midnight.replace(month=(now.month - 1) // 3 * 3 + 1, day=1)
    if period == "year":
        return midnight.replace(month=1, day=1)
    raise ValidationError(f"Invalid period '{period}'. Use one of: {', '.join(INSIGHT_PERIODS)}")


def report_range(report_type: str, now: datetime) -> Tuple[datetime, datetime]:
    if report_type == "quarterly":
        start = period_start("quarter", now)
        return start, _end_of(start, relativedelta(months=3))
    if report_type == "yearly":
        start = period_start("year", now)
        return start, _end_of(start, relativedelta(years=1))
    return month_range(now)


def percent_change(current: float, previous: float) -> float:
    if not previous:
        return 100.0 if current else 0.0
    return round((current - previous) / abs(previous) * 100, 2)


def change_type(change: float) -> str:
    if change > 0:
        return "increase"
    if change < 0:
        return "decrease"
    return "stable"


def transaction_json(t: Transaction) -> dict:
    data = t.model_dump(mode="json")
    data["total_amount"] = t.total_amount
    return data


def report_insights(summary: dict, categories: List[dict]) -> List[str]:
    insights = []
    income = summary["total_income"]
    expenses = summary["total_expenses"]
    if income and expenses > income * 0.8:
        insights.append(
            "Your expenses are high relative to income. Consider reviewing discretionary spending."
        )
    if expenses > income:
        insights.append(
            "You are spending more than you earn. Focus on reducing expenses or increasing income."
        )
    if categories and categories[0]["percentage"] > 40:
        top = categories[0]
        insights.append(
            f"{top['category_name']} accounts for {top['percentage']:.1f}% of your spending. "
            "Consider if this aligns with your priorities."
        )
    return insights


def projections_for(summary: dict) -> List[dict]:
    return [{
        "type": "expense",
        "prediction": round(summary["total_expenses"] * PREDICTION_GROWTH, 2),
        "confidence": PREDICTION_CONFIDENCE,
        "reasoning": "Based on current spending trends",
    }]


def transactions_csv(rows: List[Transaction], categories: Dict) -> str:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=CSV_COLUMNS, lineterminator="\n")
    writer.writeheader()
    for t in rows:
        category = categories.get(t.category_id)
        subcategory = categories.get(t.subcategory_id) if t.subcategory_id else None
        writer.writerow({
            "id": str(t.id),
            "date": t.date.isoformat(),
            "title": t.title,
            "type": t.type.value if hasattr(t.type, "value") else t.type,
            "status": t.status.value if hasattr(t.status, "value") else t.status,
            "amount": t.amount,
            "currency": t.currency,
            "fees": t.fees if t.fees is not None else "",
            "tax": t.tax if t.tax is not None else "",
            "total_amount": t.total_amount,
            "category": category.full_path if category else str(t.category_id),
            "subcategory": subcategory.full_path if subcategory else "",
            "payment_method": t.payment_method.value if hasattr(t.payment_method, "value") else t.payment_method,
            "merchant_name": t.merchant_name or "",
            "tags": ";".join(t.tags or []),
            "notes": t.notes or "",
        })
    return buf.getvalue()


class FinancialService:
    def __init__(self, session: Session):
        self.session = session
        self.transactions = TransactionService(session)
        self.categories = CategoryService(session)
        self.budgets = BudgetService(session)

    def _category_map(self, user_id: uuid.UUID, rows: List[Transaction]) -> Dict:
        ids = [t.category_id for t in rows] + [t.subcategory_id for t in rows if t.subcategory_id]
        return self.categories.get_categories_by_ids(user_id, ids)

    def _count(self, user_id: uuid.UUID, *criteria) -> int:
        return self.session.exec(
            select(func.count()).select_from(Transaction).where(
                Transaction.user_id == user_id,
                Transaction.is_deleted == False,  # noqa: E712
                *criteria,
            )
        ).one()

    # ───────────── dashboard ─────────────

    def get_financial_dashboard(
        self,
        user_id: uuid.UUID,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        account_id: Optional[uuid.UUID] = None,
        separate_by_currency: bool = False,
    ) -> dict:
        now = datetime.utcnow()
        default_start, default_end = month_range(now)
        start = naive_utc(start_date) or default_start
        end = naive_utc(end_date) or default_end
        logger.info("Building dashboard for user %s (%s to %s)", user_id, start, end)

        rows = self.transactions.query_transactions(user_id, start, end, account_id=account_id)
        trend_start = end.replace(day=1, hour=0, minute=0, second=0, microsecond=0) - relativedelta(months=5)
        trend_rows = self.transactions.query_transactions(user_id, trend_start, end, account_id=account_id)

        if not separate_by_currency:
            result = self._dashboard(user_id, rows, trend_rows, start, end, now)
        else:
            by_currency = group_by_currency(rows)
            trends_by_currency = group_by_currency(trend_rows)
            result = {
                currency: self._dashboard(
                    user_id, group, trends_by_currency.get(currency, []), start, end, now, currency=currency
                )
                for currency, group in sorted(by_currency.items())
            }
        logger.info("Dashboard built for user %s", user_id)
        return result

    def _dashboard(self, user_id, rows, trend_rows, start, end, now, currency=None) -> dict:
        summary = summarize(rows)
        categories = self._category_map(user_id, rows)
        currency_filter = [Transaction.currency == currency] if currency else []

        pending = self._count(user_id, Transaction.status == TransactionStatus.PENDING, *currency_filter)
        upcoming = self._count(
            user_id,
            Transaction.is_recurring == True,  # noqa: E712
            Transaction.next_occurrence > now,
            *currency_filter,
        )
        recent = sorted(rows, key=lambda t: t.date, reverse=True)[:10]
        budgets = self.budgets.active_budgets_overlapping(user_id, start, end, currency=currency)

        net = summary["net_amount"]
        return {
            "overview": {
                "total_balance": net,
                "monthly_income": summary["total_income"],
                "monthly_expenses": summary["total_expenses"],
                "monthly_net": net,
                "pending_transactions": pending,
                "upcoming_recurring": upcoming,
            },
            "recent_transactions": [transaction_json(t) for t in recent],
            "top_categories": top_expense_categories(rows, categories),
            "spending_trends": monthly_trends(trend_rows, end),
            "budget_status": [self.budgets.compute_progress(b) for b in budgets],
        }

    # ───────────── reports ─────────────

    def generate_financial_report(
        self,
        user_id: uuid.UUID,
        report_type: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        include_categories: bool = True,
        include_trends: bool = True,
        include_projections: bool = False,
        separate_by_currency: bool = False,
        granularity: str = "auto",
    ) -> dict:
        if not report_type:
            raise ValidationError("Report type is required")
        if report_type not in REPORT_TYPES:
            raise ValidationError("Invalid report type")

        if start_date and end_date:
            start, end = naive_utc(start_date), naive_utc(end_date)
        else:
            start, end = report_range(report_type, datetime.utcnow())
        if end < start:
            raise ValidationError("End date must be after start date")
        logger.info("Generating %s report for user %s (%s to %s)", report_type, user_id, start, end)

        rows = self.transactions.query_transactions(user_id, start, end)
        categories = self._category_map(user_id, rows)
        options = dict(
            include_categories=include_categories,
            include_trends=include_trends,
            include_projections=include_projections,
            granularity=granularity,
        )

        if not separate_by_currency:
            report = self._build_report(report_type, start, end, rows, categories, **options)
        else:
            report = self._run_with_timeout(
                lambda: {
                    currency: {
                        **self._build_report(report_type, start, end, group, categories, **options),
                        "currency": currency,
                    }
                    for currency, group in sorted(group_by_currency(rows).items())
                }
            )
        logger.info("Report generated for user %s (%d transactions)", user_id, len(rows))
        return report

    @staticmethod
    def _run_with_timeout(fn):
        # only pure computation runs in the worker; the session stays on the caller's thread
        executor = ThreadPoolExecutor(max_workers=1)
        future = executor.submit(fn)
        try:
            return future.result(timeout=settings.report_timeout_seconds)
        except FutureTimeout:
            future.cancel()
            logger.error("Report generation exceeded %ss", settings.report_timeout_seconds)
            raise ReportTimeoutError("Report generation timeout")
        finally:
            executor.shutdown(wait=False)

    def _build_report(
        self,
        report_type: str,
        start: datetime,
        end: datetime,
        rows: List[Transaction],
        categories: Dict,
        include_categories: bool = True,
        include_trends: bool = True,
        include_projections: bool = False,
        granularity: str = "auto",
    ) -> dict:
        stats = summarize(rows)
        summary = {
            k: stats[k]
            for k in ("total_income", "total_expenses", "total_transfers", "net_amount", "transaction_count")
        }
        breakdown = category_breakdown(
            [t for t in rows if t.type == TransactionType.EXPENSE], categories
        )
        report = {
            "report_type": report_type,
            "period": {"start": start.isoformat(), "end": end.isoformat()},
            "summary": summary,
            "categories": breakdown if include_categories else [],
            "trends": [],
            "projections": projections_for(summary) if include_projections else [],
            "insights": report_insights(summary, breakdown),
        }
        if include_trends:
            unit = resolve_granularity(rows, granularity)
            report["granularity"] = unit
            report["trends"] = bucket_trends(rows, unit)
        return report

    # ───────────── budget analysis ─────────────

    def get_budget_analysis(
        self,
        user_id: uuid.UUID,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        category_id: Optional[uuid.UUID] = None,
    ) -> dict:
        default_start, default_end = month_range(datetime.utcnow())
        start = naive_utc(start_date) or default_start
        end = naive_utc(end_date) or default_end
        logger.info("Analyzing budgets for user %s (%s to %s)", user_id, start, end)

        rows = self.transactions.query_transactions(user_id, start, end, category_id=category_id)
        stats = summarize(rows)
        expenses = [t for t in rows if t.type == TransactionType.EXPENSE]
        by_category = category_breakdown(expenses, self._category_map(user_id, expenses))
        vs_budget = [
            self.budgets.compute_progress(b)
            for b in self.budgets.active_budgets_overlapping(user_id, start, end)
        ]

        recommendations = [
            {
                "category": c["category_name"],
                "action": "Review spending",
                "reason": "This category represents a large portion of your expenses",
                "impact": "high",
            }
            for c in by_category
            if c["percentage"] > 30
        ]

        alerts = []
        if stats["total_expenses"] > stats["total_income"]:
            alerts.append({
                "type": "overspending",
                "severity": "critical",
                "message": "You are spending more than you earn this period",
            })
        for progress in vs_budget:
            alerts.extend(a for a in self.budgets.alerts_for(progress) if a["type"] != "category_overbudget")

        return {
            "period": {"start": start.isoformat(), "end": end.isoformat()},
            "current_spending": {
                "total": stats["total_expenses"],
                "by_category": by_category,
                "vs_budget": vs_budget,
            },
            "recommendations": recommendations,
            "alerts": alerts,
        }

    # ───────────── insights ─────────────

    def get_financial_insights(
        self,
        user_id: uuid.UUID,
        period: str = "month",
        include_predictions: bool = False,
    ) -> dict:
        if period not in INSIGHT_PERIODS:
            raise ValidationError(f"Invalid period '{period}'. Use one of: {', '.join(INSIGHT_PERIODS)}")
        now = datetime.utcnow()
        start = period_start(period, now)
        prev_start = start - INSIGHT_PERIODS[period]
        prev_end = start - timedelta(microseconds=1)
        logger.info("Computing %s insights for user %s", period, user_id)

        current_rows = self.transactions.query_transactions(user_id, start, now)
        previous_rows = self.transactions.query_transactions(user_id, prev_start, prev_end)
        current = summarize(current_rows)
        previous = summarize(previous_rows)

        insights = self._period_insights(period, current, previous)
        trends = self._category_trends(user_id, current_rows, previous_rows)
        predictions = projections_for(current) if include_predictions else []

        return {
            "period": period,
            "start_date": start.isoformat(),
            "end_date": now.isoformat(),
            "summary": {k: current[k] for k in ("total_income", "total_expenses", "net_amount", "transaction_count")},
            "insights": insights,
            "trends": trends,
            "predictions": predictions,
        }

    @staticmethod
    def _period_insights(period: str, current: dict, previous: dict) -> List[dict]:
        insights = []
        income, expenses = current["total_income"], current["total_expenses"]

        if expenses > income:
            insights.append({
                "type": "spending",
                "title": "Overspending",
                "description": f"You spent more than you earned this {period}",
                "value": round(expenses - income, 2),
                "change": 0,
                "change_type": "increase",
            })
        elif income > 0:
            change = percent_change(current["net_amount"], previous["net_amount"])
            insights.append({
                "type": "savings",
                "title": "Savings",
                "description": f"You saved {current['net_amount']:.2f} this {period}",
                "value": current["net_amount"],
                "change": change,
                "change_type": change_type(change),
            })

        change = percent_change(expenses, previous["total_expenses"])
        insights.append({
            "type": "spending",
            "title": "Spending change",
            "description": f"Spending is {abs(change):.1f}% {'up' if change >= 0 else 'down'} on the previous {period}",
            "value": expenses,
            "change": change,
            "change_type": change_type(change),
        })

        change = percent_change(income, previous["total_income"])
        insights.append({
            "type": "income",
            "title": "Income change",
            "description": f"Income is {abs(change):.1f}% {'up' if change >= 0 else 'down'} on the previous {period}",
            "value": income,
            "change": change,
            "change_type": change_type(change),
        })
        return insights

    def _category_trends(self, user_id, current_rows, previous_rows) -> List[dict]:
        current = {c["category_id"]: c for c in category_breakdown(
            [t for t in current_rows if t.type == TransactionType.EXPENSE],
            self._category_map(user_id, current_rows),
        )}
        previous = {c["category_id"]: c["total"] for c in category_breakdown(
            [t for t in previous_rows if t.type == TransactionType.EXPENSE], {}
        )}

        trends = []
        for category_id, row in current.items():
            change = percent_change(row["total"], previous.get(category_id, 0.0))
            if change > 5:
                trend = "rising"
            elif change < -5:
                trend = "falling"
            else:
                trend = "stable"
            trends.append({
                "category": row["category_name"],
                "trend": trend,
                "change": change,
                "confidence": TREND_CONFIDENCE,
            })
        return trends

    def get_financial_summary(self, user_id: uuid.UUID, period: str = "month") -> dict:
        insights = self.get_financial_insights(user_id, period=period)
        start = datetime.fromisoformat(insights["start_date"])
        rows = self.transactions.query_transactions(user_id, start, datetime.fromisoformat(insights["end_date"]))
        return {
            "period": period,
            "overview": insights["summary"],
            "top_insights": insights["insights"][:3],
            "top_categories": top_expense_categories(rows, self._category_map(user_id, rows)),
        }

    # ───────────── export ─────────────

    def export_financial_data(
        self,
        user_id: uuid.UUID,
        format: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        include_categories: bool = True,
        include_transactions: bool = True,
        include_stats: bool = True,
    ) -> dict:
        if not format or not start_date or not end_date:
            raise ValidationError("Format, start date, and end date are required")
        fmt = format.lower()
        if fmt not in EXPORT_FORMATS:
            raise ValidationError("Unsupported export format. Supported formats: csv, json, pdf")
        start_date, end_date = naive_utc(start_date), naive_utc(end_date)
        logger.info("Exporting %s data for user %s (%s to %s)", fmt, user_id, start_date, end_date)

        rows = self.transactions.query_transactions(user_id, start_date, end_date)
        filename = f"financial_data_{user_id}_{start_date:%Y-%m-%d}_{end_date:%Y-%m-%d}.{fmt}"

        if fmt == "csv":
            data = transactions_csv(rows, self._category_map(user_id, rows))
        else:
            # pdf rendering is left to the client; it receives the json payload
            data = {}
            if include_stats:
                data["stats"] = summarize(rows)
            if include_transactions:
                data["transactions"] = [transaction_json(t) for t in rows]
            if include_categories:
                data["categories"] = [
                    {**c.model_dump(mode="json"), "full_path": c.full_path}
                    for c in self.categories.all_categories(user_id)
                ]

        logger.info("Export %s ready (%d transactions)", filename, len(rows))
        return {"format": fmt, "filename": filename, "data": data}
