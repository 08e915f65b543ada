import logging
import math
import uuid
from datetime import datetime
from typing import List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import func, or_
from sqlmodel import Session, select

from ..core.errors import NotFoundError, ValidationError
from ..core.validators import money
from ..models.transaction import RecurrencePattern, Transaction
from .aggregation import category_breakdown, monthly_trends, naive_dates, naive_utc, summarize
from .categories import CategoryService


logger = logging.getLogger(__name__)

SORT_FIELDS = {
    "date": Transaction.date,
    "amount": Transaction.amount,
    "title": Transaction.title,
    "created_at": Transaction.created_at,
}
MAX_LIMIT = 100
# upper bound on materialized occurrences for a single series
MAX_SERIES_LENGTH = 1000

_STEPS = {
    RecurrencePattern.DAILY: lambda n: relativedelta(days=n),
    RecurrencePattern.WEEKLY: lambda n: relativedelta(weeks=n),
    RecurrencePattern.BIWEEKLY: lambda n: relativedelta(weeks=2 * n),
    RecurrencePattern.MONTHLY: lambda n: relativedelta(months=n),
    RecurrencePattern.QUARTERLY: lambda n: relativedelta(months=3 * n),
    RecurrencePattern.YEARLY: lambda n: relativedelta(years=n),
}

_SERIES_FIELDS = (
    "account_id", "title", "description", "amount", "currency", "type", "status",
    "category_id", "subcategory_id", "payment_method", "payment_reference",
    "merchant_name", "fees", "tax", "notes", "source",
)
_REQUIRED_FIELDS = ("title", "amount", "currency", "type", "status", "category_id", "payment_method", "date")
_MONEY_FIELDS = ("amount", "fees", "tax")


def occurrence_after(start: datetime, pattern: RecurrencePattern, interval: int, n: int) -> datetime:
    """Date of the n-th occurrence after ``start``.

    Always computed from ``start`` so month-end dates don't drift (Jan 31 -> Feb 28 -> Mar 31).
    """
    return start + _STEPS[RecurrencePattern(pattern)](n * max(interval, 1))


def _rounded(data: dict) -> dict:
    data = {k: money(v) if k in _MONEY_FIELDS else v for k, v in data.items()}
    if data.get("amount") is not None and data["amount"] <= 0:
        raise ValidationError("Amount must be at least 0.01")
    return data


class TransactionService:
    def __init__(self, session: Session):
        self.session = session
        self.categories = CategoryService(session)

    def _ensure_categories(self, user_id: uuid.UUID, data: dict) -> None:
        for field in ("category_id", "subcategory_id"):
            if data.get(field) is not None:
                self.categories.get_category(user_id, data[field])

    def get_transaction(self, user_id: uuid.UUID, transaction_id: uuid.UUID) -> Transaction:
        t = self.session.get(Transaction, transaction_id)
        if t is None or t.user_id != user_id or t.is_deleted:
            raise NotFoundError("Transaction not found")
        return t

    def create_transaction(self, user_id: uuid.UUID, data: dict) -> Transaction:
        logger.info("Creating transaction %r for user %s", data.get("title"), user_id)
        data = _rounded(naive_dates(data))
        self._ensure_categories(user_id, data)

        pattern = RecurrencePattern(data.get("recurrence_pattern") or RecurrencePattern.NONE)
        is_recurring = bool(data.get("is_recurring")) or pattern != RecurrencePattern.NONE
        if is_recurring and pattern == RecurrencePattern.NONE:
            raise ValidationError("Recurrence pattern is required for recurring transactions")
        if is_recurring and not data.get("recurrence_end_date"):
            raise ValidationError("Recurrence end date is required for recurring transactions")

        now = datetime.utcnow()
        fields = {k: v for k, v in data.items() if k in Transaction.model_fields and v is not None}
        fields.update(
            id=uuid.uuid4(),
            user_id=user_id,
            is_recurring=is_recurring,
            recurrence_pattern=pattern,
            date=data.get("date") or now,
            created_at=now,
            updated_at=now,
        )
        fields["tags"] = list(data.get("tags") or [])
        t = Transaction(**fields)

        series = []
        if is_recurring:
            if t.recurrence_end_date <= t.date:
                raise ValidationError("Recurrence end date must be after the transaction date")
            series = self._materialize_series(t)
            t.next_occurrence = series[0].date if series else None

        self.session.add(t)
        self.session.flush()
        for child in series:
            self.session.add(child)
        self.session.commit()
        self.session.refresh(t)
        logger.info("Transaction %s created (%d scheduled occurrences)", t.id, len(series))
        return t

    def _materialize_series(self, parent: Transaction) -> List[Transaction]:
        children = []
        n = 1
        while True:
            when = occurrence_after(parent.date, parent.recurrence_pattern, parent.recurrence_interval, n)
            if when > parent.recurrence_end_date:
                break
            if n > MAX_SERIES_LENGTH:
                raise ValidationError(f"Recurring series would exceed {MAX_SERIES_LENGTH} occurrences")
            values = {field: getattr(parent, field) for field in _SERIES_FIELDS}
            children.append(Transaction(
                id=uuid.uuid4(),
                user_id=parent.user_id,
                date=when,
                tags=list(parent.tags),
                parent_transaction_id=parent.id,
                created_at=parent.created_at,
                updated_at=parent.created_at,
                **values,
            ))
            n += 1
        return children

    def update_transaction(self, user_id: uuid.UUID, transaction_id: uuid.UUID, data: dict) -> Transaction:
        t = self.get_transaction(user_id, transaction_id)
        logger.info("Updating transaction %s for user %s", transaction_id, user_id)
        data = _rounded(naive_dates(data))
        self._ensure_categories(user_id, data)

        for field, value in data.items():
            if field in ("id", "user_id", "is_deleted", "deleted_at", "created_at"):
                continue
            if value is None and field in _REQUIRED_FIELDS:
                continue
            if field == "tags":
                value = list(value or [])
            if field in Transaction.model_fields:
                setattr(t, field, value)

        t.updated_at = datetime.utcnow()
        self.session.add(t)
        self.session.commit()
        self.session.refresh(t)
        return t

    def delete_transaction(self, user_id: uuid.UUID, transaction_id: uuid.UUID) -> None:
        t = self.get_transaction(user_id, transaction_id)
        logger.info("Soft deleting transaction %s for user %s", transaction_id, user_id)
        t.is_deleted = True
        t.deleted_at = datetime.utcnow()
        t.updated_at = t.deleted_at
        self.session.add(t)
        self.session.commit()

    def bulk_create_transactions(self, user_id: uuid.UUID, items: List[dict]) -> List[Transaction]:
        logger.info("Bulk creating %d transactions for user %s", len(items), user_id)
        created = []
        for item in items:
            try:
                created.append(self.create_transaction(user_id, item))
            except (ValidationError, NotFoundError) as e:
                self.session.rollback()
                logger.warning("Skipping transaction %r in bulk create: %s", item.get("title"), e.message)
        logger.info("Bulk create finished: %d of %d created", len(created), len(items))
        return created

    # ───────────── queries ─────────────

    def query_transactions(
        self,
        user_id: uuid.UUID,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        **filters,
    ) -> List[Transaction]:
        """All non-deleted transactions in range, oldest first. Used by the aggregation services."""
        stmt = self._filtered(user_id, start_date=start_date, end_date=end_date, **filters)
        return list(self.session.exec(stmt.order_by(Transaction.date.asc())).all())

    def _filtered(
        self,
        user_id: uuid.UUID,
        type=None,
        status=None,
        category_id=None,
        account_id=None,
        payment_method=None,
        is_recurring=None,
        source=None,
        currency=None,
        start_date=None,
        end_date=None,
        min_amount=None,
        max_amount=None,
        search=None,
        tags=None,
    ):
        stmt = select(Transaction).where(
            Transaction.user_id == user_id,
            Transaction.is_deleted == False,  # noqa: E712
        )
        if type is not None:
            stmt = stmt.where(Transaction.type == type)
        if status is not None:
            stmt = stmt.where(Transaction.status == status)
        if category_id is not None:
            stmt = stmt.where(or_(Transaction.category_id == category_id, Transaction.subcategory_id == category_id))
        if account_id is not None:
            stmt = stmt.where(Transaction.account_id == account_id)
        if payment_method is not None:
            stmt = stmt.where(Transaction.payment_method == payment_method)
        if is_recurring is not None:
            stmt = stmt.where(Transaction.is_recurring == is_recurring)
        if source is not None:
            stmt = stmt.where(Transaction.source == source)
        if currency:
            stmt = stmt.where(Transaction.currency == currency.upper())
        start_date, end_date = naive_utc(start_date), naive_utc(end_date)
        if start_date is not None:
            stmt = stmt.where(Transaction.date >= start_date)
        if end_date is not None:
            stmt = stmt.where(Transaction.date <= end_date)
        if min_amount is not None:
            stmt = stmt.where(Transaction.amount >= min_amount)
        if max_amount is not None:
            stmt = stmt.where(Transaction.amount <= max_amount)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(or_(
                Transaction.title.ilike(pattern),
                Transaction.description.ilike(pattern),
                Transaction.merchant_name.ilike(pattern),
                Transaction.notes.ilike(pattern),
            ))
        return stmt

    def list_transactions(
        self,
        user_id: uuid.UUID,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "date",
        sort_order: str = "desc",
        tags: Optional[List[str]] = None,
        **filters,
    ) -> dict:
        if sort_by not in SORT_FIELDS:
            raise ValidationError(f"Invalid sort field. Use one of: {', '.join(SORT_FIELDS)}")
        if sort_order not in ("asc", "desc"):
            raise ValidationError("Sort order must be 'asc' or 'desc'")

        page = max(1, page)
        limit = min(max(1, limit), MAX_LIMIT)
        column = SORT_FIELDS[sort_by]
        order = column.asc() if sort_order == "asc" else column.desc()
        stmt = self._filtered(user_id, **filters).order_by(order)

        if tags:
            # tags live in a JSON column, so membership is checked after the query
            wanted = set(tags)
            rows = [t for t in self.session.exec(stmt).all() if wanted.intersection(t.tags or [])]
            total = len(rows)
            rows = rows[(page - 1) * limit:page * limit]
        else:
            total = self.session.exec(select(func.count()).select_from(stmt.subquery())).one()
            rows = list(self.session.exec(stmt.offset((page - 1) * limit).limit(limit)).all())

        return {
            "transactions": rows,
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    def get_recurring_transactions(self, user_id: uuid.UUID) -> List[Transaction]:
        return list(self.session.exec(
            self._filtered(user_id, is_recurring=True).order_by(Transaction.next_occurrence.asc())
        ).all())

    def get_transaction_stats(
        self,
        user_id: uuid.UUID,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> dict:
        logger.info("Computing transaction stats for user %s", user_id)
        rows = self.query_transactions(user_id, start_date=start_date, end_date=end_date)
        categories = self.categories.get_categories_by_ids(user_id, (t.category_id for t in rows))
        stats = summarize(rows)
        stats["by_category"] = category_breakdown(rows, categories)
        stats["monthly_trends"] = monthly_trends(rows, end_date or datetime.utcnow())
        return stats
