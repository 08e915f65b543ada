import logging
import uuid
from collections import defaultdict
from datetime import datetime
from typing import List, Optional

from sqlmodel import Session, select

from ..core.errors import NotFoundError, ValidationError
from ..models.budget import Budget, BudgetStatus
from ..models.transaction import Transaction, TransactionType
from .aggregation import naive_dates
from .categories import CategoryService


logger = logging.getLogger(__name__)


def _r(value: float) -> float:
    return round(value, 2)


class BudgetService:
    def __init__(self, session: Session):
        self.session = session
        self.categories = CategoryService(session)

    def _validate(self, user_id: uuid.UUID, budget: Budget) -> None:
        if budget.end_date <= budget.start_date:
            raise ValidationError("Budget end date must be after start date")
        if budget.total_amount is None or budget.total_amount <= 0:
            raise ValidationError("Budget amount must be greater than zero")

        seen = set()
        allocated = 0.0
        for alloc in budget.category_allocations:
            category_id = uuid.UUID(str(alloc["category_id"]))
            if category_id in seen:
                raise ValidationError("Each category can only be allocated once per budget")
            seen.add(category_id)
            self.categories.get_category(user_id, category_id)
            allocated += float(alloc["allocated_amount"])
        if allocated > budget.total_amount + 0.005:
            raise ValidationError("Category allocations exceed the budget total")

    @staticmethod
    def _normalize_allocations(allocations) -> List[dict]:
        return [
            {
                "category_id": str(a["category_id"]),
                "allocated_amount": float(a["allocated_amount"]),
                "is_flexible": bool(a.get("is_flexible", False)),
                "priority": int(a.get("priority", 1)),
            }
            for a in allocations or []
        ]

    def get_budget(self, user_id: uuid.UUID, budget_id: uuid.UUID) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if budget is None or budget.user_id != user_id:
            raise NotFoundError("Budget not found")
        return budget

    def list_budgets(self, user_id: uuid.UUID, status: Optional[BudgetStatus] = None) -> List[Budget]:
        stmt = select(Budget).where(Budget.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Budget.status == status)
        return list(self.session.exec(stmt.order_by(Budget.start_date.desc())).all())

    def active_budgets_overlapping(
        self,
        user_id: uuid.UUID,
        start: datetime,
        end: datetime,
        currency: Optional[str] = None,
    ) -> List[Budget]:
        stmt = select(Budget).where(
            Budget.user_id == user_id,
            Budget.status == BudgetStatus.ACTIVE,
            Budget.start_date <= end,
            Budget.end_date >= start,
        )
        if currency:
            stmt = stmt.where(Budget.currency == currency)
        return list(self.session.exec(stmt).all())

    def create_budget(self, user_id: uuid.UUID, data: dict) -> Budget:
        logger.info("Creating budget %r for user %s", data.get("name"), user_id)
        data = naive_dates(data)
        now = datetime.utcnow()
        fields = {k: v for k, v in data.items() if k in Budget.model_fields and v is not None}
        fields.update(id=uuid.uuid4(), user_id=user_id, created_at=now, updated_at=now)
        fields["category_allocations"] = self._normalize_allocations(data.get("category_allocations"))
        if fields.get("currency"):
            fields["currency"] = fields["currency"].upper()
        budget = Budget(**fields)
        self._validate(user_id, budget)

        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        logger.info("Budget %s created", budget.id)
        return budget

    def update_budget(self, user_id: uuid.UUID, budget_id: uuid.UUID, data: dict) -> Budget:
        budget = self.get_budget(user_id, budget_id)
        logger.info("Updating budget %s for user %s", budget_id, user_id)
        data = naive_dates(data)
        for field, value in data.items():
            if field in ("id", "user_id", "created_at") or field not in Budget.model_fields:
                continue
            if field == "category_allocations":
                # JSON columns only persist on reassignment
                value = self._normalize_allocations(value)
            setattr(budget, field, value)
        self._validate(user_id, budget)

        budget.updated_at = datetime.utcnow()
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete_budget(self, user_id: uuid.UUID, budget_id: uuid.UUID) -> None:
        budget = self.get_budget(user_id, budget_id)
        logger.info("Deleting budget %s for user %s", budget_id, user_id)
        self.session.delete(budget)
        self.session.commit()

    # ───────────── progress ─────────────

    def _expenses_for(self, budget: Budget) -> List[Transaction]:
        return list(self.session.exec(
            select(Transaction).where(
                Transaction.user_id == budget.user_id,
                Transaction.is_deleted == False,  # noqa: E712
                Transaction.type == TransactionType.EXPENSE,
                Transaction.currency == budget.currency,
                Transaction.date >= budget.start_date,
                Transaction.date <= budget.end_date,
            )
        ).all())

    def compute_progress(self, budget: Budget) -> dict:
        expenses = self._expenses_for(budget)
        by_category = defaultdict(float)
        for t in expenses:
            by_category[str(t.category_id)] += t.amount
            if t.subcategory_id is not None and t.subcategory_id != t.category_id:
                by_category[str(t.subcategory_id)] += t.amount

        allocations = budget.category_allocations or []
        names = self.categories.get_categories_by_ids(
            budget.user_id, (uuid.UUID(a["category_id"]) for a in allocations)
        )

        breakdown = []
        for a in allocations:
            spent = by_category.get(a["category_id"], 0.0)
            allocated = a["allocated_amount"]
            category = names.get(uuid.UUID(a["category_id"]))
            breakdown.append({
                "category_id": a["category_id"],
                "category_name": category.name if category else "Unknown",
                "allocated_amount": _r(allocated),
                "spent_amount": _r(spent),
                "remaining_amount": _r(allocated - spent),
                "progress_percentage": _r(spent / allocated * 100) if allocated else 0.0,
                "is_over_budget": spent > allocated,
            })

        if allocations:
            allocated_ids = {a["category_id"] for a in allocations}
            total_spent = sum(
                t.amount for t in expenses
                if str(t.category_id) in allocated_ids or str(t.subcategory_id) in allocated_ids
            )
            total_allocated = sum(a["allocated_amount"] for a in allocations)
        else:
            total_spent = sum(t.amount for t in expenses)
            total_allocated = budget.total_amount

        progress = total_spent / budget.total_amount * 100 if budget.total_amount else 0.0
        return {
            "budget_id": str(budget.id),
            "name": budget.name,
            "currency": budget.currency,
            "total_budget": _r(budget.total_amount),
            "total_allocated": _r(total_allocated),
            "total_spent": _r(total_spent),
            "total_remaining": _r(budget.total_amount - total_spent),
            "progress_percentage": _r(progress),
            "alert_threshold": budget.alert_threshold,
            "is_over_budget": total_spent > budget.total_amount,
            "categories": breakdown,
        }

    def get_budget_progress(self, user_id: uuid.UUID, budget_id: uuid.UUID) -> dict:
        return self.compute_progress(self.get_budget(user_id, budget_id))

    @staticmethod
    def alerts_for(progress: dict) -> List[dict]:
        alerts = []
        pct = progress["progress_percentage"]
        if progress["is_over_budget"]:
            alerts.append({
                "type": "overbudget",
                "severity": "critical",
                "budget_id": progress["budget_id"],
                "message": f"Budget '{progress['name']}' is over budget ({pct:.1f}% used)",
                "percentage": pct,
            })
        if pct >= progress["alert_threshold"]:
            alerts.append({
                "type": "threshold",
                "severity": "warning",
                "budget_id": progress["budget_id"],
                "message": f"Budget '{progress['name']}' has reached {pct:.1f}% of its limit",
                "percentage": pct,
            })
        for c in progress["categories"]:
            if c["is_over_budget"]:
                alerts.append({
                    "type": "category_overbudget",
                    "severity": "warning",
                    "budget_id": progress["budget_id"],
                    "category_id": c["category_id"],
                    "message": f"{c['category_name']} is over its allocation in '{progress['name']}'",
                    "percentage": c["progress_percentage"],
                })
        return alerts

    def check_budget_alerts(self, user_id: uuid.UUID) -> List[dict]:
        alerts = []
        for budget in self.list_budgets(user_id, status=BudgetStatus.ACTIVE):
            alerts.extend(self.alerts_for(self.compute_progress(budget)))
        logger.info("Found %d budget alerts for user %s", len(alerts), user_id)
        return alerts

    def get_budget_summary(self, user_id: uuid.UUID) -> dict:
        budgets = self.list_budgets(user_id)
        active = [b for b in budgets if b.status == BudgetStatus.ACTIVE]
        progress = [self.compute_progress(b) for b in active]
        return {
            "total_budgets": len(budgets),
            "active_budgets": len(active),
            "total_budgeted": _r(sum(p["total_budget"] for p in progress)),
            "total_spent": _r(sum(p["total_spent"] for p in progress)),
            "over_budget_count": sum(1 for p in progress if p["is_over_budget"]),
            "budgets": progress,
        }
