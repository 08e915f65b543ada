import uuid
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import SQLModel, Session

from ..database import get_session
from ..models.user import User
from ..core.responses import ApiResponse, ok
from ..core.security import get_current_user
from ..services.financial import FinancialService


router = APIRouter(
    prefix="/financial",
    tags=["financial"],
)


class ReportRequest(SQLModel):
    # left optional so a missing type gets the service's own message
    report_type: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    include_categories: bool = True
    include_trends: bool = True
    include_projections: bool = False
    separate_by_currency: bool = False
    granularity: str = "auto"


class ExportRequest(SQLModel):
    format: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    include_categories: bool = True
    include_transactions: bool = True
    include_stats: bool = True


@router.get(
    "/dashboard",
    response_model=ApiResponse[Any],
    response_model_exclude_none=True,
)
def dashboard(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    account_id: Optional[uuid.UUID] = None,
    separate_by_currency: bool = False,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """
    Overview of the selected range (current month by default).

    With ``separate_by_currency`` the payload is keyed by currency code.
    """
    data = FinancialService(session).get_financial_dashboard(
        current_user.id,
        start_date=start_date,
        end_date=end_date,
        account_id=account_id,
        separate_by_currency=separate_by_currency,
    )
    return ok(data)


@router.post(
    "/report",
    response_model=ApiResponse[Any],
    response_model_exclude_none=True,
)
@router.post(
    "/reports",
    response_model=ApiResponse[Any],
    response_model_exclude_none=True,
    include_in_schema=False,
)
def report(
    payload: ReportRequest,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    data = FinancialService(session).generate_financial_report(current_user.id, **payload.model_dump())
    return ok(data, message="Report generated successfully")


@router.get(
    "/insights",
    response_model=ApiResponse[Any],
    response_model_exclude_none=True,
)
def insights(
    period: str = "month",
    include_predictions: bool = False,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    data = FinancialService(session).get_financial_insights(
        current_user.id, period=period, include_predictions=include_predictions
    )
    return ok(data)


@router.get(
    "/budget-analysis",
    response_model=ApiResponse[Any],
    response_model_exclude_none=True,
)
def budget_analysis(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    category_id: Optional[uuid.UUID] = None,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    data = FinancialService(session).get_budget_analysis(
        current_user.id, start_date=start_date, end_date=end_date, category_id=category_id
    )
    return ok(data)


@router.post(
    "/export",
    response_model=ApiResponse[Any],
    response_model_exclude_none=True,
)
def export(
    payload: ExportRequest,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    data = FinancialService(session).export_financial_data(current_user.id, **payload.model_dump())
    return ok(data, message="Export generated successfully")


@router.get(
    "/summary",
    response_model=ApiResponse[Any],
    response_model_exclude_none=True,
)
def summary(
    period: str = Query(default="month"),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return ok(FinancialService(session).get_financial_summary(current_user.id, period=period))
