import csv
import io
import json
import time
from datetime import datetime

import pytest

from finance_tracker.config import settings
from finance_tracker.services.financial import FinancialService


MARCH = {"start_date": "2026-03-01T00:00:00", "end_date": "2026-03-31T23:59:59"}


@pytest.fixture
def ledger(make_category, make_transaction):
    """Income 3000 and expenses 600/250/150 in March 2026, plus one pending expense in February."""
    salary = make_category("Salary")
    rent = make_category("Rent", color="#111111")
    food = make_category("Food")
    fun = make_category("Fun")
    make_transaction(salary["id"], amount=3000, type="income", date="2026-03-01T09:00:00")
    make_transaction(rent["id"], amount=600, date="2026-03-02T09:00:00")
    make_transaction(food["id"], amount=250, date="2026-03-15T09:00:00")
    make_transaction(fun["id"], amount=150, date="2026-03-20T09:00:00")
    make_transaction(food["id"], amount=80, date="2026-02-10T09:00:00", status="pending")
    return {"salary": salary, "rent": rent, "food": food, "fun": fun}


@pytest.mark.parametrize(
    "method, path",
    [
        ("get", "/api/financial/dashboard"),
        ("post", "/api/financial/report"),
        ("post", "/api/financial/reports"),
        ("get", "/api/financial/insights"),
        ("get", "/api/financial/budget-analysis"),
        ("post", "/api/financial/export"),
        ("get", "/api/financial/summary"),
    ],
)
def test_financial_routes_require_auth(client, method, path):
    kwargs = {"json": {"report_type": "monthly", "format": "json", **MARCH}} if method == "post" else {}
    r = client.request(method.upper(), path, **kwargs)
    assert r.status_code == 401
    assert r.json() == {"success": False, "message": "Authentication required"}


def test_dashboard_arithmetic(client, auth_headers, ledger):
    r = client.get("/api/financial/dashboard", params=MARCH, headers=auth_headers)
    assert r.status_code == 200
    data = r.json()["data"]

    overview = data["overview"]
    assert overview["monthly_income"] == 3000
    assert overview["monthly_expenses"] == 1000
    assert overview["monthly_net"] == 2000
    assert overview["total_balance"] == overview["monthly_net"]
    # pending is counted across all dates
    assert overview["pending_transactions"] == 1
    assert overview["upcoming_recurring"] == 0

    assert [c["name"] for c in data["top_categories"]] == ["Rent", "Food", "Fun"]
    assert data["top_categories"][0]["color"] == "#111111"

    dates = [t["date"] for t in data["recent_transactions"]]
    assert len(dates) == 4
    assert dates == sorted(dates, reverse=True)

    trends = data["spending_trends"]
    assert [t["month"] for t in trends] == ["2025-10", "2025-11", "2025-12", "2026-01", "2026-02", "2026-03"]
    assert trends[-2]["expenses"] == 80
    assert trends[-1]["net"] == 2000
    assert data["budget_status"] == []


def test_dashboard_separated_by_currency(client, auth_headers, ledger, make_transaction):
    make_transaction(ledger["food"]["id"], amount=40, currency="EUR", date="2026-03-12T09:00:00")

    r = client.get(
        "/api/financial/dashboard",
        params={**MARCH, "separate_by_currency": "true"},
        headers=auth_headers,
    )
    data = r.json()["data"]
    assert sorted(data) == ["EUR", "USD"]
    assert data["EUR"]["overview"]["monthly_expenses"] == 40
    assert data["EUR"]["overview"]["monthly_income"] == 0
    assert data["EUR"]["overview"]["pending_transactions"] == 0
    assert data["USD"]["overview"]["monthly_expenses"] == 1000


def test_dashboard_defaults_to_current_month(client, auth_headers, make_category, make_transaction):
    food = make_category("Food")
    make_transaction(food["id"], amount=12, date=datetime.utcnow().isoformat())
    data = client.get("/api/financial/dashboard", headers=auth_headers).json()["data"]
    assert data["overview"]["monthly_expenses"] == 12
    assert data["spending_trends"][-1]["month"] == datetime.utcnow().strftime("%Y-%m")


def test_report_validation(client, auth_headers):
    r = client.post("/api/financial/report", json={}, headers=auth_headers)
    assert r.status_code == 400
    assert r.json()["message"] == "Report type is required"

    r = client.post("/api/financial/report", json={"report_type": "weekly"}, headers=auth_headers)
    assert r.status_code == 400
    assert r.json()["message"] == "Invalid report type"

    r = client.post(
        "/api/financial/report",
        json={"report_type": "custom", "granularity": "fortnight", **MARCH},
        headers=auth_headers,
    )
    assert r.status_code == 400


def test_report_contents(client, auth_headers, ledger):
    r = client.post(
        "/api/financial/reports",
        json={"report_type": "custom", "include_projections": True, **MARCH},
        headers=auth_headers,
    )
    assert r.status_code == 200
    report = r.json()["data"]
    assert report["report_type"] == "custom"
    assert report["period"]["start"].startswith("2026-03-01")
    assert report["summary"] == {
        "total_income": 3000,
        "total_expenses": 1000,
        "total_transfers": 0,
        "net_amount": 2000,
        "transaction_count": 4,
    }
    assert [c["category_name"] for c in report["categories"]] == ["Rent", "Food", "Fun"]
    assert report["categories"][0]["percentage"] == 60.0
    assert report["granularity"] == "day"
    assert report["trends"][0]["period"] == "2026-03-01"
    assert report["projections"][0]["prediction"] == 1050
    assert report["projections"][0]["confidence"] == 0.7
    assert any("Rent accounts for 60.0%" in s for s in report["insights"])
    assert not any("spending more than you earn" in s for s in report["insights"])


def test_report_flags_overspending(client, auth_headers, make_category, make_transaction):
    food = make_category("Food")
    salary = make_category("Salary")
    make_transaction(salary["id"], amount=100, type="income")
    make_transaction(food["id"], amount=150)

    report = client.post(
        "/api/financial/report", json={"report_type": "monthly", **MARCH}, headers=auth_headers
    ).json()["data"]
    assert any("high relative to income" in s for s in report["insights"])
    assert any("spending more than you earn" in s for s in report["insights"])


def test_report_separated_by_currency(client, auth_headers, ledger, make_transaction):
    make_transaction(ledger["food"]["id"], amount=40, currency="EUR", date="2026-03-12T09:00:00")
    r = client.post(
        "/api/financial/report",
        json={"report_type": "custom", "separate_by_currency": True, **MARCH},
        headers=auth_headers,
    )
    data = r.json()["data"]
    assert sorted(data) == ["EUR", "USD"]
    assert data["EUR"]["currency"] == "EUR"
    assert data["EUR"]["summary"]["total_expenses"] == 40
    assert data["USD"]["summary"]["total_expenses"] == 1000


def test_report_timeout(client, auth_headers, ledger, monkeypatch):
    original = FinancialService._build_report

    def slow_build(self, *args, **kwargs):
        time.sleep(0.5)
        return original(self, *args, **kwargs)

    monkeypatch.setattr(FinancialService, "_build_report", slow_build)
    monkeypatch.setattr(settings, "report_timeout_seconds", 0.05)

    r = client.post(
        "/api/financial/report",
        json={"report_type": "custom", "separate_by_currency": True, **MARCH},
        headers=auth_headers,
    )
    assert r.status_code == 500
    assert r.json() == {"success": False, "message": "Report generation timeout"}


def test_export_validation(client, auth_headers):
    r = client.post("/api/financial/export", json={"format": "json"}, headers=auth_headers)
    assert r.status_code == 400
    assert r.json()["message"] == "Format, start date, and end date are required"

    r = client.post("/api/financial/export", json={"format": "xml", **MARCH}, headers=auth_headers)
    assert r.status_code == 400
    assert r.json()["message"] == "Unsupported export format. Supported formats: csv, json, pdf"


def test_json_export_round_trip(client, auth_headers, user_id, ledger):
    r = client.post("/api/financial/export", json={"format": "json", **MARCH}, headers=auth_headers)
    assert r.status_code == 200
    export = r.json()["data"]
    assert export["filename"] == f"financial_data_{user_id}_2026-03-01_2026-03-31.json"

    payload = json.loads(json.dumps(export["data"]))
    assert len(payload["transactions"]) == 4
    assert sum(t["amount"] for t in payload["transactions"]) == 4000
    assert payload["stats"]["transaction_count"] == 4
    assert payload["stats"]["total_expenses"] == 1000
    assert {c["name"] for c in payload["categories"]} == {"Salary", "Rent", "Food", "Fun"}


def test_csv_export(client, auth_headers, ledger):
    r = client.post("/api/financial/export", json={"format": "CSV", **MARCH}, headers=auth_headers)
    export = r.json()["data"]
    assert export["format"] == "csv"
    assert export["filename"].endswith(".csv")

    rows = list(csv.DictReader(io.StringIO(export["data"])))
    assert len(rows) == 4
    assert rows[0]["category"] == "Salary"
    assert rows[0]["type"] == "income"
    assert sum(float(row["amount"]) for row in rows) == 4000


def test_pdf_export_carries_json_payload(client, auth_headers, ledger):
    r = client.post(
        "/api/financial/export",
        json={"format": "pdf", "include_categories": False, **MARCH},
        headers=auth_headers,
    )
    export = r.json()["data"]
    assert export["format"] == "pdf"
    assert sorted(export["data"]) == ["stats", "transactions"]


def test_budget_analysis(client, auth_headers, ledger, make_transaction):
    make_transaction(ledger["rent"]["id"], amount=3000, date="2026-03-25T09:00:00")
    r = client.get("/api/financial/budget-analysis", params=MARCH, headers=auth_headers)
    data = r.json()["data"]
    assert data["current_spending"]["total"] == 4000
    assert data["recommendations"] == [{
        "category": "Rent",
        "action": "Review spending",
        "reason": "This category represents a large portion of your expenses",
        "impact": "high",
    }]
    assert data["alerts"][0]["type"] == "overspending"
    assert data["alerts"][0]["severity"] == "critical"


def test_insights(client, auth_headers, make_category, make_transaction):
    food = make_category("Food")
    make_transaction(food["id"], amount=200, date=datetime.utcnow().isoformat())

    r = client.get("/api/financial/insights", params={"include_predictions": "true"}, headers=auth_headers)
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["period"] == "month"
    types = [i["type"] for i in data["insights"]]
    assert types[0] == "spending"
    assert data["insights"][0]["title"] == "Overspending"
    assert data["trends"] == [{"category": "Food", "trend": "rising", "change": 100.0, "confidence": 0.8}]
    assert data["predictions"][0]["prediction"] == 210

    no_predictions = client.get("/api/financial/insights", headers=auth_headers).json()["data"]
    assert no_predictions["predictions"] == []

    r = client.get("/api/financial/insights", params={"period": "decade"}, headers=auth_headers)
    assert r.status_code == 400


def test_summary(client, auth_headers, make_category, make_transaction):
    food = make_category("Food")
    make_transaction(food["id"], amount=75, date=datetime.utcnow().isoformat())

    data = client.get("/api/financial/summary", params={"period": "year"}, headers=auth_headers).json()["data"]
    assert data["period"] == "year"
    assert data["overview"]["total_expenses"] == 75
    assert data["overview"]["transaction_count"] == 1
    assert len(data["top_insights"]) <= 3
    assert data["top_categories"][0]["name"] == "Food"
