import uuid

import pytest


MARCH = {"start_date": "2026-03-01T00:00:00", "end_date": "2026-03-31T23:59:59"}


@pytest.fixture
def categories(make_category):
    return {"food": make_category("Food"), "fun": make_category("Fun"), "rent": make_category("Rent")}


@pytest.fixture
def make_budget(client, auth_headers):
    def _make(total=500, allocations=(), **extra):
        payload = {
            "name": extra.pop("name", "March"),
            "total_amount": total,
            "category_allocations": list(allocations),
            **MARCH,
            **extra,
        }
        r = client.post("/api/budgets", json=payload, headers=auth_headers)
        assert r.status_code == 201, r.text
        return r.json()["data"]

    return _make


def test_create_and_list(client, auth_headers, categories, make_budget):
    budget = make_budget(allocations=[{"category_id": categories["food"]["id"], "allocated_amount": 300}])
    assert budget["status"] == "active"
    assert budget["alert_threshold"] == 80
    assert budget["category_allocations"][0]["allocated_amount"] == 300

    listed = client.get("/api/budgets", headers=auth_headers).json()["data"]
    assert [b["id"] for b in listed] == [budget["id"]]


def test_budget_validation(client, auth_headers, categories):
    base = {"name": "Bad", "total_amount": 100, **MARCH}

    r = client.post(
        "/api/budgets",
        json={**base, "category_allocations": [{"category_id": categories["food"]["id"], "allocated_amount": 150}]},
        headers=auth_headers,
    )
    assert r.status_code == 400
    assert r.json()["message"] == "Category allocations exceed the budget total"

    r = client.post(
        "/api/budgets",
        json={**base, "category_allocations": [{"category_id": str(uuid.uuid4()), "allocated_amount": 50}]},
        headers=auth_headers,
    )
    assert r.status_code == 404

    r = client.post(
        "/api/budgets",
        json={**base, "start_date": MARCH["end_date"], "end_date": MARCH["start_date"]},
        headers=auth_headers,
    )
    assert r.status_code == 400
    assert r.json()["message"] == "Validation error"


def test_progress_counts_allocated_categories(client, auth_headers, categories, make_budget, make_transaction):
    food, fun, rent = categories["food"], categories["fun"], categories["rent"]
    budget = make_budget(
        total=500,
        allocations=[
            {"category_id": food["id"], "allocated_amount": 200},
            {"category_id": fun["id"], "allocated_amount": 100},
        ],
    )
    make_transaction(food["id"], amount=250)
    make_transaction(fun["id"], amount=50)
    # outside the allocations, the period and the currency respectively
    make_transaction(rent["id"], amount=900)
    make_transaction(food["id"], amount=70, date="2026-04-02T09:00:00")
    make_transaction(food["id"], amount=70, currency="EUR")

    progress = client.get(f"/api/budgets/{budget['id']}/progress", headers=auth_headers).json()["data"]
    assert progress["total_budget"] == 500
    assert progress["total_allocated"] == 300
    assert progress["total_spent"] == 300
    assert progress["total_remaining"] == 200
    assert progress["progress_percentage"] == 60
    assert progress["is_over_budget"] is False

    by_name = {c["category_name"]: c for c in progress["categories"]}
    assert by_name["Food"]["spent_amount"] == 250
    assert by_name["Food"]["is_over_budget"] is True
    assert by_name["Fun"]["remaining_amount"] == 50


def test_alerts(client, auth_headers, categories, make_budget, make_transaction):
    near = make_budget(name="Near", total=100, alert_threshold=50)
    over = make_budget(name="Over", total=100, currency="EUR")
    make_transaction(categories["food"]["id"], amount=60)
    make_transaction(categories["food"]["id"], amount=120, currency="EUR")

    alerts = client.get("/api/budgets/alerts", headers=auth_headers).json()["data"]
    kinds = {(a["budget_id"], a["type"], a["severity"]) for a in alerts}
    assert (near["id"], "threshold", "warning") in kinds
    assert (over["id"], "overbudget", "critical") in kinds
    assert (over["id"], "threshold", "warning") in kinds
    assert (near["id"], "overbudget", "critical") not in kinds


def test_summary_and_budget_analysis(client, auth_headers, categories, make_budget, make_transaction):
    make_budget(total=100)
    make_budget(name="Groceries", total=100)
    make_transaction(categories["food"]["id"], amount=130)

    summary = client.get("/api/budgets/summary", headers=auth_headers).json()["data"]
    assert summary["total_budgets"] == 2
    assert summary["active_budgets"] == 2
    assert summary["over_budget_count"] == 2

    analysis = client.get("/api/financial/budget-analysis", params=MARCH, headers=auth_headers).json()["data"]
    assert len(analysis["current_spending"]["vs_budget"]) == 2
    types = [a["type"] for a in analysis["alerts"]]
    assert types.count("overbudget") == 2


def test_update_and_delete(client, auth_headers, categories, make_budget):
    budget = make_budget()
    r = client.put(
        f"/api/budgets/{budget['id']}",
        json={
            "status": "paused",
            "category_allocations": [{"category_id": categories["rent"]["id"], "allocated_amount": 400}],
        },
        headers=auth_headers,
    )
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["status"] == "paused"
    assert data["category_allocations"][0]["category_id"] == categories["rent"]["id"]

    assert client.get("/api/budgets/summary", headers=auth_headers).json()["data"]["active_budgets"] == 0

    assert client.delete(f"/api/budgets/{budget['id']}", headers=auth_headers).status_code == 200
    assert client.get(f"/api/budgets/{budget['id']}", headers=auth_headers).status_code == 404


def test_budgets_are_private(client, other_headers, make_budget):
    budget = make_budget()
    assert client.get(f"/api/budgets/{budget['id']}", headers=other_headers).status_code == 404


def test_currency_must_be_upper_case_code(client, auth_headers):
    r = client.post(
        "/api/budgets",
        json={"name": "March", "total_amount": 100, "currency": "eur", **MARCH},
        headers=auth_headers,
    )
    assert r.status_code == 400


def test_subcategory_matching_category_is_counted_once(client, auth_headers, categories, make_budget, make_transaction):
    food = categories["food"]
    budget = make_budget(total=500, allocations=[{"category_id": food["id"], "allocated_amount": 200}])
    make_transaction(food["id"], amount=80, subcategory_id=food["id"])

    progress = client.get(f"/api/budgets/{budget['id']}/progress", headers=auth_headers).json()["data"]
    assert progress["categories"][0]["spent_amount"] == 80
    assert progress["total_spent"] == 80
