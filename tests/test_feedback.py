import asyncio
from datetime import date

import pytest
from fastapi import HTTPException

from finamanage.services.feedback import evaluate_feedback_rules, generate_feedback

PID = "5f0c6a52-3b1f-4c7e-9a52-0d2b8c1e7f44"


def test_leisure_and_high_interest_rules_fire_in_order():
    out = evaluate_feedback_rules(
        monthly_income=1000,
        leisure_amounts=[-400],
        consolidated_balance=5000,
        expense_amounts=[-400, -100],
        debts=[{"principal": 10000, "interest_rate": 3}],
    )

    assert [n["type"] for n in out] == ["budget_warning", "high_interest_debt"]
    assert "40%" in out[0]["summary"]
    assert "1 dívida(s)" in out[1]["summary"]


def test_no_income_means_no_leisure_warning():
    out = evaluate_feedback_rules(
        monthly_income=0,
        leisure_amounts=[-900],
        consolidated_balance=5000,
        expense_amounts=[-900],
        debts=[],
    )
    assert out == []


def test_emergency_fund_when_balance_below_monthly_cost():
    out = evaluate_feedback_rules(
        monthly_income=3000,
        leisure_amounts=[],
        consolidated_balance=100,
        expense_amounts=[-300, -200],
        debts=[],
    )
    assert [n["type"] for n in out] == ["emergency_fund"]
    assert out[0]["cta"] == "Ver metas"


def test_high_interest_below_monthly_cost_threshold_is_ignored():
    out = evaluate_feedback_rules(
        monthly_income=3000,
        leisure_amounts=[],
        consolidated_balance=10000,
        expense_amounts=[],
        debts=[{"principal": 1000, "interest_rate": 5}, {"principal": 50000, "interest_rate": 1.5}],
    )
    assert out == []


def test_generate_feedback_persists_notifications(db):
    def amounts(params):
        if params.get("cat"):
            return [{"amount": 400}]
        return [{"amount": 400}, {"amount": 100}]

    db.on("FROM profiles WHERE id", [{"email": "ana@example.com", "email_notifications": False,
                                       "estimated_income": 1000}])
    db.on("SELECT amount FROM transactions", fn=amounts)
    db.on("SELECT balance FROM accounts", [{"balance": 50}])

    result = asyncio.run(generate_feedback(db, PID, today=date(2025, 3, 31)))

    assert result["status"] == "success"
    assert result["notifications_generated"] == 2
    assert [n["type"] for n in result["notifications"]] == ["budget_warning", "emergency_fund"]
    assert len(db.executed("INSERT INTO notifications")) == 2
    assert db.executed("INSERT INTO events_logs")[0]["etype"] == "feedback_generated"
    assert db.commits == 1

    since = db.executed("SELECT amount FROM transactions")[0]["since"]
    assert since == date(2025, 3, 1)


def test_generate_feedback_falls_back_to_income_transactions(db):
    def amounts(params):
        if params["kind"] == "income":
            return [{"amount": 2000}, {"amount": 500}]
        if params.get("cat"):
            return [{"amount": 1000}]
        return [{"amount": 1000}]

    db.on("FROM profiles WHERE id", [{"email": None, "email_notifications": False, "estimated_income": None}])
    db.on("SELECT amount FROM transactions", fn=amounts)
    db.on("SELECT balance FROM accounts", [{"balance": 5000}])

    result = asyncio.run(generate_feedback(db, PID, today=date(2025, 3, 31)))

    # 1000 / 2500 = 40%
    assert result["notifications"][0]["summary"].startswith("Você gastou 40%")


def test_generate_feedback_unknown_profile(db):
    with pytest.raises(HTTPException) as exc:
        asyncio.run(generate_feedback(db, PID))
    assert exc.value.status_code == 404
    assert db.commits == 0
