# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from datetime import date, timedelta
from typing import Any, Dict, List, Optional
import logging
from fastapi import HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from finamanage.services.events import log_event
from finamanage.utils.formatting import percent_int, to_float

"""
Geração de feedback financeiro (insights) por usuário.


- `evaluate_feedback_rules()` aplica as três regras de limiar; não toca no banco.
- `generate_feedback()` lê transações/contas/dívidas dos últimos 30 dias,
  avalia as regras e grava até 3 linhas em `notifications`.
"""

log = logging.getLogger("feedback")

LOOKBACK_DAYS = 30
LEISURE_CATEGORY = "Entretenimento"
LEISURE_RATIO_LIMIT = 0.30
HIGH_INTEREST_MONTHLY_RATE = 2.0      # % ao mês
HIGH_INTEREST_MIN_MONTHLY_COST = 100  # R$ de juros/mês
MAX_NOTIFICATIONS = 3


def _leisure_rule(leisure_amounts: List[float], monthly_income: float) -> Optional[Dict[str, Any]]:
    if not leisure_amounts:
        return None
    total = sum(abs(a) for a in leisure_amounts)
    ratio = total / monthly_income if monthly_income > 0 else 0.0
    if ratio <= LEISURE_RATIO_LIMIT:
        return None
    return {
        "title": "Gastos com Lazer Elevados",
        "summary": f"Você gastou {percent_int(ratio)}% da sua renda em entretenimento no último mês.",
        "cta": "Ver orçamento",
        "type": "budget_warning",
    }


def _emergency_fund_rule(consolidated_balance: float, monthly_cost: float) -> Optional[Dict[str, Any]]:
    if consolidated_balance >= monthly_cost:
        return None
    return {
        "title": "Crie uma Reserva de Emergência",
        "summary": "Seu saldo atual é menor que seus custos mensais. É importante ter uma reserva de emergência.",
        "cta": "Ver metas",
        "type": "emergency_fund",
    }


def _high_interest_rule(debts: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    high = [d for d in debts if to_float(d.get("interest_rate")) > HIGH_INTEREST_MONTHLY_RATE]
    if not high:
        return None
    monthly_interest = sum(to_float(d.get("principal")) * to_float(d.get("interest_rate")) / 100 for d in high)
    if monthly_interest <= HIGH_INTEREST_MIN_MONTHLY_COST:
        return None
    return {
        "title": "Dívidas com Juros Altos",
        "summary": f"Você tem {len(high)} dívida(s) com juros altos. Priorize o pagamento para economizar.",
        "cta": "Ver dívidas",
        "type": "high_interest_debt",
    }


def evaluate_feedback_rules(
    *,
    monthly_income: float,
    leisure_amounts: List[float],
    consolidated_balance: float,
    expense_amounts: List[float],
    debts: List[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """
    Retorna as notificações disparadas, na ordem das regras (lazer, reserva, juros),
    já limitadas a MAX_NOTIFICATIONS.
    """
    monthly_cost = sum(abs(a) for a in expense_amounts)
    fired = [
        _leisure_rule(leisure_amounts, monthly_income),
        _emergency_fund_rule(consolidated_balance, monthly_cost),
        _high_interest_rule(debts),
    ]
    return [n for n in fired if n][:MAX_NOTIFICATIONS]


async def _amounts(db: AsyncSession, profile_id: str, since: date, *, kind: str,
                   category: Optional[str] = None) -> List[float]:
    cond = ["profile_id = CAST(:pid AS uuid)", "type = :kind", "date >= :since"]
    params: Dict[str, Any] = {"pid": profile_id, "kind": kind, "since": since}
    if category:
        cond.append("category = :cat")
        params["cat"] = category
    res = await db.execute(text(f"""
        SELECT amount FROM transactions
        WHERE {" AND ".join(cond)}
    """), params)
    return [to_float(r["amount"]) for r in res.mappings().all()]


async def generate_feedback(db: AsyncSession, profile_id: str, *, today: Optional[date] = None) -> Dict[str, Any]:
    today = today or date.today()
    since = today - timedelta(days=LOOKBACK_DAYS)
    log.info("gerando feedback para profile %s", profile_id)

    res = await db.execute(text("""
        SELECT email, email_notifications, estimated_income
        FROM profiles WHERE id = CAST(:pid AS uuid)
    """), {"pid": profile_id})
    profile = res.mappings().first()
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")

    monthly_income = to_float(profile["estimated_income"])
    if monthly_income == 0:
        monthly_income = sum(await _amounts(db, profile_id, since, kind="income"))

    leisure = await _amounts(db, profile_id, since, kind="expense", category=LEISURE_CATEGORY)
    expenses = await _amounts(db, profile_id, since, kind="expense")

    res = await db.execute(text("SELECT balance FROM accounts WHERE profile_id = CAST(:pid AS uuid)"),
                           {"pid": profile_id})
    balance = sum(to_float(r["balance"]) for r in res.mappings().all())

    res = await db.execute(text("""
        SELECT id, principal, interest_rate FROM debts
        WHERE profile_id = CAST(:pid AS uuid) AND status = 'active'
    """), {"pid": profile_id})
    debts = [dict(r) for r in res.mappings().all()]

    notifications = evaluate_feedback_rules(
        monthly_income=monthly_income,
        leisure_amounts=leisure,
        consolidated_balance=balance,
        expense_amounts=expenses,
        debts=debts,
    )

    for notif in notifications:
        await db.execute(text("""
            INSERT INTO notifications (profile_id, title, summary, cta, type)
            VALUES (CAST(:pid AS uuid), :title, :summary, :cta, :type)
        """), {"pid": profile_id, **notif})

    await log_event(db, profile_id, "feedback_generated", {"notifications_count": len(notifications)})
    await db.commit()

    # TODO: enviar e-mail quando profile.email_notifications estiver ativo (precisa de provedor de e-mail)
    log.info("feedback gerado: %d notificações", len(notifications))
    return {
        "status": "success",
        "profile_id": profile_id,
        "notifications_generated": len(notifications),
        "notifications": notifications,
    }
