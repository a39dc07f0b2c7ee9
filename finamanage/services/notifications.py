# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple
import logging
from dateutil.relativedelta import relativedelta
from fastapi import HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from finamanage.clients import whatsapp
from finamanage.utils.formatting import money, to_float

"""
Notificações proativas (WhatsApp + tabela `notifications`).


- `build_notification_text()` monta a mensagem por tipo (orçamento, meta, dívida, resumos...).
- `send_profile_notification()` busca o telefone do profile e envia via WhatsApp.
- `run_scheduled()` executa os lotes agendados: lembrete de dívida, meta em risco,
  resumo semanal e relatório mensal. Falha em um item conta como erro e o lote segue.
"""

log = logging.getLogger("notifications")

SCHEDULED_TYPES = ("debt_reminder", "goal_at_risk", "weekly_summary", "monthly_summary")

MONTHS_PT = ["janeiro", "fevereiro", "março", "abril", "maio", "junho", "julho",
             "agosto", "setembro", "outubro", "novembro", "dezembro"]


def _top_lines(categories: Optional[List[Dict[str, Any]]], empty: str = "") -> str:
    if not categories:
        return empty
    return "\n".join(f"• {c['name']}: R$ {c['amount']}" for c in categories)


def build_notification_text(kind: str, data: Dict[str, Any], name: Optional[str] = None) -> str:
    name = name or ""
    if kind == "budget_alert":
        return ("⚠️ *Alerta de Orçamento*\n\n"
                f"Olá {name}! Você já gastou {data.get('percentage')}% do seu orçamento em *{data.get('category')}*.\n\n"
                f"Valor gasto: R$ {data.get('spent')}\n"
                f"Limite: R$ {data.get('limit')}")
    if kind == "goal_at_risk":
        return ("🎯 *Meta em Risco*\n\n"
                f"A meta \"{data.get('goalTitle')}\" pode não ser atingida!\n\n"
                f"Progresso atual: {data.get('progress')}%\n"
                f"Valor faltante: R$ {data.get('remaining')}\n"
                f"Prazo: {data.get('daysLeft')} dias")
    if kind == "debt_reminder":
        return ("💳 *Lembrete de Dívida*\n\n"
                f"A dívida com *{data.get('creditor')}* vence em {data.get('daysUntilDue')} dias!\n\n"
                f"Valor: R$ {data.get('amount')}\n"
                f"Vencimento: {data.get('dueDate')}")
    if kind == "weekly_summary":
        return ("📊 *Resumo Semanal*\n\n"
                f"Olá {name}! Aqui está seu resumo:\n\n"
                f"💰 Receitas: R$ {data.get('income')}\n"
                f"💸 Despesas: R$ {data.get('expenses')}\n"
                f"📈 Saldo: R$ {data.get('balance')}\n\n"
                f"Principais gastos:\n{_top_lines(data.get('topCategories'))}")
    if kind == "transaction_confirmed":
        label = "💸 Despesa" if data.get("type") == "expense" else "💰 Receita"
        return ("✅ *Transação Registrada*\n\n"
                f"{label} de R$ {data.get('amount')} confirmada!\n\n"
                f"📍 Local: {data.get('merchant')}\n"
                f"📊 Categoria: {data.get('category')}\n"
                f"📅 Data: {data.get('date')}")
    if kind == "monthly_summary":
        return (f"📅 *Relatório Mensal - {data.get('month')}*\n\n"
                f"Olá {name}! Aqui está seu resumo do mês:\n\n"
                f"💰 Receitas: R$ {data.get('income')}\n"
                f"💸 Despesas: R$ {data.get('expenses')}\n"
                f"📈 Saldo: R$ {data.get('balance')}\n"
                f"💾 Taxa de economia: {data.get('savingsRate')}%\n\n"
                f"🏆 Principais gastos:\n{_top_lines(data.get('topCategories'), 'Nenhum gasto registrado')}")
    if kind == "high_value_transaction":
        label = "💸 Despesa" if data.get("type") == "expense" else "💰 Receita"
        return ("💰 *Transação de Alto Valor*\n\n"
                f"{label} de R$ {data.get('amount')} detectada!\n\n"
                f"📍 Local: {data.get('merchant') or 'N/D'}\n"
                f"📊 Categoria: {data.get('category') or 'N/D'}\n"
                f"📅 Data: {data.get('date')}")
    return data.get("message") or "Você tem uma nova notificação!"


async def send_profile_notification(db: AsyncSession, profile_id: str, kind: str,
                                    data: Dict[str, Any]) -> Optional[str]:
    res = await db.execute(text("SELECT phone, nome FROM profiles WHERE id = CAST(:pid AS uuid)"),
                           {"pid": profile_id})
    profile = res.mappings().first()
    if not profile or not profile["phone"]:
        raise HTTPException(status_code=400, detail="No phone number")

    body = build_notification_text(kind, data, profile["nome"])
    log.info("enviando notificação %s para profile %s", kind, profile_id)
    resp = await whatsapp.send_text(profile["phone"], body)
    return whatsapp.message_id(resp)


async def _insert_notification(db: AsyncSession, profile_id: str, kind: str, title: str,
                               summary: str, cta: str) -> None:
    await db.execute(text("""
        INSERT INTO notifications (profile_id, type, title, summary, cta)
        VALUES (CAST(:pid AS uuid), :type, :title, :summary, :cta)
    """), {"pid": profile_id, "type": kind, "title": title, "summary": summary, "cta": cta})


def goal_risk(goal: Dict[str, Any], today: date) -> Optional[Tuple[float, int]]:
    """
    (progresso %, dias restantes) quando a meta está em risco:
    progresso < 70% do esperado e 0 < dias restantes <= 30.
    """
    target = to_float(goal.get("target_amount"))
    if target <= 0 or not goal.get("target_date"):
        return None
    progress = to_float(goal.get("current_amount")) / target * 100
    days_left = (goal["target_date"] - today).days
    expected = max(0.0, 100 - (days_left / 30) * 100)
    if progress < expected * 0.7 and 0 < days_left <= 30:
        return progress, days_left
    return None


def summarize_period(rows: List[Dict[str, Any]], top: int) -> Dict[str, Any]:
    income = sum(to_float(r["amount"]) for r in rows if r.get("type") == "income")
    expenses = sum(to_float(r["amount"]) for r in rows if r.get("type") == "expense")
    by_category: Dict[str, float] = {}
    for r in rows:
        if r.get("type") != "expense":
            continue
        cat = r.get("category") or "Outros"
        by_category[cat] = by_category.get(cat, 0.0) + to_float(r["amount"])
    ranked = sorted(by_category.items(), key=lambda kv: kv[1], reverse=True)[:top]
    return {
        "income": income,
        "expenses": expenses,
        "balance": income - expenses,
        "topCategories": [{"name": n, "amount": money(v)} for n, v in ranked],
    }


async def _debt_reminders(db: AsyncSession, today: date) -> Dict[str, Any]:
    res = await db.execute(text("""
        SELECT d.id, d.profile_id, d.creditor, d.principal, d.due_date
        FROM debts d
        JOIN profiles p ON p.id = d.profile_id
        WHERE d.status = 'active' AND d.due_date BETWEEN :d0 AND :d1
    """), {"d0": today, "d1": today + timedelta(days=7)})
    sent = errors = 0
    for debt in res.mappings().all():
        try:
            async with db.begin_nested():
                days = (debt["due_date"] - today).days
                pid = str(debt["profile_id"])
                await send_profile_notification(db, pid, "debt_reminder", {
                    "creditor": debt["creditor"],
                    "amount": money(debt["principal"]),
                    "dueDate": debt["due_date"].strftime("%d/%m/%Y"),
                    "daysUntilDue": days,
                })
                await _insert_notification(db, pid, "debt_reminder", "Lembrete de Dívida",
                                           f"A dívida com {debt['creditor']} vence em {days} dias", "/dashboard")
                sent += 1
        except Exception:
            log.exception("erro no lembrete de dívida %s", debt["id"])
            errors += 1
    return {"type": "debt_reminder", "sent": sent, "errors": errors}


async def _goals_at_risk(db: AsyncSession, today: date) -> Dict[str, Any]:
    res = await db.execute(text("""
        SELECT g.id, g.profile_id, g.title, g.target_amount, g.current_amount, g.target_date
        FROM goals g
        JOIN profiles p ON p.id = g.profile_id
        WHERE g.status = 'active' AND g.target_date IS NOT NULL
    """))
    sent = errors = 0
    for goal in res.mappings().all():
        try:
            async with db.begin_nested():
                risk = goal_risk(dict(goal), today)
                if not risk:
                    continue
                progress, days_left = risk
                pid = str(goal["profile_id"])
                remaining = to_float(goal["target_amount"]) - to_float(goal["current_amount"])
                await send_profile_notification(db, pid, "goal_at_risk", {
                    "goalTitle": goal["title"],
                    "progress": f"{progress:.0f}",
                    "remaining": money(remaining),
                    "daysLeft": days_left,
                })
                await _insert_notification(
                    db, pid, "goal_at_risk", "Meta em Risco",
                    f"A meta \"{goal['title']}\" está com {progress:.0f}% de progresso e faltam {days_left} dias",
                    "/goals",
                )
                sent += 1
        except Exception:
            log.exception("erro no alerta de meta %s", goal["id"])
            errors += 1
    return {"type": "goal_at_risk", "sent": sent, "errors": errors}


async def _profiles_with_phone(db: AsyncSession) -> List[Dict[str, Any]]:
    res = await db.execute(text("SELECT id, phone, nome FROM profiles WHERE phone IS NOT NULL"))
    return [dict(r) for r in res.mappings().all()]


async def _period_rows(db: AsyncSession, profile_id: str, start: date, end: date) -> List[Dict[str, Any]]:
    res = await db.execute(text("""
        SELECT amount, type, category FROM transactions
        WHERE profile_id = CAST(:pid AS uuid) AND date BETWEEN :d0 AND :d1
    """), {"pid": profile_id, "d0": start, "d1": end})
    return [dict(r) for r in res.mappings().all()]


async def _weekly_summaries(db: AsyncSession, today: date) -> Dict[str, Any]:
    sent = errors = 0
    for profile in await _profiles_with_phone(db):
        try:
            async with db.begin_nested():
                pid = str(profile["id"])
                rows = await _period_rows(db, pid, today - timedelta(days=7), today)
                if not rows:
                    continue
                s = summarize_period(rows, top=3)
                await send_profile_notification(db, pid, "weekly_summary", {
                    "income": money(s["income"]),
                    "expenses": money(s["expenses"]),
                    "balance": money(s["balance"]),
                    "topCategories": s["topCategories"],
                })
                await _insert_notification(db, pid, "weekly_summary", "Resumo Semanal",
                                           f"Receitas: R$ {money(s['income'])} | Despesas: R$ {money(s['expenses'])}",
                                           "/dashboard")
                sent += 1
        except Exception:
            log.exception("erro no resumo semanal do profile %s", profile["id"])
            errors += 1
    return {"type": "weekly_summary", "sent": sent, "errors": errors}


async def _monthly_summaries(db: AsyncSession, today: date) -> Dict[str, Any]:
    first_this_month = today.replace(day=1)
    start = first_this_month - relativedelta(months=1)
    end = first_this_month - timedelta(days=1)
    month_name = MONTHS_PT[start.month - 1]

    sent = errors = 0
    for profile in await _profiles_with_phone(db):
        try:
            async with db.begin_nested():
                pid = str(profile["id"])
                rows = await _period_rows(db, pid, start, end)
                if not rows:
                    continue
                s = summarize_period(rows, top=5)
                savings = f"{(s['balance'] / s['income'] * 100):.0f}" if s["income"] > 0 else "0"
                await send_profile_notification(db, pid, "monthly_summary", {
                    "month": f"{month_name} de {start.year}",
                    "income": money(s["income"]),
                    "expenses": money(s["expenses"]),
                    "balance": money(s["balance"]),
                    "savingsRate": savings,
                    "topCategories": s["topCategories"],
                })
                await _insert_notification(
                    db, pid, "monthly_summary", "Relatório Mensal",
                    f"{month_name}: Receitas R$ {money(s['income'])} | Despesas R$ {money(s['expenses'])}",
                    "/dashboard",
                )
                sent += 1
        except Exception:
            log.exception("erro no relatório mensal do profile %s", profile["id"])
            errors += 1
    return {"type": "monthly_summary", "sent": sent, "errors": errors}


async def run_scheduled(db: AsyncSession, kind: str, *, today: Optional[date] = None) -> List[Dict[str, Any]]:
    """`kind` ∈ SCHEDULED_TYPES ou 'all' (lembretes, metas e resumo semanal)."""
    today = today or date.today()
    log.info("rodando notificações agendadas: %s", kind)
    results: List[Dict[str, Any]] = []

    if kind in ("debt_reminder", "all"):
        results.append(await _debt_reminders(db, today))
    if kind in ("goal_at_risk", "all"):
        results.append(await _goals_at_risk(db, today))
    if kind in ("weekly_summary", "all"):
        results.append(await _weekly_summaries(db, today))
    if kind == "monthly_summary":
        results.append(await _monthly_summaries(db, today))

    await db.commit()
    log.info("notificações agendadas concluídas: %s", results)
    return results
