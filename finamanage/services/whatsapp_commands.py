# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from datetime import date
from typing import Any, Dict, List, Optional
import json
import logging
import re
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from finamanage.clients import whatsapp
from finamanage.core.config import settings
from finamanage.services.accounts import get_or_create_account
from finamanage.utils.formatting import money, progress_bar, to_date, to_float

"""
Roteador de comandos do bot de WhatsApp.


- `resolve_intent()` decide a intenção a partir do texto/botão e do contexto da sessão
  (ordem fixa; o primeiro teste que passar vence).
- Cada intenção tem um handler que consulta/atualiza o banco e devolve o texto da resposta.
- Sessão: `idle` ou `awaiting_confirmation`, sobrescrita diretamente (sem guarda de transição).
"""

log = logging.getLogger("whatsapp")

EDIT_FORMAT_HINT = "*EDITAR*\nValor: 150.00\nData: 15/01/2025"


def _has_receipt(context: Optional[Dict[str, Any]]) -> bool:
    return bool(context and context.get("receiptId"))


def resolve_intent(command: str, context: Optional[Dict[str, Any]] = None) -> str:
    cmd = command or ""
    upper, lower = cmd.upper(), cmd.lower()
    has_receipt = _has_receipt(context)

    if cmd == "confirm_receipt" and has_receipt:
        return "confirm_receipt"
    if cmd == "cancel_receipt":
        return "cancel_receipt"
    if cmd == "edit_receipt":
        return "edit_help"
    if upper.startswith("EDITAR") and has_receipt:
        return "edit"
    if (upper == "SIM" or lower == "confirmar") and has_receipt:
        return "confirm_receipt"
    if upper in ("NÃO", "NAO") and has_receipt:
        return "reject"
    if upper == "CANCELAR" and has_receipt:
        return "cancel_receipt"
    if "saldo" in lower:
        return "balance"
    if "gastos" in lower:
        return "expenses"
    if "metas" in lower:
        return "goals"
    if "ajuda" in lower or lower == "menu":
        return "help"
    if cmd == "onboarding":
        return "onboarding"
    if "olá" in lower or "oi" in lower or lower in ("hi", "hello"):
        return "greeting"
    if "quanto" in lower and ("gast" in lower or "despesa" in lower):
        return "expenses_total"
    return "unknown"


def parse_edit_command(command: str) -> Dict[str, Any]:
    """
    Lê linhas `Chave: valor` de uma mensagem *EDITAR*.
    Chaves reconhecidas: Valor, Data (DD/MM/AAAA), Local, Categoria, Tipo.
    """
    updates: Dict[str, Any] = {}
    for line in command.split("\n"):
        key, sep, value = line.partition(":")
        value = value.strip()
        if not sep or not key.strip() or not value:
            continue
        k = key.lower().strip()
        if "valor" in k:
            cleaned = re.sub(r"[^\d.,]", "", value).replace(",", ".", 1)
            try:
                updates["amount"] = float(cleaned)
            except ValueError:
                continue
        elif "data" in k:
            parts = value.split("/")
            if len(parts) == 3 and all(parts):
                day, month, year = parts
                updates["date"] = f"{year}-{month.zfill(2)}-{day.zfill(2)}"
        elif "local" in k:
            updates["merchant"] = value
        elif "categoria" in k:
            updates["category"] = value
        elif "tipo" in k:
            updates["type"] = "income" if "receita" in value.lower() else "expense"
    return updates


def as_dict(value: Any) -> Dict[str, Any]:
    """jsonb pode chegar já decodificado ou como string."""
    if not value:
        return {}
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return {}
    return dict(value) if isinstance(value, dict) else {}


async def set_session(db: AsyncSession, session_id: str, state: str, context: Dict[str, Any]) -> None:
    await db.execute(text("""
        UPDATE whatsapp_sessions
        SET state = :state, context = CAST(:ctx AS jsonb)
        WHERE id = CAST(:sid AS uuid)
    """), {"state": state, "ctx": json.dumps(context, default=str), "sid": session_id})


async def _set_receipt_status(db: AsyncSession, receipt_id: str, status: str) -> None:
    await db.execute(text("UPDATE receipt_uploads SET status = :status WHERE id = CAST(:rid AS uuid)"),
                     {"status": status, "rid": receipt_id})


async def _receipt_data(db: AsyncSession, receipt_id: str) -> Optional[Dict[str, Any]]:
    res = await db.execute(text("SELECT extracted_data FROM receipt_uploads WHERE id = CAST(:rid AS uuid)"),
                           {"rid": receipt_id})
    row = res.mappings().first()
    return as_dict(row["extracted_data"]) if row else None


async def _month_expenses(db: AsyncSession, profile_id: str, today: date) -> List[Dict[str, Any]]:
    res = await db.execute(text("""
        SELECT amount, category FROM transactions
        WHERE profile_id = CAST(:pid AS uuid) AND type = 'expense' AND date >= :first_day
    """), {"pid": profile_id, "first_day": today.replace(day=1)})
    return [dict(r) for r in res.mappings().all()]


# handlers ---------------------------------------------------------------

async def confirm_receipt(db: AsyncSession, *, context: Dict[str, Any], session_id: str,
                          profile_id: str, today: date, **_: Any) -> str:
    receipt_id = context["receiptId"]
    extracted = await _receipt_data(db, receipt_id)
    if extracted is None:
        return "❌ Comprovante não encontrado. Por favor, envie novamente."

    account_id = await get_or_create_account(
        db, profile_id,
        provider="whatsapp",
        provider_account_id=f"whatsapp_{profile_id}",
        account_type="checking",
        any_provider=True,
    )
    amount = abs(to_float(extracted.get("amount")))
    category = extracted.get("category") or "Sem categoria"
    kind = extracted.get("type") or "expense"
    await db.execute(text("""
        INSERT INTO transactions
            (profile_id, account_id, amount, date, merchant, category, type, imported_from, raw_description)
        VALUES
            (CAST(:pid AS uuid), CAST(:aid AS uuid), :amount, :date, :merchant, :category, :type, 'whatsapp', :raw)
    """), {
        "pid": profile_id,
        "aid": account_id,
        "amount": amount,
        "date": to_date(extracted.get("date"), today),
        "merchant": extracted.get("merchant") or "Comprovante WhatsApp",
        "category": category,
        "type": kind,
        "raw": "Comprovante enviado via WhatsApp",
    })
    await _set_receipt_status(db, receipt_id, "confirmed")
    await set_session(db, session_id, "idle", {})

    label = "Receita" if kind == "income" else "Despesa"
    return (f"✅ *{label} Registrada!*\n\n"
            f"💰 Valor: R$ {money(amount)}\n"
            f"📊 Categoria: {category}\n\n"
            "Seus dados financeiros foram atualizados. 🎉")


async def cancel_receipt(db: AsyncSession, *, context: Dict[str, Any], session_id: str, **_: Any) -> str:
    if _has_receipt(context):
        await _set_receipt_status(db, context["receiptId"], "cancelled")
    await set_session(db, session_id, "idle", {})
    return "❌ Registro cancelado. Envie outro comprovante quando quiser."


async def edit_receipt(db: AsyncSession, *, command: str, context: Dict[str, Any],
                       session_id: str, **_: Any) -> str:
    updates = parse_edit_command(command)
    if not updates:
        return f"❓ Não consegui entender as alterações. Por favor, use o formato:\n\n{EDIT_FORMAT_HINT}"

    receipt_id = context["receiptId"]
    merged = {**(await _receipt_data(db, receipt_id) or {}), **updates}
    await db.execute(text("""
        UPDATE receipt_uploads SET extracted_data = CAST(:data AS jsonb)
        WHERE id = CAST(:rid AS uuid)
    """), {"data": json.dumps(merged, default=str), "rid": receipt_id})
    await db.execute(text("""
        UPDATE whatsapp_sessions SET context = CAST(:ctx AS jsonb)
        WHERE id = CAST(:sid AS uuid)
    """), {"ctx": json.dumps({**context, "extractedData": merged}, default=str), "sid": session_id})

    amount = merged.get("amount")
    amount_txt = money(amount) if amount is not None else "N/D"
    kind = "Receita" if merged.get("type") == "income" else "Despesa"
    return ("✅ Dados atualizados!\n\n"
            f"💰 Valor: R$ {amount_txt}\n"
            f"📅 Data: {merged.get('date') or 'N/D'}\n"
            f"🏪 Local: {merged.get('merchant') or 'N/D'}\n"
            f"📊 Categoria: {merged.get('category') or 'N/D'}\n"
            f"📍 Tipo: {kind}\n\n"
            "Confirma os dados? Responda *SIM* ou *NÃO*")


async def balance(db: AsyncSession, *, profile_id: str, **_: Any) -> str:
    res = await db.execute(text("SELECT balance FROM accounts WHERE profile_id = CAST(:pid AS uuid)"),
                           {"pid": profile_id})
    total = sum(to_float(r["balance"]) for r in res.mappings().all())
    return f"💰 *Seu Saldo Atual*\n\nTotal: R$ {money(total)}"


async def expenses(db: AsyncSession, *, profile_id: str, today: date, **_: Any) -> str:
    rows = await _month_expenses(db, profile_id, today)
    total = sum(to_float(r["amount"]) for r in rows)
    by_category: Dict[str, float] = {}
    for r in rows:
        cat = r.get("category") or "Outros"
        by_category[cat] = by_category.get(cat, 0.0) + to_float(r["amount"])
    top = sorted(by_category.items(), key=lambda kv: kv[1], reverse=True)[:5]
    lines = "\n".join(f"• {cat}: R$ {money(val)}" for cat, val in top)
    tail = f"Top categorias:\n{lines}" if lines else "Nenhum gasto registrado ainda."
    return f"💸 *Gastos do Mês*\n\nTotal: R$ {money(total)}\n\n{tail}"


async def expenses_total(db: AsyncSession, *, profile_id: str, today: date, **_: Any) -> str:
    rows = await _month_expenses(db, profile_id, today)
    total = sum(to_float(r["amount"]) for r in rows)
    return ("Entendi que você quer ver seus gastos. Processando...\n\n"
            f"💸 *Total de gastos este mês:*\nR$ {money(total)}")


async def goals(db: AsyncSession, *, profile_id: str, **_: Any) -> str:
    res = await db.execute(text("""
        SELECT title, target_amount, current_amount FROM goals
        WHERE profile_id = CAST(:pid AS uuid) AND status = 'active'
    """), {"pid": profile_id})
    rows = res.mappings().all()
    if not rows:
        return ("🎯 Você ainda não tem metas cadastradas.\n\n"
                "Acesse o app para criar suas metas financeiras!")

    blocks = []
    for g in rows:
        target = to_float(g["target_amount"])
        pct = int(f"{to_float(g['current_amount']) / target * 100:.0f}") if target > 0 else 0
        blocks.append(f"• {g['title']}\n  {progress_bar(pct)} {pct}%\n"
                      f"  R$ {money(g['current_amount'])} / R$ {money(g['target_amount'])}")
    return "🎯 *Suas Metas*\n\n" + "\n\n".join(blocks)


async def greeting(db: AsyncSession, *, profile_id: str, **_: Any) -> str:
    res = await db.execute(text("SELECT nome FROM profiles WHERE id = CAST(:pid AS uuid)"), {"pid": profile_id})
    row = res.mappings().first()
    nome = (row["nome"] or "").strip() if row else ""
    name = nome.split(" ")[0] if nome else "usuário"
    return (f"👋 Olá, {name}!\n\n"
            "Como posso ajudar você hoje?\n\n"
            "📷 Envie um *comprovante* para registrar\n"
            "💰 Digite */saldo* para ver seu saldo\n"
            "💸 Digite */gastos* para ver gastos do mês\n"
            "❓ Digite */ajuda* para mais comandos")


def edit_help_text() -> str:
    return ("✏️ Para editar os dados, responda com o formato:\n\n"
            "*EDITAR*\n"
            "Valor: 150.00\n"
            "Data: 15/01/2025\n"
            "Local: Supermercado\n"
            "Categoria: Alimentação\n"
            "Tipo: Despesa\n\n"
            "Ou envie um novo comprovante.")


def reject_text() -> str:
    return f"✏️ Para editar, envie as correções:\n\n{EDIT_FORMAT_HINT}\n\nOu digite *CANCELAR* para descartar."


def help_text() -> str:
    return ("📋 *Comandos Disponíveis*\n\n"
            "💰 */saldo* - Ver saldo total\n"
            "💸 */gastos* - Gastos do mês\n"
            "🎯 */metas* - Progresso das metas\n"
            "📷 *Envie foto/PDF* - Registrar comprovante\n"
            "❓ */ajuda* - Esta lista de comandos\n\n"
            "💡 Dica: Você também pode digitar normalmente, como \"ver meu saldo\"")


def onboarding_text() -> str:
    return ("👋 *Bem-vindo ao FinaManage!*\n\n"
            "Parece que você ainda não está cadastrado ou seu número não está vinculado.\n\n"
            "Para usar este serviço:\n"
            "1️⃣ Crie uma conta no app\n"
            "2️⃣ Acesse *Configurações > WhatsApp*\n"
            "3️⃣ Cadastre este número de telefone\n\n"
            f"🔗 Acesse: {settings.PUBLIC_APP_URL.rstrip('/')}/auth\n\n"
            "Após vincular, envie */ajuda* para ver os comandos!")


def unknown_text() -> str:
    return ("❓ Não entendi sua mensagem.\n\n"
            "Você pode:\n"
            "• Enviar uma *foto de comprovante*\n"
            "• Digitar */ajuda* para ver comandos\n"
            "• Perguntar sobre *saldo*, *gastos* ou *metas*")


_STATIC = {
    "edit_help": edit_help_text,
    "reject": reject_text,
    "help": help_text,
    "onboarding": onboarding_text,
    "unknown": unknown_text,
}

_HANDLERS = {
    "confirm_receipt": confirm_receipt,
    "cancel_receipt": cancel_receipt,
    "edit": edit_receipt,
    "balance": balance,
    "expenses": expenses,
    "expenses_total": expenses_total,
    "goals": goals,
    "greeting": greeting,
}


async def handle_command(
    db: AsyncSession,
    *,
    command: str,
    context: Optional[Dict[str, Any]],
    session_id: Optional[str],
    profile_id: Optional[str],
    today: Optional[date] = None,
) -> str:
    context = context or {}
    intent = resolve_intent(command, context)
    log.info("comando whatsapp: intent=%s profile=%s", intent, profile_id)

    if intent in _STATIC:
        return _STATIC[intent]()

    reply = await _HANDLERS[intent](
        db,
        command=command,
        context=context,
        session_id=session_id,
        profile_id=profile_id,
        today=today or date.today(),
    )
    await db.commit()
    return reply


async def run_command(
    db: AsyncSession,
    *,
    to: str,
    command: str,
    context: Optional[Dict[str, Any]] = None,
    session_id: Optional[str] = None,
    profile_id: Optional[str] = None,
) -> Dict[str, Any]:
    reply = await handle_command(db, command=command, context=context,
                                 session_id=session_id, profile_id=profile_id)
    resp = await whatsapp.send_text(to, reply)
    log.info("resposta enviada (message_id=%s)", whatsapp.message_id(resp))
    return resp
