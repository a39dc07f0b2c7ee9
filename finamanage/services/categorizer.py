# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Pattern, Tuple
import json
import logging
import re
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from finamanage.services.events import log_event

"""
Categorização de transações por palavras-chave.


- Tabelas ordenadas (regex, categoria, subcategoria); a primeira que casar vence.
- Entradas (receitas) e saídas (despesas) usam tabelas separadas.
- `is_monthly_pattern()` detecta recorrência mensal (25–35 dias entre lançamentos).
- `categorize_transactions()` aplica tudo a uma lista de ids do usuário.
"""

log = logging.getLogger("categorizer")

UNCATEGORIZED = "Sem categoria"
RECURRENCE_LOOKBACK_DAYS = 90

Rule = Tuple[Pattern[str], str, Optional[str]]

def _rule(pattern: str, category: str, subcategory: Optional[str]) -> Rule:
    return re.compile(pattern, re.IGNORECASE), category, subcategory

# despesas (ordem importa: "uber eats" é restaurante antes de "uber" ser transporte)
CATEGORY_RULES: List[Rule] = [
    _rule(r"netflix|spotify|amazon prime|disney|hbo|youtube premium|apple music|deezer", "Assinaturas", "Streaming"),
    _rule(r"adobe|microsoft|google workspace|dropbox|notion|canva", "Assinaturas", "Software"),
    _rule(r"restaurante|lanche|padaria|cafe|pizzaria|ifood|rappi|uber eats|food|bar", "Alimentação", "Restaurantes"),
    _rule(r"supermercado|mercado|hortifruti|açougue|grocery|extra|carrefour|pão de açúcar", "Alimentação", "Supermercado"),
    _rule(r"uber|99|taxi|combustivel|gasolina|posto|shell|ipiranga", "Transporte", "Combustível e Transportes"),
    _rule(r"estacionamento|parking|zona azul", "Transporte", "Estacionamento"),
    _rule(r"luz|energia|eletric|cemig|cpfl|enel", "Contas", "Energia"),
    _rule(r"agua|saneamento|sabesp|cedae", "Contas", "Água"),
    _rule(r"internet|telefone|celular|tim|claro|vivo|oi|net|sky", "Contas", "Telecomunicações"),
    _rule(r"aluguel|condominio|rent|condomínio", "Contas", "Moradia"),
    _rule(r"cinema|teatro|show|entretenimento|ingresso|ticket", "Entretenimento", "Lazer"),
    _rule(r"magazine|loja|shop|mercado livre|shopee|amazon|americanas|casas bahia", "Compras", "Varejo"),
    _rule(r"farmacia|drogaria|hospital|clinica|medico|saude|plano de saude|unimed|amil|sulamerica",
          "Saúde", "Medicamentos e Consultas"),
    _rule(r"escola|universidade|curso|faculdade|livro|education|livraria", "Educação", None),
]

INCOME_RULES: List[Rule] = [
    _rule(r"salario|salary|pagamento|vencimento|folha", "Renda", "Salário"),
    _rule(r"freelance|autonomo|prestação de serviço|honorarios", "Renda", "Freelance"),
    _rule(r"investimento|dividendo|rendimento|juros|aplicação", "Renda", "Investimentos"),
    _rule(r"transferencia recebida|pix recebido|ted recebido|doc recebido", "Renda", "Transferências"),
]

INCOME_DEFAULT = ("Renda", "Outras")
EXPENSE_DEFAULT = (UNCATEGORIZED, None)


@dataclass(frozen=True)
class Categorization:
    category: str
    subcategory: Optional[str]


def _is_income(amount: float, kind: Optional[str]) -> bool:
    if kind in ("income", "credit"):
        return True
    if kind in ("expense", "debit"):
        return False
    return amount > 0


def categorize(description: Optional[str], merchant: Optional[str], amount: float,
               kind: Optional[str] = None) -> Categorization:
    """
    Classifica pelo texto `descrição + " " + estabelecimento`.
    Sem `kind`, o sinal do valor decide entre receita e despesa.
    """
    txt = f"{description or ''} {merchant or ''}".lower()
    if _is_income(amount, kind):
        rules, default = INCOME_RULES, INCOME_DEFAULT
    else:
        rules, default = CATEGORY_RULES, EXPENSE_DEFAULT

    for pattern, category, subcategory in rules:
        if pattern.search(txt):
            return Categorization(category, subcategory)
    return Categorization(*default)


def is_monthly_pattern(dates: Iterable[date]) -> bool:
    ordered = sorted(dates)
    for prev, curr in zip(ordered, ordered[1:]):
        if 25 <= abs((curr - prev).days) <= 35:
            return True
    return False


def _needs_categorization(category: Optional[str]) -> bool:
    return not category or category in ("Outros", UNCATEGORIZED)


def _as_tags(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return [value]
        return list(parsed) if isinstance(parsed, list) else []
    return list(value)


async def _merchant_is_recurring(db: AsyncSession, profile_id: str, merchant: str, today: date) -> bool:
    res = await db.execute(text("""
        SELECT date FROM transactions
        WHERE profile_id = CAST(:pid AS uuid) AND merchant = :merchant AND date >= :since
        ORDER BY date ASC
    """), {"pid": profile_id, "merchant": merchant, "since": today - timedelta(days=RECURRENCE_LOOKBACK_DAYS)})
    dates = [r["date"] for r in res.mappings().all()]
    return len(dates) >= 2 and is_monthly_pattern(dates)


async def categorize_transactions(
    db: AsyncSession,
    profile_id: str,
    transaction_ids: List[str],
    *,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    today = today or date.today()
    log.info("categorizando %d transações", len(transaction_ids))

    categorized = unclassified = skipped = 0
    needs_review: List[str] = []

    for txn_id in transaction_ids:
        res = await db.execute(text("""
            SELECT id, raw_description, merchant, amount, type, category, tags
            FROM transactions
            WHERE id = CAST(:tid AS uuid) AND profile_id = CAST(:pid AS uuid)
        """), {"tid": txn_id, "pid": profile_id})
        txn = res.mappings().first()
        if not txn:
            log.warning("transação %s não encontrada para o profile", txn_id)
            skipped += 1
            continue

        if not _needs_categorization(txn["category"]):
            skipped += 1
            continue

        result = categorize(txn["raw_description"] or txn["merchant"] or "", txn["merchant"],
                            float(txn["amount"] or 0), txn["type"])
        category, subcategory = result.category, result.subcategory

        if txn["merchant"] and category != "Assinaturas":
            if await _merchant_is_recurring(db, profile_id, txn["merchant"], today):
                category, subcategory = "Assinaturas", "Recorrente"

        if category == UNCATEGORIZED:
            unclassified += 1
            needs_review.append(txn_id)
            tags = ["needs_review"]
        else:
            tags = _as_tags(txn["tags"])

        await db.execute(text("""
            UPDATE transactions
            SET category = :cat, subcategory = :sub, tags = :tags
            WHERE id = CAST(:tid AS uuid)
        """), {"cat": category, "sub": subcategory, "tags": tags, "tid": txn_id})
        categorized += 1

    await log_event(db, profile_id, "transactions_categorized", {
        "categorized_count": categorized,
        "unclassified_count": unclassified,
        "skipped_count": skipped,
        "total": len(transaction_ids),
        "needs_review": needs_review,
    })
    await db.commit()

    log.info("categorização concluída: %d categorizadas, %d sem categoria", categorized, unclassified)
    return {
        "status": "success",
        "categorized_count": categorized,
        "unclassified_count": unclassified,
        "skipped_count": skipped,
        "needs_review_ids": needs_review,
        "total": len(transaction_ids),
    }
