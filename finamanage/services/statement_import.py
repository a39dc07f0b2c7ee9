# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from datetime import date, datetime
from typing import Any, Dict, List, Optional
import csv
import hashlib
import logging
import re
from dateutil import parser as dateparser
from fastapi import HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from finamanage.core.config import settings
from finamanage.services.accounts import get_or_create_account
from finamanage.services.categorizer import categorize
from finamanage.services.events import log_event

"""
Importação de extratos (CSV e OFX).


- Parsers puros: `parse_csv()` (cabeçalho + aliases de colunas) e `parse_ofx()` (<STMTTRN>).
- Normalização: data, valor (aceita "1.234,56"), moeda e tipo (receita/despesa).
- Deduplicação por SHA-256 (`provider_transaction_id`).
- `import_statement()` grava as linhas e devolve o resumo da importação.
"""

log = logging.getLogger("import")

REQUIRED_HEADERS = ("date", "amount")

_COLUMN_ALIASES = {
    "date": ("date", "data"),
    "amount": ("amount", "valor", "value"),
    "description": ("description", "descri", "memo"),
    "merchant": ("merchant", "estabelecimento", "name"),
    "currency": ("currency", "moeda"),
    "category": ("category", "categoria"),
    "type": ("type", "tipo"),
}

_CURRENCIES = {
    "real": "BRL", "reais": "BRL", "r$": "BRL", "brl": "BRL",
    "usd": "USD", "dollar": "USD",
    "euro": "EUR", "eur": "EUR",
}

_INCOME_KINDS = {"credit", "income", "receita", "entrada"}
_EXPENSE_KINDS = {"debit", "expense", "despesa", "saida", "saída"}

_STMTTRN = re.compile(r"<STMTTRN>([\s\S]*?)</STMTTRN>", re.IGNORECASE)


class InvalidStatement(ValueError):
    """Arquivo sem as colunas mínimas ou vazio."""


# normalização -----------------------------------------------------------

def normalize_date(value: Optional[str]) -> Optional[str]:
    s = (value or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s[:10]).isoformat()
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(s).date().isoformat()
    except ValueError:
        pass
    try:
        return dateparser.parse(s, dayfirst=True).date().isoformat()
    except (ValueError, OverflowError):
        return None


def normalize_amount(value: Any) -> Optional[float]:
    s = re.sub(r"[R$\s€£¥]", "", str(value if value is not None else ""))
    if not s:
        return None
    if "," in s and "." in s:
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif "," in s:
        s = s.replace(",", ".", 1)
    try:
        return float(s)
    except ValueError:
        return None


def normalize_currency(value: Optional[str]) -> str:
    s = (value or "").strip()
    return _CURRENCIES.get(s.lower()) or s.upper() or "BRL"


def normalize_kind(value: Optional[str], amount: float) -> str:
    k = (value or "").strip().lower()
    if k in _INCOME_KINDS:
        return "income"
    if k in _EXPENSE_KINDS:
        return "expense"
    return "income" if amount > 0 else "expense"


def _js_number(n: float) -> str:
    return str(int(n)) if float(n).is_integer() else repr(float(n))


def transaction_hash(profile_id: str, date_iso: str, amount: float, description: str) -> str:
    raw = f"{profile_id}{date_iso}{_js_number(amount)}{description}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


# parsers ----------------------------------------------------------------

def parse_ofx(content: str) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for block in _STMTTRN.findall(content):
        dm = re.search(r"<DTPOSTED>(\d{8})", block)
        am = re.search(r"<TRNAMT>([-\d.,]+)", block)
        if not dm or not am:
            continue
        name = re.search(r"<NAME>([^<\r\n]*)", block)
        memo = re.search(r"<MEMO>([^<\r\n]*)", block)
        d = dm.group(1)
        description = memo.group(1).strip() if memo else ""
        merchant = name.group(1).strip() if name else (description or "Unknown")
        amount = am.group(1)
        signed = normalize_amount(amount) or 0.0
        out.append({
            "date": f"{d[:4]}-{d[4:6]}-{d[6:8]}",
            "amount": amount,
            "description": description,
            "merchant": merchant,
            "currency": "BRL",
            "category": "",
            "type": "credit" if signed >= 0 else "debit",
            "raw": block.strip(),
        })
    return out


def _column(headers: List[str], names: tuple) -> int:
    for i, h in enumerate(headers):
        if any(n in h for n in names):
            return i
    return -1


def parse_csv(content: str) -> List[Dict[str, Any]]:
    lines = [ln for ln in content.splitlines() if ln.strip()]
    if not lines:
        raise InvalidStatement("Empty file")

    delimiter = ";" if ";" in lines[0] and "," not in lines[0] else ","
    headers = [h.strip().lower() for h in next(csv.reader([lines[0]], delimiter=delimiter))]
    idx = {key: _column(headers, aliases) for key, aliases in _COLUMN_ALIASES.items()}
    if idx["date"] < 0 or idx["amount"] < 0:
        raise InvalidStatement(
            f"Missing required headers. Need at least: {', '.join(REQUIRED_HEADERS)}. Found: {', '.join(headers)}"
        )

    def cell(parts: List[str], key: str, default: str = "") -> str:
        i = idx[key]
        return parts[i] if 0 <= i < len(parts) else default

    rows: List[Dict[str, Any]] = []
    for line in lines[1:]:
        parts = [p.strip() for p in next(csv.reader([line], delimiter=delimiter))]
        if len(parts) < 2:
            continue
        description = cell(parts, "description")
        rows.append({
            "date": cell(parts, "date"),
            "amount": cell(parts, "amount"),
            "description": description,
            "merchant": cell(parts, "merchant") or description or "Unknown",
            "currency": cell(parts, "currency", "BRL"),
            "category": cell(parts, "category"),
            "type": cell(parts, "type"),
            "raw": line,
        })
    return rows


# importação -------------------------------------------------------------

async def _is_duplicate(db: AsyncSession, tx_hash: str) -> bool:
    res = await db.execute(text("SELECT id FROM transactions WHERE provider_transaction_id = :h LIMIT 1"),
                           {"h": tx_hash})
    return res.scalar() is not None


async def import_statement(db: AsyncSession, profile_id: str, filename: str, content: str) -> Dict[str, Any]:
    errors: List[str] = []
    if filename.lower().endswith(".ofx"):
        log.info("arquivo OFX detectado")
        parsed = parse_ofx(content)
        if not parsed:
            errors.append("No transactions found in OFX file")
    else:
        try:
            parsed = parse_csv(content)
        except InvalidStatement as e:
            raise HTTPException(status_code=400, detail=str(e))

    if len(parsed) > settings.MAX_IMPORT_ROWS:
        raise HTTPException(
            status_code=400,
            detail=f"File contains {len(parsed)} transactions. "
                   f"Maximum allowed is {settings.MAX_IMPORT_ROWS} transactions per upload.",
        )
    log.info("%d transações lidas de %s", len(parsed), filename)

    account_id = await get_or_create_account(
        db, profile_id,
        provider="csv_import",
        provider_account_id="csv-import-default",
        account_type="imported",
    )

    inserted = duplicates = failed = 0
    for row in parsed:
        date_iso = normalize_date(row["date"])
        amount = normalize_amount(row["amount"])
        if not date_iso or amount is None:
            failed += 1
            errors.append(f"Invalid data in row: date={row['date']}, amount={row['amount']}")
            continue

        description = row["description"] or row["merchant"] or ""
        tx_hash = transaction_hash(profile_id, date_iso, amount, description)
        if await _is_duplicate(db, tx_hash):
            duplicates += 1
            continue

        kind = normalize_kind(row["type"], amount)
        category, subcategory = row["category"] or None, None
        if not category:
            guess = categorize(row["description"], row["merchant"], amount, kind)
            category, subcategory = guess.category, guess.subcategory

        await db.execute(text("""
            INSERT INTO transactions
                (profile_id, account_id, provider_transaction_id, date, amount, currency,
                 merchant, raw_description, category, subcategory, type, imported_from)
            VALUES
                (CAST(:pid AS uuid), CAST(:aid AS uuid), :h, :date, :amount, :currency,
                 :merchant, :raw, :category, :subcategory, :type, :source)
        """), {
            "pid": profile_id,
            "aid": account_id,
            "h": tx_hash,
            "date": date.fromisoformat(date_iso),
            "amount": abs(amount),
            "currency": normalize_currency(row["currency"]),
            "merchant": row["merchant"] or "Unknown",
            "raw": row["raw"] or row["description"] or "",
            "category": category,
            "subcategory": subcategory,
            "type": kind,
            "source": f"csv:{filename}",
        })
        inserted += 1

    await log_event(db, profile_id, "csv_import_completed", {
        "filename": filename,
        "total_rows": len(parsed),
        "inserted": inserted,
        "duplicates": duplicates,
        "failed_rows": failed,
        "errors": errors[:10],
    })
    await db.commit()

    log.info("importação concluída: %d inseridas, %d duplicadas, %d falhas", inserted, duplicates, failed)
    return {
        "success": True,
        "summary": {
            "total_rows": len(parsed),
            "inserted": inserted,
            "duplicates": duplicates,
            "failed_rows": failed,
            "errors": errors,
        },
        "message": f"Successfully processed {len(parsed)} transactions: "
                   f"{inserted} inserted, {duplicates} duplicates, {failed} failed",
    }
