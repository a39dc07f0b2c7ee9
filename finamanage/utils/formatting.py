# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
import math
import re
from typing import Any, Optional

"""
Formatação para mensagens (valores em R$, percentuais, telefone, barras de progresso)
e conversão de datas antes de gravar no banco.
"""

def to_float(value: Any) -> float:
    """Converte Decimal/str/None vindos do banco; inválido vira 0.0."""
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0

def money(value: Any) -> str:
    return f"{to_float(value):.2f}"

def percent_int(ratio: float) -> int:
    """ratio 0.456 -> 46 (arredonda .5 para cima)."""
    return int(Decimal(str(ratio * 100)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

def progress_bar(percent: float, cells: int = 10) -> str:
    filled = max(0, min(cells, math.floor(percent / (100 / cells) + 0.5)))
    return "█" * filled + "░" * (cells - filled)

def normalize_phone(phone: str) -> str:
    """
    Só dígitos, sem zeros à esquerda; prefixa 55 (Brasil) quando ausente
    e o número tem até 11 dígitos (DDD + número).
    """
    digits = re.sub(r"\D", "", phone or "")
    digits = digits.lstrip("0")
    if not digits.startswith("55") and len(digits) <= 11:
        digits = "55" + digits
    return digits

def to_date(value: Any, fallback: Optional[date] = None) -> Optional[date]:
    """
    Colunas `date` no asyncpg só aceitam `datetime.date`.
    Aceita date/datetime ou texto ISO (`2025-01-10`, `2025-01-10T12:00:00Z`); o resto vira `fallback`.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            pass
    return fallback
