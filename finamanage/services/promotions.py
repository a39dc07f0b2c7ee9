# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from typing import Any, Dict, List, NamedTuple, Optional
import logging
import random
import secrets
import string
from fastapi import HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from finamanage.services.billing import check_coupon, fetch_coupon

"""
Promoção "roleta da feira".


- Sorteio feito no servidor (probabilidades cumulativas em %).
- Um prêmio por e-mail; o lead guarda cupom, tipo de desconto e UTM.
- Validação pública do cupom reaproveita `billing.check_coupon()`.
"""

log = logging.getLogger("promotions")

DEFAULT_CAMPAIGN = "feira_empreendedorismo"
COUPON_PREFIX = "FEIRA-"
COUPON_ALPHABET = string.ascii_uppercase + string.digits
COUPON_LEN = 6


class Prize(NamedTuple):
    label: str
    probability: int
    discount_type: str


PRIZES: List[Prize] = [
    Prize("1 mês grátis", 50, "free_months_1"),
    Prize("2 meses grátis", 20, "free_months_2"),
    Prize("3 meses grátis", 5, "free_months_3"),
    Prize("30% off 6 meses", 17, "percent_30_6m"),
    Prize("50% off 6 meses", 8, "percent_50_6m"),
]

_sysrand = secrets.SystemRandom()


def draw_prize(rng: Optional[random.Random] = None) -> Prize:
    roll = (rng or _sysrand).random() * 100
    cumulative = 0
    for prize in PRIZES:
        cumulative += prize.probability
        if roll <= cumulative:
            return prize
    return PRIZES[0]


def generate_coupon_code(rng: Optional[random.Random] = None) -> str:
    r = rng or _sysrand
    return COUPON_PREFIX + "".join(r.choice(COUPON_ALPHABET) for _ in range(COUPON_LEN))


async def register_spin(
    db: AsyncSession,
    *,
    name: str,
    email: str,
    phone: Optional[str] = None,
    utm_source: Optional[str] = None,
    utm_campaign: Optional[str] = None,
    rng: Optional[random.Random] = None,
) -> Dict[str, Any]:
    email = email.strip().lower()
    res = await db.execute(text("SELECT id FROM fair_leads WHERE lower(email) = :email LIMIT 1"), {"email": email})
    if res.scalar():
        raise HTTPException(status_code=409, detail="Este email já participou da promoção.")

    prize = draw_prize(rng)
    coupon = generate_coupon_code(rng)
    await db.execute(text("""
        INSERT INTO fair_leads
            (name, email, phone, prize_won, coupon_code, discount_type, utm_source, utm_campaign)
        VALUES (:name, :email, :phone, :prize, :coupon, :dtype, :utm_source, :utm_campaign)
    """), {
        "name": name,
        "email": email,
        "phone": phone or None,
        "prize": prize.label,
        "coupon": coupon,
        "dtype": prize.discount_type,
        "utm_source": utm_source,
        "utm_campaign": utm_campaign or DEFAULT_CAMPAIGN,
    })
    await db.commit()

    log.info("roleta: prêmio %s sorteado", prize.discount_type)
    return {"prize": prize.label, "discount_type": prize.discount_type, "coupon_code": coupon}


async def validate_coupon(db: AsyncSession, code: Optional[str]) -> Dict[str, Any]:
    if not code or not code.strip():
        return {"valid": False, "message": "Código do cupom é obrigatório"}
    return check_coupon(await fetch_coupon(db, code))
