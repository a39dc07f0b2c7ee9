# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Tuple
import logging
import math
import re
from dateutil.relativedelta import relativedelta
from fastapi import HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from finamanage.clients import asaas
from finamanage.services.notifications import send_profile_notification
from finamanage.utils.formatting import to_date

"""
Assinaturas Premium via Asaas.


- Cálculos puros: vencimento, desconto, expiração do premium e validade de cupom.
- `create_subscription()` repassa cliente/assinatura ao Asaas e grava o espelho local.
- `handle_asaas_event()` aplica os eventos do webhook (pagamento confirmado,
  assinatura atualizada/cancelada). Sem idempotência: cada evento é aplicado como chega.
"""

log = logging.getLogger("billing")

CYCLE_MONTHS = {"MONTHLY": 1, "SEMIANNUAL": 6, "YEARLY": 12}
CYCLE_LABELS = {"MONTHLY": "Mensal", "SEMIANNUAL": "Semestral", "YEARLY": "Anual"}

PERCENT_DISCOUNTS = {"percent_30_6m": Decimal("0.7"), "percent_50_6m": Decimal("0.5")}
PERCENT_DISCOUNT_MONTHS = 6

COUPON_VALID_DAYS = 30

# prêmios antigos gravados sem discount_type
PRIZE_DISCOUNT_TYPES = {
    "1 mês grátis": "free_months_1",
    "2 meses grátis": "free_months_2",
    "3 meses grátis": "free_months_3",
    "30% desconto": "percent_30_6m",
    "50% desconto": "percent_50_6m",
    "30% off 6 meses": "percent_30_6m",
    "50% off 6 meses": "percent_50_6m",
}

_FREE_MONTHS = re.compile(r"^free_months_([123])$")


def free_months(discount_type: Optional[str]) -> int:
    m = _FREE_MONTHS.match(discount_type or "")
    return int(m.group(1)) if m else 0


def next_due_date(today: date, cycle: str, discount_type: Optional[str] = None) -> date:
    months = free_months(discount_type)
    if months:
        return today + relativedelta(months=months)
    return today + relativedelta(months=CYCLE_MONTHS[cycle])


def discounted_value(value: float, discount_type: Optional[str] = None) -> Tuple[float, int]:
    """(valor cobrado, meses de desconto)."""
    factor = PERCENT_DISCOUNTS.get(discount_type or "")
    if factor is None:
        return value, 0
    cents = (Decimal(str(value)) * factor).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return float(cents), PERCENT_DISCOUNT_MONTHS


def premium_expiry(today: date, cycle: str, discount_type: Optional[str], due: date) -> date:
    months = free_months(discount_type)
    if months:
        return today + relativedelta(months=months + CYCLE_MONTHS[cycle])
    return due


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def check_coupon(row: Optional[Dict[str, Any]], now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Valida um cupom da promoção. Resultado no formato do endpoint público:
    {valid, message} ou {valid, prize, discountType, message, expiresIn}.
    """
    if not row:
        return {"valid": False, "message": "Cupom não encontrado"}
    if row.get("redeemed_at"):
        return {"valid": False, "message": "Este cupom já foi utilizado"}

    now = _aware(now or datetime.now(timezone.utc))
    expires_at = _aware(row["created_at"]) + timedelta(days=COUPON_VALID_DAYS)
    if now > expires_at:
        return {"valid": False, "message": "Este cupom expirou"}

    prize = row.get("prize_won")
    discount_type = row.get("discount_type") or PRIZE_DISCOUNT_TYPES.get(prize or "", "unknown")
    return {
        "valid": True,
        "prize": prize,
        "discountType": discount_type,
        "message": f"Cupom válido! {prize}",
        "expiresIn": math.ceil((expires_at - now).total_seconds() / 86400),
    }


async def fetch_coupon(db: AsyncSession, code: str) -> Optional[Dict[str, Any]]:
    res = await db.execute(text("""
        SELECT id, coupon_code, prize_won, discount_type, redeemed_at, created_at
        FROM fair_leads WHERE coupon_code = :code
        LIMIT 1
    """), {"code": code.strip().upper()})
    row = res.mappings().first()
    return dict(row) if row else None


def _digits(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


def _redacted(payload: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(payload)
    if "creditCard" in out:
        out["creditCard"] = "***REDACTED***"
    return out


async def _activate_premium(db: AsyncSession, profile_id: str, expires: date, *, set_started: bool = True) -> None:
    if set_started:
        sql = """
            UPDATE profiles
            SET subscription_plan = 'premium', subscription_started_at = now(), subscription_expires_at = :exp
            WHERE id = CAST(:pid AS uuid)
        """
    else:
        sql = """
            UPDATE profiles
            SET subscription_plan = 'premium', subscription_expires_at = :exp
            WHERE id = CAST(:pid AS uuid)
        """
    await db.execute(text(sql), {"pid": profile_id, "exp": expires})


async def create_subscription(
    db: AsyncSession,
    profile_id: str,
    data: Dict[str, Any],
    *,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    today = today or date.today()
    method = data["payment_method"]
    cycle = data["cycle"]

    cpf = _digits(data.get("cpf"))
    if len(cpf) != 11:
        raise HTTPException(status_code=400, detail="CPF inválido")

    res = await db.execute(text("""
        SELECT id FROM asaas_subscriptions
        WHERE profile_id = CAST(:pid AS uuid) AND status = 'ACTIVE'
        LIMIT 1
    """), {"pid": profile_id})
    if res.scalar():
        raise HTTPException(status_code=400, detail="Você já possui uma assinatura ativa")

    # desconto só vem de cupom validado
    coupon: Optional[Dict[str, Any]] = None
    discount_type: Optional[str] = None
    coupon_code = (data.get("couponCode") or "").strip()
    if coupon_code:
        coupon = await fetch_coupon(db, coupon_code)
        check = check_coupon(coupon)
        if not check["valid"]:
            raise HTTPException(status_code=400, detail=check["message"])
        if check["discountType"] != "unknown":
            discount_type = check["discountType"]

    phone = _digits(data.get("phone"))
    customer = await asaas.create_customer(
        name=data["name"], email=data["email"], phone=phone, cpf=cpf, external_reference=profile_id,
    )
    customer_id = customer["id"]

    due = next_due_date(today, cycle, discount_type)
    value, _discount_months = discounted_value(float(data["value"]), discount_type)

    description = f"Assinatura Premium FinaManage - {CYCLE_LABELS[cycle]}"
    if coupon:
        description += f" (Cupom: {coupon_code})"
    payload: Dict[str, Any] = {
        "customer": customer_id,
        "billingType": method,
        "value": value,
        "cycle": cycle,
        "nextDueDate": due.isoformat(),
        "description": description,
    }
    card = data.get("creditCard")
    if method == "CREDIT_CARD" and card:
        payload["creditCard"] = {
            "holderName": card["holderName"],
            "number": re.sub(r"\s", "", card["number"]),
            "expiryMonth": card["expiryMonth"],
            "expiryYear": card["expiryYear"],
            "ccv": card["ccv"],
        }
        payload["creditCardHolderInfo"] = {"name": data["name"], "email": data["email"], "cpfCnpj": cpf, "phone": phone}

    log.info("criando assinatura: %s", _redacted(payload))
    subscription = await asaas.create_subscription(payload)

    res = await db.execute(text("""
        INSERT INTO asaas_subscriptions
            (profile_id, asaas_subscription_id, asaas_customer_id, status, payment_method, value, next_due_date)
        VALUES (CAST(:pid AS uuid), :sid, :cid, :status, :method, :value, :due)
        RETURNING id
    """), {
        "pid": profile_id,
        "sid": subscription["id"],
        "cid": customer_id,
        "status": subscription.get("status"),
        "method": method,
        "value": value,
        "due": to_date(subscription.get("nextDueDate"), due),
    })
    local_sub_id = res.scalar()

    if coupon:
        # savepoint: erro aqui não invalida a transação da assinatura
        try:
            async with db.begin_nested():
                await db.execute(text("UPDATE fair_leads SET redeemed_at = now() WHERE id = CAST(:id AS uuid)"),
                                 {"id": str(coupon["id"])})
            log.info("cupom %s marcado como usado", coupon_code.upper())
        except Exception:
            log.exception("falha ao marcar cupom como usado")

    payments = await asaas.list_subscription_payments(subscription["id"])
    first = payments[0] if payments else None
    pix: Optional[Dict[str, Any]] = None
    if first:
        if method == "PIX":
            qr = await asaas.get_pix_qrcode(first["id"])
            if qr:
                pix = {"qrcode": qr.get("encodedImage"), "copy_paste": qr.get("payload"), "payment_id": first["id"]}
        await db.execute(text("""
            INSERT INTO asaas_payments
                (profile_id, subscription_id, asaas_payment_id, value, payment_method, status,
                 due_date, invoice_url, pix_qrcode, pix_copy_paste)
            VALUES
                (CAST(:pid AS uuid), CAST(:sub AS uuid), :paid, :value, :method, :status,
                 :due, :invoice, :qr, :copy)
        """), {
            "pid": profile_id,
            "sub": str(local_sub_id) if local_sub_id else None,
            "paid": first["id"],
            "value": first.get("value"),
            "method": first.get("billingType"),
            "status": first.get("status"),
            "due": to_date(first.get("dueDate"), due),
            "invoice": first.get("invoiceUrl"),
            "qr": pix["qrcode"] if pix else None,
            "copy": pix["copy_paste"] if pix else None,
        })

    card_confirmed = method == "CREDIT_CARD" and bool(first) and first.get("status") == "CONFIRMED"
    if card_confirmed or free_months(discount_type):
        expires = premium_expiry(today, cycle, discount_type, due)
        await _activate_premium(db, profile_id, expires)
        log.info("premium ativado para %s até %s", profile_id, expires)

    await db.commit()

    out: Dict[str, Any] = {
        "success": True,
        "subscription_id": subscription["id"],
        "payment_method": method,
        "status": subscription.get("status"),
        "next_due_date": subscription.get("nextDueDate"),
        "coupon_applied": coupon is not None,
        "discount_type": discount_type,
    }
    if pix:
        out["pix"] = pix
    return out


async def cancel_subscription(db: AsyncSession, profile_id: str) -> Dict[str, Any]:
    res = await db.execute(text("""
        SELECT asaas_subscription_id FROM asaas_subscriptions
        WHERE profile_id = CAST(:pid AS uuid) AND status = 'ACTIVE'
        LIMIT 1
    """), {"pid": profile_id})
    sub_id = res.scalar()
    if not sub_id:
        raise HTTPException(status_code=404, detail="Nenhuma assinatura ativa encontrada")

    await asaas.cancel_subscription(sub_id)
    log.info("assinatura %s cancelada no Asaas", sub_id)
    return {"success": True, "message": "Assinatura cancelada. Você terá acesso até o fim do período pago."}


async def payment_status(db: AsyncSession, profile_id: str, payment_id: str) -> Dict[str, Any]:
    res = await db.execute(text("""
        SELECT asaas_payment_id, status FROM asaas_payments
        WHERE profile_id = CAST(:pid AS uuid) AND asaas_payment_id = :paid
    """), {"pid": profile_id, "paid": payment_id})
    stored = res.mappings().first()
    if not stored:
        raise HTTPException(status_code=404, detail="Pagamento não encontrado")

    live = await asaas.get_payment(payment_id)
    pix = None
    if live.get("billingType") == "PIX" and live.get("status") == "PENDING":
        qr = await asaas.get_pix_qrcode(payment_id)
        if qr:
            pix = {"qrcode": qr.get("encodedImage"), "copy_paste": qr.get("payload")}

    if live.get("status") != stored["status"]:
        await db.execute(text("UPDATE asaas_payments SET status = :status WHERE asaas_payment_id = :paid"),
                         {"status": live.get("status"), "paid": payment_id})
        await db.commit()

    return {
        "status": live.get("status"),
        "value": live.get("value"),
        "due_date": live.get("dueDate"),
        "payment_date": live.get("paymentDate"),
        "invoice_url": live.get("invoiceUrl"),
        "pix": pix,
    }


async def _notify(db: AsyncSession, profile_id: str, message: str) -> None:
    try:
        await send_profile_notification(db, profile_id, "billing", {"message": message})
    except Exception:
        log.exception("falha ao enviar aviso de assinatura via WhatsApp")


async def _payment_confirmed(db: AsyncSession, payment: Dict[str, Any]) -> None:
    res = await db.execute(text("""
        UPDATE asaas_payments SET status = :status, payment_date = now()
        WHERE asaas_payment_id = :paid
        RETURNING profile_id, subscription_id
    """), {"status": payment.get("status"), "paid": payment.get("id")})
    record = res.mappings().first()
    if not record:
        log.error("pagamento não encontrado: %s", payment.get("id"))
        return
    profile_id = str(record["profile_id"])

    res = await db.execute(text("""
        SELECT next_due_date FROM asaas_subscriptions
        WHERE profile_id = CAST(:pid AS uuid)
        ORDER BY updated_at DESC NULLS LAST
        LIMIT 1
    """), {"pid": profile_id})
    due = res.scalar()
    if not due:
        log.error("assinatura não encontrada para o pagamento %s", payment.get("id"))
        return

    res = await db.execute(text("SELECT subscription_plan FROM profiles WHERE id = CAST(:pid AS uuid)"),
                           {"pid": profile_id})
    renewal = res.scalar() == "premium"
    await _activate_premium(db, profile_id, due, set_started=not renewal)
    await db.commit()
    log.info("premium ativado para %s", profile_id)

    message = ("🎉 Sua assinatura Premium foi renovada com sucesso!" if renewal
               else "🎉 Bem-vindo ao Premium FinaManage! Aproveite todos os benefícios exclusivos.")
    await _notify(db, profile_id, message)


async def _subscription_updated(db: AsyncSession, subscription: Dict[str, Any]) -> None:
    await db.execute(text("""
        UPDATE asaas_subscriptions
        SET status = :status, next_due_date = COALESCE(:due, next_due_date), updated_at = now()
        WHERE asaas_subscription_id = :sid
    """), {"status": subscription.get("status"), "due": to_date(subscription.get("nextDueDate")),
          "sid": subscription.get("id")})
    await db.commit()


async def _subscription_deleted(db: AsyncSession, subscription: Dict[str, Any]) -> None:
    res = await db.execute(text("""
        UPDATE asaas_subscriptions SET status = 'INACTIVE', updated_at = now()
        WHERE asaas_subscription_id = :sid
        RETURNING profile_id
    """), {"sid": subscription.get("id")})
    profile_id = res.scalar()
    await db.commit()
    if not profile_id:
        log.error("assinatura cancelada não encontrada: %s", subscription.get("id"))
        return
    # premium segue até subscription_expires_at
    await _notify(db, str(profile_id),
                  "❌ Sua assinatura Premium foi cancelada. Você terá acesso até o fim do período pago.")


async def handle_asaas_event(db: AsyncSession, payload: Dict[str, Any]) -> Dict[str, Any]:
    event = payload.get("event")
    log.info("webhook Asaas recebido: %s", event)

    if event in ("PAYMENT_CONFIRMED", "PAYMENT_RECEIVED"):
        await _payment_confirmed(db, payload.get("payment") or {})
    elif event == "SUBSCRIPTION_UPDATED":
        await _subscription_updated(db, payload.get("subscription") or {})
    elif event == "SUBSCRIPTION_DELETED":
        await _subscription_deleted(db, payload.get("subscription") or {})
    else:
        log.info("evento Asaas ignorado: %s", event)
    return {"success": True}
