# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from typing import Any, Dict, Literal, Optional
from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from finamanage.api.deps import AuthUser, get_current_user, get_db, require_asaas_token
from finamanage.clients.asaas import AsaasHttpError
from finamanage.services import billing

"""
Assinatura Premium (gateway Asaas).


- `POST /billing/subscriptions` cria cliente + assinatura (cartão ou PIX), aplica cupom.
- `POST /billing/subscriptions/cancel` cancela no Asaas (banco atualizado pelo webhook).
- `POST /billing/payments/status` consulta status ao vivo de uma cobrança.
- `POST /billing/webhook` recebe eventos do Asaas.
"""

router = APIRouter()

PaymentMethod = Literal["CREDIT_CARD", "PIX"]
Cycle = Literal["MONTHLY", "SEMIANNUAL", "YEARLY"]


class CreditCardIn(BaseModel):
    holderName: str = Field(..., min_length=2, max_length=120)
    number: str = Field(..., min_length=12, max_length=25)
    expiryMonth: str = Field(..., min_length=1, max_length=2)
    expiryYear: str = Field(..., min_length=2, max_length=4)
    ccv: str = Field(..., min_length=3, max_length=4)

class SubscriptionIn(BaseModel):
    payment_method: PaymentMethod
    cycle: Cycle
    value: float = Field(..., gt=0)
    name: str = Field(..., min_length=2, max_length=120)
    cpf: str
    email: str = Field(..., min_length=3, max_length=254)
    phone: str = ""
    creditCard: Optional[CreditCardIn] = None
    couponCode: Optional[str] = None

class PixOut(BaseModel):
    qrcode: Optional[str] = None
    copy_paste: Optional[str] = None
    payment_id: Optional[str] = None

class SubscriptionOut(BaseModel):
    success: bool
    subscription_id: str
    payment_method: PaymentMethod
    status: Optional[str] = None
    next_due_date: Optional[str] = None
    coupon_applied: bool
    discount_type: Optional[str] = None
    pix: Optional[PixOut] = None

class PaymentStatusIn(BaseModel):
    payment_id: str = Field(..., min_length=1)


def _upstream(e: AsaasHttpError) -> HTTPException:
    return HTTPException(status_code=502, detail=str(e))


@router.post("/subscriptions", response_model=SubscriptionOut, response_model_exclude_none=True,
             summary="Criar assinatura Premium")
async def create_subscription(
    payload: SubscriptionIn,
    user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    if payload.payment_method == "CREDIT_CARD" and payload.creditCard is None:
        raise HTTPException(status_code=400, detail="Dados do cartão são obrigatórios")
    try:
        return await billing.create_subscription(db, user.id, payload.model_dump())
    except AsaasHttpError as e:
        raise _upstream(e)


@router.post("/subscriptions/cancel", summary="Cancelar assinatura")
async def cancel_subscription(
    user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    try:
        return await billing.cancel_subscription(db, user.id)
    except AsaasHttpError as e:
        raise _upstream(e)


@router.post("/payments/status", summary="Consultar status de pagamento")
async def payment_status(
    payload: PaymentStatusIn,
    user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    try:
        return await billing.payment_status(db, user.id, payload.payment_id)
    except AsaasHttpError as e:
        raise _upstream(e)


@router.post("/webhook", dependencies=[Depends(require_asaas_token)], summary="Webhook do Asaas")
async def webhook(payload: Dict[str, Any] = Body(...), db: AsyncSession = Depends(get_db)) -> Dict[str, Any]:
    return await billing.handle_asaas_event(db, payload)
