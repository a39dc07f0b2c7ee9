# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from finamanage.api.deps import get_db
from finamanage.services import promotions
from finamanage.utils.rate_limit import coupon_limit, limiter

"""
Promoção da feira (landing pública).


- `POST /fair/spin` registra o lead e sorteia o prêmio no servidor.
- `POST /fair/coupons/validate` valida cupom; limitado por IP (slowapi).
"""

router = APIRouter()


class SpinIn(BaseModel):
    name: str = Field(..., min_length=2, max_length=120)
    email: str = Field(..., min_length=3, max_length=254)
    phone: Optional[str] = Field(None, max_length=30)
    utm_source: Optional[str] = Field(None, max_length=120)
    utm_campaign: Optional[str] = Field(None, max_length=120)

class SpinOut(BaseModel):
    prize: str
    discount_type: str
    coupon_code: str

class CouponIn(BaseModel):
    couponCode: Optional[str] = None

class CouponOut(BaseModel):
    valid: bool
    prize: Optional[str] = None
    discountType: Optional[str] = None
    message: str
    expiresIn: Optional[int] = None


@router.post("/spin", response_model=SpinOut, summary="Girar a roleta")
async def spin(payload: SpinIn, db: AsyncSession = Depends(get_db)) -> Dict[str, Any]:
    return await promotions.register_spin(
        db,
        name=payload.name,
        email=payload.email,
        phone=payload.phone,
        utm_source=payload.utm_source,
        utm_campaign=payload.utm_campaign,
    )


@router.post("/coupons/validate", response_model=CouponOut, response_model_exclude_none=True,
             summary="Validar cupom da promoção")
@limiter.limit(coupon_limit)
async def validate_coupon(request: Request, payload: CouponIn, db: AsyncSession = Depends(get_db)):
    return await promotions.validate_coupon(db, payload.couponCode)
