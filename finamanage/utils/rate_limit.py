# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
import logging
from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from finamanage.core.config import settings

"""
Limite de requisições (slowapi, armazenamento em memória por processo).


- Chave = IP do cliente (respeita X-Forwarded-For / X-Real-IP / CF-Connecting-IP).
- `coupon_limit()` é lido a cada requisição, então mudanças em `settings` valem na hora.
- Estourou: 429 `{valid: false, message}` com `Retry-After` (segundos da janela).
"""

log = logging.getLogger("promotions")


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = request.headers.get(header)
        if value:
            return value
    if request.client:
        return request.client.host
    return "unknown"


limiter = Limiter(key_func=client_ip)


def coupon_limit() -> str:
    return f"{settings.COUPON_RATE_LIMIT} per {settings.COUPON_RATE_WINDOW_S} seconds"


async def rate_limited(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    log.info("rate limit atingido para %s (%s)", client_ip(request), exc.detail)
    return JSONResponse(
        status_code=429,
        content={"valid": False, "message": "Muitas tentativas. Tente novamente em alguns segundos."},
        headers={"Retry-After": str(exc.limit.limit.get_expiry())},
    )
