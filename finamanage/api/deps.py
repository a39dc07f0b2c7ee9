# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from dataclasses import dataclass
from typing import AsyncGenerator, Optional
import hmac
import logging
from fastapi import Header, HTTPException
from jose import JWTError, jwt
from finamanage.core.config import settings
from finamanage.db.session import SessionLocal

"""
Dependências reutilizáveis da API.


- `get_db()` injeta `AsyncSession` (abre/fecha sessão corretamente).
- `get_current_user()` valida o JWT emitido pelo Supabase Auth (HS256).
- `require_internal_token()`, `require_n8n_token()`, `require_asaas_token()`
  protegem endpoints chamados por serviços (cron, n8n, gateway de pagamento).
"""

log = logging.getLogger("auth")


@dataclass
class AuthUser:
    id: str
    email: Optional[str] = None


async def get_db() -> AsyncGenerator:
    async with SessionLocal() as session:
        yield session


def _same_secret(received: Optional[str], expected: str) -> bool:
    if not received:
        return False
    return hmac.compare_digest(received.encode(), expected.encode())


async def get_current_user(authorization: Optional[str] = Header(None)) -> AuthUser:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    token = authorization.replace("Bearer ", "", 1).strip()
    try:
        claims = jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            audience=settings.SUPABASE_JWT_AUDIENCE,
        )
    except JWTError as e:
        log.info("token rejeitado: %s", e.__class__.__name__)
        raise HTTPException(status_code=401, detail="Unauthorized")

    sub = claims.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return AuthUser(id=str(sub), email=claims.get("email"))


async def require_internal_token(x_internal_token: Optional[str] = Header(None)) -> None:
    expected = settings.INTERNAL_SERVICE_TOKEN
    if not expected or not _same_secret(x_internal_token, expected):
        log.warning("acesso não autorizado a endpoint interno")
        raise HTTPException(status_code=401, detail="Unauthorized")


async def require_n8n_token(x_webhook_token: Optional[str] = Header(None)) -> None:
    expected = settings.N8N_WEBHOOK_TOKEN
    if not expected:
        log.warning("N8N_WEBHOOK_TOKEN não configurado; webhook aceito sem verificação")
        return
    if not _same_secret(x_webhook_token, expected):
        log.error("Invalid webhook token")
        raise HTTPException(status_code=401, detail="Unauthorized")


async def require_asaas_token(asaas_access_token: Optional[str] = Header(None)) -> None:
    expected = settings.ASAAS_WEBHOOK_TOKEN
    if not expected:
        log.warning("ASAAS_WEBHOOK_TOKEN não configurado; webhook aceito sem verificação")
        return
    if not _same_secret(asaas_access_token, expected):
        log.error("Invalid webhook token")
        raise HTTPException(status_code=401, detail="Unauthorized")
