# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from time import perf_counter
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from finamanage.api.deps import get_db
from finamanage.core.config import settings

"""
Diagnóstico (banco e integrações).


- `GET /health/db` roda consultas leves no Postgres do Supabase e mede latência; 503 se falhar.
- `GET /health/integrations` diz quais integrações externas têm credenciais configuradas
  (nunca devolve os valores).
"""

router = APIRouter(tags=["Health"])

_DB_PROBES = {
    "current_user": "SELECT current_user",
    "current_database": "SELECT current_database()",
    "server_version": "SHOW server_version",
    "profile_count": "SELECT COUNT(*) FROM profiles",
}


@router.get("/db")
async def health_db(db: AsyncSession = Depends(get_db)):
    try:
        t0 = perf_counter()
        out = {}
        for key, sql in _DB_PROBES.items():
            out[key] = (await db.execute(text(sql))).scalar_one()
        latency_ms = (perf_counter() - t0) * 1000.0
    except Exception as e:
        raise HTTPException(
            status_code=503,
            detail={"db": "error", "type": e.__class__.__name__, "message": str(e)},
        )
    return {"db": "ok", "latency_ms": round(latency_ms, 2), **out}


@router.get("/integrations")
def health_integrations():
    return {
        "supabase_auth": bool(settings.SUPABASE_URL and settings.SUPABASE_JWT_SECRET),
        "whatsapp": bool(settings.WHATSAPP_ACCESS_TOKEN and settings.WHATSAPP_PHONE_NUMBER_ID),
        "ai_gateway": bool(settings.AI_GATEWAY_API_KEY),
        "asaas": bool(settings.ASAAS_API_KEY),
        "webhook_tokens": {
            "internal": bool(settings.INTERNAL_SERVICE_TOKEN),
            "n8n": bool(settings.N8N_WEBHOOK_TOKEN),
            "asaas": bool(settings.ASAAS_WEBHOOK_TOKEN),
        },
    }
