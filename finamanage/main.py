# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from finamanage.core.config import settings
from finamanage.api.v1.router import router_v1
from finamanage.clients.ai_gateway import AiGatewayError
from finamanage.clients.asaas import AsaasHttpError
from finamanage.clients.pwned_passwords import PwnedPasswordsError
from finamanage.clients.supabase_auth import SupabaseAuthError
from finamanage.clients.whatsapp import WhatsAppHttpError
from finamanage.utils.rate_limit import limiter, rate_limited
from slowapi.errors import RateLimitExceeded
from pathlib import Path
import json
import logging

"""
FinaManage – FastAPI entrypoint.

- Cria a instância principal do FastAPI (title/version) e monta /api/v1.
- Configura logging e garante o diretório de uploads (comprovantes, privados).
- Padroniza erros como {"error": ...} (HTTP, validação, integrações, inesperados).
- Configura CORS conforme settings (origens, headers, métodos).
- Expõe /health para diagnóstico rápido do ambiente.
"""

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
log = logging.getLogger("app")

start_server = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
)

Path(settings.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)

start_server.state.limiter = limiter
start_server.add_exception_handler(RateLimitExceeded, rate_limited)

start_server.include_router(router_v1, prefix="/api/v1")


@start_server.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@start_server.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"error": "Requisição inválida", "details": jsonable_encoder(exc.errors())},
    )


_UPSTREAM_ERRORS = (WhatsAppHttpError, AiGatewayError, AsaasHttpError, PwnedPasswordsError, SupabaseAuthError)

for _exc in _UPSTREAM_ERRORS:
    @start_server.exception_handler(_exc)
    async def upstream_error(request: Request, exc: Exception):
        log.error("falha em integração externa (%s): %s", exc.__class__.__name__, exc)
        return JSONResponse(status_code=502, content={"error": str(exc)})


@start_server.exception_handler(Exception)
async def unexpected_error(request: Request, exc: Exception):
    log.exception("erro inesperado em %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def _normalize_cors(origins_setting):
    """
    Aceita: list[str], string JSON (ex: '["http://..."]') ou CSV (ex: 'http://...,http://...').
    Retorna sempre uma lista de strings (sem espaços) ou lista vazia.
    """
    if not origins_setting:
        return []
    if isinstance(origins_setting, list):
        return [o.strip() for o in origins_setting if o and o.strip()]
    if isinstance(origins_setting, str):
        s = origins_setting.strip()
        try:
            parsed = json.loads(s)
            if isinstance(parsed, list):
                return [o.strip() for o in parsed if o and o.strip()]
        except ValueError:
            pass
        return [o.strip() for o in s.split(",") if o and o.strip()]
    return []

origins = _normalize_cors(settings.CORS_ORIGINS)

if not origins:
    origins = ["http://localhost:5173", "http://127.0.0.1:5173", settings.PUBLIC_APP_URL]

start_server.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

log.info("CORS habilitado para: %s", origins)

@start_server.get("/health", tags=["Health"])
def health():
    return {"status": "ok", "env": settings.APP_ENV}
