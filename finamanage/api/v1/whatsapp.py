# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from typing import Any, Dict, Optional
import logging
from uuid import UUID
from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from finamanage.api.deps import get_db, require_internal_token
from finamanage.core.config import settings
from finamanage.services.whatsapp_commands import run_command
from finamanage.services.whatsapp_inbox import handle_incoming

"""
Bot de WhatsApp (Cloud API da Meta).


- `GET /whatsapp/webhook` handshake de verificação (hub.challenge).
- `POST /whatsapp/webhook` recebe mensagens: comprovantes e comandos de texto/botão.
- `POST /whatsapp/commands` executa um comando avulso (uso interno).
"""

log = logging.getLogger("whatsapp")

router = APIRouter()


class CommandIn(BaseModel):
    to: str = Field(..., min_length=8, max_length=20)
    command: str = Field(..., max_length=4096)
    context: Dict[str, Any] = Field(default_factory=dict)
    sessionId: Optional[UUID] = None
    profileId: Optional[UUID] = None

    model_config = {
        "json_schema_extra": {
            "examples": [{"to": "5511999999999", "command": "/saldo", "context": {},
                          "sessionId": None, "profileId": "5f0c6a52-3b1f-4c7e-9a52-0d2b8c1e7f44"}]
        }
    }


@router.get("/webhook", response_class=PlainTextResponse, summary="Verificação do webhook (Meta)")
async def verify_webhook(
    mode: Optional[str] = Query(None, alias="hub.mode"),
    token: Optional[str] = Query(None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(None, alias="hub.challenge"),
) -> PlainTextResponse:
    if mode == "subscribe" and settings.WHATSAPP_VERIFY_TOKEN and token == settings.WHATSAPP_VERIFY_TOKEN:
        log.info("webhook verificado")
        return PlainTextResponse(challenge or "", status_code=200)
    log.error("falha na verificação do webhook")
    return PlainTextResponse("Forbidden", status_code=403)


@router.post("/webhook", summary="Receber mensagens do WhatsApp")
async def receive(body: Dict[str, Any] = Body(...), db: AsyncSession = Depends(get_db)) -> Dict[str, Any]:
    try:
        await handle_incoming(db, body)
    except HTTPException:
        raise
    except Exception as e:
        log.exception("erro no webhook do WhatsApp")
        raise HTTPException(status_code=500, detail=str(e) or e.__class__.__name__)
    return {"success": True}


@router.post("/commands", dependencies=[Depends(require_internal_token)], summary="Executar comando do bot")
async def command(payload: CommandIn, db: AsyncSession = Depends(get_db)) -> Dict[str, Any]:
    await run_command(
        db,
        to=payload.to,
        command=payload.command,
        context=payload.context,
        session_id=str(payload.sessionId) if payload.sessionId else None,
        profile_id=str(payload.profileId) if payload.profileId else None,
    )
    return {"success": True}
