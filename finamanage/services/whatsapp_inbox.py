# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from typing import Any, Dict, Optional
import logging
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from finamanage.services import receipts, whatsapp_commands
from finamanage.services.whatsapp_commands import as_dict
from finamanage.utils.formatting import normalize_phone

"""
Entrada de mensagens do webhook do WhatsApp.


- Extrai a primeira mensagem do payload da Meta.
- Acha (ou cria) a sessão pelo telefone normalizado; sem profile vinculado => onboarding.
- Despacha: imagem/documento => comprovante; texto/botão => roteador de comandos.
"""

log = logging.getLogger("whatsapp")


def first_message(body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    try:
        messages = body["entry"][0]["changes"][0]["value"].get("messages") or []
    except (KeyError, IndexError, TypeError, AttributeError):
        return None
    return messages[0] if messages else None


async def _find_session(db: AsyncSession, phone: str) -> Optional[Dict[str, Any]]:
    res = await db.execute(text("""
        SELECT id, profile_id, phone_number, state, context
        FROM whatsapp_sessions WHERE phone_number = :phone
        LIMIT 1
    """), {"phone": phone})
    row = res.mappings().first()
    return dict(row) if row else None


async def _match_profile(db: AsyncSession, phone: str) -> Optional[str]:
    res = await db.execute(text("SELECT id, phone FROM profiles WHERE phone IS NOT NULL"))
    for row in res.mappings().all():
        if normalize_phone(row["phone"] or "") == phone:
            return str(row["id"])
    return None


async def _create_session(db: AsyncSession, profile_id: str, phone: str) -> Dict[str, Any]:
    res = await db.execute(text("""
        INSERT INTO whatsapp_sessions (profile_id, phone_number, state, context)
        VALUES (CAST(:pid AS uuid), :phone, 'idle', CAST('{}' AS jsonb))
        RETURNING id, profile_id, phone_number, state, context
    """), {"pid": profile_id, "phone": phone})
    row = res.mappings().first()
    await db.commit()
    log.info("nova sessão de WhatsApp para profile %s", profile_id)
    return dict(row)


async def handle_incoming(db: AsyncSession, body: Dict[str, Any]) -> None:
    message = first_message(body)
    if not message:
        log.info("webhook sem mensagens")
        return

    sender = message.get("from") or ""
    kind = message.get("type")
    phone = normalize_phone(sender)
    log.info("mensagem recebida tipo=%s", kind)

    session = await _find_session(db, phone)
    if not session:
        profile_id = await _match_profile(db, phone)
        if not profile_id:
            log.info("telefone sem profile vinculado; enviando onboarding")
            await whatsapp_commands.run_command(db, to=sender, command="onboarding", context={})
            return
        session = await _create_session(db, profile_id, phone)

    session_id = str(session["id"])
    profile_id = str(session["profile_id"])
    context = as_dict(session.get("context"))

    await db.execute(text("UPDATE whatsapp_sessions SET last_message_at = now() WHERE id = CAST(:sid AS uuid)"),
                     {"sid": session_id})
    await db.commit()

    if kind in ("image", "document"):
        await receipts.process_whatsapp_receipt(
            db, session_id=session_id, profile_id=profile_id, message=message, sender=sender,
        )
    elif kind == "text":
        command = ((message.get("text") or {}).get("body") or "").strip()
        await whatsapp_commands.run_command(
            db, to=sender, command=command, context=context, session_id=session_id, profile_id=profile_id,
        )
    elif kind == "interactive":
        button_id = ((message.get("interactive") or {}).get("button_reply") or {}).get("id") or ""
        await whatsapp_commands.run_command(
            db, to=sender, command=button_id, context=context, session_id=session_id, profile_id=profile_id,
        )
    else:
        log.info("tipo de mensagem ignorado: %s", kind)
