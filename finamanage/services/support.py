# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from typing import Any, Dict, List, Optional
import json
import logging
from fastapi import HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from finamanage.services.events import log_event

"""
Chamados de suporte (formulário da central de ajuda).
"""

log = logging.getLogger("support")

MIN_DESCRIPTION_LEN = 20
DEFAULT_PRIORITY = "Normal"


def ticket_number(ticket_id: str) -> str:
    return str(ticket_id).split("-")[0].upper()


async def create_ticket(
    db: AsyncSession,
    *,
    name: Optional[str],
    email: Optional[str],
    subject: Optional[str],
    category: Optional[str],
    description: Optional[str],
    priority: Optional[str] = None,
    attachments: Optional[List[Any]] = None,
    profile_id: Optional[str] = None,
) -> Dict[str, Any]:
    if not all([name, email, subject, category, description]):
        raise HTTPException(status_code=400, detail="Missing required fields")
    if len(description) < MIN_DESCRIPTION_LEN:
        raise HTTPException(status_code=400, detail="Descrição deve ter pelo menos 20 caracteres")

    priority = priority or DEFAULT_PRIORITY
    res = await db.execute(text("""
        INSERT INTO support_tickets
            (profile_id, name, email, subject, category, priority, description, attachments, status)
        VALUES
            (CAST(:pid AS uuid), :name, :email, :subject, :category, :priority, :description,
             CAST(:attachments AS jsonb), 'open')
        RETURNING id
    """), {
        "pid": profile_id,
        "name": name,
        "email": email,
        "subject": subject,
        "category": category,
        "priority": priority,
        "description": description,
        "attachments": json.dumps(attachments or []),
    })
    ticket_id = res.scalar()
    if not ticket_id:
        raise HTTPException(status_code=500, detail="Falha ao registrar chamado")
    ticket_id = str(ticket_id)

    await log_event(db, profile_id, "support_ticket_created",
                    {"ticket_id": ticket_id, "category": category, "priority": priority})
    await db.commit()

    log.info("chamado %s criado", ticket_id)
    return {"success": True, "ticket_id": ticket_id, "ticket_number": ticket_number(ticket_id)}
