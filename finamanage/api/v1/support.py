# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from typing import Any, Dict, List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from finamanage.api.deps import get_db
from finamanage.services.support import create_ticket

"""
Central de ajuda: abertura de chamados (público; profile_id opcional).
"""

router = APIRouter()


class TicketIn(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    subject: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[str] = None
    description: Optional[str] = None
    attachments: Optional[List[Any]] = None
    profile_id: Optional[UUID] = None

    model_config = {
        "json_schema_extra": {
            "examples": [{
                "name": "Ana Souza",
                "email": "ana@example.com",
                "subject": "Importação de extrato",
                "category": "Técnico",
                "description": "O arquivo CSV do meu banco não está sendo aceito na importação.",
            }]
        }
    }

class TicketOut(BaseModel):
    success: bool
    ticket_id: str
    ticket_number: str


@router.post("/tickets", response_model=TicketOut, summary="Abrir chamado de suporte")
async def open_ticket(payload: TicketIn, db: AsyncSession = Depends(get_db)) -> Dict[str, Any]:
    return await create_ticket(
        db,
        name=payload.name,
        email=payload.email,
        subject=payload.subject,
        category=payload.category,
        description=payload.description,
        priority=payload.priority,
        attachments=payload.attachments,
        profile_id=str(payload.profile_id) if payload.profile_id else None,
    )
