# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from finamanage.api.deps import get_db, require_internal_token
from finamanage.services.notifications import run_scheduled, send_profile_notification

"""
Notificações proativas (uso interno: cron e outros serviços).


- `POST /notifications/scheduled` roda um lote (dívidas, metas, resumos).
- `POST /notifications/whatsapp` envia uma notificação a um profile.
"""

router = APIRouter(dependencies=[Depends(require_internal_token)])

ScheduledType = Literal["debt_reminder", "goal_at_risk", "weekly_summary", "monthly_summary", "all"]


class ScheduledIn(BaseModel):
    type: ScheduledType = "all"

class BatchResult(BaseModel):
    type: str
    sent: int
    errors: int

class ScheduledOut(BaseModel):
    success: bool
    results: List[BatchResult]

class WhatsAppNotificationIn(BaseModel):
    profileId: UUID
    type: str = Field(..., min_length=1, max_length=60)
    data: Dict[str, Any] = Field(default_factory=dict)

    model_config = {
        "json_schema_extra": {
            "examples": [{
                "profileId": "5f0c6a52-3b1f-4c7e-9a52-0d2b8c1e7f44",
                "type": "budget_alert",
                "data": {"category": "Alimentação", "percentage": 85, "spent": "850.00", "limit": "1000.00"},
            }]
        }
    }

class WhatsAppNotificationOut(BaseModel):
    success: bool
    messageId: Optional[str] = None


@router.post("/scheduled", response_model=ScheduledOut, summary="Executar notificações agendadas")
async def scheduled(payload: ScheduledIn, db: AsyncSession = Depends(get_db)) -> Dict[str, Any]:
    results = await run_scheduled(db, payload.type)
    return {"success": True, "results": results}


@router.post("/whatsapp", response_model=WhatsAppNotificationOut, summary="Enviar notificação via WhatsApp")
async def whatsapp_notification(payload: WhatsAppNotificationIn, db: AsyncSession = Depends(get_db)) -> Dict[str, Any]:
    message_id = await send_profile_notification(db, str(payload.profileId), payload.type, payload.data)
    return {"success": True, "messageId": message_id}
