# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from typing import Any, Dict, List, Literal
from uuid import UUID
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from finamanage.api.deps import get_db, require_internal_token
from finamanage.services.feedback import generate_feedback

"""
Geração de insights financeiros (chamado por cron/serviços internos).


- `POST /feedback/generate` avalia as regras dos últimos 30 dias e grava até 3 notificações.
"""

router = APIRouter(dependencies=[Depends(require_internal_token)])


class FeedbackIn(BaseModel):
    profile_id: UUID

    model_config = {
        "json_schema_extra": {
            "examples": [{"profile_id": "5f0c6a52-3b1f-4c7e-9a52-0d2b8c1e7f44"}]
        }
    }

class FeedbackNotification(BaseModel):
    title: str
    summary: str
    cta: str
    type: Literal["budget_warning", "emergency_fund", "high_interest_debt"]

class FeedbackOut(BaseModel):
    status: str
    profile_id: UUID
    notifications_generated: int
    notifications: List[FeedbackNotification]


@router.post("/generate", response_model=FeedbackOut, summary="Gerar feedback financeiro do usuário")
async def generate(payload: FeedbackIn, db: AsyncSession = Depends(get_db)) -> Dict[str, Any]:
    return await generate_feedback(db, str(payload.profile_id))
