# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from finamanage.api.deps import require_n8n_token
from finamanage.clients.ai_gateway import AiGatewayError, AiGatewayPaymentRequired, AiGatewayRateLimited
from finamanage.services.receipts import extract_from_base64

"""
Extração de dados de comprovante por IA (chamado pelo n8n).
"""

router = APIRouter()


class ExtractIn(BaseModel):
    imageBase64: Optional[str] = None


@router.post("/extract", dependencies=[Depends(require_n8n_token)], summary="Extrair dados de um comprovante")
async def extract(payload: ExtractIn) -> Dict[str, Any]:
    if not payload.imageBase64:
        raise HTTPException(status_code=400, detail="Missing imageBase64 field")
    try:
        return await extract_from_base64(payload.imageBase64)
    except AiGatewayRateLimited as e:
        raise HTTPException(status_code=429, detail=str(e))
    except AiGatewayPaymentRequired as e:
        raise HTTPException(status_code=402, detail=str(e))
    except AiGatewayError as e:
        raise HTTPException(status_code=502, detail=str(e))
