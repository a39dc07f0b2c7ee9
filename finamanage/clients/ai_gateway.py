# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from typing import Any, Dict, Optional
import httpx
from finamanage.core.config import settings

"""
Client HTTP do gateway de IA (chat completions com visão).


- `extract_receipt(image_b64, mime_type)` envia a imagem e força a tool `extract_receipt`.
- Uma única chamada, sem retry: 429/402 viram exceções específicas.
- Retorna o JSON **bruto** do provedor (parse em services/receipts.py).
"""

RECEIPT_PROMPT = (
    "Extraia as informações do recibo e retorne um JSON válido com os campos: "
    "date (formato YYYY-MM-DD), merchant (nome do estabelecimento), amount (valor total em formato numérico), "
    "type (\"expense\" ou \"income\"), category (categoria geral como Alimentação, Transporte, etc), "
    "raw_description (descrição completa do recibo). Se não conseguir identificar algum campo, use null. "
    "Retorne APENAS o JSON, sem texto adicional."
)

RECEIPT_TOOL = {
    "type": "function",
    "function": {
        "name": "extract_receipt",
        "description": "Extract structured data from receipt image",
        "parameters": {
            "type": "object",
            "properties": {
                "date": {"type": "string", "description": "Date in YYYY-MM-DD format"},
                "merchant": {"type": "string", "description": "Name of the merchant/store"},
                "amount": {"type": "number", "description": "Total amount as number"},
                "type": {"type": "string", "enum": ["expense", "income"], "description": "Transaction type"},
                "category": {"type": "string", "description": "Category like Food, Transport, etc"},
                "raw_description": {"type": "string", "description": "Full description of the receipt"},
            },
            "required": ["date", "amount", "type"],
            "additionalProperties": False,
        },
    },
}


class AiGatewayError(RuntimeError):
    """Erro ao chamar o gateway de IA."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AiGatewayRateLimited(AiGatewayError):
    pass


class AiGatewayPaymentRequired(AiGatewayError):
    pass


async def extract_receipt(image_b64: str, mime_type: str = "image/jpeg") -> Dict[str, Any]:
    if not settings.AI_GATEWAY_API_KEY:
        raise AiGatewayError("AI_GATEWAY_API_KEY is not configured")

    body = {
        "model": settings.AI_GATEWAY_MODEL,
        "messages": [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": RECEIPT_PROMPT},
                    {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{image_b64}"}},
                ],
            }
        ],
        "tools": [RECEIPT_TOOL],
        "tool_choice": {"type": "function", "function": {"name": "extract_receipt"}},
    }
    headers = {"Authorization": f"Bearer {settings.AI_GATEWAY_API_KEY}"}

    try:
        async with httpx.AsyncClient(timeout=settings.AI_GATEWAY_TIMEOUT_S) as client:
            resp = await client.post(settings.AI_GATEWAY_URL, json=body, headers=headers)
    except httpx.RequestError as e:
        raise AiGatewayError(f"AI gateway request failed: {e}") from e

    if resp.status_code == 429:
        raise AiGatewayRateLimited("Rate limit exceeded. Please try again later.", 429)
    if resp.status_code == 402:
        raise AiGatewayPaymentRequired("Payment required. Please add credits to your AI workspace.", 402)
    if resp.is_error:
        raise AiGatewayError(f"AI gateway error: {resp.status_code}", resp.status_code)
    return resp.json()
