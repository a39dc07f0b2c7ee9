# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from typing import Any, Dict, List, Optional
import httpx
from finamanage.core.config import settings

"""
Client HTTP (WhatsApp Cloud API / Graph API).


- `send_text(to, body)` e `send_buttons(to, body, buttons)` enviam mensagens.
- `get_media_url(media_id)` + `download_media(url)` baixam comprovantes recebidos.
- Falhas de rede ou status não-2xx viram `WhatsAppHttpError`.
"""


class WhatsAppHttpError(RuntimeError):
    """Erro HTTP ao chamar a API do WhatsApp."""


def _auth_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {settings.WHATSAPP_ACCESS_TOKEN}"}


async def send_message(payload: Dict[str, Any]) -> Dict[str, Any]:
    url = f"{settings.WHATSAPP_API_BASE_URL}/{settings.WHATSAPP_PHONE_NUMBER_ID}/messages"
    try:
        async with httpx.AsyncClient(timeout=settings.WHATSAPP_TIMEOUT_S) as client:
            resp = await client.post(url, json=payload, headers=_auth_headers())
            resp.raise_for_status()
            return resp.json()
    except (httpx.RequestError, httpx.HTTPStatusError) as e:
        raise WhatsAppHttpError(f"WhatsApp API error: {e}") from e


async def send_text(to: str, body: str) -> Dict[str, Any]:
    return await send_message({
        "messaging_product": "whatsapp",
        "to": to,
        "type": "text",
        "text": {"body": body},
    })


async def send_buttons(to: str, body: str, buttons: List[Dict[str, str]]) -> Dict[str, Any]:
    """
    `buttons`: lista de {"id": ..., "title": ...} (máx. 3, limite da API).
    """
    return await send_message({
        "messaging_product": "whatsapp",
        "to": to,
        "type": "interactive",
        "interactive": {
            "type": "button",
            "body": {"text": body},
            "action": {
                "buttons": [
                    {"type": "reply", "reply": {"id": b["id"], "title": b["title"]}}
                    for b in buttons[:3]
                ]
            },
        },
    })


def message_id(response: Dict[str, Any]) -> Optional[str]:
    messages = response.get("messages") or []
    return messages[0].get("id") if messages else None


async def get_media_url(media_id: str) -> str:
    try:
        async with httpx.AsyncClient(timeout=settings.WHATSAPP_TIMEOUT_S) as client:
            resp = await client.get(f"{settings.WHATSAPP_API_BASE_URL}/{media_id}", headers=_auth_headers())
            resp.raise_for_status()
            data = resp.json()
    except (httpx.RequestError, httpx.HTTPStatusError) as e:
        raise WhatsAppHttpError(f"WhatsApp media lookup failed: {e}") from e

    url = data.get("url")
    if not url:
        raise WhatsAppHttpError(f"WhatsApp media {media_id} sem URL")
    return url


async def download_media(url: str) -> bytes:
    try:
        async with httpx.AsyncClient(timeout=settings.WHATSAPP_TIMEOUT_S) as client:
            resp = await client.get(url, headers=_auth_headers())
            resp.raise_for_status()
            return resp.content
    except (httpx.RequestError, httpx.HTTPStatusError) as e:
        raise WhatsAppHttpError(f"WhatsApp media download failed: {e}") from e
