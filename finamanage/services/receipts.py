# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from pathlib import Path as FsPath
from typing import Any, Dict, Optional, Tuple
import base64
import json
import logging
import re
import secrets
import time
from fastapi import HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from finamanage.clients import ai_gateway, whatsapp
from finamanage.core.config import settings
from finamanage.services.whatsapp_commands import set_session

"""
Comprovantes: extração por IA e fluxo de confirmação pelo WhatsApp.


- `parse_ai_extraction()` interpreta a resposta do modelo (tool call ou texto com ```json```).
- `extract_from_base64()` faz UMA chamada ao gateway e devolve o objeto extraído.
- `process_whatsapp_receipt()` baixa a mídia, salva em disco, extrai, grava
  `receipt_uploads` e pede confirmação com 3 botões.
"""

log = logging.getLogger("receipts")

_FENCE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```")

CONFIRM_BUTTONS = [
    {"id": "confirm_receipt", "title": "✅ Confirmar"},
    {"id": "edit_receipt", "title": "✏️ Editar"},
    {"id": "cancel_receipt", "title": "❌ Cancelar"},
]

_MEDIA = {
    "image": ("image/jpeg", "jpg"),
    "document": ("application/pdf", "pdf"),
}


def parse_ai_extraction(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Ordem: argumentos da tool call (string ou objeto) -> conteúdo da mensagem
    (com ou sem cercas Markdown). Falha vira {"error", "raw_description"}.
    """
    choices = payload.get("choices") or []
    message = (choices[0].get("message") or {}) if choices else {}

    tool_calls = message.get("tool_calls") or []
    if tool_calls:
        args = (tool_calls[0].get("function") or {}).get("arguments")
        if isinstance(args, dict):
            return args
        if isinstance(args, str) and args.strip():
            try:
                parsed = json.loads(args)
                if isinstance(parsed, dict):
                    return parsed
            except ValueError:
                log.warning("argumentos da tool call não são JSON válido")

    content = message.get("content") or ""
    match = _FENCE.search(content)
    candidate = match.group(1) if match else content
    try:
        parsed = json.loads(candidate)
    except ValueError:
        log.warning("falha ao interpretar resposta da IA")
        return {"error": "Failed to parse receipt data", "raw_description": content}
    if not isinstance(parsed, dict):
        return {"error": "Failed to parse receipt data", "raw_description": content}
    return parsed


async def extract_from_base64(image_b64: str, mime_type: str = "image/jpeg") -> Dict[str, Any]:
    log.info("chamando gateway de IA para extração de comprovante")
    raw = await ai_gateway.extract_receipt(image_b64, mime_type)
    return parse_ai_extraction(raw)


def _safe_filename(ext: str) -> str:
    ts = int(time.time() * 1000)
    rand = secrets.token_hex(6)
    return f"{ts}_{rand}.{ext}"


def media_of(message: Dict[str, Any]) -> Tuple[str, str, str]:
    """(media_id, mime_type, extensão) de uma mensagem image/document."""
    kind = message.get("type")
    if kind not in _MEDIA:
        raise HTTPException(status_code=400, detail=f"Unsupported message type: {kind}")
    media = message.get(kind) or {}
    media_id = media.get("id")
    if not media_id:
        raise HTTPException(status_code=400, detail="Missing media id")
    default_mime, ext = _MEDIA[kind]
    return media_id, media.get("mime_type") or default_mime, ext


def save_receipt_file(profile_id: str, content: bytes, ext: str) -> FsPath:
    receipt_dir = FsPath(settings.UPLOAD_DIR) / "receipts" / profile_id
    receipt_dir.mkdir(parents=True, exist_ok=True)
    disk_path = receipt_dir / _safe_filename(ext)
    disk_path.write_bytes(content)
    return disk_path


def confirmation_text(data: Dict[str, Any]) -> str:
    kind = "Despesa" if data.get("type") == "expense" else "Receita"
    return ("📄 *Comprovante Recebido!*\n\n"
            f"💰 Valor: R$ {data.get('amount') or 'N/D'}\n"
            f"📅 Data: {data.get('date') or 'N/D'}\n"
            f"🏪 Local: {data.get('merchant') or 'N/D'}\n"
            f"📊 Categoria: {data.get('category') or 'N/D'}\n"
            f"📍 Tipo: {kind}\n\n"
            "Os dados estão corretos?")


async def process_whatsapp_receipt(
    db: AsyncSession,
    *,
    session_id: str,
    profile_id: str,
    message: Dict[str, Any],
    sender: str,
) -> Dict[str, Any]:
    media_id, mime_type, ext = media_of(message)
    log.info("processando comprovante (%s) da sessão %s", message.get("type"), session_id)

    url = await whatsapp.get_media_url(media_id)
    content = await whatsapp.download_media(url)
    disk_path = save_receipt_file(profile_id, content, ext)

    extracted = await extract_from_base64(base64.b64encode(content).decode("ascii"), mime_type)

    res = await db.execute(text("""
        INSERT INTO receipt_uploads (profile_id, file_path, extracted_data, status)
        VALUES (CAST(:pid AS uuid), :path, CAST(:data AS jsonb), 'pending_confirmation')
        RETURNING id
    """), {"pid": profile_id, "path": str(disk_path), "data": json.dumps(extracted, default=str)})
    receipt_id: Optional[Any] = res.scalar()
    if not receipt_id:
        raise HTTPException(status_code=500, detail="Falha ao registrar comprovante")
    receipt_id = str(receipt_id)

    await set_session(db, session_id, "awaiting_confirmation",
                      {"receiptId": receipt_id, "extractedData": extracted})
    await db.commit()

    await whatsapp.send_buttons(sender, confirmation_text(extracted), CONFIRM_BUTTONS)
    log.info("comprovante %s aguardando confirmação", receipt_id)
    return {"receipt_id": receipt_id, "file_path": str(disk_path), "extracted_data": extracted}
