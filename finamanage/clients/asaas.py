# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from typing import Any, Dict, List, Optional
import httpx
from finamanage.core.config import settings

"""
Client HTTP (Asaas – clientes, assinaturas e cobranças).


- Header `access_token` com a chave da conta.
- Erros de negócio do Asaas (`errors[0].description`) viram `AsaasHttpError`.
- Sem retry/idempotência: cada chamada é repassada uma única vez.
"""


class AsaasHttpError(RuntimeError):
    """Erro HTTP ao consultar o Asaas."""


def _headers() -> Dict[str, str]:
    if not settings.ASAAS_API_KEY:
        raise AsaasHttpError("ASAAS_API_KEY not configured")
    return {"access_token": settings.ASAAS_API_KEY}


def _error_message(resp: httpx.Response, fallback: str) -> str:
    try:
        data = resp.json()
    except ValueError:
        return fallback
    errors = data.get("errors") if isinstance(data, dict) else None
    if errors:
        return errors[0].get("description") or fallback
    return fallback


async def _request(method: str, path: str, *, fallback: str, json: Optional[Dict[str, Any]] = None,
                   params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    url = f"{settings.ASAAS_API_URL}{path}"
    try:
        async with httpx.AsyncClient(timeout=settings.ASAAS_TIMEOUT_S) as client:
            resp = await client.request(method, url, json=json, params=params, headers=_headers())
    except httpx.RequestError as e:
        raise AsaasHttpError(f"Asaas request failed: {e}") from e

    if resp.is_error:
        raise AsaasHttpError(_error_message(resp, fallback))
    return resp.json() if resp.content else {}


async def create_customer(*, name: str, email: str, phone: str, cpf: str, external_reference: str) -> Dict[str, Any]:
    return await _request("POST", "/customers", fallback="Erro ao criar cliente", json={
        "name": name,
        "email": email,
        "phone": phone,
        "cpfCnpj": cpf,
        "externalReference": external_reference,
    })


async def create_subscription(payload: Dict[str, Any]) -> Dict[str, Any]:
    return await _request("POST", "/subscriptions", fallback="Erro ao criar assinatura", json=payload)


async def cancel_subscription(subscription_id: str) -> Dict[str, Any]:
    return await _request("DELETE", f"/subscriptions/{subscription_id}", fallback="Erro ao cancelar assinatura")


async def list_subscription_payments(subscription_id: str) -> List[Dict[str, Any]]:
    data = await _request("GET", "/payments", fallback="Erro ao listar cobranças",
                          params={"subscription": subscription_id})
    return data.get("data") or []


async def get_payment(payment_id: str) -> Dict[str, Any]:
    return await _request("GET", f"/payments/{payment_id}", fallback="Erro ao consultar status do pagamento")


async def get_pix_qrcode(payment_id: str) -> Optional[Dict[str, Any]]:
    """QR Code PIX da cobrança; None quando o Asaas não devolve (ex.: ainda não gerado)."""
    try:
        return await _request("GET", f"/payments/{payment_id}/pixQrCode", fallback="Erro ao obter QR Code")
    except AsaasHttpError:
        return None
