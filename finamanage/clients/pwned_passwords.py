# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
import httpx
from finamanage.core.config import settings

"""
Client HTTP (Have I Been Pwned – Pwned Passwords, k-anonymity).


- `fetch_range(prefix)` envia só os 5 primeiros caracteres do SHA-1.
- Retorna o corpo texto bruto (`SUFIXO:contagem` por linha).
"""


class PwnedPasswordsError(RuntimeError):
    """Erro HTTP ao consultar a base de senhas vazadas."""


async def fetch_range(prefix: str) -> str:
    if len(prefix) != 5:
        raise ValueError("prefix must have exactly 5 hex chars")

    try:
        async with httpx.AsyncClient(timeout=settings.PWNED_TIMEOUT_S) as client:
            resp = await client.get(f"{settings.PWNED_PASSWORDS_URL}/{prefix}", headers={"Add-Padding": "true"})
            resp.raise_for_status()
            return resp.text
    except (httpx.RequestError, httpx.HTTPStatusError) as e:
        raise PwnedPasswordsError("Failed to check password against breach database") from e
