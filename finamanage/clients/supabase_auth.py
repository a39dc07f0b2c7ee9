# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
import httpx
from finamanage.core.config import settings

"""
Client HTTP (Supabase Auth / GoTrue).


- `verify_password(email, password)` confirma a senha via grant `password`.
- `delete_user(user_id)` remove o usuário pela API admin (service role).
"""


class SupabaseAuthError(RuntimeError):
    """Erro HTTP ao chamar o Supabase Auth."""


async def verify_password(email: str, password: str) -> bool:
    """True quando o login com a senha informada é aceito; False para credenciais inválidas."""
    url = f"{settings.SUPABASE_URL}/auth/v1/token"
    try:
        async with httpx.AsyncClient(timeout=settings.SUPABASE_TIMEOUT_S) as client:
            resp = await client.post(
                url,
                params={"grant_type": "password"},
                json={"email": email, "password": password},
                headers={"apikey": settings.SUPABASE_ANON_KEY},
            )
    except httpx.RequestError as e:
        raise SupabaseAuthError(f"Supabase auth request failed: {e}") from e

    if resp.status_code in (400, 401):
        return False
    if resp.is_error:
        raise SupabaseAuthError(f"Supabase auth error: {resp.status_code}")
    return True


async def delete_user(user_id: str) -> None:
    key = settings.SUPABASE_SERVICE_ROLE_KEY
    url = f"{settings.SUPABASE_URL}/auth/v1/admin/users/{user_id}"
    try:
        async with httpx.AsyncClient(timeout=settings.SUPABASE_TIMEOUT_S) as client:
            resp = await client.delete(url, headers={"apikey": key, "Authorization": f"Bearer {key}"})
            resp.raise_for_status()
    except (httpx.RequestError, httpx.HTTPStatusError) as e:
        raise SupabaseAuthError(f"Failed to delete auth user: {e}") from e
