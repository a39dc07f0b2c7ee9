# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from typing import Any, Dict, Optional
import logging
from fastapi import HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from finamanage.clients import supabase_auth

"""
Contas financeiras e ciclo de vida da conta do usuário.


- `get_or_create_account()` devolve a conta usada por importações/WhatsApp.
- `delete_user_account()` confere a senha no Supabase Auth, registra o motivo,
  apaga o profile (cascade) e o usuário de autenticação.
"""

log = logging.getLogger("accounts")


async def get_or_create_account(
    db: AsyncSession,
    profile_id: str,
    *,
    provider: str,
    provider_account_id: str,
    account_type: str,
    any_provider: bool = False,
) -> str:
    """
    Retorna o id de uma conta do usuário. Com `any_provider=True` aceita qualquer
    conta existente (bot do WhatsApp); senão procura pelo `provider`.
    """
    if any_provider:
        sql = "SELECT id FROM accounts WHERE profile_id = CAST(:pid AS uuid) LIMIT 1"
    else:
        sql = "SELECT id FROM accounts WHERE profile_id = CAST(:pid AS uuid) AND provider = :provider LIMIT 1"
    res = await db.execute(text(sql), {"pid": profile_id, "provider": provider})
    existing = res.scalar()
    if existing:
        return str(existing)

    ins = await db.execute(text("""
        INSERT INTO accounts (profile_id, provider, provider_account_id, account_type, balance)
        VALUES (CAST(:pid AS uuid), :provider, :paid, :atype, 0)
        RETURNING id
    """), {"pid": profile_id, "provider": provider, "paid": provider_account_id, "atype": account_type})
    new_id = ins.scalar()
    if not new_id:
        raise HTTPException(status_code=500, detail="Failed to create account")
    log.info("conta %s criada (provider=%s)", new_id, provider)
    return str(new_id)


async def delete_user_account(
    db: AsyncSession,
    *,
    user_id: str,
    email: Optional[str],
    password: str,
    reason: Optional[str],
) -> Dict[str, Any]:
    if not email or not await supabase_auth.verify_password(email, password):
        log.info("verificação de senha falhou para exclusão de conta")
        raise HTTPException(status_code=401, detail="Senha incorreta")

    try:
        async with db.begin_nested():
            await db.execute(text("""
                INSERT INTO account_deletion_logs (profile_id, email, reason)
                VALUES (CAST(:pid AS uuid), :email, :reason)
            """), {"pid": user_id, "email": email, "reason": reason})
    except Exception:
        log.exception("falha ao registrar log de exclusão")

    await db.execute(text("DELETE FROM profiles WHERE id = CAST(:pid AS uuid)"), {"pid": user_id})
    await db.commit()

    await supabase_auth.delete_user(user_id)
    log.info("conta %s excluída", user_id)
    return {"success": True, "message": "Account deleted successfully"}
