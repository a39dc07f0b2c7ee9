# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from finamanage.api.deps import AuthUser, get_current_user, get_db
from finamanage.clients.supabase_auth import SupabaseAuthError
from finamanage.services.accounts import delete_user_account

"""
Conta do usuário autenticado.


- `POST /account/delete` exclui a conta após reconfirmar a senha.
"""

router = APIRouter()


class DeleteAccountIn(BaseModel):
    password: Optional[str] = None
    reason: Optional[str] = Field(None, max_length=1000)

class DeleteAccountOut(BaseModel):
    success: bool
    message: str


@router.post("/delete", response_model=DeleteAccountOut, summary="Excluir conta")
async def delete_account(
    payload: DeleteAccountIn,
    user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    if not payload.password:
        raise HTTPException(status_code=400, detail="Password is required")
    try:
        return await delete_user_account(
            db, user_id=user.id, email=user.email, password=payload.password, reason=payload.reason,
        )
    except SupabaseAuthError as e:
        raise HTTPException(status_code=502, detail=str(e))
