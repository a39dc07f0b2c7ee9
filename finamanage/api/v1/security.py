# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from finamanage.clients.pwned_passwords import PwnedPasswordsError
from finamanage.services.passwords import check_leaked, password_policy

"""
Segurança de senha (usado no cadastro e na troca de senha).


- `POST /security/password-policy` regras + força da senha.
- `POST /security/leaked-password` consulta vazamentos (k-anonymity).
"""

router = APIRouter()


class PasswordIn(BaseModel):
    password: Optional[str] = None

class PolicyOut(BaseModel):
    is_valid: bool
    errors: List[str]
    strength: int
    label: str

class LeakedOut(BaseModel):
    leaked: bool
    count: Optional[int] = None
    message: Optional[str] = None


@router.post("/password-policy", response_model=PolicyOut, summary="Validar política de senha")
async def policy(payload: PasswordIn) -> Dict[str, Any]:
    return password_policy(payload.password or "")


@router.post("/leaked-password", response_model=LeakedOut, response_model_exclude_none=True,
             summary="Verificar senha em vazamentos")
async def leaked(payload: PasswordIn) -> Dict[str, Any]:
    if not payload.password:
        raise HTTPException(status_code=400, detail="Password is required")
    try:
        return await check_leaked(payload.password)
    except PwnedPasswordsError as e:
        raise HTTPException(status_code=502, detail=str(e))
