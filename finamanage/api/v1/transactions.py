# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from typing import Any, Dict, List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from finamanage.api.deps import AuthUser, get_current_user, get_db
from finamanage.core.config import settings
from finamanage.services.categorizer import categorize_transactions
from finamanage.services.statement_import import import_statement

"""
Transações do usuário autenticado.


- `POST /transactions/categorize` categoriza por palavras-chave uma lista de ids.
- `POST /transactions/import` importa extrato CSV/OFX (multipart, até MAX_IMPORT_MB).
"""

router = APIRouter()


class CategorizeIn(BaseModel):
    profile_id: UUID
    transaction_ids: List[UUID] = Field(..., max_length=1000)

class CategorizeOut(BaseModel):
    status: str
    categorized_count: int
    unclassified_count: int
    skipped_count: int
    needs_review_ids: List[str]
    total: int

class ImportSummary(BaseModel):
    total_rows: int
    inserted: int
    duplicates: int
    failed_rows: int
    errors: List[str]

class ImportOut(BaseModel):
    success: bool
    summary: ImportSummary
    message: str


@router.post("/categorize", response_model=CategorizeOut, summary="Categorizar transações")
async def categorize(
    payload: CategorizeIn,
    user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    if str(payload.profile_id) != user.id:
        raise HTTPException(status_code=403, detail="Unauthorized: profile_id mismatch")
    ids = [str(t) for t in payload.transaction_ids]
    return await categorize_transactions(db, user.id, ids)


@router.post("/import", response_model=ImportOut, summary="Importar extrato (CSV/OFX)")
async def import_file(
    file: Optional[UploadFile] = File(None, description="Extrato .csv ou .ofx"),
    user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    if file is None:
        raise HTTPException(status_code=400, detail="No file provided")

    max_bytes = settings.MAX_IMPORT_MB * 1024 * 1024
    chunks: List[bytes] = []
    size = 0
    while True:
        chunk = await file.read(1024 * 1024)  # 1MB
        if not chunk:
            break
        size += len(chunk)
        if size > max_bytes:
            raise HTTPException(status_code=400, detail=f"File size exceeds {settings.MAX_IMPORT_MB}MB limit")
        chunks.append(chunk)

    content = b"".join(chunks).decode("utf-8-sig", errors="replace")
    return await import_statement(db, user.id, file.filename or "upload.csv", content)
