# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import json
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

"""
Registro de eventos de negócio em `events_logs` (auditoria).
"""

async def log_event(db: AsyncSession, profile_id: Optional[str], event_type: str, payload: Dict[str, Any]) -> None:
    body = {**payload, "timestamp": datetime.now(timezone.utc).isoformat()}
    await db.execute(text("""
        INSERT INTO events_logs (profile_id, event_type, payload)
        VALUES (CAST(:pid AS uuid), :etype, CAST(:payload AS jsonb))
    """), {"pid": profile_id, "etype": event_type, "payload": json.dumps(body, default=str)})
