import os
import tempfile

os.environ["INTERNAL_SERVICE_TOKEN"] = "internal-token"
os.environ["N8N_WEBHOOK_TOKEN"] = "n8n-token"
os.environ["ASAAS_WEBHOOK_TOKEN"] = "asaas-token"
os.environ["WHATSAPP_VERIFY_TOKEN"] = "verify-token"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="finamanage-uploads-")

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from finamanage.api import deps
from finamanage.clients import whatsapp
from finamanage.core.config import settings
from finamanage.main import start_server
from finamanage.utils.rate_limit import limiter

PROFILE_ID = "5f0c6a52-3b1f-4c7e-9a52-0d2b8c1e7f44"


class FakeResult:
    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None, scalar: Any = None):
        self._rows = [dict(r) for r in rows or []]
        self._scalar = scalar

    def mappings(self):
        return self

    def first(self):
        return self._rows[0] if self._rows else None

    def all(self):
        return list(self._rows)

    def scalar(self):
        if self._scalar is not None:
            return self._scalar
        if self._rows:
            return next(iter(self._rows[0].values()))
        return None

    def scalar_one(self):
        value = self.scalar()
        if value is None:
            raise LookupError("no rows")
        return value


class FakeSavepoint:
    """`async with db.begin_nested()`: conta savepoints abertos e desfeitos."""

    def __init__(self, session):
        self.session = session

    async def __aenter__(self):
        self.session.savepoints += 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.session.savepoint_rollbacks += 1
        return False


class FakeSession:
    """
    AsyncSession de mentira: cada SQL executado é comparado (espaços normalizados)
    com os fragmentos registrados em `on()`; o primeiro que casar responde.
    """

    def __init__(self):
        self._responses = []
        self.calls = []
        self.commits = 0
        self.rollbacks = 0
        self.savepoints = 0
        self.savepoint_rollbacks = 0

    def on(self, fragment: str, rows=None, *, scalar: Any = None,
           fn: Optional[Callable[[Dict[str, Any]], Any]] = None, error: Optional[Exception] = None):
        self._responses.append((fragment, rows, scalar, fn, error))
        return self

    async def execute(self, statement, params=None):
        sql = " ".join(str(statement).split())
        params = params or {}
        self.calls.append((sql, params))
        for fragment, rows, scalar, fn, error in self._responses:
            if fragment not in sql:
                continue
            if error is not None:
                raise error
            if fn is not None:
                out = fn(params)
                return out if isinstance(out, FakeResult) else FakeResult(out)
            return FakeResult(rows, scalar)
        return FakeResult()

    def begin_nested(self):
        return FakeSavepoint(self)

    async def commit(self):
        self.commits += 1

    async def rollback(self):
        self.rollbacks += 1

    def executed(self, fragment: str) -> List[Dict[str, Any]]:
        return [p for sql, p in self.calls if fragment in sql]


@pytest.fixture
def db():
    return FakeSession()


@pytest.fixture
def client(db):
    async def _get_db():
        yield db

    start_server.dependency_overrides[deps.get_db] = _get_db
    limiter.reset()
    try:
        yield TestClient(start_server)
    finally:
        start_server.dependency_overrides.clear()


@pytest.fixture
def auth_header():
    def make(user_id: str = PROFILE_ID, email: str = "ana@example.com") -> Dict[str, str]:
        claims = {
            "sub": user_id,
            "email": email,
            "aud": settings.SUPABASE_JWT_AUDIENCE,
            "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
        }
        token = jwt.encode(claims, settings.SUPABASE_JWT_SECRET, algorithm="HS256")
        return {"Authorization": f"Bearer {token}"}
    return make


@pytest.fixture
def internal_header():
    return {"X-Internal-Token": settings.INTERNAL_SERVICE_TOKEN}


@pytest.fixture
def sent(monkeypatch):
    """Captura mensagens enviadas ao WhatsApp (texto e botões)."""
    outbox: List[Dict[str, Any]] = []

    async def fake_send_text(to, body):
        outbox.append({"to": to, "body": body})
        return {"messages": [{"id": f"wamid.{len(outbox)}"}]}

    async def fake_send_buttons(to, body, buttons):
        outbox.append({"to": to, "body": body, "buttons": buttons})
        return {"messages": [{"id": f"wamid.{len(outbox)}"}]}

    monkeypatch.setattr(whatsapp, "send_text", fake_send_text)
    monkeypatch.setattr(whatsapp, "send_buttons", fake_send_buttons)
    return outbox
