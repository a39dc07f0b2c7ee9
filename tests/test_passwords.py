import asyncio
import hashlib

from finamanage.clients import pwned_passwords
from finamanage.services.passwords import (
    check_leaked,
    find_suffix_count,
    password_policy,
    password_strength,
    validate_password,
)


def test_validate_password_lists_every_violation():
    errors = validate_password("abc")
    assert errors == [
        "A senha deve ter pelo menos 8 caracteres",
        "A senha deve conter pelo menos uma letra maiúscula",
        "A senha deve conter pelo menos um número",
        "A senha deve conter pelo menos um caractere especial",
    ]
    assert "A senha deve ter no máximo 128 caracteres" in validate_password("Aa1!" * 40)
    assert validate_password("Str0ng!Passw0rd") == []


def test_password_strength():
    assert password_strength("") == 0
    assert password_strength("abcdefgh") == 1
    assert password_strength("Abcdefgh1") == 3
    assert password_strength("Str0ng!Passw0rd") == 4


def test_password_policy():
    assert password_policy("abcdefgh") == {
        "is_valid": False,
        "errors": [
            "A senha deve conter pelo menos uma letra maiúscula",
            "A senha deve conter pelo menos um número",
            "A senha deve conter pelo menos um caractere especial",
        ],
        "strength": 1,
        "label": "Fraca",
    }
    assert password_policy("Str0ng!Passw0rd")["label"] == "Muito forte"


def test_find_suffix_count():
    body = "0018A45C4D1DEF81644B54AB7F969B88D65:10\r\n00D4F6E8FA6EECAD2A3AA415EEC418D38EC:2\r\nABCDEF:0"
    assert find_suffix_count(body, "0018A45C4D1DEF81644B54AB7F969B88D65") == 10
    assert find_suffix_count(body.lower(), "00D4F6E8FA6EECAD2A3AA415EEC418D38EC") == 2
    assert find_suffix_count(body, "FFFF") == 0


def test_check_leaked_sends_only_prefix(monkeypatch):
    digest = hashlib.sha1(b"password").hexdigest().upper()
    seen = []

    async def fake_range(prefix):
        seen.append(prefix)
        return f"{digest[5:]}:42\nAAAA:1"

    monkeypatch.setattr(pwned_passwords, "fetch_range", fake_range)
    out = asyncio.run(check_leaked("password"))

    assert seen == [digest[:5]]
    assert out["leaked"] is True
    assert out["count"] == 42
    assert "42 vazamentos" in out["message"]


def test_check_not_leaked(monkeypatch):
    async def fake_range(prefix):
        return "AAAA:1\nBBBB:0"

    monkeypatch.setattr(pwned_passwords, "fetch_range", fake_range)
    assert asyncio.run(check_leaked("Str0ng!Passw0rd")) == {"leaked": False}


def test_security_endpoints(client, monkeypatch):
    resp = client.post("/api/v1/security/password-policy", json={"password": "Str0ng!Passw0rd"})
    assert resp.status_code == 200
    assert resp.json() == {"is_valid": True, "errors": [], "strength": 4, "label": "Muito forte"}

    missing = client.post("/api/v1/security/leaked-password", json={})
    assert missing.status_code == 400
    assert missing.json() == {"error": "Password is required"}

    async def fake_range(prefix):
        return ""

    monkeypatch.setattr(pwned_passwords, "fetch_range", fake_range)
    ok = client.post("/api/v1/security/leaked-password", json={"password": "whatever"})
    assert ok.json() == {"leaked": False}
