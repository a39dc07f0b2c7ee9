# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from __future__ import annotations
from typing import Any, Dict, List
import hashlib
import logging
import re
from finamanage.clients import pwned_passwords

"""
Política de senha e verificação de vazamentos.


- `validate_password()` devolve TODAS as regras violadas (mensagens em português).
- `password_strength()` pontua 0–4; `STRENGTH_LABELS` traduz para texto.
- `check_leaked()` consulta o Pwned Passwords por k-anonymity (só o prefixo do SHA-1 sai daqui).
"""

log = logging.getLogger("security")

MIN_LENGTH = 8
MAX_LENGTH = 128

STRENGTH_LABELS = ["Muito fraca", "Fraca", "Média", "Forte", "Muito forte"]

_RULES = [
    (re.compile(r"[a-z]"), "A senha deve conter pelo menos uma letra minúscula"),
    (re.compile(r"[A-Z]"), "A senha deve conter pelo menos uma letra maiúscula"),
    (re.compile(r"[0-9]"), "A senha deve conter pelo menos um número"),
    (re.compile(r"[^a-zA-Z0-9]"), "A senha deve conter pelo menos um caractere especial"),
]


def validate_password(password: str) -> List[str]:
    errors: List[str] = []
    if len(password) < MIN_LENGTH:
        errors.append("A senha deve ter pelo menos 8 caracteres")
    if len(password) > MAX_LENGTH:
        errors.append("A senha deve ter no máximo 128 caracteres")
    for pattern, message in _RULES:
        if not pattern.search(password):
            errors.append(message)
    return errors


def password_strength(password: str) -> int:
    score = 0
    if len(password) >= 8:
        score += 1
    if len(password) >= 12:
        score += 1
    if re.search(r"[a-z]", password) and re.search(r"[A-Z]", password):
        score += 1
    if re.search(r"[0-9]", password):
        score += 1
    if re.search(r"[^a-zA-Z0-9]", password):
        score += 1
    return min(score, 4)


def password_policy(password: str) -> Dict[str, Any]:
    errors = validate_password(password)
    strength = password_strength(password)
    return {"is_valid": not errors, "errors": errors, "strength": strength, "label": STRENGTH_LABELS[strength]}


def find_suffix_count(range_body: str, suffix: str) -> int:
    """Contagem do sufixo na resposta `SUFIXO:contagem`; 0 quando ausente (linhas de padding têm contagem 0)."""
    for line in range_body.splitlines():
        hash_suffix, _, count = line.strip().partition(":")
        if hash_suffix.upper() == suffix:
            try:
                return int(count.strip())
            except ValueError:
                return 0
    return 0


async def check_leaked(password: str) -> Dict[str, Any]:
    digest = hashlib.sha1(password.encode("utf-8")).hexdigest().upper()
    prefix, suffix = digest[:5], digest[5:]
    body = await pwned_passwords.fetch_range(prefix)

    count = find_suffix_count(body, suffix)
    if count > 0:
        log.info("senha encontrada em base de vazamentos")
        return {
            "leaked": True,
            "count": count,
            "message": f"Esta senha foi encontrada em {count} vazamentos de dados. "
                       "Por favor, escolha uma senha mais segura.",
        }
    return {"leaked": False}
