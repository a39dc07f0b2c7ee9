# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from finamanage.core.config import settings

"""
Conexão assíncrona com o Postgres gerenciado (Supabase).


- Exige driver asyncpg (`postgresql+asyncpg://`).
- Atrás do pooler do Supabase (PgBouncer, modo transação) o cache de
  prepared statements do asyncpg precisa ficar desligado: `DB_PGBOUNCER=true`.
- `SessionLocal` abre uma sessão por requisição (ver `api/deps.get_db`).
"""

if not settings.DATABASE_URL.startswith("postgresql+asyncpg://"):
    raise RuntimeError("DATABASE_URL deve usar o prefixo 'postgresql+asyncpg://' para driver assíncrono.")

_connect_args = {"statement_cache_size": 0} if settings.DB_PGBOUNCER else {}

engine = create_async_engine(
    settings.DATABASE_URL,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_timeout=settings.DB_POOL_TIMEOUT,
    pool_pre_ping=True,
    connect_args=_connect_args,
)

SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
