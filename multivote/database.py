"""
Async database utilities shared by all services.
Uses asyncpg for non-blocking PostgreSQL access with connection pooling.
"""
import os
import logging
from contextlib import asynccontextmanager

import asyncpg

logger = logging.getLogger(__name__)

# Idempotent schema. Uniqueness that the core depends on lives here:
#   votes (voter_id, category_id)            one vote per voter per category
#   users_roles (instance_id) WHERE admin     one admin per instance
#   users_roles (user_id) WHERE admin         one admin role per account
#   voters (instance_id, email)              email unique within an instance
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS election_instances (
    id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name            TEXT NOT NULL,
    status          TEXT NOT NULL DEFAULT 'draft'
                    CHECK (status IN ('draft', 'active', 'paused', 'completed', 'archived')),
    primary_color   TEXT NOT NULL DEFAULT '#22c55e',
    secondary_color TEXT NOT NULL DEFAULT '#1f2937',
    accent_color    TEXT NOT NULL DEFAULT '#eab308',
    created_by      UUID NULL,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
    started_at      TIMESTAMPTZ NULL,
    ended_at        TIMESTAMPTZ NULL
);

CREATE TABLE IF NOT EXISTS accounts (
    id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    email       TEXT NOT NULL UNIQUE,
    secret_hash TEXT NOT NULL,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS users_roles (
    id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id     UUID NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
    role        TEXT NOT NULL CHECK (role IN ('super_admin', 'admin', 'observer')),
    instance_id UUID NULL REFERENCES election_instances(id) ON DELETE CASCADE,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT users_roles_scope CHECK (
        (role = 'super_admin' AND instance_id IS NULL)
        OR (role = 'observer' AND instance_id IS NOT NULL)
        OR role = 'admin'
    ),
    CONSTRAINT users_roles_user_instance UNIQUE (user_id, instance_id)
);
CREATE UNIQUE INDEX IF NOT EXISTS users_roles_one_admin_per_instance
    ON users_roles (instance_id) WHERE role = 'admin' AND instance_id IS NOT NULL;
CREATE UNIQUE INDEX IF NOT EXISTS users_roles_one_admin_role_per_user
    ON users_roles (user_id) WHERE role = 'admin';
CREATE UNIQUE INDEX IF NOT EXISTS users_roles_one_super_admin_role_per_user
    ON users_roles (user_id) WHERE role = 'super_admin';

CREATE TABLE IF NOT EXISTS voters (
    id                    UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    instance_id           UUID NOT NULL REFERENCES election_instances(id) ON DELETE CASCADE,
    full_name             TEXT NOT NULL,
    email                 TEXT NOT NULL,
    is_registered         BOOLEAN NOT NULL DEFAULT FALSE,
    registered_at         TIMESTAMPTZ NULL,
    account_id            UUID NULL REFERENCES accounts(id) ON DELETE SET NULL,
    login_code            CHAR(6) NULL,
    login_code_expires_at TIMESTAMPTZ NULL,
    created_at            TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT voters_instance_email UNIQUE (instance_id, email)
);
CREATE INDEX IF NOT EXISTS voters_email_idx ON voters (email);

CREATE TABLE IF NOT EXISTS otp_send_log (
    email        TEXT PRIMARY KEY,
    last_sent_at TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS categories (
    id            UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    instance_id   UUID NOT NULL REFERENCES election_instances(id) ON DELETE CASCADE,
    name          TEXT NOT NULL,
    description   TEXT NULL,
    display_order INTEGER NOT NULL DEFAULT 0,
    created_at    TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS candidates (
    id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    category_id UUID NOT NULL REFERENCES categories(id) ON DELETE CASCADE,
    full_name   TEXT NOT NULL,
    description TEXT NULL,
    photo_url   TEXT NULL,
    program_url TEXT NULL,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS votes (
    id           UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    voter_id     UUID NOT NULL REFERENCES voters(id) ON DELETE CASCADE,
    candidate_id UUID NOT NULL REFERENCES candidates(id) ON DELETE CASCADE,
    category_id  UUID NOT NULL REFERENCES categories(id) ON DELETE CASCADE,
    instance_id  UUID NOT NULL REFERENCES election_instances(id) ON DELETE CASCADE,
    created_at   TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT votes_one_per_category UNIQUE (voter_id, category_id)
);
CREATE INDEX IF NOT EXISTS votes_instance_idx ON votes (instance_id, created_at);
"""


class Database:
    """Async database connection pool manager."""

    _pool: asyncpg.Pool | None = None

    @classmethod
    async def get_pool(cls) -> asyncpg.Pool:
        """Return the existing pool or create one lazily."""
        if cls._pool is None:
            cls._pool = await asyncpg.create_pool(
                host=os.getenv("DB_HOST", "postgres"),
                port=int(os.getenv("DB_PORT", "5432")),
                database=os.getenv("DB_NAME", "multivote"),
                user=os.getenv("DB_USER", "multivote"),
                password=os.getenv("DB_PASSWORD", "multivote"),
                min_size=int(os.getenv("DB_POOL_MIN", "2")),
                max_size=int(os.getenv("DB_POOL_MAX", "20")),
            )
        return cls._pool

    @classmethod
    async def close(cls) -> None:
        """Gracefully close the pool (called on app shutdown)."""
        if cls._pool is not None:
            await cls._pool.close()
            cls._pool = None

    @classmethod
    async def ensure_schema(cls) -> None:
        """Apply the idempotent schema; safe to run from every service at startup."""
        async with cls.connection() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("Database schema verified")

    @classmethod
    @asynccontextmanager
    async def connection(cls):
        """Acquire a connection from the pool (auto-released on exit)."""
        pool = await cls.get_pool()
        async with pool.acquire() as conn:
            yield conn

    @classmethod
    @asynccontextmanager
    async def transaction(cls):
        """Acquire a connection and open a transaction (auto-committed/rolled-back)."""
        pool = await cls.get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                yield conn
