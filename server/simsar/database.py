from contextlib import asynccontextmanager
from typing import Optional

import asyncpg

_pool: Optional[asyncpg.Pool] = None


async def init_pool(database_url: str):
    """Initialize the connection pool."""
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(database_url, min_size=2, max_size=10)
    return _pool


async def get_pool() -> asyncpg.Pool:
    """Get the existing connection pool."""
    global _pool
    if _pool is None:
        raise RuntimeError("Database pool not initialized. Call init_pool first.")
    return _pool


async def close_pool():
    """Close the connection pool."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None


@asynccontextmanager
async def get_connection():
    """Get a database connection from the pool."""
    pool = await get_pool()
    async with pool.acquire() as conn:
        yield conn


async def init_db():
    """Create tables if they don't exist."""
    async with get_connection() as conn:
        # Users table (auth is issued elsewhere; rows are only read here)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                email VARCHAR(255) NOT NULL UNIQUE,
                password_hash VARCHAR(255) NOT NULL,
                role VARCHAR(20) NOT NULL CHECK (role IN ('admin', 'user', 'broker')),
                is_active BOOLEAN DEFAULT true,
                created_at TIMESTAMPTZ DEFAULT NOW()
            )
        """)

        # Agencies table
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS agencies (
                id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                owner_user_id UUID NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
                name VARCHAR(255) NOT NULL,
                created_at TIMESTAMPTZ DEFAULT NOW()
            )
        """)

        # Broker profiles (affiliation registry)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS broker_profiles (
                id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                user_id UUID NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
                name VARCHAR(255) NOT NULL,
                agency_id UUID REFERENCES agencies(id) ON DELETE SET NULL,
                affiliation_type VARCHAR(20) NOT NULL DEFAULT 'individual'
                    CHECK (affiliation_type IN ('individual', 'agency_broker')),
                company_name VARCHAR(255),
                previous_company_name VARCHAR(255),
                created_at TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ DEFAULT NOW(),
                CONSTRAINT broker_profiles_affiliation_consistent CHECK (
                    (agency_id IS NULL AND affiliation_type = 'individual')
                    OR (agency_id IS NOT NULL AND affiliation_type = 'agency_broker')
                )
            )
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_broker_profiles_agency_id ON broker_profiles(agency_id)
        """)

        # Email invites
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS agency_invites (
                id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                agency_id UUID NOT NULL REFERENCES agencies(id) ON DELETE CASCADE,
                email VARCHAR(255) NOT NULL,
                code VARCHAR(64) NOT NULL UNIQUE,
                status VARCHAR(20) NOT NULL DEFAULT 'pending'
                    CHECK (status IN ('pending', 'accepted', 'expired')),
                invited_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                expires_at TIMESTAMPTZ NOT NULL,
                accepted_at TIMESTAMPTZ,
                accepted_by_broker_id UUID REFERENCES broker_profiles(id) ON DELETE SET NULL
            )
        """)
        await conn.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_agency_invites_pending
            ON agency_invites(agency_id, lower(email))
            WHERE status = 'pending'
        """)

        # Broker-initiated join requests
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS agency_join_requests (
                id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                agency_id UUID NOT NULL REFERENCES agencies(id) ON DELETE CASCADE,
                broker_id UUID NOT NULL REFERENCES broker_profiles(id) ON DELETE CASCADE,
                message TEXT,
                status VARCHAR(20) NOT NULL DEFAULT 'pending'
                    CHECK (status IN ('pending', 'approved', 'rejected')),
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                decided_at TIMESTAMPTZ
            )
        """)
        await conn.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_agency_join_requests_pending
            ON agency_join_requests(agency_id, broker_id)
            WHERE status = 'pending'
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_agency_join_requests_broker
            ON agency_join_requests(broker_id, status)
        """)

        # Agency-initiated recruitment offers
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS recruitment_offers (
                id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                agency_id UUID NOT NULL REFERENCES agencies(id) ON DELETE CASCADE,
                broker_id UUID NOT NULL REFERENCES broker_profiles(id) ON DELETE CASCADE,
                message TEXT,
                status VARCHAR(20) NOT NULL DEFAULT 'pending'
                    CHECK (status IN ('pending', 'accepted', 'declined', 'expired')),
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                expires_at TIMESTAMPTZ NOT NULL,
                decided_at TIMESTAMPTZ
            )
        """)
        await conn.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_recruitment_offers_pending
            ON recruitment_offers(agency_id, broker_id)
            WHERE status = 'pending'
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_recruitment_offers_broker
            ON recruitment_offers(broker_id, status)
        """)
