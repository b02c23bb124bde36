#!/usr/bin/env python3
"""Seed an agency owner and two individual brokers for local affiliation testing."""

import asyncio
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from simsar.database import init_pool, init_db, get_connection, close_pool
from simsar.core.services.auth import create_access_token, hash_password
from simsar.config import load_settings

PASSWORD = "broker123!"
AGENCY_NAME = "Palm Realty"
OWNER = ("owner@palmrealty.test", "Layla Haddad", "Palm Realty")
BROKERS = [
    ("sara@brokers.test", "Sara Nasser", "Sara Homes"),
    ("omar@brokers.test", "Omar Farouk", "Farouk Properties"),
]


async def _upsert_broker(conn, email: str, name: str, company_name: str):
    user = await conn.fetchrow(
        """
        INSERT INTO users (email, password_hash, role, is_active)
        VALUES ($1, $2, 'broker', true)
        ON CONFLICT (email) DO UPDATE
            SET password_hash = EXCLUDED.password_hash,
                role = 'broker',
                is_active = true
        RETURNING id
        """,
        email,
        hash_password(PASSWORD),
    )
    await conn.execute(
        """
        INSERT INTO broker_profiles (user_id, name, company_name)
        VALUES ($1, $2, $3)
        ON CONFLICT (user_id) DO UPDATE
            SET name = EXCLUDED.name
        """,
        user["id"],
        name,
        company_name,
    )
    return user["id"]


async def seed():
    settings = load_settings()
    await init_pool(settings.database_url)
    await init_db()

    accounts = []
    async with get_connection() as conn:
        async with conn.transaction():
            owner_id = await _upsert_broker(conn, *OWNER)
            accounts.append((OWNER[0], owner_id))

            agency = await conn.fetchrow(
                """
                INSERT INTO agencies (owner_user_id, name)
                VALUES ($1, $2)
                ON CONFLICT (owner_user_id) DO UPDATE
                    SET name = EXCLUDED.name
                RETURNING id
                """,
                owner_id,
                AGENCY_NAME,
            )

            for email, name, company_name in BROKERS:
                accounts.append((email, await _upsert_broker(conn, email, name, company_name)))

    print("=== Affiliation Demo Seeded ===")
    print(f"  Agency:    {AGENCY_NAME} ({agency['id']})")
    print(f"  Password:  {PASSWORD}")
    for email, user_id in accounts:
        token = create_access_token(user_id, email, "broker")
        print(f"  {email}")
        print(f"    Bearer {token}")

    await close_pool()


if __name__ == "__main__":
    asyncio.run(seed())
