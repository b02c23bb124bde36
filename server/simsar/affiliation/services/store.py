"""Proposal Store and Affiliation Registry data access.

All SQL for the affiliation tables lives here. Methods return asyncpg
records (or plain mappings from test doubles); callers index them by column
name. Status updates are guarded on ``status = 'pending'`` so a concurrent
decision can never be overwritten.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional
from uuid import UUID

import asyncpg

from .errors import Conflict

Row = Mapping[str, Any]

_BROKER_COLUMNS = """
    b.id, b.user_id, b.name, b.agency_id, b.affiliation_type,
    b.company_name, b.previous_company_name, b.updated_at
"""

_OFFER_COLUMNS = """
    o.id, o.agency_id, o.broker_id, o.message, o.status,
    o.created_at, o.expires_at, o.decided_at
"""

_JOIN_REQUEST_COLUMNS = """
    r.id, r.agency_id, r.broker_id, r.message, r.status,
    r.created_at, r.decided_at
"""

_INVITE_COLUMNS = """
    i.id, i.agency_id, i.email, i.code, i.status,
    i.invited_at, i.expires_at, i.accepted_at, i.accepted_by_broker_id
"""


class AffiliationStore:
    """Data access for one connection; open a transaction with ``transaction()``."""

    def __init__(self, conn):
        self._conn = conn

    def transaction(self):
        return self._conn.transaction()

    async def advisory_lock(self, key: str) -> None:
        await self._conn.execute("SELECT pg_advisory_xact_lock(hashtext($1::text))", key)

    # ─── Directory reads ─────────────────────────────────────

    async def get_agency(self, agency_id: UUID) -> Optional[Row]:
        return await self._conn.fetchrow(
            "SELECT id, owner_user_id, name FROM agencies WHERE id = $1",
            agency_id,
        )

    async def get_agency_by_owner(self, user_id: UUID) -> Optional[Row]:
        return await self._conn.fetchrow(
            "SELECT id, owner_user_id, name FROM agencies WHERE owner_user_id = $1",
            user_id,
        )

    async def is_agency_owner(self, user_id: UUID) -> bool:
        return bool(
            await self._conn.fetchval(
                "SELECT EXISTS(SELECT 1 FROM agencies WHERE owner_user_id = $1)",
                user_id,
            )
        )

    async def get_broker(self, broker_id: UUID) -> Optional[Row]:
        return await self._conn.fetchrow(
            f"SELECT {_BROKER_COLUMNS} FROM broker_profiles b WHERE b.id = $1",
            broker_id,
        )

    async def get_broker_by_user(self, user_id: UUID) -> Optional[Row]:
        return await self._conn.fetchrow(
            f"SELECT {_BROKER_COLUMNS} FROM broker_profiles b WHERE b.user_id = $1",
            user_id,
        )

    async def get_user_by_email(self, email: str) -> Optional[Row]:
        return await self._conn.fetchrow(
            """
            SELECT u.id, u.email, u.role, b.id AS broker_id
            FROM users u
            LEFT JOIN broker_profiles b ON b.user_id = u.id
            WHERE lower(u.email) = lower($1)
            """,
            email,
        )

    # ─── Affiliation registry ────────────────────────────────

    async def lock_broker(self, broker_id: UUID) -> Optional[Row]:
        """Load a broker row and hold its lock until the transaction ends."""
        return await self._conn.fetchrow(
            f"SELECT {_BROKER_COLUMNS} FROM broker_profiles b WHERE b.id = $1 FOR UPDATE",
            broker_id,
        )

    async def set_broker_affiliation(
        self,
        broker_id: UUID,
        agency_id: UUID,
        *,
        previous_company_name: Optional[str],
        now: datetime,
    ) -> Optional[Row]:
        return await self._conn.fetchrow(
            f"""
            UPDATE broker_profiles b
            SET agency_id = $2,
                affiliation_type = 'agency_broker',
                previous_company_name = $3,
                updated_at = $4
            WHERE b.id = $1
              AND b.agency_id IS NULL
            RETURNING {_BROKER_COLUMNS}
            """,
            broker_id,
            agency_id,
            previous_company_name,
            now,
        )

    async def clear_broker_affiliation(
        self,
        broker_id: UUID,
        agency_id: UUID,
        *,
        now: datetime,
    ) -> Optional[Row]:
        return await self._conn.fetchrow(
            f"""
            UPDATE broker_profiles b
            SET agency_id = NULL,
                affiliation_type = 'individual',
                company_name = COALESCE(b.previous_company_name, b.company_name),
                previous_company_name = NULL,
                updated_at = $3
            WHERE b.id = $1
              AND b.agency_id = $2
            RETURNING {_BROKER_COLUMNS}
            """,
            broker_id,
            agency_id,
            now,
        )

    async def list_agency_members(self, agency_id: UUID) -> list[Row]:
        return await self._conn.fetch(
            f"""
            SELECT {_BROKER_COLUMNS}
            FROM broker_profiles b
            WHERE b.agency_id = $1
            ORDER BY b.name
            """,
            agency_id,
        )

    # ─── Recruitment offers ──────────────────────────────────

    async def get_offer(self, offer_id: UUID) -> Optional[Row]:
        return await self._conn.fetchrow(
            f"SELECT {_OFFER_COLUMNS}, a.name AS agency_name "
            "FROM recruitment_offers o JOIN agencies a ON a.id = o.agency_id WHERE o.id = $1",
            offer_id,
        )

    async def find_pending_offer(self, agency_id: UUID, broker_id: UUID) -> Optional[Row]:
        return await self._conn.fetchrow(
            f"""
            SELECT {_OFFER_COLUMNS}
            FROM recruitment_offers o
            WHERE o.agency_id = $1 AND o.broker_id = $2 AND o.status = 'pending'
            """,
            agency_id,
            broker_id,
        )

    async def insert_offer(
        self,
        agency_id: UUID,
        broker_id: UUID,
        *,
        message: Optional[str],
        created_at: datetime,
        expires_at: datetime,
    ) -> Row:
        try:
            return await self._conn.fetchrow(
                f"""
                INSERT INTO recruitment_offers AS o (agency_id, broker_id, message, status, created_at, expires_at)
                VALUES ($1, $2, $3, 'pending', $4, $5)
                RETURNING {_OFFER_COLUMNS}
                """,
                agency_id,
                broker_id,
                message,
                created_at,
                expires_at,
            )
        except asyncpg.UniqueViolationError as exc:
            raise Conflict(
                "A recruitment offer is already pending for this broker",
                reason="duplicate_offer",
            ) from exc

    async def set_offer_status(
        self,
        offer_id: UUID,
        status: str,
        *,
        decided_at: Optional[datetime],
    ) -> Optional[Row]:
        return await self._conn.fetchrow(
            f"""
            UPDATE recruitment_offers o
            SET status = $2,
                decided_at = $3
            WHERE o.id = $1 AND o.status = 'pending'
            RETURNING {_OFFER_COLUMNS}
            """,
            offer_id,
            status,
            decided_at,
        )

    async def decline_other_pending_offers(
        self,
        broker_id: UUID,
        *,
        exclude_id: Optional[UUID],
        decided_at: datetime,
    ) -> list[Row]:
        return await self._conn.fetch(
            """
            UPDATE recruitment_offers
            SET status = 'declined',
                decided_at = $3
            WHERE broker_id = $1
              AND status = 'pending'
              AND ($2::uuid IS NULL OR id <> $2)
            RETURNING id, agency_id
            """,
            broker_id,
            exclude_id,
            decided_at,
        )

    async def delete_pending_offer(self, offer_id: UUID) -> bool:
        deleted = await self._conn.fetchval(
            "DELETE FROM recruitment_offers WHERE id = $1 AND status = 'pending' RETURNING id",
            offer_id,
        )
        return deleted is not None

    async def expire_offers(
        self,
        now: datetime,
        *,
        agency_id: Optional[UUID] = None,
        broker_id: Optional[UUID] = None,
        offer_id: Optional[UUID] = None,
    ) -> list[UUID]:
        rows = await self._conn.fetch(
            """
            UPDATE recruitment_offers
            SET status = 'expired'
            WHERE status = 'pending'
              AND expires_at < $1
              AND ($2::uuid IS NULL OR agency_id = $2)
              AND ($3::uuid IS NULL OR broker_id = $3)
              AND ($4::uuid IS NULL OR id = $4)
            RETURNING id
            """,
            now,
            agency_id,
            broker_id,
            offer_id,
        )
        return [row["id"] for row in rows]

    async def list_offers_for_agency(self, agency_id: UUID) -> list[Row]:
        return await self._conn.fetch(
            f"""
            SELECT {_OFFER_COLUMNS},
                   b.name AS broker_name,
                   b.company_name AS broker_company_name
            FROM recruitment_offers o
            JOIN broker_profiles b ON b.id = o.broker_id
            WHERE o.agency_id = $1
            ORDER BY o.created_at DESC
            """,
            agency_id,
        )

    async def list_offers_for_broker(self, broker_id: UUID) -> list[Row]:
        return await self._conn.fetch(
            f"""
            SELECT {_OFFER_COLUMNS},
                   a.name AS agency_name
            FROM recruitment_offers o
            JOIN agencies a ON a.id = o.agency_id
            WHERE o.broker_id = $1
            ORDER BY o.created_at DESC
            """,
            broker_id,
        )

    # ─── Join requests ───────────────────────────────────────

    async def get_join_request(self, request_id: UUID) -> Optional[Row]:
        return await self._conn.fetchrow(
            f"SELECT {_JOIN_REQUEST_COLUMNS} FROM agency_join_requests r WHERE r.id = $1",
            request_id,
        )

    async def find_pending_join_request(self, agency_id: UUID, broker_id: UUID) -> Optional[Row]:
        return await self._conn.fetchrow(
            f"""
            SELECT {_JOIN_REQUEST_COLUMNS}
            FROM agency_join_requests r
            WHERE r.agency_id = $1 AND r.broker_id = $2 AND r.status = 'pending'
            """,
            agency_id,
            broker_id,
        )

    async def insert_join_request(
        self,
        agency_id: UUID,
        broker_id: UUID,
        *,
        message: Optional[str],
        created_at: datetime,
    ) -> Row:
        try:
            return await self._conn.fetchrow(
                f"""
                INSERT INTO agency_join_requests AS r (agency_id, broker_id, message, status, created_at)
                VALUES ($1, $2, $3, 'pending', $4)
                RETURNING {_JOIN_REQUEST_COLUMNS}
                """,
                agency_id,
                broker_id,
                message,
                created_at,
            )
        except asyncpg.UniqueViolationError as exc:
            raise Conflict(
                "You already have a pending request to this agency",
                reason="duplicate_join_request",
            ) from exc

    async def set_join_request_status(
        self,
        request_id: UUID,
        status: str,
        *,
        decided_at: datetime,
    ) -> Optional[Row]:
        return await self._conn.fetchrow(
            f"""
            UPDATE agency_join_requests r
            SET status = $2,
                decided_at = $3
            WHERE r.id = $1 AND r.status = 'pending'
            RETURNING {_JOIN_REQUEST_COLUMNS}
            """,
            request_id,
            status,
            decided_at,
        )

    async def reject_other_pending_join_requests(
        self,
        broker_id: UUID,
        *,
        exclude_id: Optional[UUID],
        decided_at: datetime,
    ) -> list[Row]:
        return await self._conn.fetch(
            """
            UPDATE agency_join_requests
            SET status = 'rejected',
                decided_at = $3
            WHERE broker_id = $1
              AND status = 'pending'
              AND ($2::uuid IS NULL OR id <> $2)
            RETURNING id, agency_id
            """,
            broker_id,
            exclude_id,
            decided_at,
        )

    async def delete_pending_join_request(self, request_id: UUID) -> bool:
        deleted = await self._conn.fetchval(
            "DELETE FROM agency_join_requests WHERE id = $1 AND status = 'pending' RETURNING id",
            request_id,
        )
        return deleted is not None

    async def list_join_requests_for_agency(self, agency_id: UUID) -> list[Row]:
        return await self._conn.fetch(
            f"""
            SELECT {_JOIN_REQUEST_COLUMNS},
                   b.name AS broker_name,
                   b.company_name AS broker_company_name
            FROM agency_join_requests r
            JOIN broker_profiles b ON b.id = r.broker_id
            WHERE r.agency_id = $1
              AND r.status = 'pending'
            ORDER BY r.created_at DESC
            """,
            agency_id,
        )

    async def list_join_requests_for_broker(self, broker_id: UUID) -> list[Row]:
        return await self._conn.fetch(
            f"""
            SELECT {_JOIN_REQUEST_COLUMNS},
                   a.name AS agency_name
            FROM agency_join_requests r
            JOIN agencies a ON a.id = r.agency_id
            WHERE r.broker_id = $1
            ORDER BY r.created_at DESC
            """,
            broker_id,
        )

    # ─── Email invites ───────────────────────────────────────

    async def get_invite_by_code(self, code: str) -> Optional[Row]:
        return await self._conn.fetchrow(
            f"SELECT {_INVITE_COLUMNS}, a.name AS agency_name "
            "FROM agency_invites i JOIN agencies a ON a.id = i.agency_id WHERE i.code = $1",
            code,
        )

    async def find_pending_invite(self, agency_id: UUID, email: str) -> Optional[Row]:
        return await self._conn.fetchrow(
            f"""
            SELECT {_INVITE_COLUMNS}
            FROM agency_invites i
            WHERE i.agency_id = $1 AND lower(i.email) = lower($2) AND i.status = 'pending'
            """,
            agency_id,
            email,
        )

    async def insert_invite(
        self,
        agency_id: UUID,
        email: str,
        *,
        code: str,
        invited_at: datetime,
        expires_at: datetime,
    ) -> Row:
        try:
            return await self._conn.fetchrow(
                f"""
                INSERT INTO agency_invites AS i (agency_id, email, code, status, invited_at, expires_at)
                VALUES ($1, $2, $3, 'pending', $4, $5)
                RETURNING {_INVITE_COLUMNS}
                """,
                agency_id,
                email,
                code,
                invited_at,
                expires_at,
            )
        except asyncpg.UniqueViolationError as exc:
            raise Conflict("Invite already sent to this email", reason="duplicate_invite") from exc

    async def mark_invite_accepted(
        self,
        invite_id: UUID,
        *,
        broker_id: UUID,
        accepted_at: datetime,
    ) -> Optional[Row]:
        return await self._conn.fetchrow(
            f"""
            UPDATE agency_invites i
            SET status = 'accepted',
                accepted_at = $3,
                accepted_by_broker_id = $2
            WHERE i.id = $1 AND i.status = 'pending'
            RETURNING {_INVITE_COLUMNS}
            """,
            invite_id,
            broker_id,
            accepted_at,
        )

    async def expire_invites(
        self,
        now: datetime,
        *,
        agency_id: Optional[UUID] = None,
        invite_id: Optional[UUID] = None,
    ) -> list[UUID]:
        rows = await self._conn.fetch(
            """
            UPDATE agency_invites
            SET status = 'expired'
            WHERE status = 'pending'
              AND expires_at < $1
              AND ($2::uuid IS NULL OR agency_id = $2)
              AND ($3::uuid IS NULL OR id = $3)
            RETURNING id
            """,
            now,
            agency_id,
            invite_id,
        )
        return [row["id"] for row in rows]

    async def list_invites_for_agency(self, agency_id: UUID) -> list[Row]:
        return await self._conn.fetch(
            f"""
            SELECT {_INVITE_COLUMNS}
            FROM agency_invites i
            WHERE i.agency_id = $1
            ORDER BY i.invited_at DESC
            """,
            agency_id,
        )

    # ─── Dashboard ───────────────────────────────────────────

    async def agency_counts(self, agency_id: UUID) -> Row:
        return await self._conn.fetchrow(
            """
            SELECT
                (SELECT COUNT(*) FROM broker_profiles WHERE agency_id = $1) AS broker_count,
                (SELECT COUNT(*) FROM agency_invites
                    WHERE agency_id = $1 AND status = 'pending') AS pending_invites,
                (SELECT COUNT(*) FROM agency_join_requests
                    WHERE agency_id = $1 AND status = 'pending') AS pending_requests,
                (SELECT COUNT(*) FROM recruitment_offers
                    WHERE agency_id = $1 AND status = 'pending') AS pending_offers
            """,
            agency_id,
        )
