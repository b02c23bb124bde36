"""add_agency_affiliation_tables

Revision ID: 5b8e0d4c2a19
Revises:
Create Date: 2026-02-11 16:40:07.902114

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5b8e0d4c2a19'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.execute("""
        CREATE TABLE IF NOT EXISTS agencies (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            owner_user_id UUID NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
            name VARCHAR(255) NOT NULL,
            created_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    op.execute("ALTER TABLE broker_profiles ADD COLUMN IF NOT EXISTS agency_id UUID REFERENCES agencies(id) ON DELETE SET NULL")
    op.execute("ALTER TABLE broker_profiles ADD COLUMN IF NOT EXISTS affiliation_type VARCHAR(20) NOT NULL DEFAULT 'individual'")
    op.execute("ALTER TABLE broker_profiles ADD COLUMN IF NOT EXISTS previous_company_name VARCHAR(255)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_broker_profiles_agency_id ON broker_profiles(agency_id)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS agency_invites (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            agency_id UUID NOT NULL REFERENCES agencies(id) ON DELETE CASCADE,
            email VARCHAR(255) NOT NULL,
            code VARCHAR(64) NOT NULL UNIQUE,
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            invited_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            expires_at TIMESTAMPTZ NOT NULL,
            accepted_at TIMESTAMPTZ,
            accepted_by_broker_id UUID REFERENCES broker_profiles(id) ON DELETE SET NULL,
            CONSTRAINT check_agency_invite_status CHECK (
                status IN ('pending', 'accepted', 'expired')
            )
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS agency_join_requests (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            agency_id UUID NOT NULL REFERENCES agencies(id) ON DELETE CASCADE,
            broker_id UUID NOT NULL REFERENCES broker_profiles(id) ON DELETE CASCADE,
            message TEXT,
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            decided_at TIMESTAMPTZ,
            CONSTRAINT check_join_request_status CHECK (
                status IN ('pending', 'approved', 'rejected')
            )
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_agency_join_requests_broker ON agency_join_requests(broker_id, status)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS recruitment_offers (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            agency_id UUID NOT NULL REFERENCES agencies(id) ON DELETE CASCADE,
            broker_id UUID NOT NULL REFERENCES broker_profiles(id) ON DELETE CASCADE,
            message TEXT,
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            expires_at TIMESTAMPTZ NOT NULL,
            decided_at TIMESTAMPTZ,
            CONSTRAINT check_recruitment_offer_status CHECK (
                status IN ('pending', 'accepted', 'declined', 'expired')
            )
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_recruitment_offers_broker ON recruitment_offers(broker_id, status)")


def downgrade() -> None:
    """Downgrade schema."""
    op.execute("DROP TABLE IF EXISTS recruitment_offers CASCADE")
    op.execute("DROP TABLE IF EXISTS agency_join_requests CASCADE")
    op.execute("DROP TABLE IF EXISTS agency_invites CASCADE")
    op.execute("DROP INDEX IF EXISTS idx_broker_profiles_agency_id")
    op.execute("ALTER TABLE broker_profiles DROP COLUMN IF EXISTS previous_company_name")
    op.execute("ALTER TABLE broker_profiles DROP COLUMN IF EXISTS affiliation_type")
    op.execute("ALTER TABLE broker_profiles DROP COLUMN IF EXISTS agency_id")
    op.execute("DROP TABLE IF EXISTS agencies CASCADE")
