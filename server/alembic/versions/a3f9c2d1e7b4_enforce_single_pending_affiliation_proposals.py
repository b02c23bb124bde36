"""enforce_single_pending_affiliation_proposals

Revision ID: a3f9c2d1e7b4
Revises: 5b8e0d4c2a19
Create Date: 2026-03-02 10:14:52.418305

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a3f9c2d1e7b4'
down_revision: Union[str, Sequence[str], None] = '5b8e0d4c2a19'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Keep the newest pending row per pair; older duplicates are closed out
    op.execute("""
        UPDATE recruitment_offers o
        SET status = 'expired'
        WHERE o.status = 'pending'
          AND EXISTS (
              SELECT 1 FROM recruitment_offers n
              WHERE n.agency_id = o.agency_id
                AND n.broker_id = o.broker_id
                AND n.status = 'pending'
                AND (n.created_at, n.id) > (o.created_at, o.id)
          )
    """)
    op.execute("""
        UPDATE agency_join_requests r
        SET status = 'rejected', decided_at = NOW()
        WHERE r.status = 'pending'
          AND EXISTS (
              SELECT 1 FROM agency_join_requests n
              WHERE n.agency_id = r.agency_id
                AND n.broker_id = r.broker_id
                AND n.status = 'pending'
                AND (n.created_at, n.id) > (r.created_at, r.id)
          )
    """)
    op.execute("""
        UPDATE agency_invites i
        SET status = 'expired'
        WHERE i.status = 'pending'
          AND EXISTS (
              SELECT 1 FROM agency_invites n
              WHERE n.agency_id = i.agency_id
                AND lower(n.email) = lower(i.email)
                AND n.status = 'pending'
                AND (n.invited_at, n.id) > (i.invited_at, i.id)
          )
    """)

    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_recruitment_offers_pending
        ON recruitment_offers(agency_id, broker_id)
        WHERE status = 'pending'
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_agency_join_requests_pending
        ON agency_join_requests(agency_id, broker_id)
        WHERE status = 'pending'
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_agency_invites_pending
        ON agency_invites(agency_id, lower(email))
        WHERE status = 'pending'
    """)

    # Brokers that lost their agency row keep a stale affiliation_type
    op.execute("""
        UPDATE broker_profiles
        SET affiliation_type = 'individual'
        WHERE agency_id IS NULL AND affiliation_type <> 'individual'
    """)
    op.execute("ALTER TABLE broker_profiles DROP CONSTRAINT IF EXISTS broker_profiles_affiliation_consistent")
    op.execute("""
        ALTER TABLE broker_profiles
        ADD CONSTRAINT broker_profiles_affiliation_consistent CHECK (
            (agency_id IS NULL AND affiliation_type = 'individual')
            OR (agency_id IS NOT NULL AND affiliation_type = 'agency_broker')
        )
    """)


def downgrade() -> None:
    """Downgrade schema."""
    op.execute("ALTER TABLE broker_profiles DROP CONSTRAINT IF EXISTS broker_profiles_affiliation_consistent")
    op.execute("DROP INDEX IF EXISTS uq_agency_invites_pending")
    op.execute("DROP INDEX IF EXISTS uq_agency_join_requests_pending")
    op.execute("DROP INDEX IF EXISTS uq_recruitment_offers_pending")
