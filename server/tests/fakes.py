"""In-memory stand-in for AffiliationStore used by the engine tests.

It mirrors the semantics the real store gets from PostgreSQL: per-broker
row locks held until the transaction ends, partial unique constraints on
pending proposals, guarded status updates and rollback on error. Every
method yields to the event loop so concurrent callers interleave.
"""

from __future__ import annotations

import asyncio
import copy
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

from simsar.affiliation.services.actors import resolve_actor
from simsar.affiliation.services.errors import Conflict

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeDatabase:
    def __init__(self):
        self.tables: dict[str, dict[UUID, dict[str, Any]]] = {
            "users": {},
            "agencies": {},
            "brokers": {},
            "offers": {},
            "join_requests": {},
            "invites": {},
        }
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def store(self) -> "FakeStore":
        return FakeStore(self)

    async def actor_for(self, user_id: UUID):
        return await resolve_actor(self.store(), user_id)

    # ─── Seeding ─────────────────────────────────────────────

    def add_user(self, email: Optional[str] = None, role: str = "broker") -> dict:
        user = {"id": uuid4(), "email": email or f"{uuid4().hex[:8]}@example.com", "role": role}
        self.tables["users"][user["id"]] = user
        return user

    def add_agency(self, name: str = "Dubai Homes") -> dict:
        owner = self.add_user()
        agency = {"id": uuid4(), "owner_user_id": owner["id"], "name": name}
        self.tables["agencies"][agency["id"]] = agency
        return agency

    def add_broker(
        self,
        name: str = "Broker",
        *,
        company_name: Optional[str] = "Solo Realty",
        agency_id: Optional[UUID] = None,
        user_id: Optional[UUID] = None,
        email: Optional[str] = None,
    ) -> dict:
        if user_id is None:
            user_id = self.add_user(email=email)["id"]
        broker = {
            "id": uuid4(),
            "user_id": user_id,
            "name": name,
            "agency_id": agency_id,
            "affiliation_type": "agency_broker" if agency_id else "individual",
            "company_name": company_name,
            "previous_company_name": None,
            "updated_at": NOW,
        }
        self.tables["brokers"][broker["id"]] = broker
        return broker

    def add_offer(
        self,
        agency_id: UUID,
        broker_id: UUID,
        *,
        status: str = "pending",
        created_at: datetime = NOW,
        expires_at: Optional[datetime] = None,
    ) -> dict:
        offer = {
            "id": uuid4(),
            "agency_id": agency_id,
            "broker_id": broker_id,
            "message": None,
            "status": status,
            "created_at": created_at,
            "expires_at": expires_at or created_at + timedelta(days=14),
            "decided_at": None,
        }
        self.tables["offers"][offer["id"]] = offer
        return offer

    def add_join_request(
        self,
        agency_id: UUID,
        broker_id: UUID,
        *,
        status: str = "pending",
        created_at: datetime = NOW,
    ) -> dict:
        request = {
            "id": uuid4(),
            "agency_id": agency_id,
            "broker_id": broker_id,
            "message": None,
            "status": status,
            "created_at": created_at,
            "decided_at": None,
        }
        self.tables["join_requests"][request["id"]] = request
        return request

    def add_invite(
        self,
        agency_id: UUID,
        email: str,
        *,
        status: str = "pending",
        invited_at: datetime = NOW,
        expires_at: Optional[datetime] = None,
    ) -> dict:
        invite = {
            "id": uuid4(),
            "agency_id": agency_id,
            "email": email,
            "code": uuid4().hex,
            "status": status,
            "invited_at": invited_at,
            "expires_at": expires_at or invited_at + timedelta(days=7),
            "accepted_at": None,
            "accepted_by_broker_id": None,
        }
        self.tables["invites"][invite["id"]] = invite
        return invite

    # ─── Inspection ──────────────────────────────────────────

    def broker(self, broker_id: UUID) -> dict:
        return self.tables["brokers"][broker_id]

    def offer(self, offer_id: UUID) -> Optional[dict]:
        return self.tables["offers"].get(offer_id)

    def join_request(self, request_id: UUID) -> Optional[dict]:
        return self.tables["join_requests"].get(request_id)

    def invite(self, invite_id: UUID) -> dict:
        return self.tables["invites"][invite_id]

    def rows(self, table: str, **filters) -> list[dict]:
        return [
            row for row in self.tables[table].values()
            if all(row.get(key) == value for key, value in filters.items())
        ]


class FakeStore:
    def __init__(self, db: FakeDatabase):
        self._db = db
        self._undo: Optional[list[tuple[str, UUID, Optional[dict]]]] = None
        self._held: list[asyncio.Lock] = []
        self.transactions = 0

    @asynccontextmanager
    async def transaction(self):
        self._undo = []
        self.transactions += 1
        try:
            yield
        except BaseException:
            for table, key, previous in reversed(self._undo):
                if previous is None:
                    self._db.tables[table].pop(key, None)
                else:
                    self._db.tables[table][key] = previous
            raise
        finally:
            self._undo = None
            for lock in reversed(self._held):
                lock.release()
            self._held = []

    async def _acquire(self, key: str) -> None:
        lock = self._db.lock_for(key)
        if lock in self._held:
            return
        await lock.acquire()
        self._held.append(lock)

    def _write(self, table: str, key: UUID, row: Optional[dict]) -> None:
        previous = self._db.tables[table].get(key)
        if self._undo is not None:
            self._undo.append((table, key, copy.deepcopy(previous)))
        if row is None:
            self._db.tables[table].pop(key, None)
        else:
            self._db.tables[table][key] = row

    def _select(self, table: str, **filters) -> list[dict]:
        return [copy.deepcopy(row) for row in self._db.rows(table, **filters)]

    def _one(self, table: str, **filters) -> Optional[dict]:
        rows = self._select(table, **filters)
        return rows[0] if rows else None

    def _with_agency_name(self, row: Optional[dict]) -> Optional[dict]:
        if row is None:
            return None
        agency = self._db.tables["agencies"].get(row["agency_id"])
        row["agency_name"] = agency["name"] if agency else None
        return row

    def _with_broker_names(self, row: dict) -> dict:
        broker = self._db.tables["brokers"][row["broker_id"]]
        row["broker_name"] = broker["name"]
        row["broker_company_name"] = broker["company_name"]
        return row

    async def advisory_lock(self, key: str) -> None:
        await asyncio.sleep(0)
        await self._acquire(f"advisory:{key}")

    # Directory

    async def get_agency(self, agency_id):
        await asyncio.sleep(0)
        return self._one("agencies", id=agency_id)

    async def get_agency_by_owner(self, user_id):
        await asyncio.sleep(0)
        return self._one("agencies", owner_user_id=user_id)

    async def is_agency_owner(self, user_id):
        await asyncio.sleep(0)
        return self._one("agencies", owner_user_id=user_id) is not None

    async def get_broker(self, broker_id):
        await asyncio.sleep(0)
        return self._one("brokers", id=broker_id)

    async def get_broker_by_user(self, user_id):
        await asyncio.sleep(0)
        return self._one("brokers", user_id=user_id)

    async def get_user_by_email(self, email):
        await asyncio.sleep(0)
        for user in self._db.tables["users"].values():
            if user["email"].lower() == email.lower():
                broker = self._one("brokers", user_id=user["id"])
                return dict(user, broker_id=broker["id"] if broker else None)
        return None

    # Registry

    async def lock_broker(self, broker_id):
        await asyncio.sleep(0)
        await self._acquire(f"broker:{broker_id}")
        return self._one("brokers", id=broker_id)

    async def set_broker_affiliation(self, broker_id, agency_id, *, previous_company_name, now):
        await asyncio.sleep(0)
        broker = self._one("brokers", id=broker_id)
        if broker is None or broker["agency_id"] is not None:
            return None
        broker.update(
            agency_id=agency_id,
            affiliation_type="agency_broker",
            previous_company_name=previous_company_name,
            updated_at=now,
        )
        self._write("brokers", broker_id, broker)
        return copy.deepcopy(broker)

    async def clear_broker_affiliation(self, broker_id, agency_id, *, now):
        await asyncio.sleep(0)
        broker = self._one("brokers", id=broker_id)
        if broker is None or broker["agency_id"] != agency_id:
            return None
        broker.update(
            agency_id=None,
            affiliation_type="individual",
            company_name=broker["previous_company_name"] or broker["company_name"],
            previous_company_name=None,
            updated_at=now,
        )
        self._write("brokers", broker_id, broker)
        return copy.deepcopy(broker)

    async def list_agency_members(self, agency_id):
        await asyncio.sleep(0)
        return sorted(self._select("brokers", agency_id=agency_id), key=lambda b: b["name"])

    # Offers

    async def get_offer(self, offer_id):
        await asyncio.sleep(0)
        return self._with_agency_name(self._one("offers", id=offer_id))

    async def find_pending_offer(self, agency_id, broker_id):
        await asyncio.sleep(0)
        return self._one("offers", agency_id=agency_id, broker_id=broker_id, status="pending")

    async def insert_offer(self, agency_id, broker_id, *, message, created_at, expires_at):
        await asyncio.sleep(0)
        if self._db.rows("offers", agency_id=agency_id, broker_id=broker_id, status="pending"):
            raise Conflict("A recruitment offer is already pending for this broker", reason="duplicate_offer")
        offer = {
            "id": uuid4(),
            "agency_id": agency_id,
            "broker_id": broker_id,
            "message": message,
            "status": "pending",
            "created_at": created_at,
            "expires_at": expires_at,
            "decided_at": None,
        }
        self._write("offers", offer["id"], offer)
        return copy.deepcopy(offer)

    async def set_offer_status(self, offer_id, status, *, decided_at):
        await asyncio.sleep(0)
        offer = self._one("offers", id=offer_id, status="pending")
        if offer is None:
            return None
        offer.update(status=status, decided_at=decided_at)
        self._write("offers", offer_id, offer)
        return copy.deepcopy(offer)

    async def decline_other_pending_offers(self, broker_id, *, exclude_id, decided_at):
        await asyncio.sleep(0)
        changed = []
        for offer in self._select("offers", broker_id=broker_id, status="pending"):
            if offer["id"] == exclude_id:
                continue
            offer.update(status="declined", decided_at=decided_at)
            self._write("offers", offer["id"], offer)
            changed.append({"id": offer["id"], "agency_id": offer["agency_id"]})
        return changed

    async def delete_pending_offer(self, offer_id):
        await asyncio.sleep(0)
        if self._one("offers", id=offer_id, status="pending") is None:
            return False
        self._write("offers", offer_id, None)
        return True

    async def expire_offers(self, now, *, agency_id=None, broker_id=None, offer_id=None):
        await asyncio.sleep(0)
        changed = []
        for offer in self._select("offers", status="pending"):
            if offer["expires_at"] >= now:
                continue
            if agency_id is not None and offer["agency_id"] != agency_id:
                continue
            if broker_id is not None and offer["broker_id"] != broker_id:
                continue
            if offer_id is not None and offer["id"] != offer_id:
                continue
            offer["status"] = "expired"
            self._write("offers", offer["id"], offer)
            changed.append(offer["id"])
        return changed

    async def list_offers_for_agency(self, agency_id):
        await asyncio.sleep(0)
        rows = [self._with_broker_names(row) for row in self._select("offers", agency_id=agency_id)]
        return sorted(rows, key=lambda r: r["created_at"], reverse=True)

    async def list_offers_for_broker(self, broker_id):
        await asyncio.sleep(0)
        rows = [self._with_agency_name(row) for row in self._select("offers", broker_id=broker_id)]
        return sorted(rows, key=lambda r: r["created_at"], reverse=True)

    # Join requests

    async def get_join_request(self, request_id):
        await asyncio.sleep(0)
        return self._one("join_requests", id=request_id)

    async def find_pending_join_request(self, agency_id, broker_id):
        await asyncio.sleep(0)
        return self._one("join_requests", agency_id=agency_id, broker_id=broker_id, status="pending")

    async def insert_join_request(self, agency_id, broker_id, *, message, created_at):
        await asyncio.sleep(0)
        if self._db.rows("join_requests", agency_id=agency_id, broker_id=broker_id, status="pending"):
            raise Conflict("You already have a pending request to this agency", reason="duplicate_join_request")
        request = {
            "id": uuid4(),
            "agency_id": agency_id,
            "broker_id": broker_id,
            "message": message,
            "status": "pending",
            "created_at": created_at,
            "decided_at": None,
        }
        self._write("join_requests", request["id"], request)
        return copy.deepcopy(request)

    async def set_join_request_status(self, request_id, status, *, decided_at):
        await asyncio.sleep(0)
        request = self._one("join_requests", id=request_id, status="pending")
        if request is None:
            return None
        request.update(status=status, decided_at=decided_at)
        self._write("join_requests", request_id, request)
        return copy.deepcopy(request)

    async def reject_other_pending_join_requests(self, broker_id, *, exclude_id, decided_at):
        await asyncio.sleep(0)
        changed = []
        for request in self._select("join_requests", broker_id=broker_id, status="pending"):
            if request["id"] == exclude_id:
                continue
            request.update(status="rejected", decided_at=decided_at)
            self._write("join_requests", request["id"], request)
            changed.append({"id": request["id"], "agency_id": request["agency_id"]})
        return changed

    async def delete_pending_join_request(self, request_id):
        await asyncio.sleep(0)
        if self._one("join_requests", id=request_id, status="pending") is None:
            return False
        self._write("join_requests", request_id, None)
        return True

    async def list_join_requests_for_agency(self, agency_id):
        await asyncio.sleep(0)
        rows = [
            self._with_broker_names(row)
            for row in self._select("join_requests", agency_id=agency_id, status="pending")
        ]
        return sorted(rows, key=lambda r: r["created_at"], reverse=True)

    async def list_join_requests_for_broker(self, broker_id):
        await asyncio.sleep(0)
        rows = [self._with_agency_name(row) for row in self._select("join_requests", broker_id=broker_id)]
        return sorted(rows, key=lambda r: r["created_at"], reverse=True)

    # Invites

    async def get_invite_by_code(self, code):
        await asyncio.sleep(0)
        return self._with_agency_name(self._one("invites", code=code))

    async def find_pending_invite(self, agency_id, email):
        await asyncio.sleep(0)
        for invite in self._select("invites", agency_id=agency_id, status="pending"):
            if invite["email"].lower() == email.lower():
                return invite
        return None

    async def insert_invite(self, agency_id, email, *, code, invited_at, expires_at):
        await asyncio.sleep(0)
        if await self.find_pending_invite(agency_id, email) is not None:
            raise Conflict("Invite already sent to this email", reason="duplicate_invite")
        invite = {
            "id": uuid4(),
            "agency_id": agency_id,
            "email": email,
            "code": code,
            "status": "pending",
            "invited_at": invited_at,
            "expires_at": expires_at,
            "accepted_at": None,
            "accepted_by_broker_id": None,
        }
        self._write("invites", invite["id"], invite)
        return copy.deepcopy(invite)

    async def mark_invite_accepted(self, invite_id, *, broker_id, accepted_at):
        await asyncio.sleep(0)
        invite = self._one("invites", id=invite_id, status="pending")
        if invite is None:
            return None
        invite.update(status="accepted", accepted_at=accepted_at, accepted_by_broker_id=broker_id)
        self._write("invites", invite_id, invite)
        return copy.deepcopy(invite)

    async def expire_invites(self, now, *, agency_id=None, invite_id=None):
        await asyncio.sleep(0)
        changed = []
        for invite in self._select("invites", status="pending"):
            if invite["expires_at"] >= now:
                continue
            if agency_id is not None and invite["agency_id"] != agency_id:
                continue
            if invite_id is not None and invite["id"] != invite_id:
                continue
            invite["status"] = "expired"
            self._write("invites", invite["id"], invite)
            changed.append(invite["id"])
        return changed

    async def list_invites_for_agency(self, agency_id):
        await asyncio.sleep(0)
        rows = self._select("invites", agency_id=agency_id)
        return sorted(rows, key=lambda r: r["invited_at"], reverse=True)

    async def agency_counts(self, agency_id):
        await asyncio.sleep(0)
        return {
            "broker_count": len(self._db.rows("brokers", agency_id=agency_id)),
            "pending_invites": len(self._db.rows("invites", agency_id=agency_id, status="pending")),
            "pending_requests": len(self._db.rows("join_requests", agency_id=agency_id, status="pending")),
            "pending_offers": len(self._db.rows("offers", agency_id=agency_id, status="pending")),
        }
