import asyncio
import logging
from collections import defaultdict
from typing import Dict, List, Optional

from family_manager.core.family_utils import is_family_full, slots_available
from family_manager.core.identity import IdentityProvider
from family_manager.core.migration import MigrationCoordinator
from family_manager.core.secret_codec import CREDENTIAL_FIELD, decrypt_record, encrypt_record
from family_manager.core.storage import RecordStore
from family_manager.models import ActionResult, Family, FamilyInput, Member, PublicFamily

logger = logging.getLogger(__name__)

PUBLIC_FIELDS = ["id", "name", "expiry_date", "storage_used"]


def _group_members(rows: List[dict]) -> Dict[str, List[Member]]:
    grouped: Dict[str, List[Member]] = defaultdict(list)
    for row in rows:
        if row.get("family_id"):
            grouped[row["family_id"]].append(Member(**row))
    return grouped


def _to_view(row: dict, members: List[Member]) -> Family:
    return Family(
        id=row["id"],
        name=row.get("name") or "",
        notes=row.get("notes"),
        ownerEmail=row.get("owner_email") or "",
        ownerPassword=row.get(CREDENTIAL_FIELD) or "",
        expiryDate=row.get("expiry_date"),
        storageUsed=row.get("storage_used") or 0,
        createdAt=row.get("created_at"),
        members=members,
    )


class FamilyService:
    """
    Dashboard CRUD over the record store.

    Credentials are encrypted right before every write and decrypted right
    after every read, with the passphrase asked from the identity provider
    each time.
    """

    def __init__(
        self,
        families: RecordStore,
        members: RecordStore,
        identity: IdentityProvider,
        migration: Optional[MigrationCoordinator] = None,
    ):
        self.families = families
        self.members = members
        self.identity = identity
        self.migration = migration

    # --- Reads ---
    async def claim_orphans(self) -> int:
        claim = getattr(self.families, "claim_orphans", None)
        if claim is None:
            return 0
        return await claim()

    async def list_families(self) -> List[Family]:
        await self.claim_orphans()
        fetch = asyncio.ensure_future(self.families.fetch_all())
        if self.migration is not None:
            self.migration.start()
        rows = await fetch

        family_ids = {r["id"] for r in rows}
        member_rows = await self.members.fetch_all()
        grouped = _group_members([m for m in member_rows if m.get("family_id") in family_ids])

        passphrase = await self.identity.current_user_id()
        decrypted = await asyncio.gather(*(decrypt_record(r, passphrase) for r in rows))
        return [_to_view(r, grouped.get(r["id"], [])) for r in decrypted]

    async def list_public(self) -> List[PublicFamily]:
        rows = await self.families.fetch_all(PUBLIC_FIELDS)
        grouped = _group_members(await self.members.fetch_all(["id", "family_id", "name"]))
        return [
            PublicFamily(
                id=r["id"],
                familyName=r.get("name") or "",
                expiryDate=r.get("expiry_date"),
                storageUsed=r.get("storage_used") or 0,
                slotsAvailable=slots_available(grouped.get(r["id"])),
            )
            for r in rows
        ]

    # --- Actions ---
    async def _store_fields(self, family: FamilyInput) -> dict:
        fields = {
            "name": family.name,
            "owner_email": family.owner_email,
            CREDENTIAL_FIELD: family.owner_password,
            "expiry_date": family.expiry_date,
            "storage_used": family.storage_used or 0,
            "notes": family.notes,
        }
        return await encrypt_record(fields, await self.identity.current_user_id())

    async def add_family(self, family: FamilyInput) -> ActionResult:
        record = {"id": family.id, **(await self._store_fields(family)), "created_at": family.created_at}
        result = await self.families.insert(record)
        if not result.success:
            logger.error("Error creating family %s: %s", family.id, result.error)
        return result

    async def update_family(self, family: FamilyInput) -> ActionResult:
        result = await self.families.update_by_id(family.id, await self._store_fields(family))
        if not result.success:
            logger.error("Error updating family %s: %s", family.id, result.error)
        return result

    async def delete_family(self, family_id: str) -> ActionResult:
        result = await self.families.delete_by_id(family_id)
        if not result.success:
            logger.error("Error deleting family %s: %s", family_id, result.error)
            return result
        return await self.members.delete_where("family_id", family_id)

    async def add_member(self, family_id: str, member: Member) -> ActionResult:
        owned = await self.families.fetch_all(["id"], {"id": family_id})
        if not owned:
            return ActionResult.failed(f"family {family_id} not found")
        current = await self.members.fetch_all(["id"], {"family_id": family_id})
        if is_family_full(current):
            return ActionResult.failed("family is full")
        result = await self.members.insert(member.to_record(family_id))
        if not result.success:
            logger.error("Error adding member to %s: %s", family_id, result.error)
        return result

    async def remove_member(self, family_id: str, member_id: str) -> ActionResult:
        owned = await self.families.fetch_all(["id"], {"id": family_id})
        found = await self.members.fetch_all(["id"], {"id": member_id, "family_id": family_id})
        if not owned or not found:
            return ActionResult.failed(f"member {member_id} not found")
        result = await self.members.delete_by_id(member_id)
        if not result.success:
            logger.error("Error removing member %s: %s", member_id, result.error)
        return result
