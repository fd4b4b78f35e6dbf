"""
Import of the legacy browser-local export (camelCase families with nested
members) into the record store. Upserts, so it can be re-run safely.
"""
import json
import logging
from pathlib import Path
from typing import Any, List, Union

from pydantic import ValidationError

from family_manager.core.identity import IdentityProvider
from family_manager.core.secret_codec import CREDENTIAL_FIELD, encrypt_record
from family_manager.core.storage import RecordStore
from family_manager.models import FamilyInput, LegacyImportSummary

logger = logging.getLogger(__name__)


def load_export(source: Union[str, Path]) -> List[dict]:
    with open(source, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError("legacy export must be a list of families")
    return data


async def _foreign_member_ids(members: RecordStore, family_id: str, member_ids: List[str]) -> List[str]:
    wanted = set(member_ids)
    rows = await members.fetch_all(["id", "family_id"])
    return sorted(r["id"] for r in rows if r["id"] in wanted and r.get("family_id") != family_id)


async def import_families(
    raw_families: List[Any],
    families: RecordStore,
    members: RecordStore,
    identity: IdentityProvider,
) -> LegacyImportSummary:
    summary = LegacyImportSummary()
    try:
        parsed = [FamilyInput.model_validate(f) for f in raw_families]
    except ValidationError as exc:
        summary.error = f"invalid export: {exc.error_count()} error(s)"
        return summary

    # Without an identity the passwords go in as plaintext; the migration
    # sweep encrypts them once the owner signs in.
    passphrase = await identity.current_user_id()
    summary.encrypted = bool(passphrase)

    for family in parsed:
        record = {
            "id": family.id,
            "name": family.name,
            "owner_email": family.owner_email,
            CREDENTIAL_FIELD: family.owner_password,
            "expiry_date": family.expiry_date,
            "storage_used": family.storage_used or 0,
            "notes": family.notes,
            "created_at": family.created_at,
        }
        result = await families.upsert([await encrypt_record(record, passphrase)])
        if not result.success:
            logger.error("legacy import failed on family %s: %s", family.id, result.error)
            summary.error = result.error
            return summary
        summary.families += 1

        if family.members:
            foreign = await _foreign_member_ids(members, family.id, [m.id for m in family.members])
            if foreign:
                summary.error = f"members {', '.join(foreign)} belong to another family"
                logger.error("legacy import failed on members of %s: %s", family.id, summary.error)
                return summary
            result = await members.upsert([m.to_record(family.id) for m in family.members])
            if not result.success:
                logger.error("legacy import failed on members of %s: %s", family.id, result.error)
                summary.error = result.error
                return summary
            summary.members += len(family.members)

    logger.info("legacy import: %d families, %d members", summary.families, summary.members)
    return summary
