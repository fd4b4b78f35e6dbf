from __future__ import annotations
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime, timezone
import uuid


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# --- Action results ---

class ActionResult(BaseModel):
    success: bool
    error: Optional[str] = None

    @classmethod
    def ok(cls) -> "ActionResult":
        return cls(success=True)

    @classmethod
    def failed(cls, error: str) -> "ActionResult":
        return cls(success=False, error=error)


# --- Family / Member models ---
# Store rows are snake_case; the dashboard speaks camelCase.

class Member(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    email: str = ""
    family_id: Optional[str] = None
    added_at: str = Field(default_factory=_now_iso, alias="addedAt")

    def to_record(self, family_id: str) -> dict:
        return {
            "id": self.id,
            "family_id": family_id,
            "name": self.name,
            "email": self.email,
            "added_at": self.added_at,
        }


class FamilyInput(BaseModel):
    """Create/update payload. owner_password is plaintext here."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    owner_email: str = Field("", alias="ownerEmail")
    owner_password: str = Field("", alias="ownerPassword")
    expiry_date: Optional[str] = Field(None, alias="expiryDate")
    storage_used: float = Field(0, alias="storageUsed")
    notes: Optional[str] = None
    created_at: str = Field(default_factory=_now_iso, alias="createdAt")
    members: List[Member] = []


class Family(BaseModel):
    """Read model returned to the dashboard, credential already decrypted."""

    id: str
    name: str
    notes: Optional[str] = None
    ownerEmail: str = ""
    ownerPassword: str = ""
    expiryDate: Optional[str] = None
    storageUsed: float = 0
    createdAt: Optional[str] = None
    members: List[Member] = []


class PublicFamily(BaseModel):
    id: str
    familyName: str
    serviceName: Optional[str] = None
    expiryDate: Optional[str] = None
    storageUsed: float = 0
    slotsAvailable: int


# --- Migration ---

class MigrationReport(BaseModel):
    scanned: int = 0
    already_encrypted: int = 0
    empty: int = 0
    migrated: int = 0
    failed: int = 0
    failed_ids: List[str] = []
    skipped_reason: Optional[str] = None


class MigrationStatus(BaseModel):
    started: bool
    finished: bool
    report: Optional[MigrationReport] = None


# --- Legacy import ---

class LegacyImportSummary(BaseModel):
    families: int = 0
    members: int = 0
    encrypted: bool = False
    error: Optional[str] = None
