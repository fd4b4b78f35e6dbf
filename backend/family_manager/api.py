from typing import Any, Dict, List
from fastapi import APIRouter, Body, Depends, HTTPException, Request
from family_manager.models import (
    ActionResult,
    Family,
    FamilyInput,
    LegacyImportSummary,
    Member,
    MigrationReport,
    MigrationStatus,
    PublicFamily,
)
from family_manager.core.families import FamilyService
from family_manager.core.identity import RequestIdentity, StaticIdentity
from family_manager.core.legacy_import import import_families
from family_manager.core.migration import MigrationCoordinator
from family_manager.core.storage import OwnerScopedStore, StoreError

router = APIRouter()


# --- Dependencies ---
def _identity(request: Request) -> RequestIdentity:
    return RequestIdentity(request, request.app.state.settings.identity_header)


async def current_user(request: Request) -> str:
    user_id = await _identity(request).current_user_id()
    if not user_id:
        raise HTTPException(status_code=401, detail="not signed in")
    return user_id


def _coordinator(request: Request, user_id: str) -> MigrationCoordinator:
    state = request.app.state
    scoped = OwnerScopedStore(state.families_store, user_id)
    return state.migrations.get_or_create(user_id, scoped, StaticIdentity(user_id))


async def family_service(request: Request, user_id: str = Depends(current_user)) -> FamilyService:
    state = request.app.state
    return FamilyService(
        OwnerScopedStore(state.families_store, user_id),
        state.members_store,
        _identity(request),
        _coordinator(request, user_id),
    )


def _check(result: ActionResult) -> Dict[str, str]:
    if not result.success:
        raise HTTPException(status_code=502, detail=result.error or "store write failed")
    return {"status": "ok"}


# --- Families ---
@router.get("/families", response_model=List[Family])
async def list_families(service: FamilyService = Depends(family_service)):
    try:
        return await service.list_families()
    except StoreError as exc:
        raise HTTPException(status_code=502, detail=str(exc))


@router.post("/families")
async def create_family(family: FamilyInput, service: FamilyService = Depends(family_service)):
    return _check(await service.add_family(family))


@router.put("/families/{family_id}")
async def update_family(family_id: str, family: FamilyInput, service: FamilyService = Depends(family_service)):
    family.id = family_id
    return _check(await service.update_family(family))


@router.delete("/families/{family_id}")
async def delete_family(family_id: str, service: FamilyService = Depends(family_service)):
    return _check(await service.delete_family(family_id))


# --- Members ---
@router.post("/families/{family_id}/members")
async def add_member(family_id: str, member: Member, service: FamilyService = Depends(family_service)):
    return _check(await service.add_member(family_id, member))


@router.delete("/families/{family_id}/members/{member_id}")
async def remove_member(family_id: str, member_id: str, service: FamilyService = Depends(family_service)):
    return _check(await service.remove_member(family_id, member_id))


# --- Public listing ---
@router.get("/public/families", response_model=List[PublicFamily])
async def list_public_families(request: Request):
    state = request.app.state
    service = FamilyService(state.families_store, state.members_store, StaticIdentity(None))
    try:
        return await service.list_public()
    except StoreError as exc:
        raise HTTPException(status_code=502, detail=str(exc))


# --- Credential migration ---
@router.post("/migration/run", response_model=MigrationReport)
async def run_migration(request: Request, user_id: str = Depends(current_user)):
    return await _coordinator(request, user_id).run()


@router.get("/migration/status", response_model=MigrationStatus)
async def migration_status(request: Request, user_id: str = Depends(current_user)):
    coordinator = request.app.state.migrations.get(user_id)
    if coordinator is None:
        return MigrationStatus(started=False, finished=False)
    return coordinator.status()


# --- Legacy import ---
@router.post("/import/legacy", response_model=LegacyImportSummary)
async def import_legacy(
    request: Request,
    payload: List[Dict[str, Any]] = Body(...),
    user_id: str = Depends(current_user),
):
    state = request.app.state
    summary = await import_families(
        payload,
        OwnerScopedStore(state.families_store, user_id),
        state.members_store,
        _identity(request),
    )
    if summary.error:
        status = 400 if summary.error.startswith("invalid export") else 502
        raise HTTPException(status_code=status, detail=summary.error)
    return summary
