"""
Background sweep that re-encrypts legacy plaintext credentials.

There is no "migrated" column: each value is classified by its shape on
every run, so a second run over migrated data performs no writes. Records
are independent; one failing write does not stop the others, and nothing
is retried within a run. Concurrent user edits win (last write wins); the
next session's sweep picks up anything left behind.
"""
import asyncio
import logging
from typing import Dict, Optional

from family_manager.core.crypto import encrypt_value_async
from family_manager.core.identity import IdentityProvider
from family_manager.core.secret_codec import CREDENTIAL_FIELD, FieldState, classify
from family_manager.core.storage import RecordStore, StoreError
from family_manager.models import MigrationReport, MigrationStatus

logger = logging.getLogger(__name__)


class MigrationCoordinator:
    def __init__(self, store: RecordStore, identity: IdentityProvider, field: str = CREDENTIAL_FIELD):
        self.store = store
        self.identity = identity
        self.field = field
        self._task: Optional[asyncio.Task] = None
        self.report: Optional[MigrationReport] = None

    async def _migrate_one(self, record_id: str, plaintext: str, passphrase: str) -> bool:
        try:
            envelope = await encrypt_value_async(plaintext, passphrase)
            result = await self.store.update_by_id(record_id, {self.field: envelope})
        except Exception as exc:
            logger.warning("migration failed for %s %s: %s", self.store.table, record_id, exc)
            return False
        if not result.success:
            logger.warning("migration failed for %s %s: %s", self.store.table, record_id, result.error)
            return False
        return True

    async def run(self) -> MigrationReport:
        report = MigrationReport()
        claim = getattr(self.store, "claim_orphans", None)
        try:
            if claim is not None:
                await claim()
            rows = await self.store.fetch_all(["id", self.field])
        except StoreError as exc:
            logger.warning("migration skipped, cannot read %s: %s", self.store.table, exc)
            report.skipped_reason = "fetch failed"
            self.report = report
            return report

        passphrase = await self.identity.current_user_id()
        if not passphrase:
            report.skipped_reason = "no identity"
            self.report = report
            return report

        pending = []
        for row in rows:
            report.scanned += 1
            state = classify(row.get(self.field))
            if state is FieldState.ENCRYPTED:
                report.already_encrypted += 1
            elif state is FieldState.EMPTY:
                report.empty += 1
            else:
                pending.append(row)

        outcomes = await asyncio.gather(
            *(self._migrate_one(row["id"], row[self.field], passphrase) for row in pending)
        )
        for row, ok in zip(pending, outcomes):
            if ok:
                report.migrated += 1
            else:
                report.failed += 1
                report.failed_ids.append(row["id"])

        if report.migrated or report.failed:
            logger.info(
                "credential migration on %s: %d migrated, %d failed",
                self.store.table, report.migrated, report.failed,
            )
        self.report = report
        return report

    async def _run_in_background(self):
        try:
            await self.run()
        except Exception:
            logger.exception("credential migration crashed")

    def start(self) -> asyncio.Task:
        """Schedule the sweep once; later calls return the same task."""
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run_in_background())
        return self._task

    @property
    def started(self) -> bool:
        return self._task is not None

    def status(self) -> MigrationStatus:
        finished = self._task is not None and self._task.done()
        return MigrationStatus(started=self.started, finished=finished, report=self.report)


class MigrationRegistry:
    """One coordinator per user for the lifetime of the process."""

    def __init__(self):
        self._coordinators: Dict[str, MigrationCoordinator] = {}

    def get(self, user_id: str) -> Optional[MigrationCoordinator]:
        return self._coordinators.get(user_id)

    def get_or_create(self, user_id: str, store: RecordStore, identity: IdentityProvider) -> MigrationCoordinator:
        coordinator = self._coordinators.get(user_id)
        if coordinator is None:
            coordinator = MigrationCoordinator(store, identity)
            self._coordinators[user_id] = coordinator
        return coordinator
