import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import httpx

from family_manager.models import ActionResult

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
Filters = Optional[Dict[str, Any]]


class StoreError(Exception):
    """Raised when a store cannot be read or is misconfigured."""


class RecordStore(Protocol):
    table: str

    async def fetch_all(self, fields: Optional[List[str]] = None, filters: Filters = None) -> List[Record]:
        ...

    async def update_by_id(self, record_id: str, fields: Record) -> ActionResult:
        ...

    async def insert(self, record: Record) -> ActionResult:
        ...

    async def upsert(self, records: List[Record]) -> ActionResult:
        ...

    async def delete_by_id(self, record_id: str) -> ActionResult:
        ...

    async def delete_where(self, field: str, value: Any) -> ActionResult:
        ...


def _project(record: Record, fields: Optional[List[str]]) -> Record:
    if not fields:
        return dict(record)
    keys = ["id"] + [f for f in fields if f != "id"]
    return {k: record.get(k) for k in keys}


def _matches(record: Record, filters: Filters) -> bool:
    return all(record.get(k) == v for k, v in (filters or {}).items())


class JsonRecordStore:
    """
    One JSON array per table under <workspace>/tables/. Each operation reads,
    modifies and rewrites the file under a lock without yielding to the loop.
    """

    def __init__(self, workspace_dir: str | None = None, table: str = "families"):
        workspace_dir = workspace_dir or os.getenv("FAMILY_MANAGER_WORKSPACE", "./workspace")
        self.base_dir = Path(workspace_dir)
        self.table = table
        self.tables_dir = self.base_dir / "tables"
        self.tables_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _table_path(self) -> Path:
        return self.tables_dir / f"{self.table}.json"

    def _atomic_write(self, target_path: Path, data: Any):
        target_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = target_path.with_suffix(".tmp")
        payload = json.dumps(data, indent=2)
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, target_path)

    def _read_rows(self) -> List[Record]:
        path = self._table_path()
        if not path.exists():
            return []
        try:
            with open(path, "r", encoding="utf-8") as f:
                rows = json.load(f)
        except (OSError, ValueError) as exc:
            raise StoreError(f"cannot read table {self.table}: {exc}") from exc
        if not isinstance(rows, list):
            raise StoreError(f"table {self.table} is not a list")
        return rows

    async def fetch_all(self, fields: Optional[List[str]] = None, filters: Filters = None) -> List[Record]:
        with self._lock:
            rows = self._read_rows()
        return [_project(r, fields) for r in rows if _matches(r, filters)]

    async def _mutate(self, fn) -> ActionResult:
        with self._lock:
            try:
                rows = self._read_rows()
                error = fn(rows)
                if error:
                    return ActionResult.failed(error)
                self._atomic_write(self._table_path(), rows)
            except (StoreError, OSError, TypeError, ValueError) as exc:
                logger.error("write to %s failed: %s", self.table, exc)
                return ActionResult.failed(str(exc))
        return ActionResult.ok()

    async def update_by_id(self, record_id: str, fields: Record) -> ActionResult:
        def apply(rows):
            for row in rows:
                if row.get("id") == record_id:
                    row.update({k: v for k, v in fields.items() if k != "id"})
                    return None
            return f"{self.table} record {record_id} not found"

        return await self._mutate(apply)

    async def insert(self, record: Record) -> ActionResult:
        def apply(rows):
            if any(r.get("id") == record.get("id") for r in rows):
                return f"duplicate id {record.get('id')}"
            rows.append(dict(record))
            return None

        return await self._mutate(apply)

    async def upsert(self, records: List[Record]) -> ActionResult:
        def apply(rows):
            index = {r.get("id"): r for r in rows}
            for rec in records:
                existing = index.get(rec.get("id"))
                if existing is not None:
                    existing.update(rec)
                else:
                    row = dict(rec)
                    rows.append(row)
                    index[row.get("id")] = row
            return None

        return await self._mutate(apply)

    async def delete_by_id(self, record_id: str) -> ActionResult:
        def apply(rows):
            keep = [r for r in rows if r.get("id") != record_id]
            if len(keep) == len(rows):
                return f"{self.table} record {record_id} not found"
            rows[:] = keep
            return None

        return await self._mutate(apply)

    async def delete_where(self, field: str, value: Any) -> ActionResult:
        def apply(rows):
            rows[:] = [r for r in rows if r.get(field) != value]
            return None

        return await self._mutate(apply)


class RestRecordStore:
    """
    PostgREST-style table access (the hosted backend-as-a-service).
    Filters are sent as `column=eq.value` query params.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        table: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
    ):
        if not base_url or not api_key:
            raise StoreError("backend url and key are required")
        self.table = table
        self.url = f"{base_url.rstrip('/')}/rest/v1/{table}"
        self.headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self):
        await self._client.aclose()

    def _eq(self, filters: Filters) -> Dict[str, str]:
        return {k: "is.null" if v is None else f"eq.{v}" for k, v in (filters or {}).items()}

    async def _send(self, method: str, params: Dict[str, str], body: Any = None, prefer: str | None = None) -> ActionResult:
        headers = dict(self.headers)
        if prefer:
            headers["Prefer"] = prefer
        try:
            resp = await self._client.request(method, self.url, params=params, json=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("%s %s failed: %s", method, self.table, exc)
            return ActionResult.failed(str(exc))
        if resp.status_code >= 400:
            return ActionResult.failed(f"{resp.status_code}: {resp.text}")
        return ActionResult.ok()

    async def fetch_all(self, fields: Optional[List[str]] = None, filters: Filters = None) -> List[Record]:
        select = ",".join(["id"] + [f for f in fields if f != "id"]) if fields else "*"
        params = {"select": select, **self._eq(filters)}
        try:
            resp = await self._client.get(self.url, params=params, headers=self.headers)
            resp.raise_for_status()
            rows = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise StoreError(f"cannot read table {self.table}: {exc}") from exc
        if not isinstance(rows, list):
            raise StoreError(f"unexpected payload for table {self.table}")
        return rows

    async def update_by_id(self, record_id: str, fields: Record) -> ActionResult:
        # return=representation lets us tell "no row matched" from success
        headers = dict(self.headers, Prefer="return=representation")
        try:
            resp = await self._client.patch(self.url, params=self._eq({"id": record_id}), json=fields, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("PATCH %s failed: %s", self.table, exc)
            return ActionResult.failed(str(exc))
        if resp.status_code >= 400:
            return ActionResult.failed(f"{resp.status_code}: {resp.text}")
        try:
            updated = resp.json()
        except ValueError:
            updated = None
        if isinstance(updated, list) and not updated:
            return ActionResult.failed(f"{self.table} record {record_id} not found")
        return ActionResult.ok()

    async def insert(self, record: Record) -> ActionResult:
        return await self._send("POST", {}, [record])

    async def upsert(self, records: List[Record]) -> ActionResult:
        return await self._send("POST", {}, records, prefer="resolution=merge-duplicates")

    async def delete_by_id(self, record_id: str) -> ActionResult:
        return await self._send("DELETE", self._eq({"id": record_id}))

    async def delete_where(self, field: str, value: Any) -> ActionResult:
        return await self._send("DELETE", self._eq({field: value}))


class OwnerScopedStore:
    """
    Restricts a table to rows owned by one user, the same way the hosted
    backend's row-level security does. Reads are filtered, inserts are
    stamped, and writes to rows owned by someone else fail. Rows with no
    owner at all are invisible until claimed with claim_orphans().
    """

    def __init__(self, inner: RecordStore, owner_id: str, owner_field: str = "user_id"):
        self.inner = inner
        self.table = inner.table
        self.owner_id = owner_id
        self.owner_field = owner_field

    def _scope(self, filters: Filters) -> Dict[str, Any]:
        return {**(filters or {}), self.owner_field: self.owner_id}

    async def _owns(self, record_id: str) -> bool:
        rows = await self.inner.fetch_all(["id"], self._scope({"id": record_id}))
        return bool(rows)

    async def fetch_all(self, fields: Optional[List[str]] = None, filters: Filters = None) -> List[Record]:
        return await self.inner.fetch_all(fields, self._scope(filters))

    async def update_by_id(self, record_id: str, fields: Record) -> ActionResult:
        if not await self._owns(record_id):
            return ActionResult.failed(f"{self.table} record {record_id} not found")
        return await self.inner.update_by_id(record_id, fields)

    async def insert(self, record: Record) -> ActionResult:
        return await self.inner.insert({**record, self.owner_field: self.owner_id})

    async def upsert(self, records: List[Record]) -> ActionResult:
        ids = {r.get("id") for r in records}
        existing = await self.inner.fetch_all(["id", self.owner_field])
        for row in existing:
            if row["id"] in ids and row.get(self.owner_field) != self.owner_id:
                return ActionResult.failed(f"{self.table} record {row['id']} belongs to another owner")
        return await self.inner.upsert([{**r, self.owner_field: self.owner_id} for r in records])

    async def claim_orphans(self) -> int:
        """Take ownership of rows that have no owner yet. Returns how many."""
        orphans = await self.inner.fetch_all(["id"], {self.owner_field: None})
        claimed = 0
        for row in orphans:
            result = await self.inner.update_by_id(row["id"], {self.owner_field: self.owner_id})
            if result.success:
                claimed += 1
            else:
                logger.warning("could not claim %s %s: %s", self.table, row["id"], result.error)
        if claimed:
            logger.info("claimed %d orphaned %s rows for %s", claimed, self.table, self.owner_id)
        return claimed

    async def delete_by_id(self, record_id: str) -> ActionResult:
        if not await self._owns(record_id):
            return ActionResult.failed(f"{self.table} record {record_id} not found")
        return await self.inner.delete_by_id(record_id)

    async def delete_where(self, field: str, value: Any) -> ActionResult:
        rows = await self.fetch_all(["id"], {field: value})
        for row in rows:
            result = await self.inner.delete_by_id(row["id"])
            if not result.success:
                return result
        return ActionResult.ok()
