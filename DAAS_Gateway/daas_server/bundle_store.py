import json
import uuid
from typing import Optional

import asyncpg

from DAAS_Gateway.daas_shared.errors import BundleStoreError
from DAAS_Gateway.daas_shared.types import BundleRecord

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS project_bundles(
    id UUID PRIMARY KEY,
    owner TEXT NOT NULL,
    source VARCHAR(16) NOT NULL CHECK ( source IN ('upload' , 'github' , 'wallet') ),
    repo TEXT DEFAULT NULL,
    ref TEXT DEFAULT NULL,

    cid_code TEXT NOT NULL,
    size_code BIGINT NOT NULL,
    cid_env TEXT DEFAULT NULL,
    size_env BIGINT DEFAULT NULL,
    dek_version INTEGER DEFAULT NULL,

    project_type TEXT NOT NULL,
    total_files INTEGER NOT NULL,
    files_env JSONB NOT NULL DEFAULT '[]',
    ignored JSONB NOT NULL DEFAULT '[]',
    file_tree JSONB DEFAULT NULL,

    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_bundle_owner
    ON project_bundles (owner , created_at DESC);
"""

# a database lost after startup fails in acquire() with an OS or interface error
_STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

_COLUMNS = """id, owner, source, repo, ref, cid_code, size_code, cid_env, size_env, dek_version,
              project_type, total_files, files_env, ignored, file_tree, created_at"""


def _loads(value, default):
    if value is None:
        return default
    return json.loads(value) if isinstance(value, str) else value


def _record_from_row(row, with_tree: bool = True) -> BundleRecord:
    return BundleRecord(
        id=str(row["id"]),
        owner=row["owner"],
        source=row["source"],
        repo=row["repo"],
        ref=row["ref"],
        cid_code=row["cid_code"],
        size_code=row["size_code"],
        cid_env=row["cid_env"],
        size_env=row["size_env"],
        dek_version=row["dek_version"],
        project_type=row["project_type"],
        total_files=row["total_files"],
        files_env=_loads(row["files_env"], []),
        ignored=_loads(row["ignored"], []),
        file_tree=_loads(row["file_tree"], None) if with_tree else None,
        created_at=row["created_at"].isoformat() if row["created_at"] else None,
    )


class BundleStore:
    """Upload records in PostgreSQL. Callers treat saving as best-effort."""

    pool: asyncpg.Pool

    def __init__(self, p: asyncpg.Pool):
        self.pool = p

    async def ensure_schema(self) -> None:
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(SCHEMA_SQL)
        except _STORE_ERRORS as e:
            raise BundleStoreError(f"ensure_schema failed: {e}")

    async def save(self, record: BundleRecord) -> str:
        bundle_id = record.id or str(uuid.uuid4())
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO project_bundles
                        (id, owner, source, repo, ref, cid_code, size_code, cid_env, size_env,
                         dek_version, project_type, total_files, files_env, ignored, file_tree)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12,
                            $13::jsonb, $14::jsonb, $15::jsonb)
                    """,
                    uuid.UUID(bundle_id),
                    record.owner,
                    record.source,
                    record.repo,
                    record.ref,
                    record.cid_code,
                    record.size_code,
                    record.cid_env,
                    record.size_env,
                    record.dek_version,
                    record.project_type,
                    record.total_files,
                    json.dumps(record.files_env),
                    json.dumps(record.ignored),
                    json.dumps(record.file_tree) if record.file_tree is not None else None,
                )
        except _STORE_ERRORS as e:
            raise BundleStoreError(f"save failed: {e}")
        record.id = bundle_id
        return bundle_id

    async def get(self, bundle_id: str) -> Optional[BundleRecord]:
        try:
            key = uuid.UUID(bundle_id)
        except ValueError:
            return None
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(f"SELECT {_COLUMNS} FROM project_bundles WHERE id = $1", key)
        except _STORE_ERRORS as e:
            raise BundleStoreError(f"get failed: {e}")
        return _record_from_row(row) if row else None

    async def list_by_owner(self, owner: str, limit: int, offset: int = 0) -> list[BundleRecord]:
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    f"""
                    SELECT {_COLUMNS}
                    FROM project_bundles
                    WHERE owner = $1
                    ORDER BY created_at DESC
                    LIMIT $2 OFFSET $3
                    """,
                    owner,
                    limit,
                    offset,
                )
        except _STORE_ERRORS as e:
            raise BundleStoreError(f"list_by_owner failed: {e}")
        # listings leave the tree out; fetch one bundle for it
        return [_record_from_row(row, with_tree=False) for row in rows]
