import asyncio

import asyncpg
import pytest
import pytest_asyncio

from DAAS_Gateway.daas_server import config as server_config
from DAAS_Gateway.daas_server import db
from DAAS_Gateway.daas_server.bundle_store import BundleStore
from DAAS_Gateway.daas_shared.errors import BundleStoreError
from DAAS_Gateway.daas_shared.types import BundleRecord

from .conftest import LostPool

pytestmark = pytest.mark.asyncio


@pytest_asyncio.fixture
async def pool():
    """Connection pool against the test database; skips when PostgreSQL is not running."""
    try:
        p = await asyncpg.create_pool(server_config.PG_TEST_DSN, min_size=1, max_size=4)
    except (OSError, asyncpg.PostgresError) as e:
        pytest.skip(f"PostgreSQL not available: {e}")
    store = BundleStore(p)
    await store.ensure_schema()
    async with p.acquire() as conn:
        await conn.execute("TRUNCATE project_bundles")
    yield p
    await p.close()


@pytest.fixture
def store(pool) -> BundleStore:
    return BundleStore(pool)


def make_record(owner: str = "alice", **overrides) -> BundleRecord:
    fields = dict(
        id="",
        owner=owner,
        source="upload",
        cid_code="blob-abc",
        size_code=1024,
        project_type="nodejs",
        total_files=3,
        cid_env="bafyenv",
        size_env=64,
        dek_version=1,
        files_env=[{"path": ".env", "size": 8, "sha256": "00" * 32}],
        ignored=["node_modules/x.js"],
        file_tree={"name": "/", "type": "directory", "path": "/", "children": {}},
    )
    fields.update(overrides)
    return BundleRecord(**fields)


async def test_save_and_get(store):
    bundle_id = await store.save(make_record())
    record = await store.get(bundle_id)

    assert record.id == bundle_id
    assert record.owner == "alice"
    assert record.cid_code == "blob-abc"
    assert record.dek_version == 1
    assert record.files_env[0]["path"] == ".env"
    assert record.ignored == ["node_modules/x.js"]
    assert record.file_tree["type"] == "directory"
    assert record.created_at is not None


async def test_save_without_secrets(store):
    bundle_id = await store.save(make_record(cid_env=None, size_env=None, dek_version=None,
                                             files_env=[], file_tree=None))
    record = await store.get(bundle_id)
    assert record.cid_env is None
    assert record.files_env == []
    assert record.file_tree is None


async def test_save_github_source(store):
    bundle_id = await store.save(make_record(source="github", repo="acme/web", ref="main"))
    record = await store.get(bundle_id)
    assert (record.source, record.repo, record.ref) == ("github", "acme/web", "main")


async def test_unknown_source_rejected(store):
    with pytest.raises(BundleStoreError):
        await store.save(make_record(source="ftp"))


async def test_get_unknown(store):
    assert await store.get("00000000-0000-4000-8000-000000000000") is None


async def test_get_malformed_id(store):
    assert await store.get("not-a-uuid") is None


async def test_list_by_owner_newest_first(store):
    first = await store.save(make_record())
    await asyncio.sleep(0.01)
    second = await store.save(make_record())
    await store.save(make_record(owner="bob"))

    records = await store.list_by_owner("alice", limit=10)
    assert [r.id for r in records] == [second, first]
    assert all(r.file_tree is None for r in records)


async def test_list_by_owner_paging(store):
    for _ in range(5):
        await store.save(make_record())
    assert len(await store.list_by_owner("alice", limit=2)) == 2
    assert len(await store.list_by_owner("alice", limit=10, offset=4)) == 1
    assert await store.list_by_owner("nobody", limit=10) == []


async def test_health_check(pool):
    assert await db.health_check(pool) is True
    assert await db.health_check(None) is False


@pytest.mark.parametrize("error", [ConnectionRefusedError(111, "refused"),
                                   asyncpg.InterfaceError("pool is closed")])
async def test_lost_database_raises_store_error(error):
    lost = BundleStore(LostPool(error))
    with pytest.raises(BundleStoreError):
        await lost.ensure_schema()
    with pytest.raises(BundleStoreError):
        await lost.save(make_record())
    with pytest.raises(BundleStoreError):
        await lost.get("00000000-0000-4000-8000-000000000000")
    with pytest.raises(BundleStoreError):
        await lost.list_by_owner("alice", limit=10)


async def test_health_check_lost_database():
    assert await db.health_check(LostPool(ConnectionRefusedError(111, "refused"))) is False
