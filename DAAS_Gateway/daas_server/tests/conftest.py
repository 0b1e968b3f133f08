import threading

import pytest
import fakeredis

from DAAS_Gateway.daas_db.ticket_ledger import TicketLedger
from DAAS_Gateway.daas_server.session_registry import SessionRegistry
from DAAS_Gateway.daas_server.ticket_authority import TicketAuthority
from DAAS_Gateway.daas_server.upload_coordinator import UploadCoordinator
from DAAS_Gateway.daas_shared.crypto_engine import CryptoEngine, sha256_hex
from DAAS_Gateway.daas_shared.errors import BundleNotFoundError, ExecutionFailed, UpstreamUnavailable
from DAAS_Gateway.daas_shared.types import ContentAddress, SealedBundle, UploadedFile

CALLER = "0x" + "ab" * 32
CID_ENV = "bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeStorage:
    def __init__(self):
        self.blobs: dict[str, bytes] = {}
        self.put_calls = 0
        self.fail = False

    async def put(self, data: bytes) -> ContentAddress:
        self.put_calls += 1
        if self.fail:
            raise UpstreamUnavailable("walrus", "down")
        blob_id = "blob-" + sha256_hex(data)[:16]
        self.blobs[blob_id] = data
        return ContentAddress(id=blob_id, size=len(data))

    async def get(self, address: str) -> bytes:
        if self.fail:
            raise UpstreamUnavailable("walrus", "down")
        if address not in self.blobs:
            raise BundleNotFoundError(address)
        return self.blobs[address]


class FakeVault:
    def __init__(self):
        self.sealed: dict[str, bytes] = {}
        self.encrypt_calls = 0
        self.decrypt_calls = 0
        self.fail = False
        self.healthy = True

    async def encrypt_and_store(self, data: bytes) -> SealedBundle:
        self.encrypt_calls += 1
        if self.fail:
            raise UpstreamUnavailable("seal", "down")
        cid = "bafy" + sha256_hex(data)[:32]
        self.sealed[cid] = data
        return SealedBundle(cid=cid, size=len(data), dek_version=3)

    async def decrypt(self, ticket: str, cid_env: str) -> bytes:
        self.decrypt_calls += 1
        if cid_env not in self.sealed:
            raise BundleNotFoundError(cid_env)
        return self.sealed[cid_env]

    async def health_check(self) -> bool:
        return self.healthy


class FakeOracle:
    def __init__(self, balance: int = 10**12):
        self.balance = balance
        self.calls = 0

    async def balance_of(self, address: str) -> int:
        self.calls += 1
        return self.balance


class FakeEngine:
    def __init__(self):
        self.executed = []
        self.error = None
        self.effects = {"effects": {"status": {"status": "success"}},
                        "events": [{"type": "0x1::blob::BlobRegistered",
                                    "parsedJson": {"blob_id": "chain-blob-1", "size": "512"}}]}

    async def execute(self, signed) -> dict:
        self.executed.append(signed)
        if self.error is not None:
            raise self.error
        return self.effects

    def reject(self, message: str = "InsufficientGas") -> None:
        self.error = ExecutionFailed(message)


class FakeFetcher:
    def __init__(self, files=None):
        self.files = files if files is not None else {"package.json": b"{}", "src/index.js": b"x", ".env": b"K=V"}
        self.calls = []

    async def fetch(self, owner: str, repo: str, ref: str) -> list[UploadedFile]:
        self.calls.append((owner, repo, ref))
        return [UploadedFile(p, d) for p, d in self.files.items()]


class _LostConnection:
    def __init__(self, error):
        self.error = error

    async def __aenter__(self):
        raise self.error

    async def __aexit__(self, *exc):
        return False


class LostPool:
    """Pool whose database went away after startup."""

    def __init__(self, error):
        self.error = error

    def acquire(self):
        return _LostConnection(self.error)


class ThreadRecordingRedis:
    """Delegates to a fakeredis client and notes the thread each command ran on."""

    def __init__(self, client):
        self._client = client
        self.threads = set()

    def __getattr__(self, name):
        attr = getattr(self._client, name)
        if not callable(attr):
            return attr

        def call(*args, **kwargs):
            self.threads.add(threading.get_ident())
            return attr(*args, **kwargs)

        return call


def make_files(mapping: dict[str, bytes]) -> list[UploadedFile]:
    return [UploadedFile(path=p, data=d) for p, d in mapping.items()]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def vault():
    return FakeVault()


@pytest.fixture
def oracle():
    return FakeOracle()


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def coordinator(storage, vault, oracle, engine):
    return UploadCoordinator(storage, vault, oracle, engine)


@pytest.fixture
def authority(clock):
    return TicketAuthority(CryptoEngine(), clock=clock)


@pytest.fixture
def sessions(clock):
    return SessionRegistry(clock=clock)


@pytest.fixture
def ledger():
    r = fakeredis.FakeRedis()
    yield TicketLedger(r)
    r.flushdb()
    r.close()
