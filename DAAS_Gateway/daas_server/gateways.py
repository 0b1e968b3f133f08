"""
Boundaries to the external collaborators.

Each collaborator is a Protocol; the HTTP implementations below share one
httpx.AsyncClient handed in at startup. Transport failures and 5xx answers
become UpstreamUnavailable. Nothing here retries.
"""

import logging
from typing import Optional, Protocol
from urllib.parse import urlparse

import httpx

from DAAS_Gateway.daas_shared import config
from DAAS_Gateway.daas_shared.errors import (
    BundleNotFoundError,
    BundleTooLargeError,
    ExecutionFailed,
    SourceNotFoundError,
    TicketInvalid,
    UpstreamUnavailable,
)
from DAAS_Gateway.daas_shared.types import ContentAddress, SealedBundle, SignedTransaction, UploadedFile
from DAAS_Gateway.daas_files.archive_reader import read_tarball

logger = logging.getLogger(__name__)


# ── Protocols ──


class StorageGateway(Protocol):
    async def put(self, data: bytes) -> ContentAddress: ...

    async def get(self, address: str) -> bytes: ...


class VaultGateway(Protocol):
    async def encrypt_and_store(self, data: bytes) -> SealedBundle: ...

    async def decrypt(self, ticket: str, cid_env: str) -> bytes: ...

    async def health_check(self) -> bool: ...


class BalanceOracle(Protocol):
    async def balance_of(self, address: str) -> int: ...


class ExecutionEngine(Protocol):
    async def execute(self, signed: SignedTransaction) -> dict: ...


class SourceFetcher(Protocol):
    async def fetch(self, owner: str, repo: str, ref: str) -> list[UploadedFile]: ...


# ── Helpers ──


async def _send(service: str, client: httpx.AsyncClient, method: str, url: str, **kwargs) -> httpx.Response:
    try:
        resp = await client.request(method, url, **kwargs)
    except httpx.TransportError as e:
        raise UpstreamUnavailable(service, f"{type(e).__name__}: {e}")
    if resp.status_code >= 500:
        raise UpstreamUnavailable(service, f"HTTP {resp.status_code}")
    return resp


def _json_body(service: str, resp: httpx.Response) -> dict:
    try:
        body = resp.json()
    except ValueError:
        raise UpstreamUnavailable(service, "response is not JSON")
    if not isinstance(body, dict):
        raise UpstreamUnavailable(service, "response is not a JSON object")
    return body


def _effect_size(blob_id: str, value) -> int:
    # the transaction has already executed; a bad size must not lose the address
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        logger.warning("blob %s: unreadable size %r in execution effects", blob_id, value)
        return 0


def extract_content_address(effects: dict) -> ContentAddress:
    """Find the registered blob in execution effects.

    Accepts a top-level 'blobId', or the blob_id of a BlobRegistered /
    BlobCertified event.
    """
    if effects.get("blobId"):
        blob_id = str(effects["blobId"])
        return ContentAddress(id=blob_id, size=_effect_size(blob_id, effects.get("size")))

    for event in effects.get("events") or []:
        event_type = event.get("type") or ""
        if not event_type.endswith(("::BlobRegistered", "::BlobCertified")):
            continue
        parsed = event.get("parsedJson") or {}
        if parsed.get("blob_id"):
            blob_id = str(parsed["blob_id"])
            return ContentAddress(id=blob_id, size=_effect_size(blob_id, parsed.get("size")))

    raise ExecutionFailed("no content address in execution effects")


# ── Storage (Walrus) ──


class WalrusStorageGateway:
    SERVICE = "walrus"

    def __init__(self, client: httpx.AsyncClient, publisher_url: str, aggregator_url: str,
                 epochs: int = config.STORAGE_EPOCHS):
        self.client = client
        self.publisher_url = publisher_url.rstrip("/")
        self.aggregator_url = aggregator_url.rstrip("/")
        self.epochs = epochs

    async def put(self, data: bytes) -> ContentAddress:
        logger.info("uploading %d bytes to %s", len(data), self.publisher_url)
        resp = await _send(
            self.SERVICE, self.client, "PUT", f"{self.publisher_url}/v1/blobs",
            params={"epochs": self.epochs},
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )
        if resp.status_code == 413:
            raise BundleTooLargeError("codeBundle", len(data), config.CODE_BUNDLE_MAX_BYTES)
        if resp.status_code != 200:
            raise UpstreamUnavailable(self.SERVICE, f"upload rejected with HTTP {resp.status_code}")

        # {"newlyCreated": {"blobObject": {"blobId": ...}}} or {"alreadyCertified": {"blobId": ...}}
        body = _json_body(self.SERVICE, resp)
        blob_id = ((body.get("newlyCreated") or {}).get("blobObject") or {}).get("blobId") \
            or (body.get("alreadyCertified") or {}).get("blobId")
        if not blob_id:
            raise UpstreamUnavailable(self.SERVICE, "response is missing the blob id")
        return ContentAddress(id=blob_id, size=len(data))

    async def get(self, address: str) -> bytes:
        resp = await _send(self.SERVICE, self.client, "GET", f"{self.aggregator_url}/v1/blobs/{address}")
        if resp.status_code == 404:
            raise BundleNotFoundError(address)
        if resp.status_code != 200:
            raise UpstreamUnavailable(self.SERVICE, f"read rejected with HTTP {resp.status_code}")
        return resp.content


# ── Vault (Seal) ──


class SealVaultGateway:
    SERVICE = "seal"

    def __init__(self, client: httpx.AsyncClient, base_url: str, service_token: str,
                 storage_target: Optional[str] = None):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.service_token = service_token
        self.storage_target = storage_target

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.service_token}"}

    async def encrypt_and_store(self, data: bytes) -> SealedBundle:
        form = {"target": self.storage_target} if self.storage_target else {}
        resp = await _send(
            self.SERVICE, self.client, "POST", f"{self.base_url}/v1/encrypt-and-upload",
            files={"file": (config.SECRET_BUNDLE_NAME, data, config.BUNDLE_MIME_TYPE)},
            data=form,
            headers=self._headers(),
        )
        if resp.status_code != 200:
            raise UpstreamUnavailable(self.SERVICE, f"encrypt rejected with HTTP {resp.status_code}")

        body = _json_body(self.SERVICE, resp)
        cid, dek_version = body.get("cid"), body.get("dek_version")
        if not cid or dek_version is None:
            raise UpstreamUnavailable(self.SERVICE, "response is missing cid or dek_version")
        try:
            dek_version = int(dek_version)
        except (TypeError, ValueError):
            raise UpstreamUnavailable(self.SERVICE, f"unexpected dek_version {dek_version!r}")
        return SealedBundle(cid=cid, size=len(data), dek_version=dek_version)

    async def decrypt(self, ticket: str, cid_env: str) -> bytes:
        resp = await _send(
            self.SERVICE, self.client, "POST", f"{self.base_url}/v1/decrypt",
            json={"ticket": ticket, "cid": cid_env},
            headers=self._headers(),
        )
        if resp.status_code in (401, 403):
            raise TicketInvalid(f"vault refused ticket with HTTP {resp.status_code}")
        if resp.status_code == 404:
            raise BundleNotFoundError(cid_env)
        if resp.status_code != 200:
            raise UpstreamUnavailable(self.SERVICE, f"decrypt rejected with HTTP {resp.status_code}")
        return resp.content

    async def health_check(self) -> bool:
        try:
            resp = await self.client.get(f"{self.base_url}/health", timeout=5.0)
        except httpx.TransportError as e:
            logger.warning("seal health check failed: %s", e)
            return False
        return resp.status_code == 200


def walrus_target(publisher_url: str) -> str:
    return f"walrus://{urlparse(publisher_url).netloc or publisher_url}"


# ── Chain (Sui JSON-RPC) ──


class SuiRpcClient:
    SERVICE = "sui"

    def __init__(self, client: httpx.AsyncClient, rpc_url: str, coin_type: str = config.SUI_COIN_TYPE):
        self.client = client
        self.rpc_url = rpc_url
        self.coin_type = coin_type

    async def _rpc(self, method: str, params: list) -> dict:
        resp = await _send(
            self.SERVICE, self.client, "POST", self.rpc_url,
            json={"jsonrpc": "2.0", "id": 1, "method": method, "params": params},
        )
        if resp.status_code != 200:
            raise UpstreamUnavailable(self.SERVICE, f"{method} rejected with HTTP {resp.status_code}")
        return _json_body(self.SERVICE, resp)

    async def balance_of(self, address: str) -> int:
        body = await self._rpc("suix_getBalance", [address, self.coin_type])
        if body.get("error"):
            raise UpstreamUnavailable(self.SERVICE, body["error"].get("message", "getBalance failed"))
        try:
            return int((body.get("result") or {})["totalBalance"])
        except (KeyError, TypeError, ValueError):
            raise UpstreamUnavailable(self.SERVICE, "getBalance returned no totalBalance")

    async def execute(self, signed: SignedTransaction) -> dict:
        body = await self._rpc(
            "sui_executeTransactionBlock",
            [
                signed.tx_bytes,
                [signed.signature],
                {"showEffects": True, "showEvents": True},
                "WaitForLocalExecution",
            ],
        )
        if body.get("error"):
            raise ExecutionFailed(body["error"].get("message", "rejected"))

        result = body.get("result") or {}
        status = ((result.get("effects") or {}).get("status") or {})
        if status.get("status") != "success":
            raise ExecutionFailed(status.get("error") or "transaction did not succeed")
        return result


# ── Remote source (GitHub) ──


class GitHubSourceFetcher:
    SERVICE = "github"

    def __init__(self, client: httpx.AsyncClient, api_url: str, token: Optional[str] = None,
                 user_agent: str = "DAAS-Gateway/1.0"):
        self.client = client
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.user_agent = user_agent

    async def fetch(self, owner: str, repo: str, ref: str) -> list[UploadedFile]:
        headers = {"Accept": "application/vnd.github+json", "User-Agent": self.user_agent}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        resp = await _send(
            self.SERVICE, self.client, "GET", f"{self.api_url}/repos/{owner}/{repo}/tarball/{ref}",
            headers=headers,
            follow_redirects=True,
        )
        if resp.status_code in (403, 404):
            raise SourceNotFoundError(f"{owner}/{repo}@{ref}")
        if resp.status_code != 200:
            raise UpstreamUnavailable(self.SERVICE, f"tarball rejected with HTTP {resp.status_code}")

        # tarballs wrap everything in '<owner>-<repo>-<sha>/'
        files = read_tarball(resp.content, strip_components=1)
        logger.info("fetched %d files from %s/%s@%s", len(files), owner, repo, ref)
        return files
