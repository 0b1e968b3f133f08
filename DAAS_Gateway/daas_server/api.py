"""
FastAPI endpoints for the DAAS gateway.

Uploads arrive as multipart file sets (or one archive) and are answered with
the two content addresses. Ticket endpoints speak camelCase JSON; tickets
travel as the compact 'payload.signature' token.

All collaborators are held by a Services container built once in the
lifespan, or handed in by the caller of create_app() (tests pass fakes).
"""

import base64
import binascii
import json
import logging
import re
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, File, Form, Header, Query, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from DAAS_Gateway.daas_db import connection as ledger_connection
from DAAS_Gateway.daas_db.ticket_ledger import TicketLedger
from DAAS_Gateway.daas_files.archive_reader import is_archive_name, read_archive
from DAAS_Gateway.daas_files.bundle_builder import extract_file
from DAAS_Gateway.daas_files.classifier import normalize_path
from DAAS_Gateway.daas_files.file_tree import find_node, mime_type_for
from DAAS_Gateway.daas_server import config as server_config
from DAAS_Gateway.daas_server import db
from DAAS_Gateway.daas_server.bundle_store import BundleStore
from DAAS_Gateway.daas_server.error_handlers import setup_error_handlers
from DAAS_Gateway.daas_server.gateways import (
    GitHubSourceFetcher,
    SealVaultGateway,
    SourceFetcher,
    SuiRpcClient,
    WalrusStorageGateway,
    walrus_target,
)
from DAAS_Gateway.daas_server.session_registry import SessionRegistry
from DAAS_Gateway.daas_server.ticket_authority import TicketAuthority, encode_ticket
from DAAS_Gateway.daas_server.upload_coordinator import UploadCoordinator, validate_caller_address
from DAAS_Gateway.daas_shared import config
from DAAS_Gateway.daas_shared.crypto_engine import CryptoEngine
from DAAS_Gateway.daas_shared.errors import (
    BundleNotFoundError,
    BundleStoreError,
    LedgerUnavailableError,
    MalformedAddressError,
    MissingFieldError,
    SessionNotFoundError,
    UpstreamUnavailable,
    ValidationError,
)
from DAAS_Gateway.daas_shared.logging_setup import configure_logging
from DAAS_Gateway.daas_shared.types import (
    AccessSession,
    BundleRecord,
    ClassifiedBundle,
    DataType,
    HealthStatus,
    SignedTransaction,
    UploadedFile,
    UploadResult,
)
from DAAS_Gateway.release import release_secrets

logger = logging.getLogger(__name__)

_GITHUB_REPO = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")


# ── Pydantic request/response models ──


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FileInfoOut(BaseModel):
    path: str
    size: int
    sha256: str


class UploadResponse(BaseModel):
    cid_code: str
    size_code: int
    cid_env: Optional[str] = None
    size_env: Optional[int] = None
    dek_version: Optional[int] = None
    secrets_status: str
    files_env: list[FileInfoOut]
    ignored: list[str]
    project_type: Optional[str] = None
    total_files: Optional[int] = None
    file_tree: Optional[dict] = None
    bundle_id: Optional[str] = None


class TransactionOut(_CamelModel):
    tx_payload: str
    gas_budget: int
    metadata: dict


class PrepareResponse(BaseModel):
    transaction: TransactionOut
    files_env: list[FileInfoOut]
    secret_count: int
    ignored: list[str]
    project_type: str
    total_files: int


class SignedTransactionIn(_CamelModel):
    tx_bytes: Optional[str] = None
    signature: Optional[str] = None


class SecretFileIn(_CamelModel):
    path: str
    content_base64: str


class CompleteUploadRequest(_CamelModel):
    signed_transaction: Optional[SignedTransactionIn] = None
    caller_address: Optional[str] = None
    secret_files: list[SecretFileIn] = []
    project_type: Optional[str] = None
    total_files: Optional[int] = None


class GitHubUploadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    repo: Optional[str] = None
    ref: str = "main"
    installation_id: Optional[int] = None
    ignore_patterns: Optional[list[str]] = Field(None, alias="ignorePatterns")
    owner: Optional[str] = None


class BalanceOut(_CamelModel):
    address: str
    balance: str
    required: str
    coin_type: str
    sufficient: bool


class BundleOut(BaseModel):
    id: str
    owner: str
    source: str
    repo: Optional[str] = None
    ref: Optional[str] = None
    cid_code: str
    size_code: int
    cid_env: Optional[str] = None
    size_env: Optional[int] = None
    dek_version: Optional[int] = None
    project_type: str
    total_files: int
    files_env: list[dict] = []
    ignored: list[str] = []
    file_tree: Optional[dict] = None
    created_at: Optional[str] = None


class BundleListResponse(BaseModel):
    bundles: list[BundleOut]
    limit: int
    offset: int


class TicketRequest(_CamelModel):
    lease_id: Optional[str] = None
    cid_env: Optional[str] = None
    node_id: Optional[str] = None
    ttl: Optional[int] = None


class TicketOut(_CamelModel):
    ticket: str
    lease_id: str
    cid_env: str
    node_id: str
    issued_at: int
    expires_at: int
    jti: str
    signature: str


class VerifyTicketRequest(_CamelModel):
    ticket: Optional[str] = None
    lease_id: Optional[str] = None
    cid_env: Optional[str] = None
    node_id: Optional[str] = None


class TicketPayloadOut(_CamelModel):
    lease_id: str
    cid_env: str
    node_id: str
    expires_at: int
    jti: str


class VerifyTicketResponse(BaseModel):
    valid: bool
    payload: TicketPayloadOut


class RedeemRequest(_CamelModel):
    ticket: Optional[str] = None
    lease_id: Optional[str] = None
    node_id: Optional[str] = None


class PublicKeyResponse(_CamelModel):
    public_key: str
    algorithm: str = "ed25519"


class SessionRequest(_CamelModel):
    identity: Optional[str] = None
    permissions: list[str] = []
    ttl: Optional[int] = None


class SessionOut(_CamelModel):
    key_id: str
    identity: str
    permissions: list[str]
    expires_at: float
    active: bool


class RevokeResponse(BaseModel):
    revoked: bool


class SealHealthResponse(_CamelModel):
    status: str
    vault_connected: bool
    active_sessions: int


class HealthResponse(BaseModel):
    status: str
    ledger_connected: bool
    store_connected: bool
    ledger_key_count: int


# ── Services ──


@dataclass
class Services:
    coordinator: UploadCoordinator
    authority: TicketAuthority
    sessions: SessionRegistry
    ledger: Optional[TicketLedger] = None
    fetcher: Optional[SourceFetcher] = None
    bundle_store: Optional[BundleStore] = None
    require_session: bool = config.TICKET_REQUIRE_SESSION


@asynccontextmanager
async def default_services():
    """Build the production collaborators from configuration.

    The ledger and the bundle store are optional at startup: without Redis
    /seal/redeem answers 503, without PostgreSQL uploads are not recorded.
    """
    client = httpx.AsyncClient(timeout=config.REQUEST_TIMEOUT_SECONDS)
    storage = WalrusStorageGateway(client, server_config.WALRUS_PUBLISHER_URL, server_config.WALRUS_AGGREGATOR_URL)
    vault = SealVaultGateway(client, server_config.SEAL_URL, server_config.SEAL_SERVICE_TOKEN,
                             storage_target=walrus_target(server_config.WALRUS_PUBLISHER_URL))
    chain = SuiRpcClient(client, server_config.SUI_RPC_URL)

    redis_client = None
    try:
        redis_client = await run_in_threadpool(ledger_connection.create_ledger_client)
    except LedgerUnavailableError as e:
        logger.warning("ticket ledger disabled: %s", e)

    pool = None
    store = None
    try:
        pool = await db.create_pool(
            server_config.PG_DSN,
            min_size=server_config.PG_POOL_MIN_SIZE,
            max_size=server_config.PG_POOL_MAX_SIZE,
        )
        store = BundleStore(pool)
        await store.ensure_schema()
    except BundleStoreError as e:
        logger.warning("bundle records disabled: %s", e)
        store = None

    services = Services(
        coordinator=UploadCoordinator(storage, vault, chain, chain),
        authority=TicketAuthority(CryptoEngine(config.TICKET_SIGNING_SEED)),
        sessions=SessionRegistry(),
        ledger=TicketLedger(redis_client) if redis_client is not None else None,
        fetcher=GitHubSourceFetcher(client, server_config.GITHUB_API_URL, server_config.GITHUB_TOKEN,
                                    user_agent=server_config.GITHUB_USER_AGENT),
        bundle_store=store,
    )
    try:
        yield services
    finally:
        await client.aclose()
        if redis_client is not None:
            ledger_connection.close_client(redis_client)
        await db.close_pool(pool)


def get_services(request: Request) -> Services:
    return request.app.state.services


# ── Helpers ──


async def _read_uploads(files: list[UploadFile]) -> list[UploadedFile]:
    uploaded = []
    for f in files:
        try:
            data = await f.read()
        finally:
            await f.close()
        uploaded.append(UploadedFile(path=(f.filename or "").strip(), data=data))

    # a single archive stands for the whole tree
    if len(uploaded) == 1 and is_archive_name(uploaded[0].path):
        return read_archive(uploaded[0].path, uploaded[0].data)
    return uploaded


def _parse_patterns(raw: Optional[str]) -> Optional[list[str]]:
    if raw is None or not raw.strip():
        return None
    raw = raw.strip()
    if not raw.startswith("["):
        return [p.strip() for p in raw.split(",") if p.strip()]
    try:
        value = json.loads(raw)
    except ValueError:
        raise ValidationError("ignorePatterns", "must be a JSON array or a comma-separated list")
    if not isinstance(value, list) or not all(isinstance(p, str) for p in value):
        raise ValidationError("ignorePatterns", "must be a list of strings")
    return value


def _upload_response(result: UploadResult, bundle: Optional[ClassifiedBundle] = None,
                     bundle_id: Optional[str] = None) -> UploadResponse:
    return UploadResponse(
        cid_code=result.cid_code,
        size_code=result.size_code,
        cid_env=result.cid_env,
        size_env=result.size_env,
        dek_version=result.dek_version,
        secrets_status=result.secrets_status.value,
        files_env=[FileInfoOut(**asdict(f)) for f in result.files_env],
        ignored=result.ignored,
        project_type=bundle.project_type if bundle else None,
        total_files=bundle.total_files if bundle else None,
        file_tree=bundle.file_tree.to_dict() if bundle else None,
        bundle_id=bundle_id,
    )


async def _save_record(services: Services, result: UploadResult, *, owner: Optional[str], source: str,
                       project_type: str, total_files: int, file_tree: Optional[dict] = None,
                       repo: Optional[str] = None, ref: Optional[str] = None) -> Optional[str]:
    if services.bundle_store is None:
        return None
    record = BundleRecord(
        id="",
        owner=owner or "anonymous",
        source=source,
        repo=repo,
        ref=ref,
        cid_code=result.cid_code,
        size_code=result.size_code,
        cid_env=result.cid_env,
        size_env=result.size_env,
        dek_version=result.dek_version,
        project_type=project_type,
        total_files=total_files,
        files_env=[asdict(f) for f in result.files_env],
        ignored=result.ignored,
        file_tree=file_tree,
    )
    try:
        return await services.bundle_store.save(record)
    except BundleStoreError as e:
        logger.warning("upload %s not recorded: %s", result.cid_code, e)
        return None


def _require_store(services: Services) -> BundleStore:
    if services.bundle_store is None:
        raise BundleStoreError("not configured")
    return services.bundle_store


async def _require_record(services: Services, bundle_id: str) -> BundleRecord:
    record = await _require_store(services).get(bundle_id)
    if record is None:
        raise BundleNotFoundError(bundle_id)
    return record


def _decode_secret_files(items: list[SecretFileIn]) -> dict[str, bytes]:
    secret_files = {}
    for item in items:
        path = normalize_path(item.path)
        if path is None:
            raise ValidationError("secretFiles", f"Invalid path {item.path!r}")
        try:
            secret_files[path] = base64.b64decode(item.content_base64, validate=True)
        except (binascii.Error, ValueError):
            raise ValidationError("secretFiles", f"{path} is not valid base64")
    return secret_files


def _session_out(session: AccessSession) -> SessionOut:
    return SessionOut(
        key_id=session.key_id,
        identity=session.identity,
        permissions=sorted(p.value for p in session.permissions),
        expires_at=session.expires_at,
        active=session.active,
    )


# ── App ──


def create_app(services: Optional[Services] = None) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        if services is not None:
            app.state.services = services
            yield
            return
        async with default_services() as built:
            app.state.services = built
            yield

    app = FastAPI(title="DAAS Gateway", version="1.0.0", lifespan=lifespan)
    if services is not None:
        # usable without running the lifespan (ASGITransport does not)
        app.state.services = services
    setup_error_handlers(app)

    # ── Project uploads ──

    @app.post("/project/upload", response_model=UploadResponse, response_model_exclude_none=True)
    async def upload_project(
        files: list[UploadFile] = File(...),
        ignore_patterns: Optional[str] = Form(None, alias="ignorePatterns"),
        owner: Optional[str] = Form(None),
        svc: Services = Depends(get_services),
    ):
        uploaded = await _read_uploads(files)
        bundle = svc.coordinator.classify(uploaded, _parse_patterns(ignore_patterns))
        result = await svc.coordinator.upload_classified(bundle)

        tree = bundle.file_tree.to_dict()
        bundle_id = await _save_record(svc, result, owner=owner, source="upload",
                                       project_type=bundle.project_type, total_files=bundle.total_files,
                                       file_tree=tree)
        return _upload_response(result, bundle, bundle_id)

    @app.post("/project/prepare-upload", response_model=PrepareResponse)
    async def prepare_upload(
        files: list[UploadFile] = File(...),
        caller_address: Optional[str] = Form(None, alias="callerAddress"),
        ignore_patterns: Optional[str] = Form(None, alias="ignorePatterns"),
        svc: Services = Depends(get_services),
    ):
        validate_caller_address(caller_address)
        uploaded = await _read_uploads(files)
        prepared = await svc.coordinator.prepare(uploaded, caller_address, _parse_patterns(ignore_patterns))
        tx = prepared.transaction
        return PrepareResponse(
            transaction=TransactionOut(tx_payload=tx.tx_payload, gas_budget=tx.gas_budget, metadata=tx.metadata),
            files_env=[FileInfoOut(**asdict(f)) for f in prepared.files_env],
            secret_count=len(prepared.files_env),
            ignored=prepared.ignored,
            project_type=prepared.project_type,
            total_files=prepared.total_files,
        )

    @app.post("/project/complete-upload", response_model=UploadResponse, response_model_exclude_none=True)
    async def complete_upload(req: CompleteUploadRequest, svc: Services = Depends(get_services)):
        if req.signed_transaction is None:
            raise MissingFieldError("signedTransaction")
        signed = SignedTransaction(
            tx_bytes=req.signed_transaction.tx_bytes or "",
            signature=req.signed_transaction.signature or "",
        )
        secret_files = _decode_secret_files(req.secret_files)
        result = await svc.coordinator.complete(signed, req.caller_address, secret_files)

        bundle_id = await _save_record(svc, result, owner=req.caller_address.lower(), source="wallet",
                                       project_type=req.project_type or config.UNKNOWN_PROJECT_TYPE,
                                       total_files=req.total_files or len(secret_files))
        return _upload_response(result, bundle_id=bundle_id)

    @app.post("/project/from-github", response_model=UploadResponse, response_model_exclude_none=True)
    async def upload_from_github(req: GitHubUploadRequest, svc: Services = Depends(get_services)):
        if not req.repo:
            raise MissingFieldError("repo")
        if not _GITHUB_REPO.match(req.repo):
            raise MalformedAddressError("repo", req.repo)
        if svc.fetcher is None:
            raise UpstreamUnavailable("github", "not configured")

        repo_owner, repo_name = req.repo.split("/", 1)
        files = await svc.fetcher.fetch(repo_owner, repo_name, req.ref)
        bundle = svc.coordinator.classify(files, req.ignore_patterns)
        result = await svc.coordinator.upload_classified(bundle)

        tree = bundle.file_tree.to_dict()
        bundle_id = await _save_record(svc, result, owner=req.owner or repo_owner, source="github",
                                       project_type=bundle.project_type, total_files=bundle.total_files,
                                       file_tree=tree, repo=req.repo, ref=req.ref)
        return _upload_response(result, bundle, bundle_id)

    @app.get("/project/wallet-balance/{address}", response_model=BalanceOut)
    async def wallet_balance(address: str, svc: Services = Depends(get_services)):
        snap = await svc.coordinator.balance_snapshot(address)
        return BalanceOut(
            address=snap.address,
            balance=str(snap.balance),
            required=str(snap.required),
            coin_type=snap.coin_type,
            sufficient=snap.sufficient,
        )

    # ── Bundle records ──

    @app.get("/project/bundles", response_model=BundleListResponse, response_model_exclude_none=True)
    async def list_bundles(
        owner: str = Query(...),
        limit: int = Query(server_config.BUNDLE_LIST_DEFAULT_LIMIT, ge=1, le=server_config.BUNDLE_LIST_MAX_LIMIT),
        offset: int = Query(0, ge=0),
        svc: Services = Depends(get_services),
    ):
        records = await _require_store(svc).list_by_owner(owner, limit, offset)
        return BundleListResponse(bundles=[BundleOut(**asdict(r)) for r in records], limit=limit, offset=offset)

    @app.get("/project/bundles/{bundle_id}", response_model=BundleOut, response_model_exclude_none=True)
    async def get_bundle(bundle_id: str, svc: Services = Depends(get_services)):
        return BundleOut(**asdict(await _require_record(svc, bundle_id)))

    @app.get("/project/bundles/{bundle_id}/tree")
    async def get_bundle_tree(bundle_id: str, path: str = Query(""), svc: Services = Depends(get_services)):
        record = await _require_record(svc, bundle_id)
        node = find_node(record.file_tree or {}, path)
        if node is None:
            raise BundleNotFoundError(bundle_id, path or "/")
        return node

    @app.get("/project/bundles/{bundle_id}/files/{file_path:path}")
    async def get_bundle_file(bundle_id: str, file_path: str, svc: Services = Depends(get_services)):
        record = await _require_record(svc, bundle_id)
        archive = await svc.coordinator.storage.get(record.cid_code)
        data = extract_file(archive, file_path)
        if data is None:
            raise BundleNotFoundError(bundle_id, file_path)
        return Response(content=data, media_type=mime_type_for(file_path))

    # ── Tickets ──

    @app.post("/seal/ticket", response_model=TicketOut)
    async def issue_ticket(
        req: TicketRequest,
        session_key: Optional[str] = Header(None, alias="X-Session-Key"),
        svc: Services = Depends(get_services),
    ):
        if svc.require_session:
            if not session_key:
                raise MissingFieldError("X-Session-Key")
            svc.sessions.authorize(session_key, DataType.SECRETS)

        ticket = svc.authority.issue(req.lease_id, req.cid_env, req.node_id, req.ttl)
        return TicketOut(
            ticket=encode_ticket(ticket),
            lease_id=ticket.lease_id,
            cid_env=ticket.cid_env,
            node_id=ticket.node_id,
            issued_at=ticket.issued_at,
            expires_at=ticket.expires_at,
            jti=ticket.jti,
            signature=ticket.signature,
        )

    @app.post("/seal/verify-ticket", response_model=VerifyTicketResponse)
    async def verify_ticket(req: VerifyTicketRequest, svc: Services = Depends(get_services)):
        if not req.ticket:
            raise MissingFieldError("ticket")
        payload = svc.authority.verify(req.ticket, lease_id=req.lease_id, cid_env=req.cid_env, node_id=req.node_id)
        return VerifyTicketResponse(valid=True, payload=TicketPayloadOut(**asdict(payload)))

    @app.post("/seal/redeem")
    async def redeem_ticket(req: RedeemRequest, svc: Services = Depends(get_services)):
        if not req.ticket:
            raise MissingFieldError("ticket")
        if svc.ledger is None:
            raise LedgerUnavailableError("not configured")
        payload, plaintext = await release_secrets(
            svc.authority, svc.ledger, svc.coordinator.vault, req.ticket,
            lease_id=req.lease_id, node_id=req.node_id,
        )
        return Response(
            content=plaintext,
            media_type=config.BUNDLE_MIME_TYPE,
            headers={"X-Lease-Id": payload.lease_id, "X-Cid-Env": payload.cid_env},
        )

    @app.get("/seal/public-key", response_model=PublicKeyResponse)
    async def public_key(svc: Services = Depends(get_services)):
        return PublicKeyResponse(public_key=svc.authority.public_key_hex)

    # ── Access sessions ──

    @app.post("/seal/sessions", response_model=SessionOut)
    async def create_session(req: SessionRequest, svc: Services = Depends(get_services)):
        return _session_out(svc.sessions.create(req.identity, req.permissions, req.ttl))

    @app.get("/seal/sessions/{key_id}", response_model=SessionOut)
    async def get_session(key_id: str, svc: Services = Depends(get_services)):
        session = svc.sessions.get(key_id)
        if session is None:
            raise SessionNotFoundError(key_id)
        return _session_out(session)

    @app.delete("/seal/sessions/{key_id}", response_model=RevokeResponse)
    async def revoke_session(key_id: str, svc: Services = Depends(get_services)):
        if not svc.sessions.revoke(key_id):
            raise SessionNotFoundError(key_id)
        return RevokeResponse(revoked=True)

    # ── Health ──

    @app.get("/seal/health", response_model=SealHealthResponse)
    async def seal_health(svc: Services = Depends(get_services)):
        svc.sessions.sweep()
        connected = await svc.coordinator.vault.health_check()
        body = SealHealthResponse(
            status="ok" if connected else "unavailable",
            vault_connected=connected,
            active_sessions=len(svc.sessions),
        )
        if not connected:
            return JSONResponse(status_code=503, content=body.model_dump(by_alias=True))
        return body

    @app.get("/health", response_model=HealthResponse)
    async def health(svc: Services = Depends(get_services)):
        ledger_connected, key_count = (False, 0)
        if svc.ledger is not None:
            ledger_connected, key_count = await run_in_threadpool(ledger_connection.ledger_health, svc.ledger.db)
        status = HealthStatus(
            ledger_connected=ledger_connected,
            store_connected=await db.health_check(svc.bundle_store.pool) if svc.bundle_store else False,
            ledger_key_count=key_count,
        )
        return HealthResponse(
            status="ok" if status.ledger_connected and status.store_connected else "degraded",
            **asdict(status),
        )

    return app


app = create_app()
