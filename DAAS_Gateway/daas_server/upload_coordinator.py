"""
Drives the two upload protocols.

Custodial: classify -> code archive -> storage.put -> (secrets) vault.
Non-custodial: prepare builds an unsigned register_blob intent after a
balance check and touches no storage; complete executes the caller-signed
transaction and only then stores secrets. The steps of the non-custodial
path are dictated by upload_state.transition().

A failed secret upload never fails the call. The result says so through
secrets_status instead.
"""

import base64
import logging
import re
from typing import Iterable, Optional

from DAAS_Gateway.daas_shared import config
from DAAS_Gateway.daas_shared.crypto_engine import canonical_json_bytes, sha256_hex
from DAAS_Gateway.daas_shared.errors import (
    BalanceError,
    BundleTooLargeError,
    EmptyBundleError,
    ExecutionFailed,
    MalformedAddressError,
    MissingFieldError,
    UpstreamUnavailable,
    ValidationError,
)
from DAAS_Gateway.daas_shared.types import (
    BalanceSnapshot,
    ClassifiedBundle,
    PreparedTransaction,
    PreparedUpload,
    SecretsStatus,
    SignedTransaction,
    UploadedFile,
    UploadResult,
)
from DAAS_Gateway.daas_files.bundle_builder import build_archive, file_info, total_size
from DAAS_Gateway.daas_files.classifier import FileClassifier
from DAAS_Gateway.daas_server.gateways import (
    BalanceOracle,
    ExecutionEngine,
    StorageGateway,
    VaultGateway,
    extract_content_address,
)
from DAAS_Gateway.daas_server.upload_state import UploadEffect, UploadEvent, UploadState, transition

logger = logging.getLogger(__name__)

_CALLER_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{1,64}$")


def validate_caller_address(address: str) -> str:
    if not isinstance(address, str) or not address:
        raise MissingFieldError("callerAddress")
    if not _CALLER_ADDRESS.match(address):
        raise MalformedAddressError("callerAddress", address)
    return address.lower()


class UploadCoordinator:
    def __init__(
        self,
        storage: StorageGateway,
        vault: VaultGateway,
        oracle: Optional[BalanceOracle] = None,
        engine: Optional[ExecutionEngine] = None,
        *,
        gas_budget: int = config.UPLOAD_GAS_BUDGET,
        min_balance: int = config.MIN_UPLOAD_BALANCE,
        epochs: int = config.STORAGE_EPOCHS,
        coin_type: str = config.SUI_COIN_TYPE,
        secret_file_limit: int = config.SECRET_FILE_MAX_BYTES,
        secret_bundle_limit: int = config.SECRET_BUNDLE_MAX_BYTES,
        code_bundle_limit: int = config.CODE_BUNDLE_MAX_BYTES,
        max_files: int = config.MAX_UPLOAD_FILES,
    ):
        self.storage = storage
        self.vault = vault
        self.oracle = oracle
        self.engine = engine
        self.gas_budget = gas_budget
        self.min_balance = min_balance
        self.epochs = epochs
        self.coin_type = coin_type
        self.secret_file_limit = secret_file_limit
        self.secret_bundle_limit = secret_bundle_limit
        self.code_bundle_limit = code_bundle_limit
        self.max_files = max_files

    # ── Shared steps ──

    def classify(self, files: list[UploadedFile], ignore_patterns: Optional[Iterable[str]] = None) -> ClassifiedBundle:
        if len(files) > self.max_files:
            raise ValidationError("files", f"{len(files)} files exceeds limit of {self.max_files}")
        return FileClassifier(ignore_patterns).classify(files)

    def check_secret_limits(self, secret_files: dict[str, bytes]) -> None:
        for path, data in secret_files.items():
            if len(data) > self.secret_file_limit:
                raise BundleTooLargeError(path, len(data), self.secret_file_limit)
        size = total_size(secret_files)
        if size > self.secret_bundle_limit:
            raise BundleTooLargeError("secretFiles", size, self.secret_bundle_limit)

    def check_bundle(self, bundle: ClassifiedBundle) -> None:
        """Reject a bundle that cannot be uploaded. Runs before any network call."""
        if not bundle.code_files:
            raise EmptyBundleError("codeFiles")
        size = total_size(bundle.code_files)
        if size > self.code_bundle_limit:
            raise BundleTooLargeError("codeFiles", size, self.code_bundle_limit)
        self.check_secret_limits(bundle.secret_files)

    async def _store_secrets(self, secret_files: Optional[dict[str, bytes]], result: UploadResult) -> UploadResult:
        if not secret_files:
            result.secrets_status = SecretsStatus.NONE
            return result

        archive = build_archive(secret_files)
        try:
            sealed = await self.vault.encrypt_and_store(archive)
        except UpstreamUnavailable as e:
            logger.warning("secret upload failed, code %s stored without secrets: %s", result.cid_code, e)
            result.secrets_status = SecretsStatus.FAILED
            return result

        result.cid_env = sealed.cid
        result.size_env = sealed.size
        result.dek_version = sealed.dek_version
        result.secrets_status = SecretsStatus.STORED
        logger.info("stored %d secret files as %s (dek v%d)", len(secret_files), sealed.cid, sealed.dek_version)
        return result

    # ── Custodial ──

    async def upload(self, files: list[UploadedFile], ignore_patterns: Optional[Iterable[str]] = None) -> UploadResult:
        return await self.upload_classified(self.classify(files, ignore_patterns))

    async def upload_classified(self, bundle: ClassifiedBundle) -> UploadResult:
        self.check_bundle(bundle)

        code_archive = build_archive(bundle.code_files)
        address = await self.storage.put(code_archive)
        logger.info("stored %d code files as %s (%d bytes)", len(bundle.code_files), address.id, address.size)

        result = UploadResult(
            cid_code=address.id,
            size_code=address.size,
            files_env=file_info(bundle.secret_files),
            ignored=list(bundle.ignored),
        )
        return await self._store_secrets(bundle.secret_files, result)

    # ── Non-custodial ──

    async def balance_snapshot(self, address: str) -> BalanceSnapshot:
        address = validate_caller_address(address)
        if self.oracle is None:
            raise UpstreamUnavailable("balance-oracle", "not configured")
        balance = await self.oracle.balance_of(address)
        return BalanceSnapshot(
            address=address,
            balance=balance,
            required=self.gas_budget + self.min_balance,
            coin_type=self.coin_type,
        )

    def build_transaction(self, code_archive: bytes, sender: str) -> PreparedTransaction:
        """Pure: the same archive and sender always give the same payload."""
        digest = sha256_hex(code_archive)
        intent = {
            "action": "register_blob",
            "sender": sender,
            "blob_sha256": digest,
            "size": len(code_archive),
            "epochs": self.epochs,
            "gas_budget": self.gas_budget,
        }
        return PreparedTransaction(
            tx_payload=base64.b64encode(canonical_json_bytes(intent)).decode("ascii"),
            gas_budget=self.gas_budget,
            metadata={
                "fileName": config.CODE_BUNDLE_NAME,
                "mimeType": config.BUNDLE_MIME_TYPE,
                "epochs": self.epochs,
                "size": len(code_archive),
                "sha256": digest,
            },
        )

    async def prepare_archive(self, code_archive: bytes, caller_address: str) -> PreparedTransaction:
        caller_address = validate_caller_address(caller_address)
        if not code_archive:
            raise EmptyBundleError("codeArchive")

        _, effects = transition(UploadState.REQUESTED, UploadEvent.PREPARE)
        prepared = None
        for effect in effects:
            if effect is UploadEffect.CHECK_BALANCE:
                snapshot = await self.balance_snapshot(caller_address)
                if not snapshot.sufficient:
                    logger.info("prepare rejected for %s: balance %d < %d",
                                caller_address, snapshot.balance, snapshot.required)
                    raise BalanceError(snapshot)
            elif effect is UploadEffect.BUILD_TRANSACTION:
                prepared = self.build_transaction(code_archive, caller_address)
        return prepared

    async def prepare(self, files: list[UploadedFile], caller_address: str,
                      ignore_patterns: Optional[Iterable[str]] = None) -> PreparedUpload:
        validate_caller_address(caller_address)
        bundle = self.classify(files, ignore_patterns)
        self.check_bundle(bundle)

        transaction = await self.prepare_archive(build_archive(bundle.code_files), caller_address)
        return PreparedUpload(
            transaction=transaction,
            files_env=file_info(bundle.secret_files),
            ignored=list(bundle.ignored),
            project_type=bundle.project_type,
            total_files=bundle.total_files,
        )

    async def complete(self, signed: SignedTransaction, caller_address: str,
                       secret_files: Optional[dict[str, bytes]] = None) -> UploadResult:
        caller_address = validate_caller_address(caller_address)
        if not signed.tx_bytes:
            raise MissingFieldError("signedTransaction.txBytes")
        if not signed.signature:
            raise MissingFieldError("signedTransaction.signature")
        secret_files = secret_files or {}
        self.check_secret_limits(secret_files)
        if self.engine is None:
            raise UpstreamUnavailable("execution-engine", "not configured")

        state, effects = transition(UploadState.PREPARED, UploadEvent.SIGN)
        address = None
        for effect in effects:
            if effect is UploadEffect.EXECUTE:
                try:
                    address = extract_content_address(await self.engine.execute(signed))
                except ExecutionFailed as e:
                    state, _ = transition(state, UploadEvent.EXECUTION_FAILED)
                    logger.warning("upload for %s %s: %s", caller_address, state.value, e)
                    raise

        state, effects = transition(state, UploadEvent.EXECUTED)
        logger.info("upload for %s %s as %s", caller_address, state.value, address.id)

        result = UploadResult(
            cid_code=address.id,
            size_code=address.size,
            files_env=file_info(secret_files),
            ignored=[],
        )
        if UploadEffect.STORE_SECRETS in effects:
            await self._store_secrets(secret_files, result)
        return result
