from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


@dataclass
class UploadedFile:
    path: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class FileTreeNode:
    name:      str
    type:      str                      # "file" | "directory"
    path:      str
    size:      Optional[int] = None
    mime_type: Optional[str] = None
    children:  Optional[dict[str, "FileTreeNode"]] = None

    def to_dict(self) -> dict:
        out = {"name": self.name, "type": self.type, "path": self.path}
        if self.type == "file":
            out["size"] = self.size
            out["mimeType"] = self.mime_type
        else:
            out["children"] = {k: v.to_dict() for k, v in (self.children or {}).items()}
        return out


@dataclass
class ClassifiedBundle:
    secret_files:  dict[str, bytes]
    code_files:    dict[str, bytes]
    ignored:       list[str]
    file_tree:     FileTreeNode
    project_type:  str
    total_files:   int


@dataclass
class FileInfo:
    path:   str
    size:   int
    sha256: str


@dataclass
class ContentAddress:
    id:   str
    size: int


@dataclass
class SealedBundle:
    cid:         str
    size:        int
    dek_version: int


class SecretsStatus(str, Enum):
    NONE   = "none"
    STORED = "stored"
    FAILED = "failed"


@dataclass
class UploadResult:
    cid_code:       str
    size_code:      int
    files_env:      list[FileInfo]
    ignored:        list[str]
    secrets_status: SecretsStatus = SecretsStatus.NONE
    cid_env:        Optional[str] = None
    size_env:       Optional[int] = None
    dek_version:    Optional[int] = None


@dataclass
class BalanceSnapshot:
    address:   str
    balance:   int
    required:  int
    coin_type: str

    @property
    def sufficient(self) -> bool:
        return self.balance >= self.required


@dataclass
class PreparedTransaction:
    tx_payload: str
    gas_budget: int
    metadata:   dict


@dataclass
class PreparedUpload:
    transaction:  PreparedTransaction
    files_env:    list[FileInfo]
    ignored:      list[str]
    project_type: str
    total_files:  int


@dataclass
class SignedTransaction:
    tx_bytes:  str
    signature: str


@dataclass
class DecryptionTicket:
    lease_id:   str
    cid_env:    str
    node_id:    str
    issued_at:  int
    expires_at: int
    jti:        str
    signature:  str = ""


@dataclass
class TicketPayload:
    lease_id:   str
    cid_env:    str
    node_id:    str
    expires_at: int
    jti:        str


class DataType(str, Enum):
    SECRETS = "secrets"
    CONFIG  = "config"
    LOGS    = "logs"
    PUBLIC  = "public"


@dataclass
class AccessSession:
    key_id:      str
    identity:    str
    permissions: frozenset[DataType]
    expires_at:  float
    active:      bool = True


@dataclass
class LedgerStats:
    total_redeemed: int
    total_rejected: int


@dataclass
class BundleRecord:
    id:           str
    owner:        str
    source:       str
    cid_code:     str
    size_code:    int
    project_type: str
    total_files:  int
    repo:         Optional[str] = None
    ref:          Optional[str] = None
    cid_env:      Optional[str] = None
    size_env:     Optional[int] = None
    dek_version:  Optional[int] = None
    files_env:    list[dict] = field(default_factory=list)
    ignored:      list[str] = field(default_factory=list)
    file_tree:    Optional[dict] = None
    created_at:   Optional[str] = None


@dataclass
class HealthStatus:
    ledger_connected:  bool
    store_connected:   bool
    ledger_key_count:  int
