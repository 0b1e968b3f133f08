import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw else default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.environ.get(name)
    if not raw:
        return default
    return tuple(p.strip() for p in raw.split(",") if p.strip())


# Redis Connection (ticket ledger)

REDIS_HOST              = os.environ.get("REDIS_HOST", "localhost")
REDIS_PORT              = _env_int("REDIS_PORT", 6379)
REDIS_LEDGER_DB         = _env_int("REDIS_LEDGER_DB", 2)
REDIS_SOCKET_TIMEOUT    = 5          # seconds

# Key Namespace Prefixes

LEDGER_KEY_PREFIX       = "ticket:v1:jti"       # ticket:v1:jti:{jti}
LEDGER_STATS_KEY        = "ticket:v1:stats"

# Tickets

TICKET_SIGNING_SEED         = os.environ.get("TICKET_SIGNING_SEED")     # 32-byte hex, optional
TICKET_DEFAULT_TTL_SECONDS  = _env_int("TICKET_DEFAULT_TTL_SECONDS", 300)
TICKET_MAX_TTL_SECONDS      = _env_int("TICKET_MAX_TTL_SECONDS", 600)
TICKET_REDEEM_GRACE_SECONDS = 60            # ledger entry outlives the ticket by this much
TICKET_REQUIRE_SESSION      = _env_bool("TICKET_REQUIRE_SESSION")
CID_ENV_PREFIXES            = _env_list("CID_ENV_PREFIXES", ("bafy", "bafk"))

# Access Sessions

SESSION_DEFAULT_TTL_SECONDS = _env_int("SESSION_DEFAULT_TTL_SECONDS", 3600)
SESSION_MAX_TTL_SECONDS     = 86_400

# Upload Limits

SECRET_FILE_MAX_BYTES   = _env_int("SECRET_FILE_MAX_BYTES", 10 * 1024 * 1024)
SECRET_BUNDLE_MAX_BYTES = _env_int("SECRET_BUNDLE_MAX_BYTES", 20 * 1024 * 1024)
CODE_BUNDLE_MAX_BYTES   = _env_int("CODE_BUNDLE_MAX_BYTES", 200 * 1024 * 1024)
MAX_UPLOAD_FILES        = _env_int("MAX_UPLOAD_FILES", 1000)
REQUEST_TIMEOUT_SECONDS = _env_int("REQUEST_TIMEOUT_SECONDS", 180)

# Non-custodial Upload

UPLOAD_GAS_BUDGET       = _env_int("UPLOAD_GAS_BUDGET", 100_000_000)    # MIST
MIN_UPLOAD_BALANCE      = _env_int("MIN_UPLOAD_BALANCE", 0)             # on top of the gas budget
STORAGE_EPOCHS          = _env_int("WALRUS_EPOCHS", 5)
SUI_COIN_TYPE           = os.environ.get("SUI_COIN_TYPE", "0x2::sui::SUI")

# File Classification

DEFAULT_IGNORE_PATTERNS = (
    "node_modules/",
    ".git/",
    "dist/",
    "build/",
    ".next/",
    ".cache/",
    "coverage/",
    "__pycache__/",
    ".DS_Store",
    "Thumbs.db",
    "*.log",
)

SECRET_ENV_PATTERN          = r"^\.env(\..+)?$"                 # .env, .env.local, .env.production
SECRET_EXCLUDE_SUFFIXES     = (".example", ".sample", ".template")
CREDENTIAL_FILENAMES        = {
    "credentials.json",
    "secrets.json",
    "secrets.yaml",
    "secrets.yml",
    "service-account.json",
    ".npmrc",
    ".pypirc",
    ".netrc",
    "id_rsa",
    "id_ed25519",
}
KEY_MATERIAL_EXTENSIONS     = {".pem", ".key", ".p12", ".pfx", ".keystore"}

ARCHIVE_SUFFIXES            = (".zip", ".tar.gz", ".tgz")

# Project Type Markers (first match wins)
# (required root directories, required root files, project type)

PROJECT_TYPE_MARKERS = (
    (("functions",), ("vercel.json",),  "vercel"),
    (("netlify",),   ("netlify.toml",), "netlify"),
    ((),             ("Dockerfile",),   "docker"),
    (("src",),       ("package.json",), "nodejs"),
    (("assets",),    ("index.html",),   "static-html"),
    ((),             ("package.json",), "npm-package"),
    ((),             ("pyproject.toml",),   "python"),
    ((),             ("requirements.txt",), "python"),
    ((),             ("setup.py",),     "python"),
    ((),             ("go.mod",),       "go"),
    ((),             ("Cargo.toml",),   "rust"),
)
UNKNOWN_PROJECT_TYPE = "unknown"

MIME_TYPES = {
    ".html": "text/html",
    ".css":  "text/css",
    ".js":   "application/javascript",
    ".json": "application/json",
    ".md":   "text/markdown",
    ".txt":  "text/plain",
    ".py":   "text/x-python",
    ".png":  "image/png",
    ".jpg":  "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif":  "image/gif",
    ".svg":  "image/svg+xml",
    ".pdf":  "application/pdf",
    ".zip":  "application/zip",
    ".tar":  "application/x-tar",
    ".gz":   "application/gzip",
}
DEFAULT_MIME_TYPE = "application/octet-stream"

# Bundle Archives

BUNDLE_FIXED_MTIME      = 315_532_800       # 1980-01-01T00:00:00Z
BUNDLE_FILE_MODE        = 0o644
CODE_BUNDLE_NAME        = "code.tar.gz"
SECRET_BUNDLE_NAME      = "secrets.tar.gz"
BUNDLE_MIME_TYPE        = "application/gzip"
