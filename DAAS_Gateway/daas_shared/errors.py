class DAASError(Exception):
    pass


# ── Validation (400-class) ──

class ValidationError(DAASError):
    status_code = 400

    def __init__(self, field, message):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class MissingFieldError(ValidationError):
    def __init__(self, field):
        super().__init__(field, f"{field} is required")


class MalformedAddressError(ValidationError):
    def __init__(self, field, value):
        self.value = value
        super().__init__(field, f"Invalid {field} format: {value!r}")


class EmptyBundleError(ValidationError):
    def __init__(self, field="codeFiles"):
        super().__init__(field, "No code files found to upload")


class BundleTooLargeError(ValidationError):
    status_code = 413

    def __init__(self, field, size, limit):
        self.size = size
        self.limit = limit
        super().__init__(field, f"{field} size {size} exceeds limit of {limit} bytes")


class UnknownVariantError(ValidationError):
    def __init__(self, field, value, allowed):
        self.value = value
        self.allowed = tuple(allowed)
        super().__init__(field, f"Invalid {field} {value!r}, expected one of {', '.join(self.allowed)}")


class InvalidTransitionError(ValidationError):
    def __init__(self, state, event):
        self.state = state
        self.event = event
        super().__init__("state", f"No transition from {state} on {event}")


# ── Balance ──

class BalanceError(DAASError):
    def __init__(self, snapshot):
        self.snapshot = snapshot
        message = f"Insufficient balance for {snapshot.address}: {snapshot.balance}/{snapshot.required}"
        super().__init__(message)


# ── Upstream collaborators ──

class UpstreamUnavailable(DAASError):
    def __init__(self, service, message):
        self.service = service
        message = f"{service} unavailable: {message}"
        super().__init__(message)


class LedgerUnavailableError(UpstreamUnavailable):
    def __init__(self, operation):
        super().__init__("ticket-ledger", operation)


class BundleStoreError(UpstreamUnavailable):
    def __init__(self, message):
        super().__init__("bundle-store", message)


class ExecutionFailed(DAASError):
    def __init__(self, message):
        super().__init__(f"Transaction execution failed: {message}")


class SourceNotFoundError(DAASError):
    def __init__(self, source):
        self.source = source
        super().__init__(f"{source} not found or not accessible")


class BundleNotFoundError(DAASError):
    def __init__(self, bundle_id, path=None):
        self.bundle_id = bundle_id
        self.path = path
        message = f"Bundle {bundle_id} not found" if path is None else f"{path} not found in bundle {bundle_id}"
        super().__init__(message)


# ── Tickets ──

TICKET_INVALID_MESSAGE = "Invalid or expired ticket"


class TicketInvalid(DAASError):
    """Raised for every ticket failure. The message never names the cause."""

    def __init__(self, reason=None):
        # reason is for server-side logs only
        self.reason = reason
        super().__init__(TICKET_INVALID_MESSAGE)


class TicketAlreadyRedeemedError(TicketInvalid):
    def __init__(self, jti):
        self.jti = jti
        super().__init__("already redeemed")


class SessionNotFoundError(DAASError):
    def __init__(self, key_id):
        self.key_id = key_id
        super().__init__(f"Session {key_id} not found or expired")


class SessionForbiddenError(DAASError):
    def __init__(self, key_id, data_type):
        self.key_id = key_id
        self.data_type = data_type
        super().__init__(f"Session {key_id} lacks {data_type} permission")
