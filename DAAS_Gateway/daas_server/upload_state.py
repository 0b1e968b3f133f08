r"""
State machine of the non-custodial (user-signed) upload.

    requested --prepare--> prepared --sign--> signed --executed--> completed
                                                     \--execution_failed--> failed

Signing happens outside the service, so nothing here waits on it: `prepared`
is fully recomputable from the request and `complete` starts from it again.
Only `signed --executed-->` emits STORE_SECRETS, which is how a rejected
transaction is kept from ever triggering a secret upload.
"""

from enum import Enum

from DAAS_Gateway.daas_shared.errors import InvalidTransitionError


class UploadState(str, Enum):
    REQUESTED = "requested"
    PREPARED  = "prepared"
    SIGNED    = "signed"
    COMPLETED = "completed"
    FAILED    = "failed"


class UploadEvent(str, Enum):
    PREPARE          = "prepare"
    SIGN             = "sign"
    EXECUTED         = "executed"
    EXECUTION_FAILED = "execution_failed"


class UploadEffect(str, Enum):
    CHECK_BALANCE     = "check_balance"
    BUILD_TRANSACTION = "build_transaction"
    EXECUTE           = "execute"
    STORE_SECRETS     = "store_secrets"


TRANSITIONS: dict[tuple[UploadState, UploadEvent], tuple[UploadState, tuple[UploadEffect, ...]]] = {
    (UploadState.REQUESTED, UploadEvent.PREPARE):          (UploadState.PREPARED,
                                                            (UploadEffect.CHECK_BALANCE, UploadEffect.BUILD_TRANSACTION)),
    (UploadState.PREPARED,  UploadEvent.SIGN):             (UploadState.SIGNED, (UploadEffect.EXECUTE,)),
    (UploadState.SIGNED,    UploadEvent.EXECUTED):         (UploadState.COMPLETED, (UploadEffect.STORE_SECRETS,)),
    (UploadState.SIGNED,    UploadEvent.EXECUTION_FAILED): (UploadState.FAILED, ()),
}

TERMINAL_STATES = frozenset({UploadState.COMPLETED, UploadState.FAILED})


def transition(state: UploadState, event: UploadEvent) -> tuple[UploadState, tuple[UploadEffect, ...]]:
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransitionError(state.value, event.value)
