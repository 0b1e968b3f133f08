import threading

import pytest

from DAAS_Gateway.daas_server.session_registry import SessionRegistry
from DAAS_Gateway.daas_shared import config, errors
from DAAS_Gateway.daas_shared.types import DataType


# ── Create ──

def test_create_session(sessions, clock):
    s = sessions.create("alice", ["secrets", "logs"])
    assert s.identity == "alice"
    assert s.permissions == frozenset({DataType.SECRETS, DataType.LOGS})
    assert s.expires_at == clock.now + config.SESSION_DEFAULT_TTL_SECONDS
    assert s.active is True
    assert len(sessions) == 1


def test_create_clamps_ttl(sessions, clock):
    s = sessions.create("alice", ["public"], ttl=10 * config.SESSION_MAX_TTL_SECONDS)
    assert s.expires_at == clock.now + config.SESSION_MAX_TTL_SECONDS


@pytest.mark.parametrize("identity", ["", "  ", None])
def test_create_requires_identity(sessions, identity):
    with pytest.raises(errors.MissingFieldError):
        sessions.create(identity, ["secrets"])


def test_create_requires_permissions(sessions):
    with pytest.raises(errors.ValidationError) as exc:
        sessions.create("alice", [])
    assert exc.value.field == "permissions"


def test_create_rejects_unknown_permission(sessions):
    with pytest.raises(errors.UnknownVariantError):
        sessions.create("alice", ["root"])
    assert len(sessions) == 0


def test_create_rejects_non_positive_ttl(sessions):
    with pytest.raises(errors.ValidationError):
        sessions.create("alice", ["secrets"], ttl=0)


# ── Get / expiry ──

def test_get_active(sessions):
    s = sessions.create("alice", ["secrets"])
    assert sessions.get(s.key_id) is s


def test_get_unknown(sessions):
    assert sessions.get("nope") is None


def test_expired_session_is_removed_on_get(sessions, clock):
    s = sessions.create("alice", ["secrets"], ttl=10)
    clock.advance(11)
    assert sessions.get(s.key_id) is None
    assert len(sessions) == 0


def test_sweep(sessions, clock):
    sessions.create("alice", ["secrets"], ttl=10)
    keep = sessions.create("bob", ["secrets"], ttl=100)
    clock.advance(50)
    assert sessions.sweep() == 1
    assert sessions.get(keep.key_id) is keep


# ── Revoke ──

def test_revoke(sessions):
    s = sessions.create("alice", ["secrets"])
    assert sessions.revoke(s.key_id) is True
    assert s.active is False
    assert sessions.get(s.key_id) is None
    assert sessions.revoke(s.key_id) is False


# ── Authorize ──

def test_authorize_granted(sessions):
    s = sessions.create("alice", ["secrets"])
    assert sessions.authorize(s.key_id, "secrets") is s
    assert sessions.authorize(s.key_id, DataType.SECRETS) is s


def test_authorize_forbidden(sessions):
    s = sessions.create("alice", ["logs"])
    with pytest.raises(errors.SessionForbiddenError) as exc:
        sessions.authorize(s.key_id, "secrets")
    assert exc.value.data_type == "secrets"


def test_authorize_unknown_session(sessions):
    with pytest.raises(errors.SessionNotFoundError):
        sessions.authorize("nope", "secrets")


def test_authorize_unknown_data_type(sessions):
    s = sessions.create("alice", ["secrets"])
    with pytest.raises(errors.UnknownVariantError):
        sessions.authorize(s.key_id, "everything")


# ── Concurrency ──

def test_concurrent_create_and_revoke():
    registry = SessionRegistry()
    created = []
    lock = threading.Lock()

    def worker(idx):
        s = registry.create(f"user-{idx}", ["secrets"])
        with lock:
            created.append(s.key_id)
        if idx % 2:
            registry.revoke(s.key_id)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(set(created)) == 20
    assert len(registry) == 10
