"""Tests for ticket issuance and verification."""

import pytest

from DAAS_Gateway.daas_server.ticket_authority import TicketAuthority, encode_ticket
from DAAS_Gateway.daas_shared import config, errors
from DAAS_Gateway.daas_shared.crypto_engine import CryptoEngine, b64url_encode, canonical_json_bytes
from DAAS_Gateway.daas_shared.types import DecryptionTicket

from .conftest import CID_ENV


# ── Issue ──

def test_issue_fields(authority, clock):
    ticket = authority.issue("lease-1", CID_ENV, "node-7", ttl=60)
    assert (ticket.lease_id, ticket.cid_env, ticket.node_id) == ("lease-1", CID_ENV, "node-7")
    assert ticket.issued_at == int(clock.now)
    assert ticket.expires_at == int(clock.now) + 60
    assert ticket.signature
    assert ticket.jti


def test_issue_uses_default_ttl(authority):
    ticket = authority.issue("lease-1", CID_ENV, "node-7")
    assert ticket.expires_at - ticket.issued_at == config.TICKET_DEFAULT_TTL_SECONDS


def test_issue_clamps_ttl_to_maximum(authority):
    ticket = authority.issue("lease-1", CID_ENV, "node-7", ttl=10 * config.TICKET_MAX_TTL_SECONDS)
    assert ticket.expires_at - ticket.issued_at == config.TICKET_MAX_TTL_SECONDS


@pytest.mark.parametrize("ttl", [0, -5, True, "60"])
def test_issue_rejects_bad_ttl(authority, ttl):
    with pytest.raises(errors.ValidationError) as exc:
        authority.issue("lease-1", CID_ENV, "node-7", ttl=ttl)
    assert exc.value.field == "ttl"


def test_each_ticket_gets_its_own_jti(authority):
    a = authority.issue("lease-1", CID_ENV, "node-7")
    b = authority.issue("lease-1", CID_ENV, "node-7")
    assert a.jti != b.jti


@pytest.mark.parametrize("lease,cid,node,field", [
    (None, CID_ENV, "node-7", "leaseId"),
    ("lease-1", "", "node-7", "cidEnv"),
    ("lease-1", CID_ENV, "   ", "nodeId"),
])
def test_issue_missing_field(authority, lease, cid, node, field):
    with pytest.raises(errors.MissingFieldError) as exc:
        authority.issue(lease, cid, node)
    assert exc.value.field == field


@pytest.mark.parametrize("cid", ["Qm123", "bafy", "bafy bad", "bafy/../x", "addr-abc"])
def test_issue_rejects_malformed_address(authority, cid):
    with pytest.raises(errors.MalformedAddressError) as exc:
        authority.issue("lease-1", cid, "node-7")
    assert exc.value.field == "cidEnv"


def test_bafk_prefix_accepted(authority):
    assert authority.issue("lease-1", "bafkreiabc", "node-7").cid_env == "bafkreiabc"


# ── Verify ──

def test_issue_then_verify_returns_triple(authority):
    ticket = authority.issue("lease-1", CID_ENV, "node-7", ttl=60)
    payload = authority.verify(encode_ticket(ticket))
    assert (payload.lease_id, payload.cid_env, payload.node_id) == ("lease-1", CID_ENV, "node-7")
    assert payload.jti == ticket.jti
    assert payload.expires_at == ticket.expires_at


def test_verify_accepts_ticket_object(authority):
    ticket = authority.issue("lease-1", CID_ENV, "node-7")
    assert authority.verify(ticket).node_id == "node-7"


def test_verify_with_matching_binding(authority):
    token = encode_ticket(authority.issue("lease-1", CID_ENV, "node-7"))
    assert authority.verify(token, lease_id="lease-1", cid_env=CID_ENV, node_id="node-7")


@pytest.mark.parametrize("binding", [
    {"node_id": "node-8"},
    {"lease_id": "lease-2"},
    {"cid_env": "bafyother"},
])
def test_verify_wrong_binding_fails(authority, binding):
    token = encode_ticket(authority.issue("lease-1", CID_ENV, "node-7"))
    with pytest.raises(errors.TicketInvalid):
        authority.verify(token, **binding)


def test_verify_after_expiry_fails(authority, clock):
    token = encode_ticket(authority.issue("lease-1", CID_ENV, "node-7", ttl=60))
    clock.advance(61)
    with pytest.raises(errors.TicketInvalid):
        authority.verify(token)


def test_verify_at_expiry_instant_passes(authority, clock):
    token = encode_ticket(authority.issue("lease-1", CID_ENV, "node-7", ttl=60))
    clock.advance(60)
    assert authority.verify(token).lease_id == "lease-1"


def test_scenario_lease_expires_after_sixty_seconds(clock):
    authority = TicketAuthority(CryptoEngine(), address_prefixes=("addr-",), clock=clock)
    ticket = authority.issue("lease-1", "addr-abc", "node-7", ttl=60)
    clock.advance(61)
    with pytest.raises(errors.TicketInvalid):
        authority.verify(encode_ticket(ticket))


def test_verify_rejects_ticket_from_other_key(authority, clock):
    other = TicketAuthority(CryptoEngine(), clock=clock)
    token = encode_ticket(other.issue("lease-1", CID_ENV, "node-7"))
    with pytest.raises(errors.TicketInvalid):
        authority.verify(token)


def test_verify_rejects_edited_fields(authority):
    ticket = authority.issue("lease-1", CID_ENV, "node-7")
    ticket.node_id = "node-8"
    with pytest.raises(errors.TicketInvalid):
        authority.verify(ticket)
    with pytest.raises(errors.TicketInvalid):
        authority.verify(encode_ticket(ticket))


def test_verify_rejects_extended_expiry(authority):
    ticket = authority.issue("lease-1", CID_ENV, "node-7")
    ticket.expires_at += 3600
    with pytest.raises(errors.TicketInvalid):
        authority.verify(encode_ticket(ticket))


def test_verify_rejects_signed_payload_with_missing_fields(authority):
    body = canonical_json_bytes({"leaseId": "lease-1", "cidEnv": CID_ENV, "exp": 2**40})
    token = f"{b64url_encode(body)}.{b64url_encode(authority.engine.sign(body))}"
    with pytest.raises(errors.TicketInvalid):
        authority.verify(token)


def test_verify_rejects_garbage_signature_on_object(authority):
    ticket = authority.issue("lease-1", CID_ENV, "node-7")
    ticket.signature = "***"
    with pytest.raises(errors.TicketInvalid):
        authority.verify(ticket)


@pytest.mark.parametrize("token", ["", "abc", "a.b", "a.b.c"])
def test_verify_rejects_malformed_tokens(authority, token):
    with pytest.raises(errors.TicketInvalid):
        authority.verify(token)


def test_failures_are_indistinguishable(authority, clock):
    token = encode_ticket(authority.issue("lease-1", CID_ENV, "node-7", ttl=60))
    messages = set()
    for attempt in (
        lambda: authority.verify(token, node_id="node-8"),
        lambda: authority.verify(token[:-4] + "AAAA"),
        lambda: authority.verify("garbage"),
    ):
        with pytest.raises(errors.TicketInvalid) as exc:
            attempt()
        messages.add(str(exc.value))
    clock.advance(61)
    with pytest.raises(errors.TicketInvalid) as exc:
        authority.verify(token)
    messages.add(str(exc.value))
    assert messages == {errors.TICKET_INVALID_MESSAGE}


def test_verify_is_repeatable(authority):
    token = encode_ticket(authority.issue("lease-1", CID_ENV, "node-7"))
    for _ in range(5):
        assert authority.verify(token).lease_id == "lease-1"


def test_public_key_matches_engine(authority):
    assert authority.public_key_hex == authority.engine.public_key_hex
    assert len(authority.public_key_hex) == 64


def test_seeded_authorities_verify_each_others_tickets(clock):
    seed = "22" * 32
    issuer = TicketAuthority(CryptoEngine(seed), clock=clock)
    verifier = TicketAuthority(CryptoEngine(seed), clock=clock)
    token = encode_ticket(issuer.issue("lease-1", CID_ENV, "node-7"))
    assert verifier.verify(token).node_id == "node-7"


def test_unsigned_ticket_object_rejected(authority, clock):
    ticket = DecryptionTicket("lease-1", CID_ENV, "node-7", int(clock.now), int(clock.now) + 60, "jti-x")
    with pytest.raises(errors.TicketInvalid):
        authority.verify(ticket)
