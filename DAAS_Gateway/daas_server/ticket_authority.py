"""
Issues and verifies decryption tickets.

A ticket binds one (leaseId, cidEnv, nodeId) triple to a short validity
window and is signed with the service's Ed25519 key. Verification is a pure
signature + binding + expiry check with no side effects, so any number of
nodes may verify concurrently. Single use is enforced by whoever releases
plaintext (see DAAS_Gateway.release), not here.

Every verification failure raises the same TicketInvalid; the cause is only
logged at DEBUG.
"""

import logging
import re
import time
import uuid
from typing import Callable, Optional, Union

from DAAS_Gateway.daas_shared import config
from DAAS_Gateway.daas_shared.crypto_engine import (
    CryptoEngine,
    b64url_decode,
    b64url_encode,
    canonical_json_bytes,
)
from DAAS_Gateway.daas_shared.errors import (
    MalformedAddressError,
    MissingFieldError,
    TicketInvalid,
    ValidationError,
)
from DAAS_Gateway.daas_shared.types import DecryptionTicket, TicketPayload

logger = logging.getLogger(__name__)

_ADDRESS_CHARSET = re.compile(r"^[A-Za-z0-9._-]+$")


def _payload_dict(ticket: DecryptionTicket) -> dict:
    return {
        "leaseId": ticket.lease_id,
        "cidEnv": ticket.cid_env,
        "nodeId": ticket.node_id,
        "iat": ticket.issued_at,
        "exp": ticket.expires_at,
        "jti": ticket.jti,
    }


def _ticket_from_payload(payload: dict, signature: str) -> Optional[DecryptionTicket]:
    try:
        ticket = DecryptionTicket(
            lease_id=payload["leaseId"],
            cid_env=payload["cidEnv"],
            node_id=payload["nodeId"],
            issued_at=payload["iat"],
            expires_at=payload["exp"],
            jti=payload["jti"],
            signature=signature,
        )
    except KeyError:
        return None
    strings = (ticket.lease_id, ticket.cid_env, ticket.node_id, ticket.jti)
    numbers = (ticket.issued_at, ticket.expires_at)
    if not all(isinstance(s, str) for s in strings):
        return None
    if not all(isinstance(n, int) and not isinstance(n, bool) for n in numbers):
        return None
    return ticket


def encode_ticket(ticket: DecryptionTicket) -> str:
    return f"{b64url_encode(canonical_json_bytes(_payload_dict(ticket)))}.{ticket.signature}"


class TicketAuthority:
    def __init__(
        self,
        engine: CryptoEngine,
        *,
        address_prefixes: tuple[str, ...] = config.CID_ENV_PREFIXES,
        default_ttl: int = config.TICKET_DEFAULT_TTL_SECONDS,
        max_ttl: int = config.TICKET_MAX_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.engine = engine
        self.address_prefixes = tuple(address_prefixes)
        self.default_ttl = default_ttl
        self.max_ttl = max_ttl
        self._clock = clock

    @property
    def public_key_hex(self) -> str:
        return self.engine.public_key_hex

    def is_well_formed_address(self, cid_env: str) -> bool:
        if not isinstance(cid_env, str) or not _ADDRESS_CHARSET.match(cid_env):
            return False
        return any(cid_env.startswith(p) and len(cid_env) > len(p) for p in self.address_prefixes)

    def validate_cid_env(self, cid_env: str) -> None:
        if not self.is_well_formed_address(cid_env):
            raise MalformedAddressError("cidEnv", cid_env)

    def _effective_ttl(self, ttl: Optional[int]) -> int:
        if ttl is None:
            ttl = self.default_ttl
        if isinstance(ttl, bool) or not isinstance(ttl, int) or ttl <= 0:
            raise ValidationError("ttl", "ttl must be a positive number of seconds")
        return min(ttl, self.max_ttl)

    def issue(self, lease_id: str, cid_env: str, node_id: str, ttl: Optional[int] = None) -> DecryptionTicket:
        for field, value in (("leaseId", lease_id), ("cidEnv", cid_env), ("nodeId", node_id)):
            if not isinstance(value, str) or not value.strip():
                raise MissingFieldError(field)
        self.validate_cid_env(cid_env)
        ttl = self._effective_ttl(ttl)

        now = int(self._clock())
        ticket = DecryptionTicket(
            lease_id=lease_id,
            cid_env=cid_env,
            node_id=node_id,
            issued_at=now,
            expires_at=now + ttl,
            jti=str(uuid.uuid4()),
        )
        token = self.engine.sign_token(_payload_dict(ticket))
        ticket.signature = token.rsplit(".", 1)[-1]
        logger.info("issued ticket %s for lease %s node %s (ttl=%ss)", ticket.jti, lease_id, node_id, ttl)
        return ticket

    def _open(self, ticket: Union[str, DecryptionTicket]) -> DecryptionTicket:
        if isinstance(ticket, DecryptionTicket):
            try:
                signature = b64url_decode(ticket.signature)
            except ValueError:
                raise TicketInvalid("undecodable signature")
            if not self.engine.verify(canonical_json_bytes(_payload_dict(ticket)), signature):
                raise TicketInvalid("signature mismatch")
            return ticket

        payload = self.engine.open_token(ticket)
        if payload is None:
            raise TicketInvalid("malformed token or signature mismatch")
        opened = _ticket_from_payload(payload, ticket.rsplit(".", 1)[-1])
        if opened is None:
            raise TicketInvalid("payload fields missing or mistyped")
        return opened

    def verify(
        self,
        ticket: Union[str, DecryptionTicket],
        *,
        lease_id: Optional[str] = None,
        cid_env: Optional[str] = None,
        node_id: Optional[str] = None,
    ) -> TicketPayload:
        try:
            opened = self._open(ticket)

            expected = (("leaseId", lease_id, opened.lease_id),
                        ("cidEnv", cid_env, opened.cid_env),
                        ("nodeId", node_id, opened.node_id))
            for name, want, got in expected:
                if want is not None and want != got:
                    raise TicketInvalid(f"{name} binding mismatch")

            if self._clock() > opened.expires_at:
                raise TicketInvalid("expired")
        except TicketInvalid as e:
            logger.debug("ticket rejected: %s", e.reason)
            raise

        return TicketPayload(
            lease_id=opened.lease_id,
            cid_env=opened.cid_env,
            node_id=opened.node_id,
            expires_at=opened.expires_at,
            jti=opened.jti,
        )
