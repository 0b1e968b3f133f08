"""
Bridge between the ticket authority, the redemption ledger and the vault.

Data flow:
    Redeem: node presents ticket
            → TicketAuthority.verify()   (signature, binding, expiry)
            → TicketLedger.redeem()      (Redis SET NX on jti, first caller wins)
            → VaultGateway.decrypt()     (plaintext for exactly that cidEnv)

Verification alone stays read-only; a ticket is spent only here.
"""

import asyncio
import logging
from typing import Optional

from DAAS_Gateway.daas_db.ticket_ledger import TicketLedger
from DAAS_Gateway.daas_server.gateways import VaultGateway
from DAAS_Gateway.daas_server.ticket_authority import TicketAuthority
from DAAS_Gateway.daas_shared.types import TicketPayload

logger = logging.getLogger(__name__)


async def release_secrets(
    authority: TicketAuthority,
    ledger: TicketLedger,
    vault: VaultGateway,
    token: str,
    *,
    lease_id: Optional[str] = None,
    node_id: Optional[str] = None,
) -> tuple[TicketPayload, bytes]:
    """Spend a ticket and return its payload with the decrypted secret bundle.

    Raises TicketInvalid for a bad, expired, mis-bound or already spent
    ticket. A ticket spent on a vault that then fails is not refunded;
    the node asks for a new one.
    """
    payload = authority.verify(token, lease_id=lease_id, node_id=node_id)
    # blocking Redis round trip, kept off the event loop
    await asyncio.to_thread(ledger.redeem, payload.jti, payload.expires_at)
    logger.info("ticket %s redeemed by node %s for lease %s", payload.jti, payload.node_id, payload.lease_id)

    plaintext = await vault.decrypt(token, payload.cid_env)
    return payload, plaintext
