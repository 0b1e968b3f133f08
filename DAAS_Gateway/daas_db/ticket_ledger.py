import logging
import time
from typing import Optional

import redis

from DAAS_Gateway.daas_shared import config, errors
from DAAS_Gateway.daas_shared.types import LedgerStats

logger = logging.getLogger(__name__)


class TicketLedger:
    """Records which tickets have been redeemed.

    One key per ticket id, written with SET NX so concurrent redemptions of
    the same ticket race on a single atomic command and exactly one wins.
    Keys expire shortly after the ticket itself would, since an expired
    ticket can no longer pass verification anyway.
    """

    def __init__(self, client: redis.Redis):
        self.db: redis.Redis = client

    def _ledger_key(self, jti: str) -> str:
        return f"{config.LEDGER_KEY_PREFIX}:{jti}"

    def redeem(self, jti: str, expires_at: int, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        ttl = max(1, int(expires_at - now) + config.TICKET_REDEEM_GRACE_SECONDS)
        full_key = self._ledger_key(jti)

        try:
            created = self.db.set(full_key, str(int(now * 1000)), nx=True, ex=ttl)
            if not created:
                self.db.hincrby(config.LEDGER_STATS_KEY, "total_rejected", 1)
                logger.info("ticket %s already redeemed", jti)
                raise errors.TicketAlreadyRedeemedError(jti)

            self.db.hincrby(config.LEDGER_STATS_KEY, "total_redeemed", 1)
            return True
        except redis.exceptions.ConnectionError:
            raise errors.LedgerUnavailableError("redeem")

    def is_redeemed(self, jti: str) -> bool:
        try:
            return bool(self.db.exists(self._ledger_key(jti)))
        except redis.exceptions.ConnectionError:
            raise errors.LedgerUnavailableError("is_redeemed")

    def redeemed_at(self, jti: str) -> Optional[int]:
        try:
            val = self.db.get(self._ledger_key(jti))
            return int(val) if val is not None else None
        except redis.exceptions.ConnectionError:
            raise errors.LedgerUnavailableError("redeemed_at")

    def get_stats(self) -> LedgerStats:
        try:
            stats = self.db.hgetall(config.LEDGER_STATS_KEY)
            return LedgerStats(
                total_redeemed=int(stats.get(b"total_redeemed", 0)),
                total_rejected=int(stats.get(b"total_rejected", 0)),
            )
        except redis.exceptions.ConnectionError:
            raise errors.LedgerUnavailableError("get_stats")
