import redis

from DAAS_Gateway.daas_shared import errors, config


def create_ledger_client() -> redis.Redis:
    r = redis.Redis(
        host=config.REDIS_HOST,
        port=config.REDIS_PORT,
        db=config.REDIS_LEDGER_DB,
        decode_responses=False,
        socket_connect_timeout=config.REDIS_SOCKET_TIMEOUT,
        socket_timeout=config.REDIS_SOCKET_TIMEOUT,
    )
    try:
        r.ping()
    except redis.exceptions.ConnectionError:
        raise errors.LedgerUnavailableError(f"Cannot connect to Redis at {config.REDIS_HOST}:{config.REDIS_PORT}")
    return r


def ledger_health(client) -> tuple[bool, int]:
    """(connected, key count); never raises."""
    try:
        return bool(client.ping()), int(client.dbsize())
    except redis.exceptions.ConnectionError:
        return False, 0


def close_client(client) -> None:
    client.close()
