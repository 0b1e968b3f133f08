import pytest
import fakeredis

from DAAS_Gateway.daas_db.ticket_ledger import TicketLedger


@pytest.fixture
def ledger_client():
    r = fakeredis.FakeRedis()
    yield r
    r.flushdb()
    r.close()


@pytest.fixture
def ledger(ledger_client):
    return TicketLedger(ledger_client)
