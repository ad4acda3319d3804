"""Expiry scanner state machine."""

import asyncio
import time

import pytest

from core.chain import BlockInfo
from core.intent import OpenOrder, OrderStatus
from core.refunder import ExpiryScanner, OnchainStatus, RefundClient
from core.store import OpenOrderStore

from dummies import DummyFn, DummyProvider


class DummyRefundClient(RefundClient):
    protocol_name = "Dummy"

    def __init__(self, provider, statuses=None, delay=0.0, status_errors=None):
        self.provider = provider
        self.statuses = statuses or {}
        self.status_errors = status_errors or {}
        self.status_calls = []
        self.delay = delay

    async def order_status(self, order):
        self.status_calls.append(order.order_id)
        if order.order_id in self.status_errors:
            raise self.status_errors[order.order_id]
        return self.statuses.get(order.order_id, OnchainStatus.UNKNOWN)

    async def build_refund(self, order):
        if self.delay:
            await asyncio.sleep(self.delay)
        return DummyFn(self.provider, "0xsettler", "refund", ([order.order_id],)), 42


def _order(order_id, deadline=500, dest=10):
    return OpenOrder(
        origin_chain_id=1,
        destination_chain_id=dest,
        destination_settler="0x" + "00" * 12 + "11" * 20,
        order_id=order_id,
        fill_deadline=deadline,
        order_data="0xdead",
    )


@pytest.fixture
def store(tmp_path):
    s = OpenOrderStore(str(tmp_path / "orders.db"))
    yield s
    s.close()


def test_unknown_order_is_refunded(store, captured):
    provider = DummyProvider()
    client = DummyRefundClient(provider)
    store.insert_if_absent(_order("0x01"))
    scanner = ExpiryScanner(store, provider, client)

    result = asyncio.run(scanner.run_once(now=600))

    assert result == {"0x01": OrderStatus.REFUNDED}
    assert store.get("0x01").status is OrderStatus.REFUNDED
    sent = provider.submitted[0]
    assert sent["value"] == 42
    assert sent["gas_margin"] == 1.1
    assert sent["chain_id"] == 10
    events = [e["event"] for e in captured]
    assert events.index("refunding") < events.index("refunded")


def test_filled_order_is_marked_filed_without_refund(store):
    provider = DummyProvider()
    client = DummyRefundClient(provider, {"0x01": OnchainStatus.FILLED})
    store.insert_if_absent(_order("0x01"))
    result = asyncio.run(ExpiryScanner(store, provider, client).run_once(now=600))
    assert result == {"0x01": OrderStatus.FILED}
    assert provider.submitted == []


def test_chain_clock_behind_deadline_skips(store):
    provider = DummyProvider()
    provider.blocks[10] = BlockInfo(number=1, timestamp=400)
    client = DummyRefundClient(provider)
    store.insert_if_absent(_order("0x01", deadline=500))
    result = asyncio.run(ExpiryScanner(store, provider, client).run_once(now=600))
    assert result == {}
    assert client.status_calls == []
    assert store.get("0x01").status is OrderStatus.OPEN


def test_not_yet_expired_is_ignored(store):
    provider = DummyProvider()
    client = DummyRefundClient(provider)
    store.insert_if_absent(_order("0x01", deadline=700))
    assert asyncio.run(ExpiryScanner(store, provider, client).run_once(now=600)) == {}
    assert client.status_calls == []


def test_refund_failure_reverts_and_aborts_cycle(store):
    provider = DummyProvider()
    provider.submit_error = RuntimeError("nonce too low")
    client = DummyRefundClient(provider)
    store.insert_if_absent(_order("0x01", deadline=400))
    store.insert_if_absent(_order("0x02", deadline=450))
    scanner = ExpiryScanner(store, provider, client)

    result = asyncio.run(scanner.run_once(now=600))

    assert result == {}
    assert store.get("0x01").status is OrderStatus.OPEN
    assert store.get("0x02").status is OrderStatus.OPEN
    assert client.status_calls == ["0x01"]

    provider.submit_error = None
    result = asyncio.run(scanner.run_once(now=600))
    assert result == {"0x01": OrderStatus.REFUNDED, "0x02": OrderStatus.REFUNDED}


def test_receipt_failure_reverts_to_open(store):
    provider = DummyProvider()
    provider.receipt_error = RuntimeError("reverted")
    client = DummyRefundClient(provider)
    store.insert_if_absent(_order("0x01"))
    asyncio.run(ExpiryScanner(store, provider, client).run_once(now=600))
    assert store.get("0x01").status is OrderStatus.OPEN


def test_order_timeout_reverts_to_open(store):
    provider = DummyProvider()
    client = DummyRefundClient(provider, delay=1.0)
    store.insert_if_absent(_order("0x01"))
    scanner = ExpiryScanner(store, provider, client, order_timeout=0.05)
    assert asyncio.run(scanner.run_once(now=600)) == {}
    assert store.get("0x01").status is OrderStatus.OPEN
    assert provider.submitted == []


@pytest.mark.parametrize(
    "onchain,expected",
    [
        (OnchainStatus.REFUNDED, OrderStatus.REFUNDED),
        (OnchainStatus.SETTLED, OrderStatus.FILED),
        (OnchainStatus.UNKNOWN, OrderStatus.OPEN),
    ],
)
def test_stale_refunding_is_reconciled(store, onchain, expected):
    provider = DummyProvider()
    client = DummyRefundClient(provider, {"0x01": onchain})
    store.insert_if_absent(_order("0x01"))
    store.claim_for_refund("0x01")
    scanner = ExpiryScanner(store, provider, client)

    assert asyncio.run(scanner.reconcile_stale(time.time() + 1_000)) == 1
    assert store.get("0x01").status is expected


def test_recent_refunding_is_left_alone(store):
    provider = DummyProvider()
    client = DummyRefundClient(provider)
    store.insert_if_absent(_order("0x01"))
    store.claim_for_refund("0x01")
    assert asyncio.run(ExpiryScanner(store, provider, client).reconcile_stale()) == 0
    assert store.get("0x01").status is OrderStatus.REFUNDING


def test_kill_switch_halts_scan(store, monkeypatch):
    monkeypatch.setenv("KILL_SWITCH", "1")
    provider = DummyProvider()
    client = DummyRefundClient(provider)
    store.insert_if_absent(_order("0x01"))
    assert asyncio.run(ExpiryScanner(store, provider, client).run_once(now=600)) == {}
    assert store.get("0x01").status is OrderStatus.OPEN


def test_refund_margin_floor(store):
    with pytest.raises(ValueError):
        ExpiryScanner(store, DummyProvider(), DummyRefundClient(None), gas_margin=1.05)


def test_failing_status_read_does_not_starve_later_orders(store, captured):
    provider = DummyProvider()
    client = DummyRefundClient(provider, status_errors={"0x01": ValueError("not a contract")})
    store.insert_if_absent(_order("0x01", deadline=400))
    store.insert_if_absent(_order("0x02", deadline=500))

    result = asyncio.run(ExpiryScanner(store, provider, client).run_once(now=600))

    assert result == {"0x02": OrderStatus.REFUNDED}
    assert store.get("0x01").status is OrderStatus.OPEN
    assert client.status_calls == ["0x01", "0x02"]
    assert "status_check_failed" in [e["event"] for e in captured]
