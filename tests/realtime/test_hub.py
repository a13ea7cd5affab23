import json

import pytest

from flowwatch.models import OrderPayload
from flowwatch.realtime.hub import RealtimeHub


class FakeWebSocket:
    def __init__(self, fail_after=None):
        self.accepted = False
        self.sent = []
        self._fail_after = fail_after

    async def accept(self):
        self.accepted = True

    async def send_text(self, data):
        if self._fail_after is not None and len(self.sent) >= self._fail_after:
            raise ConnectionResetError("peer gone")
        self.sent.append(json.loads(data))


def _order(size=150.0, **kw):
    return OrderPayload(size=size, type="long", price=93000, exchange="binance", **kw)


@pytest.mark.asyncio
async def test_connect_sends_initial_snapshot():
    hub = RealtimeHub()
    await hub.publish_new_order(_order(120, id="a"))
    ws = FakeWebSocket()
    await hub.connect(ws)
    assert ws.accepted
    assert hub.client_count == 1
    assert ws.sent[0]["type"] == "initial_data"
    assert [o["id"] for o in ws.sent[0]["orders"]] == ["a"]


@pytest.mark.asyncio
async def test_broadcast_reaches_every_client_in_order():
    hub = RealtimeHub()
    a, b = FakeWebSocket(), FakeWebSocket()
    await hub.connect(a)
    await hub.connect(b)

    assert await hub.publish_new_order(_order(id="1")) == 2
    assert await hub.publish_order_filled(_order(id="1", fill_price=93100)) == 2
    assert await hub.publish_order_disappeared(_order(id="2")) == 2

    for ws in (a, b):
        assert [m["type"] for m in ws.sent] == ["initial_data", "new_order", "order_filled", "order_disappeared"]
    assert a.sent[2]["order"]["fill_price"] == 93100
    # optional fields that are unset do not appear on the wire
    assert "fill_price" not in a.sent[1]["order"]


@pytest.mark.asyncio
async def test_failed_send_drops_only_that_client():
    hub = RealtimeHub()
    good, bad = FakeWebSocket(), FakeWebSocket(fail_after=1)
    await hub.connect(good)
    await hub.connect(bad)

    assert await hub.publish_new_order(_order()) == 1
    assert hub.client_count == 1
    assert await hub.publish_new_order(_order()) == 1
    assert len(good.sent) == 3
    assert len(bad.sent) == 1


@pytest.mark.asyncio
async def test_snapshot_is_bounded_and_skips_non_new_events():
    hub = RealtimeHub(snapshot_size=2)
    for i in range(3):
        await hub.publish_new_order(_order(id=str(i)))
    await hub.publish_order_filled(_order(id="x"))
    assert [o.id for o in hub.snapshot()] == ["1", "2"]


@pytest.mark.asyncio
async def test_no_clients_delivers_nothing():
    hub = RealtimeHub()
    assert await hub.publish_new_order(_order()) == 0
    ws = FakeWebSocket()
    await hub.connect(ws)
    hub.disconnect(ws)
    hub.disconnect(ws)
    assert hub.client_count == 0
