import pytest
import httpx

from flowwatch.adapters.blockchain_adapter import (
    BlockchainFeedError,
    fetch_btc_price,
    fetch_unconfirmed_transactions,
    parse_transactions,
)
from flowwatch.features.processors.address_registry import AddressRegistry
from flowwatch.features.processors.classifier import classify
from flowwatch.models import RawTransaction, Signal, UNKNOWN_ADDRESS


# A helper dummy response
class DummyResponse:
    def __init__(self, status_code: int, json_data=None, bad_json: bool = False):
        self.status_code = status_code
        self._json = json_data
        self._bad_json = bad_json

    def raise_for_status(self):
        if self.status_code >= 400:
            request = httpx.Request("GET", "https://blockchain.info")
            raise httpx.HTTPStatusError(
                "error", request=request, response=httpx.Response(self.status_code, request=request)
            )

    def json(self):
        if self._bad_json:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._json


class FakeClient:
    def __init__(self, response):
        self.response = response
        self.calls = []

    async def get(self, url, params=None):
        self.calls.append((url, params))
        return self.response


FEED = {
    "txs": [
        {
            "hash": "t1",
            "time": 1_736_000_000,
            "inputs": [{"prev_out": {"addr": "from1", "value": 5}}],
            "out": [{"addr": "to1", "value": 3}, {"addr": "to2", "value": 2}],
            "size": 250,  # unknown fields are ignored
        },
        {"hash": "t2", "time": 1_736_000_001, "inputs": [], "out": [{"value": 7}]},
        {"hash": "bad", "time": "not-a-time", "out": []},
    ]
}


@pytest.mark.asyncio
async def test_fetch_unconfirmed_transactions_parses_and_drops_bad_records():
    client = FakeClient(DummyResponse(200, FEED))
    txs = await fetch_unconfirmed_transactions(client, api_base="https://example.test/")
    assert client.calls == [("https://example.test/unconfirmed-transactions", {"format": "json"})]
    assert [t.hash for t in txs] == ["t1", "t2"]
    assert txs[0].total_satoshis() == 5
    assert txs[0].first_input_address() == "from1"
    assert txs[0].first_output_address() == "to1"
    assert txs[1].first_input_address() == UNKNOWN_ADDRESS
    assert txs[1].first_output_address() == UNKNOWN_ADDRESS


@pytest.mark.asyncio
async def test_fetch_unconfirmed_uses_own_client_when_none_given(monkeypatch):
    class CtxClient(FakeClient):
        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc):
            return False

    fake = CtxClient(DummyResponse(200, {"txs": []}))
    monkeypatch.setattr(
        "flowwatch.adapters.blockchain_adapter.make_async_client", lambda **kwargs: fake
    )
    assert await fetch_unconfirmed_transactions() == []
    assert fake.calls[0][0] == "https://blockchain.info/unconfirmed-transactions"


@pytest.mark.asyncio
async def test_client_error_status_is_raised_without_retry():
    client = FakeClient(DummyResponse(404))
    with pytest.raises(httpx.HTTPStatusError):
        await fetch_unconfirmed_transactions(client)
    assert len(client.calls) == 1


@pytest.mark.asyncio
async def test_invalid_json_raises_feed_error():
    client = FakeClient(DummyResponse(200, bad_json=True))
    with pytest.raises(BlockchainFeedError):
        await fetch_unconfirmed_transactions(client)


def test_parse_transactions_requires_txs_list():
    with pytest.raises(BlockchainFeedError):
        parse_transactions({"transactions": []})
    with pytest.raises(BlockchainFeedError):
        parse_transactions([])
    assert parse_transactions({"txs": []}) == []


def test_null_output_values_count_as_zero():
    tx = RawTransaction.model_validate({"out": [{"addr": "a", "value": None}, {"value": 4}]})
    assert tx.total_satoshis() == 4


def test_null_hash_and_time_keep_the_record():
    txs = parse_transactions(
        {"txs": [{"hash": None, "time": None, "inputs": None, "out": [{"addr": "to", "value": 5}]}]}
    )
    assert len(txs) == 1
    assert txs[0].hash == ""
    assert txs[0].time == 0
    assert txs[0].inputs == []

    classified = classify(txs[0], AddressRegistry.default(), 93000.0)
    assert classified.timestamp_ms == 0
    assert classified.from_address == UNKNOWN_ADDRESS
    assert classified.signal is Signal.TRANSFER


@pytest.mark.asyncio
async def test_fetch_btc_price():
    client = FakeClient(DummyResponse(200, {"USD": {"last": 93123.5, "symbol": "$"}}))
    assert await fetch_btc_price(client) == 93123.5
    assert client.calls[0][0] == "https://blockchain.info/ticker"


@pytest.mark.asyncio
async def test_fetch_btc_price_rejects_missing_currency():
    client = FakeClient(DummyResponse(200, {"EUR": {"last": 1.0}}))
    with pytest.raises(BlockchainFeedError):
        await fetch_btc_price(client)
