from __future__ import annotations

from typing import Optional, Tuple

from flowwatch.features.processors.address_registry import AddressRegistry
from flowwatch.models import (
    SATOSHIS_PER_BTC,
    ClassifiedTransaction,
    ExchangeId,
    RawTransaction,
    Sentiment,
    Signal,
)

_SENTIMENT_BY_SIGNAL = {
    Signal.DEPOSIT: Sentiment.BEARISH,  # coins moving onto an exchange = sell pressure
    Signal.WITHDRAWAL: Sentiment.BULLISH,  # coins leaving = accumulation
    Signal.TRANSFER: Sentiment.NEUTRAL,
}


def satoshis_to_btc(satoshis: int) -> float:
    return satoshis / SATOSHIS_PER_BTC


def is_whale(raw: RawTransaction, min_btc: float) -> bool:
    """Pipeline-level filter: total output value at or above `min_btc`."""
    return raw.total_satoshis() >= min_btc * SATOSHIS_PER_BTC


def derive_signal(
    from_exchange: Optional[ExchangeId], to_exchange: Optional[ExchangeId]
) -> Signal:
    if to_exchange is not None and from_exchange is None:
        return Signal.DEPOSIT
    if from_exchange is not None and to_exchange is None:
        return Signal.WITHDRAWAL
    # exchange-to-exchange and wallet-to-wallet alike
    return Signal.TRANSFER


def sentiment_for(signal: Signal) -> Sentiment:
    return _SENTIMENT_BY_SIGNAL[signal]


def signal_and_sentiment(
    registry: AddressRegistry, from_address: str, to_address: str
) -> Tuple[Optional[ExchangeId], Optional[ExchangeId], Signal, Sentiment]:
    from_exchange = registry.lookup(from_address)
    to_exchange = registry.lookup(to_address)
    signal = derive_signal(from_exchange, to_exchange)
    return from_exchange, to_exchange, signal, sentiment_for(signal)


def classify(raw: RawTransaction, registry: AddressRegistry, price_at_fetch: float) -> ClassifiedTransaction:
    """Classify one raw feed record.

    Attribution uses the first input's source and the first output's
    destination; a missing address becomes the "Unknown" sentinel, which never
    matches the registry. Never raises for a parsed `RawTransaction`.
    """
    amount_btc = satoshis_to_btc(raw.total_satoshis())
    from_address = raw.first_input_address()
    to_address = raw.first_output_address()
    from_exchange, to_exchange, signal, sentiment = signal_and_sentiment(
        registry, from_address, to_address
    )
    return ClassifiedTransaction(
        hash=raw.hash,
        timestamp_ms=raw.time * 1000,
        amount_btc=amount_btc,
        amount_usd=amount_btc * price_at_fetch,
        from_address=from_address,
        to_address=to_address,
        from_exchange=from_exchange,
        to_exchange=to_exchange,
        signal=signal,
        sentiment=sentiment,
    )
