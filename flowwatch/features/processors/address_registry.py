"""Static address → exchange lookup.

The default table lists known exchange cold/hot wallets. Exchanges rotate
wallets regularly; deployments can replace the table with a JSON file
(`EXCHANGE_ADDRESSES_FILE`) of the form {"binance": ["addr", ...], ...}.
"""
from __future__ import annotations

import json
import logging
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Sequence, Union

from flowwatch.models import ExchangeId

logger = logging.getLogger(__name__)

DEFAULT_EXCHANGE_ADDRESSES: Dict[ExchangeId, Sequence[str]] = {
    ExchangeId.BINANCE: (
        "bc1qm34lsc65zpw79lxes69zkqmk6ee3ewf0j77s3h",  # cold
        "34xp4vRoCGJym3xR7yCVPFHoCNxv4Twseo",  # hot
        "3LCGsSmfr24demGvriN4e3ft8wEcDuHFqh",  # hot
        "bc1qr4dl5wa7kl8yu792dceg9z5knl2gkn220lk7a9",  # cold
        "1NDyJtNTjmwk5xPNhjgAMu4HDHigtobu1s",  # legacy
    ),
    ExchangeId.COINBASE: (
        "3D2oetdNuZUqQHPJmcMDDHYoqkyNVsFk9r",
        "3LYJfcfHPXYJreMsASk2jkn69LWEYKzexb",
        "36n452uGq1x4mK7bfyZR8wgE47AnBb2pzi",
        "3Cbq7aT1tY8kMxWLbitaG7yT6bPbKChq64",
    ),
    ExchangeId.KRAKEN: (
        "3FupZp77ySr7jwoLYEJ9mwzJpvoNBXmWi3",
        "35ULMyVnFoYaPaMxwHTRmaGdABpAThM4QR",
        "3ML7Drqxg8gmXS4Qnbh3f9kKmPU7GbNrDX",
    ),
    ExchangeId.BITFINEX: (
        "3D8ZWMjcUgG8KkNvmEVZV1FJCGxSjDRnLb",
        "1Kr6QSydW9bFQG1mXiPNNu6WpJGmUa9i1g",
    ),
    ExchangeId.HUOBI: (
        "3JZq4atUahhuA9rLhXLMhhTo133J9rF97j",
        "38UmuUqPCrFmQo4khkomQwZ4VbY2nZMJ67",
    ),
    ExchangeId.OKEX: (
        "1J1F3U7gHrCjsEsRimDJ3oYBiV24wA8FuV",
        "3MbYQMMmSkC3AgWkj9FMo5LsPTW1zBTwXL",
    ),
    ExchangeId.BITSTAMP: (
        "3E8ociqZa9mZUSwGdSmAEMAoAxBK3FNDcd",
        "3BMEX8A3vX4E5gBxFVqC1phPJaXkTmKjmQ",
    ),
}


def _as_exchange(tag: Union[str, ExchangeId]) -> ExchangeId:
    if isinstance(tag, ExchangeId):
        return tag
    try:
        return ExchangeId(str(tag).strip().lower())
    except ValueError:
        raise ValueError(f"Unknown exchange tag: {tag!r}") from None


class AddressRegistry:
    """Immutable reverse index from address to exchange. Build once, share freely."""

    __slots__ = ("_index", "_table")

    def __init__(self, table: Mapping[Union[str, ExchangeId], Iterable[str]]) -> None:
        index: Dict[str, ExchangeId] = {}
        normalized: Dict[ExchangeId, tuple] = {}
        for tag, addresses in table.items():
            exchange = _as_exchange(tag)
            addrs = tuple(addresses)
            for addr in addrs:
                owner = index.get(addr)
                if owner is not None and owner is not exchange:
                    raise ValueError(
                        f"Address {addr} is listed for both {owner.value} and {exchange.value}"
                    )
                index[addr] = exchange
            normalized[exchange] = normalized.get(exchange, ()) + addrs
        self._index = MappingProxyType(index)
        self._table = MappingProxyType(normalized)

    @classmethod
    def default(cls) -> "AddressRegistry":
        return cls(DEFAULT_EXCHANGE_ADDRESSES)

    @classmethod
    def from_json_file(cls, path: str) -> "AddressRegistry":
        with open(path, "r", encoding="utf-8") as f:
            table = json.load(f)
        if not isinstance(table, dict):
            raise ValueError(f"{path}: expected an object of exchange -> [addresses]")
        registry = cls(table)
        logger.info("Loaded %d exchange addresses from %s", len(registry), path)
        return registry

    def lookup(self, address: Optional[str]) -> Optional[ExchangeId]:
        if not address:
            return None
        return self._index.get(address)

    def addresses(self, exchange: ExchangeId) -> Sequence[str]:
        return self._table.get(exchange, ())

    @property
    def exchanges(self) -> Sequence[ExchangeId]:
        return tuple(self._table.keys())

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, address: object) -> bool:
        return address in self._index


def load_registry(path: Optional[str] = None) -> AddressRegistry:
    """Registry from `path` when given, otherwise the built-in table."""
    if path:
        return AddressRegistry.from_json_file(path)
    return AddressRegistry.default()
