# greedy_eye/index_store.py
import threading
from types import MappingProxyType
from typing import Iterable, Mapping

from .errors import AssetMissingError
from .models import Asset, IndexPrice


class IndexPriceStore:
    """
    Latest reference price per asset, no history.
    Writers copy and swap the whole mapping; readers never take the lock.
    """
    def __init__(self, prices: Iterable[IndexPrice] = ()):
        self._lock = threading.Lock()
        self._prices: Mapping[Asset, IndexPrice] = MappingProxyType({p.asset: p for p in prices})

    def set(self, price: IndexPrice) -> None:
        self.set_many([price])

    def set_many(self, prices: Iterable[IndexPrice]) -> None:
        with self._lock:
            updated = dict(self._prices)
            for p in prices:
                updated[p.asset] = p
            self._prices = MappingProxyType(updated)

    def lookup(self, asset: Asset) -> IndexPrice:
        price = self._prices.get(asset)
        if price is None:
            raise AssetMissingError(asset)
        return price

    def snapshot(self) -> Mapping[Asset, IndexPrice]:
        return self._prices

    def __len__(self) -> int:
        return len(self._prices)
