# greedy_eye/assets.py
from types import MappingProxyType
from typing import Mapping

from .errors import UnknownAssetError
from .models import Asset


class AssetDirectory:
    """Read-only map of asset symbol -> venue token address."""
    def __init__(self, addresses: Mapping[Asset, str]):
        self._addresses: Mapping[Asset, str] = MappingProxyType(dict(addresses))

    def resolve(self, asset: Asset) -> str:
        try:
            return self._addresses[asset]
        except KeyError:
            raise UnknownAssetError(asset) from None

    def __contains__(self, asset: Asset) -> bool:
        return asset in self._addresses
