# greedy_eye/market_engine.py
import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Sequence

import aiohttp
import ccxt.async_support as ccxt

from .index_store import IndexPriceStore
from .models import IndexPrice

COINGECKO_URL = "https://api.coingecko.com/api/v3"


def _to_decimal(value) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


class CoinGeckoFeed:
    """Bulk USD prices from CoinGecko's `coins/markets` endpoint."""
    source = "coingecko"

    def __init__(self, coin_ids: Dict[str, str], session: aiohttp.ClientSession,
                 base_url: str = COINGECKO_URL, timeout: float = 10.0):
        # coin id (e.g. 'polkadot') -> asset symbol (e.g. 'DOT')
        self.coin_ids = coin_ids
        self.session = session
        self.base_url = base_url.rstrip('/')
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def fetch(self) -> List[IndexPrice]:
        params = {"vs_currency": "usd", "ids": ",".join(self.coin_ids)}
        async with self.session.get(f"{self.base_url}/coins/markets", params=params,
                                    timeout=self.timeout) as resp:
            resp.raise_for_status()
            payload = await resp.json()
        if not isinstance(payload, list):
            raise ValueError(f"unexpected coins/markets payload: {str(payload)[:200]}")

        prices = []
        for coin in payload:
            price = _to_decimal(coin.get("current_price"))
            if price is None:
                continue
            asset = self.coin_ids.get(coin.get("id"), str(coin.get("symbol", "")).upper())
            prices.append(IndexPrice(
                asset=asset,
                price=price,
                time=_parse_time(coin.get("last_updated")),
                source=self.source,
            ))
        return prices

    async def close(self):
        pass


class ExchangeTickerFeed:
    """Last traded price of `<ASSET>/<stable>` markets on a ccxt exchange."""
    def __init__(self, exchange: str, symbols: Sequence[str]):
        self.source = exchange
        self.symbols = list(symbols)
        self.client: ccxt.Exchange = getattr(ccxt, exchange)({'enableRateLimit': True})

    async def fetch(self) -> List[IndexPrice]:
        tickers = await self.client.fetch_tickers(self.symbols)
        prices = []
        for symbol, ticker in tickers.items():
            price = _to_decimal(ticker.get('last'))
            if price is None:
                continue
            ts = ticker.get('timestamp')
            prices.append(IndexPrice(
                asset=symbol.split('/')[0],
                price=price,
                time=datetime.fromtimestamp(ts / 1000, timezone.utc) if ts else datetime.now(timezone.utc),
                source=self.source,
            ))
        return prices

    async def close(self):
        await self.client.close()


def _parse_time(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return datetime.now(timezone.utc)


class MarketEngine:
    """
    Keeps the index price store fresh.
    Polls one feed on a fixed interval; a failed poll is logged and the
    previous prices stay in place until the next one succeeds.
    """
    def __init__(self, feed, store: IndexPriceStore, logger: logging.Logger, refresh_seconds: float = 60.0):
        self.feed = feed
        self.store = store
        self.logger = logger
        self.refresh_seconds = refresh_seconds
        self.last_refresh: Optional[datetime] = None
        self._task: Optional[asyncio.Task] = None

    async def refresh_once(self) -> int:
        try:
            prices = await self.feed.fetch()
        except ccxt.NetworkError as e:
            self.logger.error(f"❌ {self.feed.source.upper()} | NETWORK: {e}")
            return 0
        except ccxt.ExchangeError as e:
            self.logger.error(f"❌ {self.feed.source.upper()} | EXCHANGE ERROR: {e}")
            return 0
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.logger.error(f"❌ {self.feed.source.upper()} | FETCH FAILED: {e}")
            return 0

        self.store.set_many(prices)
        self.last_refresh = datetime.now(timezone.utc)
        self.logger.debug(f"📡 {self.feed.source}: {len(prices)} index prices updated")
        return len(prices)

    async def run_loop(self):
        while True:
            await self.refresh_once()
            await asyncio.sleep(self.refresh_seconds)

    async def start(self):
        self.logger.info(f"📡 INDEX FEED {self.feed.source.upper()} every {self.refresh_seconds:.0f}s")
        await self.refresh_once()
        self._task = asyncio.create_task(self._sleep_then_loop())

    async def _sleep_then_loop(self):
        await asyncio.sleep(self.refresh_seconds)
        await self.run_loop()

    async def shutdown(self):
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        await self.feed.close()
