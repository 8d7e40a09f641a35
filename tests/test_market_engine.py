from decimal import Decimal
from unittest.mock import AsyncMock

import aiohttp
import ccxt.async_support as ccxt
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from greedy_eye.index_store import IndexPriceStore
from greedy_eye.market_engine import CoinGeckoFeed, ExchangeTickerFeed, MarketEngine
from greedy_eye.models import IndexPrice

MARKETS = [
    {"id": "sora", "symbol": "xor", "current_price": 0.0021, "last_updated": "2024-03-01T12:00:00.000Z"},
    {"id": "dai", "symbol": "dai", "current_price": 1.001, "last_updated": "2024-03-01T12:00:01.000Z"},
    {"id": "polkaswap", "symbol": "pswap", "current_price": None},
]


@pytest.fixture
async def coingecko():
    state = {"payload": MARKETS, "status": 200, "queries": []}

    async def markets(request):
        state["queries"].append(dict(request.query))
        return web.json_response(state["payload"], status=state["status"])

    app = web.Application()
    app.router.add_get("/api/v3/coins/markets", markets)
    server = TestServer(app)
    await server.start_server()
    state["url"] = str(server.make_url("/api/v3"))
    yield state
    await server.close()


@pytest.fixture
async def session():
    async with aiohttp.ClientSession() as s:
        yield s


@pytest.mark.asyncio
async def test_coingecko_feed(coingecko, session):
    feed = CoinGeckoFeed({"sora": "XOR", "dai": "DAI", "polkaswap": "PSWAP"}, session, base_url=coingecko["url"])

    prices = {p.asset: p for p in await feed.fetch()}

    assert coingecko["queries"] == [{"vs_currency": "usd", "ids": "sora,dai,polkaswap"}]
    assert set(prices) == {"XOR", "DAI"}
    assert prices["XOR"].price == Decimal("0.0021")
    assert prices["DAI"].source == "coingecko"
    assert prices["DAI"].time.second == 1


@pytest.mark.asyncio
async def test_refresh_fills_store(coingecko, session, logger):
    store = IndexPriceStore()
    market = MarketEngine(CoinGeckoFeed({"sora": "XOR", "dai": "DAI"}, session, base_url=coingecko["url"]),
                          store, logger)

    assert await market.refresh_once() == 2
    assert store.lookup("DAI").price == Decimal("1.001")
    assert market.last_refresh is not None


@pytest.mark.asyncio
@pytest.mark.parametrize("status, payload", [
    (500, {"error": "boom"}),
    (200, {"status": {"error_code": 429}}),
])
async def test_failed_refresh_keeps_previous_prices(coingecko, session, logger, status, payload):
    coingecko["status"], coingecko["payload"] = status, payload
    store = IndexPriceStore([IndexPrice("XOR", Decimal("0.002"))])
    market = MarketEngine(CoinGeckoFeed({"sora": "XOR"}, session, base_url=coingecko["url"]), store, logger)

    assert await market.refresh_once() == 0
    assert store.lookup("XOR").price == Decimal("0.002")
    assert market.last_refresh is None


@pytest.mark.asyncio
async def test_exchange_ticker_feed(logger):
    feed = ExchangeTickerFeed("binance", ["ETH/USDT", "DAI/USDT"])
    feed.client.fetch_tickers = AsyncMock(return_value={
        "ETH/USDT": {"last": 3120.5, "timestamp": 1709294400000},
        "DAI/USDT": {"last": None, "timestamp": None},
    })
    feed.client.close = AsyncMock()
    store = IndexPriceStore()
    market = MarketEngine(feed, store, logger, refresh_seconds=3600)

    await market.start()
    await market.shutdown()

    feed.client.fetch_tickers.assert_awaited_once_with(["ETH/USDT", "DAI/USDT"])
    feed.client.close.assert_awaited_once()
    assert store.lookup("ETH").price == Decimal("3120.5")
    assert store.lookup("ETH").source == "binance"
    assert len(store) == 1


@pytest.mark.asyncio
async def test_exchange_errors_are_contained(logger):
    feed = ExchangeTickerFeed("binance", ["ETH/USDT"])
    feed.client.fetch_tickers = AsyncMock(side_effect=ccxt.NetworkError("timeout"))
    feed.client.close = AsyncMock()
    market = MarketEngine(feed, IndexPriceStore(), logger)

    assert await market.refresh_once() == 0
    await feed.close()
