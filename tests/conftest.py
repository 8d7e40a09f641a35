import asyncio
import dataclasses
import itertools
import logging
from decimal import Decimal

import pytest

from greedy_eye.assets import AssetDirectory
from greedy_eye.config import EngineConfig
from greedy_eye.errors import TransportError
from greedy_eye.exploration_engine import ExplorationEngine
from greedy_eye.index_store import IndexPriceStore
from greedy_eye.jrpc import QuoteResponse
from greedy_eye.models import IndexPrice


class FakeTransport:
    """
    In-memory venue. `respond(req_id, amount)` returns a QuoteResponse or an
    exception to raise from recv(); with `hold` set nothing is answered.
    """
    def __init__(self, respond=None):
        self.respond = respond or (lambda req_id, amount: QuoteResponse(req_id, amount, Decimal(0), {}))
        self.generation = 1
        self.hold = False
        self.fail_next_send = False
        self.sent = []
        self.resets = 0
        self.closed = False
        self._ids = itertools.count(1)
        self._inbox: asyncio.Queue = asyncio.Queue()

    @property
    def amounts(self):
        return [amount for _, _, _, amount in self.sent]

    async def send(self, address_from, address_to, amount, before_write=None):
        if self.fail_next_send:
            self.fail_next_send = False
            raise TransportError("broken pipe", self.generation)
        req_id = next(self._ids)
        if before_write is not None:
            before_write(req_id)
        self.sent.append((req_id, address_from, address_to, amount))
        if not self.hold:
            self._inbox.put_nowait(self.respond(req_id, amount))
        return req_id

    def inject(self, item):
        self._inbox.put_nowait(item)

    async def recv(self):
        item = await self._inbox.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def reset(self, generation, on_reset=None):
        if generation != self.generation:
            return False
        self.generation += 1
        self.resets += 1
        if on_reset is not None:
            on_reset()
        return True

    async def close(self):
        self.closed = True


async def collect(stream, n, timeout=2.0):
    items = []

    async def _take():
        async for item in stream:
            items.append(item)
            if len(items) == n:
                return

    await asyncio.wait_for(_take(), timeout)
    return items


async def wait_until(predicate, timeout=2.0):
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def engine_config():
    return EngineConfig(
        url="ws://venue.test/",
        venue="sora",
        base_fee=Decimal("0.0007"),
        native_fee_asset="N",
        default_step_value=Decimal("100"),
        probe_timeout=0.3,
        sweep_interval=0.05,
        job_queue_capacity=8,
    )


@pytest.fixture
def store():
    return IndexPriceStore([
        IndexPrice("A", Decimal("2")),
        IndexPrice("B", Decimal("3")),
        IndexPrice("N", Decimal("10")),
    ])


@pytest.fixture
def assets():
    # C has an address but no index price
    return AssetDirectory({"A": "0xA", "B": "0xB", "C": "0xC", "N": "0xN"})


@pytest.fixture
def logger():
    return logging.getLogger("greedy_eye.tests")


@pytest.fixture
async def make_engine(engine_config, store, assets, logger):
    engines = []

    async def _make(transport, **overrides):
        cfg = dataclasses.replace(engine_config, **overrides)
        engine = ExplorationEngine(cfg, transport, store, assets, logger)
        await engine.start()
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        await engine.shutdown()
