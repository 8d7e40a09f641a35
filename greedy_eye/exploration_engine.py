# greedy_eye/exploration_engine.py
import asyncio
import copy
import dataclasses
import logging
import time
from collections import deque
from decimal import Decimal
from typing import AsyncIterator, Callable, Deque, Dict, List, Optional, Protocol, Set

from .assets import AssetDirectory
from .config import EngineConfig
from .correlation import CorrelationEntry, CorrelationTable
from .errors import (AssetMissingError, BadResponseError, EngineError, ErrorKind,
                     TransportError, UnknownAssetError)
from .jrpc import QuoteResponse
from .models import Asset, EngineStats, ExplorationJob, IndexPrice, TradingOpportunity


class IndexPriceReader(Protocol):
    def lookup(self, asset: Asset) -> IndexPrice: ...


class Transport(Protocol):
    async def send(self, address_from: str, address_to: str, amount: Decimal,
                   before_write: Optional[Callable[[int], None]] = None) -> int: ...

    async def recv(self) -> QuoteResponse: ...

    async def reset(self, generation: int, on_reset: Optional[Callable[[], None]] = None) -> bool: ...

    async def close(self) -> None: ...


class ExplorationEngine:
    """
    Searches, per job, for the `from_amount` with the best profit on one venue.

    Each job is probed serially: a quote request for the next amount, then the
    reply is valued against the index prices. While profit keeps improving
    the job goes back on the work queue with a larger amount; otherwise the
    best probe is emitted. Jobs interleave freely, replies are matched back
    through the correlation table.

    Tasks: admission (intake -> work queue), dispatcher, response reader and
    timeout sweeper. At most `job_queue_capacity - 1` jobs are admitted at
    once, so re-enqueueing onto the work queue never blocks.
    """
    def __init__(self, config: EngineConfig, transport: Transport, index: IndexPriceReader,
                 assets: AssetDirectory, logger: logging.Logger,
                 clock: Callable[[], float] = time.monotonic):
        self.cfg = config
        self.transport = transport
        self.index = index
        self.assets = assets
        self.logger = logger
        self.table = CorrelationTable(clock)
        self.stats = EngineStats()

        capacity = config.job_queue_capacity
        self._intake: asyncio.Queue = asyncio.Queue(capacity)
        self._work: asyncio.Queue = asyncio.Queue(capacity)
        self._slots = asyncio.Semaphore(capacity - 1)
        self._opportunities: asyncio.Queue = asyncio.Queue(capacity)
        self._errors: asyncio.Queue = asyncio.Queue(capacity)
        # Admitted jobs that have not produced their outcome yet, keyed by object identity
        self._active: Dict[int, ExplorationJob] = {}
        # Active jobs whose outcome is being delivered
        self._settling: Set[int] = set()
        # CANCELLED errors that did not fit the error queue at shutdown
        self._overflow: Deque[EngineError] = deque()
        self._tasks: List[asyncio.Task] = []
        self._running = False
        self._stopped = asyncio.Event()

    # --- PUBLIC API ---

    async def start(self):
        if self._running:
            return
        self._running = True
        self._stopped.clear()
        loops = {
            "admit": self._admit_loop,
            "dispatch": self._dispatch_loop,
            "read": self._read_loop,
            "sweep": self._sweep_loop,
        }
        for name, loop in loops.items():
            task = asyncio.create_task(loop(), name=f"exploration-{name}")
            task.add_done_callback(self._on_task_done)
            self._tasks.append(task)
        self.logger.info(f"🚀 EXPLORATION ENGINE STARTED on {self.cfg.venue}")

    async def submit(self, job: ExplorationJob):
        """Queue a job. The engine works on a private copy."""
        if not self._running:
            raise RuntimeError("exploration engine is not running")
        await self._intake.put(copy.deepcopy(job))
        if not self._running:
            # Woken by the shutdown drain after it finished
            self._cancel_queued()

    def opportunities(self) -> AsyncIterator[TradingOpportunity]:
        return self._stream(self._opportunities)

    def errors(self) -> AsyncIterator[EngineError]:
        return self._stream(self._errors, self._overflow)

    async def shutdown(self):
        """
        Stop all engine tasks. Every job not yet finished, queued or in
        flight, is reported as CANCELLED.
        """
        if not self._running:
            return
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        abandoned = list(self._active.values())
        self._active.clear()
        self._settling.clear()
        while not self._work.empty():
            self._work.get_nowait()
        self.table.drain()
        cancelled = self._cancel(abandoned) + self._cancel_queued()

        await self.transport.close()
        self._stopped.set()
        self.logger.info(f"🛑 EXPLORATION ENGINE STOPPED ({cancelled} jobs cancelled)")

    def _cancel_queued(self) -> int:
        jobs = []
        while not self._intake.empty():
            jobs.append(self._intake.get_nowait())
        return self._cancel(jobs)

    def _cancel(self, jobs: List[ExplorationJob]) -> int:
        """Report each job as CANCELLED; never blocks, never drops."""
        for job in jobs:
            err = EngineError.for_job(ErrorKind.CANCELLED, "engine shut down", job)
            self.stats.errors += 1
            try:
                self._errors.put_nowait(err)
            except asyncio.QueueFull:
                self._overflow.append(err)
        return len(jobs)

    @property
    def in_flight(self) -> int:
        return len(self.table)

    # --- TASKS ---

    async def _admit_loop(self):
        while True:
            await self._slots.acquire()
            job = await self._intake.get()
            self._active[id(job)] = job
            self._work.put_nowait(job)

    async def _dispatch_loop(self):
        while True:
            job = await self._work.get()
            await self._process_job(job)

    async def _read_loop(self):
        while True:
            try:
                resp = await self.transport.recv()
            except TransportError as e:
                self.logger.error(f"❌ Can't read response: {e}")
                await self._reset_transport(e)
                continue
            except BadResponseError as e:
                self.stats.received += 1
                await self._on_bad_response(e)
                continue

            self.stats.received += 1
            job = self.table.take(resp.req_id)
            if job is None:
                self.stats.stale += 1
                self.logger.warning(f"Dropping stale response {resp.req_id}")
                continue
            await self._handle_response(job, resp)

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.cfg.sweep_interval)
            for entry in self.table.expire(self.cfg.probe_timeout):
                self.stats.timeouts += 1
                await self._fail(entry.job, ErrorKind.TIMEOUT,
                                 f"no response for request {entry.req_id} within {self.cfg.probe_timeout}s")

    def _on_task_done(self, task: asyncio.Task):
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.critical(f"💀 {task.get_name()} crashed: {exc!r}", exc_info=exc)

    # --- PROBE LOOP ---

    async def _process_job(self, job: ExplorationJob):
        if job.best_opportunity is None and job.current_opportunity is None:
            problem = self._validate(job)
            if problem:
                await self._fail(job, ErrorKind.INVALID_JOB, problem)
                return

        # 1. Step size, derived once from the index price of the sold asset
        if job.from_amount_step is None:
            try:
                price = self.index.lookup(job.from_asset).price
            except AssetMissingError:
                await self._fail(job, ErrorKind.INDEX_UNAVAILABLE,
                                 f"can't calculate the step of the value of the sold asset {job.from_asset}")
                return
            if price <= 0:
                await self._fail(job, ErrorKind.INDEX_UNAVAILABLE,
                                 f"index price of {job.from_asset} is not positive: {price}")
                return
            job.from_amount_step = self.cfg.default_step_value / price
        if job.maximum_from_amount is not None and job.from_amount_step > job.maximum_from_amount:
            job.from_amount_step = job.maximum_from_amount

        # 2. Next amount, clamped to the job maximum
        best = job.best_opportunity
        next_from = job.from_amount_step if best is None else best.from_amount + job.from_amount_step
        if job.maximum_from_amount is not None and next_from > job.maximum_from_amount:
            next_from = job.maximum_from_amount
        if best is not None and next_from <= best.from_amount:
            # Clamp reached: probing the same amount again can't improve
            await self._emit(job)
            return

        # 3. Dispatch
        try:
            address_from = self.assets.resolve(job.from_asset)
            address_to = self.assets.resolve(job.to_asset)
        except UnknownAssetError as e:
            await self._fail(job, ErrorKind.UNKNOWN_ASSET, f"no venue address for {e.args[0]}")
            return

        job.current_opportunity = TradingOpportunity(
            from_asset=job.from_asset,
            to_asset=job.to_asset,
            venue=self.cfg.venue,
            from_amount=next_from,
        )
        await self._dispatch(job, address_from, address_to)

    def _validate(self, job: ExplorationJob) -> Optional[str]:
        if job.from_asset == job.to_asset:
            return f"from and to asset are the same: {job.from_asset}"
        if job.from_amount_step is not None and job.from_amount_step <= 0:
            return f"from_amount_step must be positive, got {job.from_amount_step}"
        if job.maximum_from_amount is not None and job.maximum_from_amount <= 0:
            return f"maximum_from_amount must be positive, got {job.maximum_from_amount}"
        return None

    async def _dispatch(self, job: ExplorationJob, address_from: str, address_to: str):
        registered: List[int] = []

        def register(req_id: int):
            self.table.put(req_id, job)
            registered.append(req_id)

        try:
            req_id = await self.transport.send(address_from, address_to,
                                               job.current_opportunity.from_amount, before_write=register)
        except TransportError as e:
            if registered:
                self.table.take(registered[0])
            self.logger.error(f"❌ Can't make price request: {e}")
            await self._reset_transport(e)
            await self._fail(job, ErrorKind.TRANSPORT, f"can't make price request: {e}")
            return

        self.stats.sent += 1
        self.logger.debug(f"→ #{req_id} {job.from_asset}->{job.to_asset} {job.current_opportunity.from_amount}")

    async def _handle_response(self, job: ExplorationJob, resp: QuoteResponse):
        opp = job.current_opportunity
        opp.to_amount = resp.amount

        try:
            native_price = self.index.lookup(self.cfg.native_fee_asset).price
            sold_price = self.index.lookup(job.from_asset).price
            purchased_price = self.index.lookup(job.to_asset).price
        except AssetMissingError as e:
            await self._fail(job, ErrorKind.INDEX_UNAVAILABLE, f"no index price for {e.args[0]}")
            return

        opp.fee = (resp.fee + self.cfg.base_fee) * native_price
        sold_value = opp.from_amount * sold_price
        # Purchased side valued at from_amount (not to_amount); kept as deployed, see DESIGN.md
        purchased_value = opp.from_amount * purchased_price
        opp.profit = purchased_value - sold_value - opp.fee

        best = job.best_opportunity
        if best is None or opp.profit > best.profit:
            job.best_opportunity = opp
            job.current_opportunity = None
            self._work.put_nowait(job)
        else:
            await self._emit(job)

    async def _on_bad_response(self, e: BadResponseError):
        job = self.table.take(e.req_id) if e.req_id is not None else None
        if job is None:
            self.logger.warning(f"Dropping undecodable frame: {e}")
            return
        await self._fail(job, ErrorKind.BAD_RESPONSE, str(e))

    async def _reset_transport(self, e: TransportError):
        purged: List[CorrelationEntry] = []
        if not await self.transport.reset(e.generation, on_reset=lambda: purged.extend(self.table.drain())):
            return
        self.stats.resets += 1
        for entry in purged:
            await self._fail(entry.job, ErrorKind.TRANSPORT, f"connection reset: {e}")

    # --- OUTCOMES ---

    async def _deliver(self, job: ExplorationJob, queue: asyncio.Queue, item) -> bool:
        """
        Put the job's single outcome on `queue`, then release its slot.
        The job stays active while the put waits: if it is cancelled there,
        shutdown reports the job as CANCELLED instead.
        """
        key = id(job)
        if key not in self._active or key in self._settling:
            return False
        self._settling.add(key)
        try:
            await queue.put(item)
        finally:
            self._settling.discard(key)
        del self._active[key]
        self._slots.release()
        return True

    async def _emit(self, job: ExplorationJob):
        best = dataclasses.replace(job.best_opportunity)
        if not await self._deliver(job, self._opportunities, best):
            return
        self.stats.opportunities += 1
        self.logger.info(f"✨ BEST: {best.from_asset}->{best.to_asset} on {best.venue} | "
                         f"Amt: {best.from_amount} | Fee: {best.fee} | Profit: {best.profit}")

    async def _fail(self, job: ExplorationJob, kind: ErrorKind, message: str):
        err = EngineError.for_job(kind, message, job)
        if not await self._deliver(job, self._errors, err):
            return
        self.stats.errors += 1
        self.logger.warning(f"⚠️ JOB FAILED: {err}")

    async def _stream(self, queue: asyncio.Queue, overflow: Optional[Deque] = None):
        while not (self._stopped.is_set() and queue.empty() and not overflow):
            if self._stopped.is_set() and queue.empty():
                yield overflow.popleft()
                continue
            try:
                item = queue.get_nowait()
            except asyncio.QueueEmpty:
                getter = asyncio.ensure_future(queue.get())
                stopped = asyncio.ensure_future(self._stopped.wait())
                try:
                    done, _ = await asyncio.wait({getter, stopped}, return_when=asyncio.FIRST_COMPLETED)
                finally:
                    stopped.cancel()
                    if not getter.done():
                        getter.cancel()
                if getter not in done:
                    continue
                item = getter.result()
            yield item
