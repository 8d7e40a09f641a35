# greedy_eye/logger.py
import asyncio
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence

import aiofiles
from aiocsv import AsyncWriter

from .models import TradingOpportunity

OPPORTUNITY_HEADER = ["time", "venue", "from", "to", "from_amount", "to_amount", "fee", "profit"]


class AsyncAuditLogger:
    """
    Non-blocking CSV audit trail of emitted opportunities.
    Rows are queued and written by a background task so disk I/O never
    back-pressures the engine streams.
    """
    def __init__(self, filepath: str, header: Sequence[str] = OPPORTUNITY_HEADER):
        self.filepath = filepath
        self.header = list(header)
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker_task: Optional[asyncio.Task] = None

    async def start(self):
        directory = os.path.dirname(self.filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)

        if not os.path.exists(self.filepath) or os.path.getsize(self.filepath) == 0:
            async with aiofiles.open(self.filepath, mode='w', newline='') as f:
                await AsyncWriter(f, dialect='unix').writerow(self.header)
        self._worker_task = asyncio.create_task(self._writer_worker())

    async def log_row(self, row: List[Any]):
        await self._queue.put(row)

    async def log_opportunity(self, opp: TradingOpportunity):
        await self.log_row([
            datetime.now(timezone.utc).isoformat(),
            opp.venue,
            opp.from_asset,
            opp.to_asset,
            str(opp.from_amount),
            str(opp.to_amount),
            str(opp.fee),
            str(opp.profit),
        ])

    async def flush(self):
        await self._queue.join()

    async def stop(self):
        if self._worker_task is None:
            return
        await self.flush()
        self._worker_task.cancel()
        await asyncio.gather(self._worker_task, return_exceptions=True)
        self._worker_task = None

    async def _writer_worker(self):
        while True:
            row = await self._queue.get()
            try:
                async with aiofiles.open(self.filepath, mode='a', newline='') as f:
                    await AsyncWriter(f, dialect='unix').writerow(row)
            except OSError as e:
                # Losing an audit row must not take the engine down
                print(f"AUDIT LOG FAILURE: {e}", file=sys.stderr)
            finally:
                self._queue.task_done()


def setup_console_logger(name: str, level: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter('%(asctime)s | %(levelname)s | %(module)s | %(message)s')
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
