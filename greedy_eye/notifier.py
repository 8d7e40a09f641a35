# greedy_eye/notifier.py
import asyncio
import logging
from collections import deque
from typing import Deque, Optional, Protocol, Sequence, Union

import aiohttp

from .errors import EngineError
from .logger import AsyncAuditLogger
from .models import TradingOpportunity

TELEGRAM_API_URL = "https://api.telegram.org"


class MessengerError(Exception):
    pass


class Messenger(Protocol):
    async def send_message(self, destination: str, text: str) -> None: ...


class TelegramClient:
    """Minimal Bot API client: plain-text `sendMessage` only."""
    def __init__(self, token: str, session: aiohttp.ClientSession,
                 base_url: str = TELEGRAM_API_URL, timeout: float = 10.0):
        self.token = token
        self.session = session
        self.base_url = base_url.rstrip('/')
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def send_message(self, destination: str, text: str) -> None:
        url = f"{self.base_url}/bot{self.token}/sendMessage"
        try:
            async with self.session.post(url, json={"chat_id": destination, "text": text},
                                         timeout=self.timeout) as resp:
                body = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise MessengerError(f"telegram request failed: {e}") from e

        if resp.status != 200 or not isinstance(body, dict) or not body.get("ok"):
            description = body.get("description") if isinstance(body, dict) else body
            raise MessengerError(f"telegram rejected message to {destination}: {resp.status} {description}")


class LogMessenger:
    """Writes messages to the log when no chat is configured."""
    def __init__(self, logger: logging.Logger):
        self.logger = logger

    async def send_message(self, destination: str, text: str) -> None:
        self.logger.info(f"[{destination}] {text}")


def format_opportunity(opp: TradingOpportunity) -> str:
    return (
        f"✨ {opp.from_asset} → {opp.to_asset} on {opp.venue}\n"
        f"Sell: {opp.from_amount.normalize():f} {opp.from_asset}\n"
        f"Get: {opp.to_amount.normalize():f} {opp.to_asset}\n"
        f"Fee: ${opp.fee:.4f}\n"
        f"Profit: ${opp.profit:.4f}"
    )


def format_error(err: EngineError) -> str:
    return f"⚠️ {err}"


class Notifier:
    """
    Forwards everything the engine emits to the configured chats.
    Opportunities are also written to the audit log. Delivery failures are
    logged; the streams keep draining regardless.
    """
    def __init__(self, engine, messenger: Messenger, destinations: Sequence[str],
                 logger: logging.Logger, audit_log: Optional[AsyncAuditLogger] = None, history: int = 10):
        self.engine = engine
        self.messenger = messenger
        self.destinations = list(destinations)
        self.logger = logger
        self.audit_log = audit_log
        self.recent: Deque[Union[TradingOpportunity, EngineError]] = deque(maxlen=history)
        self.delivery_failures = 0

    async def run(self):
        await asyncio.gather(self._drain_opportunities(), self._drain_errors())

    async def _drain_opportunities(self):
        async for opp in self.engine.opportunities():
            self.recent.append(opp)
            if self.audit_log is not None:
                await self.audit_log.log_opportunity(opp)
            await self._broadcast(format_opportunity(opp))

    async def _drain_errors(self):
        async for err in self.engine.errors():
            self.recent.append(err)
            await self._broadcast(format_error(err))

    async def _broadcast(self, text: str):
        for destination in self.destinations:
            try:
                await self.messenger.send_message(destination, text)
            except MessengerError as e:
                self.delivery_failures += 1
                self.logger.error(f"❌ Notification to {destination} failed: {e}")
