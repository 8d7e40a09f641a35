# main.py
import asyncio
import sys
from typing import List, Sequence

import aiohttp
import questionary
from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from greedy_eye.assets import AssetDirectory
from greedy_eye.config import AppConfig, PairConfig, load_config
from greedy_eye.errors import EngineError
from greedy_eye.exploration_engine import ExplorationEngine
from greedy_eye.index_store import IndexPriceStore
from greedy_eye.logger import AsyncAuditLogger, setup_console_logger
from greedy_eye.market_engine import CoinGeckoFeed, ExchangeTickerFeed, MarketEngine
from greedy_eye.notifier import LogMessenger, Notifier, TelegramClient
from greedy_eye.websocket_engine import QuoteTransport

# --- UI HELPER FUNCTIONS ---

def startup_selection(config: AppConfig) -> List[PairConfig]:
    """Interactive CLI to select the asset pairs to explore."""
    print(f"\n👁  GREEDY EYE :: {config.engine.venue.upper()} EXPLORER\n")
    if not config.pairs:
        print("No pairs configured. Exiting.")
        sys.exit()

    by_label = {p.label: p for p in config.pairs}
    labels = questionary.checkbox("Select Pairs to Explore:", choices=list(by_label)).ask()
    if not labels:
        print("No pairs selected. Exiting.")
        sys.exit()
    return [by_label[label] for label in labels]


def generate_dashboard(store: IndexPriceStore, engine: ExplorationEngine, notifier: Notifier):
    """Index prices, latest outcomes and engine counters."""

    # 1. Index Table
    index_table = Table(title="📡 Index Prices")
    index_table.add_column("Asset", style="cyan")
    index_table.add_column("Price (U)", justify="right", style="green")
    index_table.add_column("Source", style="dim")
    for asset, p in sorted(store.snapshot().items()):
        index_table.add_row(asset, f"{p.price:,.6f}", p.source)

    # 2. Outcome Table
    outcome_table = Table(title="✨ Latest Outcomes")
    outcome_table.add_column("Pair", style="magenta")
    outcome_table.add_column("Amount", justify="right")
    outcome_table.add_column("Profit (U)", justify="right")
    for item in reversed(notifier.recent):
        if isinstance(item, EngineError):
            outcome_table.add_row(f"{item.from_asset}/{item.to_asset}",
                                  str(item.from_amount or "-"), f"[red]{item.kind.value}[/red]")
        else:
            style = "green" if item.profit > 0 else "red"
            outcome_table.add_row(f"{item.from_asset}/{item.to_asset}",
                                  f"{item.from_amount:,.4f}", f"[{style}]{item.profit:,.4f}[/{style}]")

    layout = Layout()
    layout.split_column(
        Layout(name="top"),
        Layout(name="bottom")
    )
    layout["top"].split_row(
        Layout(Panel(index_table)),
        Layout(Panel(outcome_table))
    )

    s = engine.stats
    footer = Panel(
        f"[bold]IN FLIGHT: {engine.in_flight}[/bold] | sent {s.sent} | received {s.received} | "
        f"stale {s.stale} | resets {s.resets} | timeouts {s.timeouts} | "
        f"[green]opportunities {s.opportunities}[/green] | [red]errors {s.errors}[/red]",
        style="white on blue",
    )
    layout["bottom"].update(footer)
    layout["bottom"].size = 3

    return layout

# --- MAIN CONTROLLER ---

class GreedyEye:
    def __init__(self, pairs: Sequence[PairConfig], config: AppConfig):
        self.pairs = list(pairs)
        self.config = config
        self.logger = setup_console_logger("GreedyEye", config.log_level)
        self.audit_log = AsyncAuditLogger(config.opportunity_log)
        self.store = IndexPriceStore()
        self.assets = AssetDirectory(config.assets)
        self.engine = None
        self.market = None
        self.notifier = None

    def _build(self, session: aiohttp.ClientSession):
        cfg = self.config
        if cfg.index.source == "exchange":
            feed = ExchangeTickerFeed(cfg.index.exchange, cfg.index.symbols)
        else:
            feed = CoinGeckoFeed(cfg.index.coingecko_ids, session)
        self.market = MarketEngine(feed, self.store, self.logger, cfg.index.refresh_seconds)

        transport = QuoteTransport(cfg.engine, self.logger, session)
        self.engine = ExplorationEngine(cfg.engine, transport, self.store, self.assets, self.logger)

        if cfg.telegram.enabled:
            messenger, destinations = TelegramClient(cfg.telegram.token, session), cfg.telegram.chat_ids
        else:
            messenger, destinations = LogMessenger(self.logger), ["log"]
        self.notifier = Notifier(self.engine, messenger, destinations, self.logger, self.audit_log)

    async def _schedule_jobs(self):
        while True:
            for pair in self.pairs:
                await self.engine.submit(pair.to_job())
            await asyncio.sleep(self.config.scan_interval)

    async def run(self):
        scheduler = notifier_task = None
        async with aiohttp.ClientSession() as session:
            self._build(session)
            try:
                await self.audit_log.start()
                print("Loading index prices...")
                await self.market.start()
                await self.engine.start()
                notifier_task = asyncio.create_task(self.notifier.run())
                scheduler = asyncio.create_task(self._schedule_jobs())

                console = Console()
                with Live(console=console, refresh_per_second=4) as live:
                    while True:
                        live.update(generate_dashboard(self.store, self.engine, self.notifier))
                        await asyncio.sleep(0.25)
            finally:
                print("Shutting down resources...")
                if scheduler is not None:
                    scheduler.cancel()
                await self.engine.shutdown()
                await self.market.shutdown()
                # Notifier ends once the engine streams are drained
                await asyncio.gather(*[t for t in (scheduler, notifier_task) if t], return_exceptions=True)
                await self.audit_log.stop()

if __name__ == "__main__":
    conf = load_config(sys.argv[1] if len(sys.argv) > 1 else "config.yaml")
    try:
        selected = startup_selection(conf)
        bot = GreedyEye(selected, conf)
        try:
            import uvloop
            asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
        except ImportError:
            pass
        asyncio.run(bot.run())
    except KeyboardInterrupt:
        print("\n🛑 Explorer Stopped by User.")
        sys.exit()
