# greedy_eye/models.py
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

Asset = str


@dataclass(slots=True, frozen=True)
class IndexPrice:
    """
    Reference value of one unit of `asset` in the valuation unit (USD-like).
    Overwritten in place by the feeds; the engine only reads it.
    """
    asset: Asset
    price: Decimal
    time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    source: str = ""


@dataclass(slots=True)
class TradingOpportunity:
    """
    One evaluated probe: selling `from_amount` of `from_asset` on `venue`.
    `fee` and `profit` are expressed in the valuation unit.
    """
    from_asset: Asset
    to_asset: Asset
    venue: str
    from_amount: Decimal
    to_amount: Optional[Decimal] = None
    fee: Optional[Decimal] = None
    profit: Optional[Decimal] = None


@dataclass(slots=True)
class ExplorationJob:
    """
    Search for the most profitable `from_amount` on one asset pair.
    Mutated in place by the engine between probes.
    """
    from_asset: Asset
    to_asset: Asset
    minimum_interest: Optional[Decimal] = None
    maximum_from_amount: Optional[Decimal] = None
    from_amount_step: Optional[Decimal] = None
    # Probe currently outstanding or just returned
    current_opportunity: Optional[TradingOpportunity] = None
    # Probe with the best profit so far
    best_opportunity: Optional[TradingOpportunity] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def last_from_amount(self) -> Optional[Decimal]:
        if self.current_opportunity is not None:
            return self.current_opportunity.from_amount
        if self.best_opportunity is not None:
            return self.best_opportunity.from_amount
        return None


@dataclass(slots=True)
class EngineStats:
    sent: int = 0
    received: int = 0
    stale: int = 0
    resets: int = 0
    timeouts: int = 0
    opportunities: int = 0
    errors: int = 0
