# greedy_eye/config.py
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .errors import ConfigError
from .models import ExplorationJob

DEFAULT_USER_AGENT = "Mozilla/5.0 (X11; Ubuntu; Linux x86_64; rv:88.0) Gecko/20100101 Firefox/88.0"


@dataclass(frozen=True)
class EngineConfig:
    """
    Venue constants for the exploration engine.
    Amounts are in the valuation unit unless named after the native fee asset.
    """
    url: str
    venue: str = "sora"
    base_fee: Decimal = Decimal("0.0007")
    native_fee_asset: str = "XOR"
    default_step_value: Decimal = Decimal("100")
    wire_scale: int = 18
    probe_timeout: float = 30.0
    sweep_interval: float = 1.0
    origin: str = "https://polkaswap.io"
    user_agent: str = DEFAULT_USER_AGENT
    job_queue_capacity: int = 64

    def validate(self) -> None:
        if not self.url:
            raise ConfigError("engine.url is mandatory")
        if self.base_fee <= 0:
            raise ConfigError("engine.base_fee must be positive")
        if self.default_step_value <= 0:
            raise ConfigError("engine.default_step_value must be positive")
        if not 0 < self.wire_scale <= 255:
            raise ConfigError("engine.wire_scale must fit in uint8")
        if self.probe_timeout <= 0 or self.sweep_interval <= 0:
            raise ConfigError("engine.probe_timeout and engine.sweep_interval must be positive")
        if self.sweep_interval >= self.probe_timeout:
            raise ConfigError("engine.sweep_interval must be shorter than engine.probe_timeout")
        if self.job_queue_capacity < 2:
            raise ConfigError("engine.job_queue_capacity must be at least 2")


@dataclass(frozen=True)
class PairConfig:
    from_asset: str
    to_asset: str
    maximum_from_amount: Optional[Decimal] = None
    from_amount_step: Optional[Decimal] = None
    minimum_interest: Optional[Decimal] = None

    @property
    def label(self) -> str:
        return f"{self.from_asset}/{self.to_asset}"

    def to_job(self) -> ExplorationJob:
        return ExplorationJob(
            from_asset=self.from_asset,
            to_asset=self.to_asset,
            minimum_interest=self.minimum_interest,
            maximum_from_amount=self.maximum_from_amount,
            from_amount_step=self.from_amount_step,
        )


@dataclass(frozen=True)
class IndexConfig:
    source: str = "coingecko"
    refresh_seconds: float = 60.0
    # CoinGecko coin id -> asset symbol
    coingecko_ids: Dict[str, str] = field(default_factory=dict)
    exchange: str = "binance"
    symbols: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TelegramConfig:
    token: str = ""
    chat_ids: Tuple[str, ...] = ()

    @property
    def enabled(self) -> bool:
        return bool(self.token and self.chat_ids)


@dataclass(frozen=True)
class AppConfig:
    engine: EngineConfig
    assets: Dict[str, str]
    pairs: Tuple[PairConfig, ...] = ()
    index: IndexConfig = IndexConfig()
    telegram: TelegramConfig = TelegramConfig()
    opportunity_log: str = "logs/opportunities.csv"
    log_level: str = "INFO"
    scan_interval: float = 60.0


def _decimal(value: Any, name: str) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        # str() first: YAML floats must not leak binary rounding into amounts
        return Decimal(str(value))
    except InvalidOperation:
        raise ConfigError(f"{name}: '{value}' is not a decimal number") from None


def _engine(raw: Dict[str, Any]) -> EngineConfig:
    kwargs: Dict[str, Any] = {"url": raw.get("url", "")}
    for key in ("base_fee", "default_step_value"):
        if key in raw:
            kwargs[key] = _decimal(raw[key], f"engine.{key}")
    for key in ("probe_timeout", "sweep_interval"):
        if key in raw:
            kwargs[key] = float(raw[key])
    for key in ("wire_scale", "job_queue_capacity"):
        if key in raw:
            kwargs[key] = int(raw[key])
    for key in ("venue", "native_fee_asset", "origin", "user_agent"):
        if key in raw:
            kwargs[key] = str(raw[key])
    cfg = EngineConfig(**kwargs)
    cfg.validate()
    return cfg


def _pairs(raw: List[Dict[str, Any]]) -> Tuple[PairConfig, ...]:
    pairs = []
    for i, item in enumerate(raw):
        try:
            from_asset, to_asset = str(item["from"]), str(item["to"])
        except KeyError as e:
            raise ConfigError(f"pairs[{i}]: missing {e}") from None
        pairs.append(PairConfig(
            from_asset=from_asset,
            to_asset=to_asset,
            maximum_from_amount=_decimal(item.get("maximum_from_amount"), f"pairs[{i}].maximum_from_amount"),
            from_amount_step=_decimal(item.get("from_amount_step"), f"pairs[{i}].from_amount_step"),
            minimum_interest=_decimal(item.get("minimum_interest"), f"pairs[{i}].minimum_interest"),
        ))
    return tuple(pairs)


def parse_config(raw: Dict[str, Any]) -> AppConfig:
    if not isinstance(raw, dict) or "engine" not in raw:
        raise ConfigError("config must contain an 'engine' section")

    index_raw = raw.get("index") or {}
    telegram_raw = raw.get("telegram") or {}
    return AppConfig(
        engine=_engine(raw["engine"]),
        assets={str(k): str(v) for k, v in (raw.get("assets") or {}).items()},
        pairs=_pairs(raw.get("pairs") or []),
        index=IndexConfig(
            source=index_raw.get("source", "coingecko"),
            refresh_seconds=float(index_raw.get("refresh_seconds", 60)),
            coingecko_ids={str(k): str(v).upper() for k, v in (index_raw.get("coingecko_ids") or {}).items()},
            exchange=index_raw.get("exchange", "binance"),
            symbols=tuple(index_raw.get("symbols") or ()),
        ),
        telegram=TelegramConfig(
            token=telegram_raw.get("token", ""),
            chat_ids=tuple(str(c) for c in telegram_raw.get("chat_ids") or ()),
        ),
        opportunity_log=(raw.get("audit") or {}).get("opportunity_log", "logs/opportunities.csv"),
        log_level=(raw.get("logging") or {}).get("level", "INFO"),
        scan_interval=float(raw.get("scan_interval", 60)),
    )


def load_config(path: str = "config.yaml") -> AppConfig:
    with open(path, "r") as f:
        return parse_config(yaml.safe_load(f))
