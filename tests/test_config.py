import os
from decimal import Decimal

import pytest

from greedy_eye.config import EngineConfig, PairConfig, load_config, parse_config
from greedy_eye.errors import ConfigError

REPO_CONFIG = os.path.join(os.path.dirname(__file__), "..", "config.yaml")


def test_repo_config_loads():
    cfg = load_config(REPO_CONFIG)

    assert cfg.engine.url == "wss://ws.mof.sora.org"
    assert cfg.engine.base_fee == Decimal("0.0007")
    assert cfg.engine.native_fee_asset == "XOR"
    assert cfg.engine.wire_scale == 18
    assert cfg.assets["XOR"].startswith("0x02")
    assert all(len(address) == 66 for address in cfg.assets.values())
    assert {p.from_asset for p in cfg.pairs} <= set(cfg.assets)
    assert cfg.index.coingecko_ids["sora"] == "XOR"
    assert not cfg.telegram.enabled


def test_pair_amounts_are_exact_decimals():
    cfg = parse_config({
        "engine": {"url": "wss://venue"},
        "pairs": [{"from": "DAI", "to": "XOR", "maximum_from_amount": 0.1, "from_amount_step": "0.05"}],
    })
    [pair] = cfg.pairs

    assert pair.maximum_from_amount == Decimal("0.1")
    assert pair.from_amount_step == Decimal("0.05")
    assert pair.label == "DAI/XOR"


def test_pair_to_job():
    pair = PairConfig("DAI", "XOR", maximum_from_amount=Decimal(500), minimum_interest=Decimal(1))
    first, second = pair.to_job(), pair.to_job()

    assert (first.from_asset, first.to_asset) == ("DAI", "XOR")
    assert first.maximum_from_amount == Decimal(500)
    assert first.minimum_interest == Decimal(1)
    assert first.from_amount_step is None
    assert first.id != second.id


def test_defaults():
    cfg = parse_config({"engine": {"url": "wss://venue"}})

    assert cfg.engine == EngineConfig(url="wss://venue")
    assert cfg.pairs == ()
    assert cfg.index.source == "coingecko"
    assert cfg.scan_interval == 60.0


def test_telegram_enabled():
    cfg = parse_config({"engine": {"url": "wss://venue"}, "telegram": {"token": "t", "chat_ids": [-100]}})
    assert cfg.telegram.enabled
    assert cfg.telegram.chat_ids == ("-100",)


@pytest.mark.parametrize("raw", [
    {},
    {"engine": {}},
    {"engine": {"url": "wss://venue", "base_fee": 0}},
    {"engine": {"url": "wss://venue", "base_fee": "abc"}},
    {"engine": {"url": "wss://venue", "wire_scale": 0}},
    {"engine": {"url": "wss://venue", "probe_timeout": 1, "sweep_interval": 2}},
    {"engine": {"url": "wss://venue", "job_queue_capacity": 1}},
    {"engine": {"url": "wss://venue"}, "pairs": [{"from": "DAI"}]},
])
def test_invalid_config(raw):
    with pytest.raises(ConfigError):
        parse_config(raw)
