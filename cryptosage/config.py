"""
Engine Configuration - Fail Closed

One YAML file, three sections:

    risk:      thresholds for the Risk Manager (see risk.manager.RiskConfig)
    engine:    pairs, candle windows, timers, ledger path, execution mode
    advisory:  model and retry policy for the Watcher / Executor advisors

FAIL CLOSED PRINCIPLE:
- Missing file -> ConfigError (not defaults)
- Missing section -> ConfigError
- Invalid values / unknown keys -> ConfigError

Secrets (exchange keys, OpenAI key, Discord webhook) never live in YAML,
they come from the environment via python-dotenv.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from .errors import ConfigError
from .risk.manager import RiskConfig, RiskConfigError

logger = logging.getLogger(__name__)

VALID_EXECUTION_MODES = ("paper", "live")


def _read_yaml(path: str) -> Dict[str, Any]:
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(
            f"Config file not found: {path}. "
            f"Cannot run without explicit configuration."
        )
    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse config {path}: {e}")
    if data is None:
        raise ConfigError(f"Config file is empty: {path}")
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a mapping: {path}")
    return data


def _section(data: Dict[str, Any], name: str, path: str) -> Dict[str, Any]:
    section = data.get(name)
    if section is None:
        raise ConfigError(f"No '{name}' section in config file: {path}")
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' section must be a mapping in {path}")
    return section


@dataclass
class EngineConfig:
    """Pairs, candle windows and timers for the decision loop."""
    tradable_pairs: List[str] = field(
        default_factory=lambda: ["XRP/USDT", "DOGE/USDT", "SHIB/USDT", "PEPE/USDT"]
    )
    quote_asset: str = "USDT"
    short_interval: str = "1m"
    short_limit: int = 200
    long_interval: str = "15m"
    long_limit: int = 96
    base_slippage: float = 0.0002
    autonomous_interval_seconds: float = 90.0
    status_check_interval_seconds: float = 60.0
    execution_mode: str = "paper"
    paper_starting_balance: float = 100.0
    ledger_path: str = "data/ledger.db"

    def __post_init__(self):
        self._validate()

    def _validate(self):
        errors = []
        if not self.tradable_pairs:
            errors.append("tradable_pairs must not be empty")
        for pair in self.tradable_pairs:
            if "/" not in pair:
                errors.append(f"pair must look like BASE/QUOTE, got {pair!r}")
            elif pair.split("/")[1] != self.quote_asset:
                errors.append(f"pair {pair} is not quoted in {self.quote_asset}")
        if len(set(self.tradable_pairs)) != len(self.tradable_pairs):
            errors.append("tradable_pairs contains duplicates")
        if self.short_limit <= 0 or self.long_limit <= 0:
            errors.append("candle limits must be > 0")
        if self.base_slippage < 0:
            errors.append(f"base_slippage must be >= 0, got {self.base_slippage}")
        if self.autonomous_interval_seconds <= 0:
            errors.append("autonomous_interval_seconds must be > 0")
        if self.status_check_interval_seconds <= 0:
            errors.append("status_check_interval_seconds must be > 0")
        if self.execution_mode not in VALID_EXECUTION_MODES:
            errors.append(
                f"execution_mode must be one of {VALID_EXECUTION_MODES}, got {self.execution_mode!r}"
            )
        if self.paper_starting_balance <= 0:
            errors.append("paper_starting_balance must be > 0")
        if errors:
            raise ConfigError(f"Invalid engine configuration: {'; '.join(errors)}")

    @property
    def base_assets(self) -> List[str]:
        return [pair.split("/")[0] for pair in self.tradable_pairs]


@dataclass
class AdvisoryConfig:
    """Model and retry policy for the advisory services."""
    model: str = "gpt-4o-mini"
    retries: int = 1
    retry_delay_seconds: float = 1.0
    temperature: float = 0.2
    max_completion_tokens: int = 800

    def __post_init__(self):
        errors = []
        if self.retries < 0:
            errors.append(f"retries must be >= 0, got {self.retries}")
        if self.retry_delay_seconds < 0:
            errors.append(f"retry_delay_seconds must be >= 0, got {self.retry_delay_seconds}")
        if not self.model:
            errors.append("model must be set")
        if errors:
            raise ConfigError(f"Invalid advisory configuration: {'; '.join(errors)}")


@dataclass
class Credentials:
    """Secrets loaded from the environment."""
    mexc_api_key: Optional[str] = None
    mexc_secret_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    discord_webhook_url: Optional[str] = None

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Credentials":
        load_dotenv(dotenv_path)
        return cls(
            mexc_api_key=os.getenv("MEXC_API_KEY") or None,
            mexc_secret_key=os.getenv("MEXC_SECRET_KEY") or None,
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            discord_webhook_url=os.getenv("DISCORD_WEBHOOK_URL") or None,
        )

    @property
    def has_exchange_keys(self) -> bool:
        return bool(self.mexc_api_key and self.mexc_secret_key)


@dataclass
class Settings:
    """Everything the engine needs to boot."""
    risk: RiskConfig
    engine: EngineConfig
    advisory: AdvisoryConfig

    @classmethod
    def load_from_yaml(cls, path: str = "config.yaml") -> "Settings":
        """
        Load all three sections from YAML.

        FAIL CLOSED: raises ConfigError (RiskConfigError for the risk
        section) on a missing file, missing section or invalid value.
        """
        data = _read_yaml(path)

        # RiskConfig owns its own loader and error type
        risk = RiskConfig.from_dict(_section(data, "risk", path))

        try:
            engine = EngineConfig(**_section(data, "engine", path))
            advisory = AdvisoryConfig(**_section(data, "advisory", path))
        except TypeError as e:
            raise ConfigError(f"Invalid config structure in {path}: {e}")

        logger.info(
            f"Configuration loaded from {path}: "
            f"{len(engine.tradable_pairs)} pairs, mode={engine.execution_mode}"
        )
        return cls(risk=risk, engine=engine, advisory=advisory)


__all__ = [
    "AdvisoryConfig",
    "ConfigError",
    "Credentials",
    "EngineConfig",
    "RiskConfigError",
    "Settings",
]
