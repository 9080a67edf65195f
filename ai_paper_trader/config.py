"""
Configuration Management
========================
Central configuration for the entire paper-trading engine.

Static tuning tables (profit-lock methods, strategy -> method map and the
regime context multipliers) are immutable records so they can be handed to
the engines at construction time and swapped in tests.
"""

from dataclasses import dataclass, field, asdict, fields
from types import MappingProxyType
from typing import List, Mapping, Optional, Tuple
from enum import Enum
import json
import os


class ProfitLockMethod(Enum):
    """Exit-management methods a position can be opened with."""
    VOLATILITY_ADAPTIVE_TRAILING_STOP = "volatility_adaptive_trailing_stop"
    PARTIAL_PROFIT_SCALING = "partial_profit_scaling"
    FIXED_TAKE_PROFIT = "fixed_take_profit"
    TIME_BASED_STOP = "time_based_stop"
    EDGE_DECAY_EXIT = "edge_decay_exit"
    DRAWDOWN_TRAILING_STOP = "drawdown_trailing_stop"


class PersistenceBackend(Enum):
    """Supported persistence gateways."""
    MEMORY = "memory"
    JSONL = "jsonl"


@dataclass(frozen=True)
class ProfitLockConfig:
    """Static tuning for one profit-lock method."""
    method: ProfitLockMethod
    atr_multiplier: float
    trailing_percent: float
    partial_profit_levels: Tuple[float, ...] = ()
    time_based_exit_minutes: float = 0
    edge_decay_threshold: float = 0.1
    max_drawdown_percent: float = 0.15


@dataclass(frozen=True)
class ContextRule:
    """
    Regime context multiplier for one strategy.

    The rule matches when ``regime`` equals the current regime type, or when
    the named feature (optionally in absolute value) is above ``threshold``.
    A rule with neither a regime nor a feature always applies ``otherwise``.
    """
    match: float
    otherwise: float
    regime: Optional[str] = None
    feature: Optional[str] = None
    threshold: float = 0.0
    use_abs: bool = False


DEFAULT_STRATEGY_METHODS: Mapping[str, ProfitLockMethod] = MappingProxyType({
    'scalping': ProfitLockMethod.PARTIAL_PROFIT_SCALING,
    'momentum': ProfitLockMethod.VOLATILITY_ADAPTIVE_TRAILING_STOP,
    'trend_following': ProfitLockMethod.VOLATILITY_ADAPTIVE_TRAILING_STOP,
    'mean_reversion': ProfitLockMethod.FIXED_TAKE_PROFIT,
    'breakout': ProfitLockMethod.VOLATILITY_ADAPTIVE_TRAILING_STOP,
    'swing_trading': ProfitLockMethod.DRAWDOWN_TRAILING_STOP,
    'statistical_arbitrage': ProfitLockMethod.EDGE_DECAY_EXIT,
    'contextual_bandits': ProfitLockMethod.DRAWDOWN_TRAILING_STOP,
})

DEFAULT_PROFIT_LOCK_METHOD = ProfitLockMethod.VOLATILITY_ADAPTIVE_TRAILING_STOP

DEFAULT_CONTEXT_RULES: Mapping[str, ContextRule] = MappingProxyType({
    'trend_following': ContextRule(match=1.5, otherwise=0.8, regime='trending'),
    'momentum': ContextRule(match=1.3, otherwise=0.9, feature='volatility', threshold=0.5),
    'mean_reversion': ContextRule(match=1.4, otherwise=0.7, regime='ranging'),
    'breakout': ContextRule(match=1.6, otherwise=0.6, feature='volatility', threshold=0.6),
    'scalping': ContextRule(match=1.4, otherwise=0.5, feature='liquidity', threshold=0.7),
    'swing_trading': ContextRule(match=1.3, otherwise=0.8, regime='ranging'),
    'statistical_arbitrage': ContextRule(match=1.2, otherwise=0.9, feature='correlation',
                                         threshold=0.6, use_abs=True),
    'contextual_bandits': ContextRule(match=1.0, otherwise=1.0),
})


def _check_fraction(name: str, value: float):
    if not 0 <= value <= 1:
        raise ValueError(f"{name} must be within [0, 1], got {value}")


def _check_positive(name: str, value: float):
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")


@dataclass
class FeatureConfig:
    """Feature engineering configuration."""
    max_history_length: int = 200
    min_samples: int = 10

    # Correlation is measured against this base pair
    reference_symbol: str = "BTCUSDT"
    correlation_window: int = 20

    # Rolling windows
    vvix_window: int = 10
    trend_window: int = 20
    microstructure_min_samples: int = 20

    # Order book depth
    depth_levels: int = 10
    depth_normalizer: float = 1000.0

    def __post_init__(self):
        _check_positive('max_history_length', self.max_history_length)
        _check_positive('min_samples', self.min_samples)
        _check_positive('depth_normalizer', self.depth_normalizer)


@dataclass
class OrchestratorConfig:
    """Bandit orchestrator configuration."""
    # Not applied to the Beta update, which always moves by one
    learning_rate: float = 0.015
    exploration_rate: float = 0.08
    min_confidence_threshold: float = 0.25

    # Rate limiting
    max_signals_per_symbol: int = 2
    signal_cooldown_seconds: float = 30
    signal_window_seconds: float = 300

    # Buffers
    recent_signals_cap: int = 100
    performance_history_cap: int = 50

    random_seed: Optional[int] = None

    def __post_init__(self):
        _check_fraction('exploration_rate', self.exploration_rate)
        _check_fraction('min_confidence_threshold', self.min_confidence_threshold)
        _check_positive('recent_signals_cap', self.recent_signals_cap)
        _check_positive('performance_history_cap', self.performance_history_cap)
        if self.signal_cooldown_seconds < 0:
            raise ValueError("signal_cooldown_seconds must not be negative")


@dataclass
class TradingConfig:
    """Position and exit-management configuration."""
    # Position limits
    max_positions: int = 250
    max_positions_per_symbol: int = 3

    # Sizing and stops
    risk_per_trade: float = 0.02
    stop_loss_percent: float = 0.03
    take_profit_multiplier: float = 2.5
    atr_period: int = 14
    atr_fallback_percent: float = 0.02
    trailing_stop_percent: float = 0.02

    # Edge decay (per hour)
    edge_decay_rate: float = 0.1

    # Grace windows
    min_position_age_seconds: float = 10
    edge_decay_grace_seconds: float = 60

    closed_history_cap: int = 500

    def __post_init__(self):
        _check_positive('max_positions', self.max_positions)
        _check_positive('max_positions_per_symbol', self.max_positions_per_symbol)
        _check_positive('atr_period', self.atr_period)
        _check_positive('closed_history_cap', self.closed_history_cap)
        _check_fraction('risk_per_trade', self.risk_per_trade)
        _check_fraction('stop_loss_percent', self.stop_loss_percent)
        _check_fraction('trailing_stop_percent', self.trailing_stop_percent)


@dataclass
class PersistenceConfig:
    """Persistence collaborator configuration."""
    backend: PersistenceBackend = PersistenceBackend.MEMORY
    path: str = "./data/paper_trading.jsonl"
    queue_size: int = 1000

    # Run writes inline instead of on the background writer
    synchronous: bool = False

    def __post_init__(self):
        if isinstance(self.backend, str):
            self.backend = PersistenceBackend(self.backend)
        _check_positive('queue_size', self.queue_size)


@dataclass
class MonitoringConfig:
    """Logging configuration."""
    log_level: str = "INFO"
    log_file: Optional[str] = None


def build_profit_lock_configs(config: TradingConfig) -> Mapping[ProfitLockMethod, ProfitLockConfig]:
    """Derive the per-method tuning table from the trading configuration."""
    m = config.take_profit_multiplier
    t = config.trailing_stop_percent
    table = {
        ProfitLockMethod.VOLATILITY_ADAPTIVE_TRAILING_STOP: ProfitLockConfig(
            method=ProfitLockMethod.VOLATILITY_ADAPTIVE_TRAILING_STOP,
            atr_multiplier=m,
            trailing_percent=t,
            max_drawdown_percent=0.15,
        ),
        ProfitLockMethod.PARTIAL_PROFIT_SCALING: ProfitLockConfig(
            method=ProfitLockMethod.PARTIAL_PROFIT_SCALING,
            atr_multiplier=m * 0.8,
            trailing_percent=t * 0.8,
            partial_profit_levels=(0.5, 0.75),
            max_drawdown_percent=0.12,
        ),
        ProfitLockMethod.FIXED_TAKE_PROFIT: ProfitLockConfig(
            method=ProfitLockMethod.FIXED_TAKE_PROFIT,
            atr_multiplier=m * 0.6,
            trailing_percent=t * 1.2,
            max_drawdown_percent=0.20,
        ),
        ProfitLockMethod.TIME_BASED_STOP: ProfitLockConfig(
            method=ProfitLockMethod.TIME_BASED_STOP,
            atr_multiplier=m,
            trailing_percent=t,
            time_based_exit_minutes=240,  # 4 hours max hold
            max_drawdown_percent=0.15,
        ),
        ProfitLockMethod.EDGE_DECAY_EXIT: ProfitLockConfig(
            method=ProfitLockMethod.EDGE_DECAY_EXIT,
            atr_multiplier=m * 1.2,
            trailing_percent=t * 1.5,
            edge_decay_threshold=0.05,
            max_drawdown_percent=0.18,
        ),
        ProfitLockMethod.DRAWDOWN_TRAILING_STOP: ProfitLockConfig(
            method=ProfitLockMethod.DRAWDOWN_TRAILING_STOP,
            atr_multiplier=m * 1.4,
            trailing_percent=t * 0.8,
            max_drawdown_percent=0.10,
        ),
    }
    return MappingProxyType(table)


@dataclass
class SystemConfig:
    """Master system configuration."""
    # Paper equity used for position sizing
    initial_equity: float = 10000.0

    # Optional allow-list; empty means every symbol the feed delivers
    symbols: List[str] = field(default_factory=list)

    # Component configs
    features: FeatureConfig = field(default_factory=FeatureConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    trading: TradingConfig = field(default_factory=TradingConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    def save(self, filepath: str):
        """Save configuration to JSON file."""
        directory = os.path.dirname(filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(filepath, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, filepath: str) -> 'SystemConfig':
        """Load configuration from JSON file."""
        with open(filepath, 'r') as f:
            data = json.load(f)
        return cls.from_dict(data)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        data = asdict(self)
        data['persistence']['backend'] = self.persistence.backend.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'SystemConfig':
        """Create from dictionary; missing keys keep their defaults."""
        sections = {
            'features': FeatureConfig,
            'orchestrator': OrchestratorConfig,
            'trading': TradingConfig,
            'persistence': PersistenceConfig,
            'monitoring': MonitoringConfig,
        }
        kwargs = {}
        for name, section_cls in sections.items():
            raw = data.get(name) or {}
            known = {f.name for f in fields(section_cls)}
            kwargs[name] = section_cls(**{k: v for k, v in raw.items() if k in known})

        return cls(
            initial_equity=data.get('initial_equity', 10000.0),
            symbols=list(data.get('symbols', [])),
            **kwargs
        )


# Default configuration instance
DEFAULT_CONFIG = SystemConfig()
