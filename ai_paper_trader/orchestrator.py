"""
Trading System Orchestrator
===========================
Main pipeline orchestrating all components:
    MARKET DATA → FEATURES/REGIME → BANDIT ORCHESTRATOR → PROFIT LOCKING → MONITORING

Per frame:
- every price tick marks the open positions and may close them
- every symbol with enough history gets a regime, possibly a signal,
  and possibly a new sized paper position
- closed positions feed the reward back into the bandit

Paper trading only: no order ever leaves the process.
"""

from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional
import json
import logging
import threading

from .config import PersistenceBackend, PersistenceConfig, SystemConfig
from .data import MarketData, utc_now
from .features import FeatureEngine
from .alpha import RandomSource, SignalAction, StrategyOrchestrator, TradingSignal
from .risk import ClosedPosition, PositionSide, PositionSizer, ProfitLockingEngine
from .monitoring import PerformanceTracker
from .persistence import InMemoryGateway, JsonLinesGateway, PersistenceGateway, PersistenceSink

logger = logging.getLogger(__name__)


class FeedClock:
    """
    Clock that follows market-data timestamps.

    Used for replays so cooldowns, grace windows and decay run on feed
    time rather than wall time. Never moves backwards.
    Before the first frame it reads naive UTC, the same base as frame
    timestamps.
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            if self._now is None:
                self._now = utc_now()
            return self._now

    def advance_to(self, timestamp: datetime):
        with self._lock:
            if self._now is None or timestamp > self._now:
                self._now = timestamp


def build_gateway(config: PersistenceConfig) -> PersistenceGateway:
    """Create the configured persistence gateway."""
    if config.backend == PersistenceBackend.JSONL:
        return JsonLinesGateway(config.path)
    return InMemoryGateway()


class TradingSystem:
    """
    Main trading system orchestrator.

    Coordinates the complete paper-trading pipeline:
    1. FEATURES: rolling per-symbol statistics and regime
    2. ALPHA: Thompson Sampling strategy selection and signal
    3. RISK: confidence-scaled sizing and position caps
    4. PROFIT LOCKING: per-tick exits and reward feedback
    5. MONITORING: closed-trade performance
    """

    def __init__(self, config: SystemConfig = None, gateway: Optional[PersistenceGateway] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 rng: Optional[RandomSource] = None):
        self.config = config or SystemConfig()
        self.clock = clock or datetime.now

        self.gateway = gateway or build_gateway(self.config.persistence)
        self.sink = PersistenceSink(
            self.gateway,
            queue_size=self.config.persistence.queue_size,
            synchronous=self.config.persistence.synchronous
        )

        self.feature_engine = FeatureEngine(config=self.config.features, sink=self.sink,
                                            clock=self.clock)

        self.strategy_orchestrator = StrategyOrchestrator(
            config=self.config.orchestrator,
            sink=self.sink,
            rng=rng,
            clock=self.clock
        )

        self.profit_engine = ProfitLockingEngine(config=self.config.trading, sink=self.sink,
                                                 clock=self.clock)

        self.performance = PerformanceTracker(initial_capital=self.config.initial_equity)

        # System state
        self.iteration = 0
        self.signals_emitted = 0

        # Route closed positions back to the bandit
        self.profit_engine.on_position_exit(self._on_position_exit)

        logger.info(f"TradingSystem initialized with {self.config.initial_equity:,.2f} paper equity")

    def _on_position_exit(self, closed: ClosedPosition, reason: str):
        self.strategy_orchestrator.update_reward(closed.original_signal, closed.realized_pnl)
        self.performance.record_trade(closed)

    def _is_tradable(self, symbol: str) -> bool:
        return not self.config.symbols or symbol in self.config.symbols

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def on_market_data(self, market_data: MarketData) -> List[ClosedPosition]:
        """Feed a frame into the feature buffers and mark open positions."""
        self.feature_engine.update_data(market_data)
        prices = {symbol: price for symbol, price in market_data.prices.items()
                  if self._is_tradable(symbol)}
        return self.profit_engine.update_positions(prices)

    def run_trading_cycle(self, market_data: MarketData) -> List[str]:
        """Evaluate every ticker in the frame; returns the ids of positions opened."""
        opened = []
        for symbol, ticker in market_data.tickers.items():
            if not self._is_tradable(symbol):
                continue

            regime = self.feature_engine.detect_regime(symbol)
            if regime is None:
                continue

            signal = self.strategy_orchestrator.generate_signal(
                symbol, ticker.price, regime.features, regime
            )
            if signal is None:
                continue
            self.signals_emitted += 1

            size = self.position_size(signal)
            position_id = self.profit_engine.add_position(signal, size)
            if position_id:
                opened.append(position_id)

        return opened

    def process(self, market_data: MarketData) -> Dict[str, list]:
        """One full iteration: mark-to-market, then signal generation."""
        self.iteration += 1
        closed = self.on_market_data(market_data)
        opened = self.run_trading_cycle(market_data)

        if closed or opened:
            logger.debug(f"Iteration {self.iteration}: opened {len(opened)}, closed {len(closed)}")

        return {'opened': opened, 'closed': closed}

    def position_size(self, signal: TradingSignal) -> float:
        """Confidence-scaled fixed-fractional size against current equity."""
        side = PositionSide.LONG if signal.action == SignalAction.BUY else PositionSide.SHORT
        stop = self.profit_engine.initial_stop_price(signal.price, side)
        return PositionSizer.confidence_scaled(
            capital=self.equity,
            risk_pct=self.config.trading.risk_per_trade,
            entry_price=signal.price,
            stop_loss_price=stop,
            confidence=signal.confidence
        )

    def cleanup_symbols(self, active_symbols: Iterable[str]) -> List[str]:
        return self.feature_engine.cleanup_old_symbols(active_symbols)

    def restore_state(self) -> int:
        """Reload bandit arms from the gateway's stored strategy performance."""
        restored = 0
        for record in self.gateway.get_strategy_performance():
            if self.strategy_orchestrator.restore_arm(
                record['strategy_id'],
                wins=int(record['wins']),
                trials=int(record['trials']),
                alpha=float(record['alpha']),
                beta=float(record['beta']),
                history=record.get('performance_history')
            ):
                restored += 1
        if restored:
            logger.info(f"Restored {restored} bandit arms from persistence")
        return restored

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def unrealized_pnl(self) -> float:
        return sum(p.unrealized_pnl for p in self.profit_engine.get_positions())

    @property
    def equity(self) -> float:
        return self.config.initial_equity + self.performance.realized_pnl + self.unrealized_pnl

    def get_status(self) -> Dict:
        """Get current system status."""
        metrics = self.performance.get_metrics()
        strategy_performance = self.strategy_orchestrator.get_strategy_performance()

        return {
            'iteration': self.iteration,
            'timestamp': self.clock().isoformat(),
            'initial_equity': self.config.initial_equity,
            'equity': self.equity,
            'realized_pnl': metrics.realized_pnl,
            'unrealized_pnl': self.unrealized_pnl,
            'win_rate': metrics.win_rate,
            'total_trades': metrics.total_trades,
            'open_positions': self.profit_engine.get_position_limits(),
            'signals_emitted': self.signals_emitted,
            'signal_stats': self.strategy_orchestrator.get_signal_stats(),
            'strategy_performance': strategy_performance,
            'active_strategies': sum(1 for s in strategy_performance.values() if s['trials'] > 1),
            'tracked_symbols': self.feature_engine.get_supported_symbols(),
            'persistence': {
                'dropped': self.sink.dropped,
                'failed': self.sink.failed
            }
        }

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    def replay(self, filepath: str) -> Dict:
        """
        Run the pipeline over a JSON-lines file of market-data frames.

        When the system clock is a ``FeedClock`` it is advanced to each
        frame's timestamp before the frame is processed.
        """
        frames = 0
        skipped = 0
        with open(filepath, 'r') as f:
            for line_number, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    market_data = MarketData.from_dict(json.loads(line))
                except (json.JSONDecodeError, TypeError, ValueError, AttributeError) as e:
                    logger.warning(f"Skipping frame at line {line_number}: {e}")
                    skipped += 1
                    continue

                if isinstance(self.clock, FeedClock):
                    self.clock.advance_to(market_data.timestamp)

                self.process(market_data)
                frames += 1

                if frames % 1000 == 0:
                    logger.info(f"Replayed {frames} frames, equity {self.equity:,.2f}")

        self.sink.flush()
        metrics = self.performance.get_metrics()

        return {
            'frames': frames,
            'skipped_frames': skipped,
            'initial_equity': self.config.initial_equity,
            'final_equity': self.equity,
            'open_positions': len(self.profit_engine.get_positions()),
            'signals_emitted': self.signals_emitted,
            **metrics.to_dict()
        }

    def shutdown(self):
        """Drain persistence and stop the writer."""
        logger.info("Shutting down trading system...")
        self.sink.flush()
        self.sink.close()


def configure_logging(level: str = "INFO", log_file: Optional[str] = None):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    if log_file:
        handler = logging.FileHandler(log_file)
        handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        logging.getLogger().addHandler(handler)


def main(argv=None):
    """Main entry point: replay recorded market data through the paper engine."""
    import argparse

    parser = argparse.ArgumentParser(description='AI Paper Trading Engine')
    parser.add_argument('--replay', type=str, required=True,
                        help='JSON-lines file of market-data frames')
    parser.add_argument('--config', type=str, help='Path to config file')
    parser.add_argument('--output', type=str,
                        help='Persist signals and positions to this JSON-lines file')
    parser.add_argument('--log-level', type=str, help='Logging level (default from config)')
    parser.add_argument('--seed', type=int, help='Random seed for strategy selection')

    args = parser.parse_args(argv)

    config = SystemConfig.load(args.config) if args.config else SystemConfig()
    if args.output:
        config.persistence.backend = PersistenceBackend.JSONL
        config.persistence.path = args.output
    if args.seed is not None:
        config.orchestrator.random_seed = args.seed

    configure_logging(args.log_level or config.monitoring.log_level, config.monitoring.log_file)

    system = TradingSystem(config, clock=FeedClock())
    system.restore_state()

    try:
        results = system.replay(args.replay)
    except KeyboardInterrupt:
        print("\nShutting down...")
        return
    finally:
        system.shutdown()

    print("\n" + "=" * 50)
    print("REPLAY RESULTS")
    print("=" * 50)
    for key, value in results.items():
        if isinstance(value, float):
            print(f"{key}: {value:.4f}")
        else:
            print(f"{key}: {value}")


if __name__ == "__main__":
    main()
