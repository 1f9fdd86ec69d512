import asyncio
import logging
import random
from typing import Dict, List, Optional

from api.metrics import metrics, start_metrics_server
from config import config
from config.utils import get_config_section, get_setting
from ingest.models import Candle, CandleBatch, ConnectionState, Ticker, TickerUpdate
from ingest.stream_adapter import StreamAdapter
from ingest.symbol_store import SymbolStateStore
from ingest.websocket_client import DEFAULT_WS_URL, BitfinexWebSocketClient
from monitoring.logging_utils import setup_logging
from strategy.execution_types import Order
from strategy.signal_engine import DEFAULT_PERIODS, SignalEngine
from strategy.simulators.paper import PaperOrderSimulator


logger = logging.getLogger(__name__)


class TradingSystem:
    """Wire stream, state store, signal engine and paper ledger together."""

    def __init__(
        self,
        config_obj=None,
        transport=None,
        rng: Optional[random.Random] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config_obj if config_obj is not None else config
        self.logger = logger or logging.getLogger(__name__)

        self.symbols: List[str] = list(get_setting(self.config, 'exchange', 'symbols', ['BTCUSD']))
        timeframe = get_setting(self.config, 'exchange', 'candle_timeframe', '1m')
        periods = tuple(get_setting(self.config, 'strategy', 'ma_periods', DEFAULT_PERIODS))
        self.prometheus_port = get_setting(self.config, 'monitoring', 'prometheus_port')
        self.report_interval_s = float(get_setting(self.config, 'monitoring', 'report_interval_s', 60))

        self.engine = SignalEngine(periods=periods, logger=self.logger.getChild('signal'))
        self.store = SymbolStateStore(
            max_candles=get_setting(self.config, 'state', 'max_candles'),
            min_window=self.engine.longest_period,
            logger=self.logger.getChild('store'),
        )
        self.simulator = PaperOrderSimulator(
            self.store,
            self.engine,
            max_spend_usd=float(get_setting(self.config, 'trading', 'max_spend_usd', 1000)),
            rng=rng,
            logger=self.logger.getChild('paper'),
        )

        # null disables the receive timeout
        recv_timeout = get_config_section(self.config, 'stream').get('recv_timeout_s', 30)
        if transport is None:
            transport = BitfinexWebSocketClient(
                url=get_setting(self.config, 'exchange', 'ws_url', DEFAULT_WS_URL),
                recv_timeout=float(recv_timeout) if recv_timeout else None,
                logger=self.logger.getChild('transport'),
            )
        self.stream = StreamAdapter(
            transport,
            timeframe=timeframe,
            min_reconnect_interval=float(get_setting(self.config, 'stream', 'min_reconnect_interval_s', 1.0)),
            logger=self.logger.getChild('stream'),
        )
        self.stream.register_handler('ticker', self.handle_ticker)
        self.stream.register_handler('candles', self.handle_candles)
        self.stream.register_handler('connection_state', self.handle_connection_state)

        self.running = False
        self._report_task: Optional[asyncio.Task] = None
        self._stopped: Optional[asyncio.Event] = None

    # Stream callbacks ----------------------------------------------------
    async def handle_ticker(self, update: TickerUpdate):
        self.store.apply_ticker(update)

    async def handle_candles(self, batch: CandleBatch):
        for symbol in sorted(self.store.apply_candles(batch)):
            self.simulator.evaluate(symbol)

    async def handle_connection_state(self, state: ConnectionState):
        self.logger.debug("Stream state: %s", state.value)

    # Query surface -------------------------------------------------------
    def get_order_history(self) -> List[Order]:
        return self.simulator.ledger

    def get_candles(self) -> Dict[str, List[Candle]]:
        return self.store.candles()

    def get_tickers(self) -> Dict[str, Ticker]:
        return self.store.tickers()

    def get_current_pol(self) -> float:
        return self.simulator.mark_to_market()

    @property
    def connection_state(self) -> ConnectionState:
        return self.stream.state

    # Lifecycle -----------------------------------------------------------
    async def start(self):
        self.running = True
        self._stopped = asyncio.Event()
        if self.prometheus_port:
            start_metrics_server(int(self.prometheus_port))
        await self.stream.start(self.symbols)
        if self.report_interval_s > 0:
            self._report_task = asyncio.create_task(self._run_status_reports())
        self.logger.info("------------ Trading system started for %s ------------", ', '.join(self.symbols))

    async def run(self):
        await self.start()
        try:
            await self._stopped.wait()
        finally:
            await self.stop()

    async def stop(self):
        if not self.running:
            return
        self.running = False
        await self.stream.stop()
        if self._report_task is not None:
            self._report_task.cancel()
            await asyncio.gather(self._report_task, return_exceptions=True)
            self._report_task = None
        if self._stopped is not None:
            self._stopped.set()

    def status(self) -> Dict:
        return {
            'connection': self.connection_state.value,
            'symbols_with_data': sorted(self.store.candles()),
            'orders': len(self.simulator.ledger),
            'pnl': self.get_current_pol(),
        }

    async def _run_status_reports(self):
        interval = max(self.report_interval_s, 1.0)
        while self.running:
            try:
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break
            status = self.status()
            metrics.update_pnl(status['pnl'])
            self.logger.info(
                "Status: stream=%s symbols=%s orders=%d PoL=%.8f",
                status['connection'],
                status['symbols_with_data'],
                status['orders'],
                status['pnl'],
            )


async def main():
    system = TradingSystem(config)
    try:
        await system.run()
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("System shutting down on interrupt")
        await system.stop()


if __name__ == "__main__":
    setup_logging(get_setting(config, 'monitoring', 'log_level', 'INFO'))
    asyncio.run(main())
