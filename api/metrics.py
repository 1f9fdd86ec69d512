import errno
import logging
from pathlib import Path
from prometheus_client import Counter, Gauge, Histogram, start_http_server
from typing import Optional

from config import config
from config.utils import get_setting


logger = logging.getLogger(__name__)

_METRICS_SERVER_STARTED = False
_METRICS_PORT: Optional[int] = None


def _get_port_scan_limit() -> int:
    try:
        return int(get_setting(config, 'monitoring', 'prometheus_port_scan', 0))
    except (TypeError, ValueError):
        return 0


def _get_port_file() -> Optional[Path]:
    path_value = get_setting(config, 'monitoring', 'metrics_port_file')
    if not path_value:
        return None
    return Path(path_value)


def _write_port_file(port: int) -> None:
    port_file = _get_port_file()
    if not port_file:
        return
    try:
        port_file.parent.mkdir(parents=True, exist_ok=True)
        port_file.write_text(str(port))
    except OSError as exc:
        logger.warning("Failed to persist metrics port file %s: %s", port_file, exc)


class MetricsCollector:
    def __init__(self):
        self.tickers_processed = Counter('tickers_processed_total', 'Total ticker updates applied', ['symbol'])
        self.candles_processed = Counter('candles_processed_total', 'Total candles appended', ['symbol'])
        self.dropped_candles = Counter('dropped_candles_total', 'Total candles dropped at ingest', ['reason'])
        self.discarded_events = Counter('discarded_events_total', 'Total inbound events discarded', ['reason'])

        self.reconnect_count = Counter('websocket_reconnects_total', 'Total WebSocket reconnect attempts')
        self.transport_errors = Counter('websocket_errors_total', 'Total transport errors reported')
        self.connection_state = Gauge('websocket_connection_state', 'Current stream connection state', ['state'])

        self.signal_count = Counter('signals_total', 'Signals evaluated', ['signal'])
        self.orders_placed = Counter('orders_placed_total', 'Total simulated orders placed', ['side'])
        self.ledger_size = Gauge('ledger_orders', 'Orders currently in the ledger')
        self.pnl_mark_to_market = Gauge('pnl_mark_to_market', 'Mark-to-market PnL of the order ledger')
        self.evaluation_latency = Histogram('signal_evaluation_seconds', 'Time spent evaluating one symbol')

    def record_ticker(self, symbol: str):
        self.tickers_processed.labels(symbol=symbol).inc()

    def record_candle(self, symbol: str):
        self.candles_processed.labels(symbol=symbol).inc()

    def record_dropped_candle(self, reason: str, count: int = 1):
        if count > 0:
            self.dropped_candles.labels(reason=reason).inc(count)

    def record_discard(self, reason: str):
        self.discarded_events.labels(reason=reason).inc()

    def record_reconnect(self):
        self.reconnect_count.inc()

    def record_transport_error(self):
        self.transport_errors.inc()

    def update_connection_state(self, state: str):
        for candidate in ('closed', 'connecting', 'open'):
            self.connection_state.labels(state=candidate).set(1 if candidate == state else 0)

    def record_signal(self, signal: str):
        self.signal_count.labels(signal=signal).inc()

    def record_order_placed(self, side: str, ledger_size: int):
        self.orders_placed.labels(side=side).inc()
        self.ledger_size.set(ledger_size)

    def update_pnl(self, pnl: float):
        if pnl is not None:
            self.pnl_mark_to_market.set(pnl)

    def record_evaluation_latency(self, seconds: float):
        self.evaluation_latency.observe(seconds)


def start_metrics_server(port: int = 9090):
    global _METRICS_SERVER_STARTED, _METRICS_PORT
    if _METRICS_SERVER_STARTED:
        return
    port_scan_limit = max(0, _get_port_scan_limit())
    last_error: Optional[OSError] = None
    for offset in range(port_scan_limit + 1):
        candidate = port + offset
        try:
            start_http_server(candidate)
        except OSError as exc:
            last_error = exc
            if exc.errno == errno.EADDRINUSE:
                logger.warning(
                    "Prometheus metrics server port %s already in use; trying next candidate",
                    candidate,
                )
                continue
            raise
        _METRICS_SERVER_STARTED = True
        _METRICS_PORT = candidate
        _write_port_file(candidate)
        logger.info("Prometheus metrics server started on port %s", candidate)
        return
    if last_error and last_error.errno == errno.EADDRINUSE:
        raise RuntimeError(
            f"Unable to bind Prometheus metrics server on ports {port}-{port + port_scan_limit}"
        ) from last_error
    if last_error:
        raise last_error


metrics = MetricsCollector()
