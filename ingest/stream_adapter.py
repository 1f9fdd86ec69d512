import asyncio
import logging
import math
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from api.metrics import metrics
from ingest.models import Candle, CandleBatch, ConnectionState, TickerUpdate


Handler = Callable[[Any], Awaitable[None]]

PAIR_PREFIX = "t"
CANDLE_CHANNEL = "trade"


def canonical_symbol(pair: str) -> str:
    """``tBTCUSD`` -> ``BTCUSD``; an unprefixed pair is already canonical."""
    if pair.startswith(PAIR_PREFIX):
        return pair[len(PAIR_PREFIX):]
    return pair


def ticker_pair(symbol: str) -> str:
    return f"{PAIR_PREFIX}{symbol}"


def candle_key(symbol: str, timeframe: str = "1m") -> str:
    return f"{CANDLE_CHANNEL}:{timeframe}:{PAIR_PREFIX}{symbol}"


def parse_candle(raw: Any) -> Optional[Candle]:
    """Build a Candle from a decoded mapping; None when it is malformed or non-finite."""
    if not isinstance(raw, dict):
        return None
    mts = raw.get("mts", raw.get("timestamp"))
    if mts is None:
        return None
    try:
        candle = Candle(
            timestamp=int(mts),
            open=float(raw["open"]),
            high=float(raw["high"]),
            low=float(raw["low"]),
            close=float(raw["close"]),
            volume=float(raw.get("volume") or 0.0),
        )
    except (KeyError, TypeError, ValueError, OverflowError):
        return None
    prices = (candle.open, candle.high, candle.low, candle.close, candle.volume)
    if not all(math.isfinite(value) for value in prices):
        return None
    return candle


class StreamAdapter:
    """Keep the market-data transport connected and emit canonical events.

    Host callbacks are registered per logical name: ``ticker`` receives a
    TickerUpdate, ``candles`` a CandleBatch and ``connection_state`` the new
    ConnectionState. Every close re-opens the transport; attempts are spaced
    by at least ``min_reconnect_interval`` seconds and never give up.
    """

    def __init__(
        self,
        transport,
        timeframe: str = "1m",
        min_reconnect_interval: float = 1.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.transport = transport
        self.timeframe = timeframe
        self.min_reconnect_interval = max(0.0, float(min_reconnect_interval))
        self.logger = logger or logging.getLogger(__name__)

        self.symbols: List[str] = []
        self.state = ConnectionState.CLOSED
        self.running = False
        self.reconnect_count = 0
        self._last_attempt = float("-inf")
        self._handlers: Dict[str, Handler] = {}

        self.transport.register_handler("open", self._on_open)
        self.transport.register_handler("close", self._on_close)
        self.transport.register_handler("error", self._on_error)
        self.transport.register_handler("ticker", self._on_ticker)
        self.transport.register_handler("candle", self._on_candle)

    def register_handler(self, name: str, handler: Handler) -> None:
        if name not in ("ticker", "candles", "connection_state"):
            raise ValueError(f"Unknown stream event '{name}'")
        self._handlers[name] = handler

    async def start(self, symbols: Iterable[str]) -> None:
        self.symbols = list(dict.fromkeys(symbols))
        self.running = True
        await self._connect()

    async def stop(self) -> None:
        self.running = False
        await self.transport.close()
        await self._set_state(ConnectionState.CLOSED)

    async def _connect(self) -> None:
        while self.running:
            wait = self.min_reconnect_interval - (time.monotonic() - self._last_attempt)
            if wait > 0:
                await asyncio.sleep(wait)
            if not self.running:
                return
            await self._set_state(ConnectionState.CONNECTING)
            self._last_attempt = time.monotonic()
            try:
                await self.transport.open()
                return
            except Exception as exc:
                self.logger.error("Stream open failed: %s", exc)
                await self._set_state(ConnectionState.CLOSED)

    async def _set_state(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        self.state = state
        metrics.update_connection_state(state.value)
        await self._dispatch("connection_state", state)

    async def _on_open(self) -> None:
        await self._set_state(ConnectionState.OPEN)
        self.logger.info("Stream connection open; subscribing %d symbols", len(self.symbols))
        try:
            for symbol in self.symbols:
                await self.transport.subscribe_ticker(ticker_pair(symbol))
                await self.transport.subscribe_candles(candle_key(symbol, self.timeframe))
        except Exception as exc:
            # The transport reports the broken socket through close
            self.logger.error("Subscription failed: %s", exc)

    async def _on_close(self) -> None:
        await self._set_state(ConnectionState.CLOSED)
        if not self.running:
            return
        self.logger.error("Stream connection closed; reopening")
        self.reconnect_count += 1
        metrics.record_reconnect()
        await self._connect()

    async def _on_error(self, err: Any = None) -> None:
        metrics.record_transport_error()
        self.logger.error("Stream error: %s", err)

    async def _on_ticker(self, pair: str, raw: Dict[str, Any]) -> None:
        update = self.normalize_ticker(pair, raw)
        await self._dispatch("ticker", update)

    async def _on_candle(self, payload: Any, channel_key: str) -> None:
        batch = self.normalize_candles(channel_key, payload)
        if batch is not None:
            await self._dispatch("candles", batch)

    def normalize_ticker(self, pair: str, raw: Dict[str, Any]) -> TickerUpdate:
        raw = raw or {}
        return TickerUpdate(symbol=canonical_symbol(pair), bid=raw.get("bid"), ask=raw.get("ask"))

    def normalize_candles(self, channel_key: str, raw: Any) -> Optional[CandleBatch]:
        # Pairs longer than three letters carry their own colon (tDOGE:USD)
        fields = (channel_key or "").split(":", 2)
        if len(fields) < 3 or not fields[2]:
            self.logger.warning("Candle issue: unparseable channel key %r", channel_key)
            metrics.record_discard("bad_channel_key")
            return None
        symbol = canonical_symbol(fields[2])

        if isinstance(raw, list):
            # Snapshots arrive newest first
            items = list(reversed(raw))
        else:
            items = [raw]

        candles = []
        for item in items:
            candle = parse_candle(item)
            if candle is not None:
                candles.append(candle)
        metrics.record_dropped_candle("malformed", len(items) - len(candles))
        candles.sort(key=lambda c: c.timestamp)

        if not candles:
            self.logger.warning("Candle issue: %s delivered no valid candles", channel_key)
            metrics.record_discard("empty_batch")
            return None
        return CandleBatch(symbol=symbol, candles=candles)

    async def _dispatch(self, name: str, payload: Any) -> None:
        handler = self._handlers.get(name)
        if not handler:
            return
        try:
            await handler(payload)
        except Exception:
            self.logger.exception("Stream handler %s failed", name)
