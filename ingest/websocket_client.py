import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import websockets


DEFAULT_WS_URL = "wss://api-pub.bitfinex.com/ws/2"

TICKER_FIELDS = (
    "bid",
    "bid_size",
    "ask",
    "ask_size",
    "daily_change",
    "daily_change_relative",
    "last_price",
    "volume",
    "high",
    "low",
)
CANDLE_FIELDS = ("mts", "open", "close", "high", "low", "volume")

# Server is about to restart; clients must reconnect
INFO_RECONNECT = 20051

Handler = Callable[..., Awaitable[None]]


class BitfinexWebSocketClient:
    """Public Bitfinex v2 websocket: channel bookkeeping and payload decoding.

    Decoded events are handed to registered coroutines one at a time:
    ``open()``, ``close()``, ``error(exc)``, ``ticker(pair, ticker)`` and
    ``candle(payload, key)``. ``close`` fires once per connection, after any
    failure; reconnecting is left to the owner.
    """

    def __init__(
        self,
        url: str = DEFAULT_WS_URL,
        recv_timeout: Optional[float] = 30.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.url = url
        self.recv_timeout = recv_timeout
        self.logger = logger or logging.getLogger(__name__)

        self.handlers: Dict[str, Handler] = {}
        self.running = False
        self._ws = None
        self._task: Optional[asyncio.Task] = None
        # chanId -> (channel, symbol-or-key)
        self._channels: Dict[int, Tuple[str, str]] = {}

    def register_handler(self, event: str, handler: Handler) -> None:
        self.handlers[event] = handler

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def open(self) -> None:
        self.running = True
        self._task = asyncio.create_task(self._run())

    async def close(self) -> None:
        self.running = False
        ws = self._ws
        if ws is not None:
            await ws.close()
        task = self._task
        self._task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def subscribe_ticker(self, pair: str) -> None:
        await self._send({"event": "subscribe", "channel": "ticker", "symbol": pair})

    async def subscribe_candles(self, key: str) -> None:
        await self._send({"event": "subscribe", "channel": "candles", "key": key})

    async def _send(self, message: Dict[str, Any]) -> None:
        if self._ws is None:
            raise ConnectionError("Bitfinex socket is not open")
        await self._ws.send(json.dumps(message))

    async def _emit(self, event: str, *args: Any) -> None:
        handler = self.handlers.get(event)
        if handler is None:
            return
        await handler(*args)

    async def _run(self) -> None:
        try:
            async with websockets.connect(self.url, ping_interval=None) as ws:
                self._ws = ws
                self._channels.clear()
                await self._emit("open")
                while self.running:
                    if self.recv_timeout:
                        raw = await asyncio.wait_for(ws.recv(), timeout=self.recv_timeout)
                    else:
                        raw = await ws.recv()
                    await self.handle_message(json.loads(raw))
        except asyncio.CancelledError:
            self._ws = None
            raise
        except websockets.ConnectionClosed as exc:
            self.logger.info("Bitfinex socket closed: %s", exc)
        except asyncio.TimeoutError:
            self.logger.warning("No message for %ss; dropping Bitfinex socket", self.recv_timeout)
            await self._emit("error", TimeoutError("stream stale"))
        except Exception as exc:
            await self._emit("error", exc)
        self._ws = None
        self._channels.clear()
        await self._emit("close")

    async def handle_message(self, message: Any) -> None:
        if isinstance(message, dict):
            await self._handle_event(message)
            return
        if not isinstance(message, list) or len(message) < 2:
            self.logger.debug("Ignoring unexpected frame: %s", message)
            return

        chan_id, payload = message[0], message[1]
        if payload == "hb":
            return
        channel = self._channels.get(chan_id)
        if channel is None:
            self.logger.debug("Frame for unknown channel %s", chan_id)
            return

        name, target = channel
        if name == "ticker":
            if isinstance(payload, list):
                await self._emit("ticker", target, self.decode_ticker(payload))
        elif name == "candles":
            await self._emit("candle", self.decode_candles(payload), target)

    async def _handle_event(self, event: Dict[str, Any]) -> None:
        kind = event.get("event")
        if kind == "subscribed":
            channel = event.get("channel")
            target = event.get("key") if channel == "candles" else event.get("symbol")
            self._channels[event.get("chanId")] = (channel, target)
            self.logger.debug("Subscribed %s %s on channel %s", channel, target, event.get("chanId"))
        elif kind == "unsubscribed":
            self._channels.pop(event.get("chanId"), None)
        elif kind == "error":
            await self._emit("error", RuntimeError(f"{event.get('code')}: {event.get('msg')}"))
        elif kind == "info":
            if event.get("code") == INFO_RECONNECT:
                raise ConnectionError("Bitfinex requested a reconnect")
            self.logger.debug("Bitfinex info: %s", event)

    @staticmethod
    def decode_ticker(row: List[Any]) -> Dict[str, Any]:
        return dict(zip(TICKER_FIELDS, row))

    @staticmethod
    def decode_candle(row: Any) -> Any:
        if not isinstance(row, list):
            return row
        return dict(zip(CANDLE_FIELDS, row))

    @classmethod
    def decode_candles(cls, payload: Any) -> Any:
        """Snapshot (list of rows) -> list of mappings; single row -> mapping."""
        if isinstance(payload, list) and (not payload or isinstance(payload[0], list)):
            return [cls.decode_candle(row) for row in payload]
        return cls.decode_candle(payload)
