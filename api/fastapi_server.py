import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from config import config
from config.utils import get_setting
from monitoring.logging_utils import setup_logging


trading_system = None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@asynccontextmanager
async def lifespan(app: FastAPI):
    global trading_system
    from main import TradingSystem
    trading_system = TradingSystem()
    task = asyncio.create_task(trading_system.run())
    try:
        yield
    finally:
        if trading_system:
            await trading_system.stop()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)


app = FastAPI(title="MA Consensus Paper Trader", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(get_setting(config, 'api', 'cors_origins', ["*"])),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _require_system():
    if not trading_system:
        raise HTTPException(status_code=503, detail="Trading system not initialized")
    return trading_system


@app.get("/")
async def root():
    return {
        "service": "MA Consensus Paper Trader",
        "version": "1.0.0",
        "status": "running" if trading_system and trading_system.running else "stopped"
    }


@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "timestamp": _now(),
        "system_running": trading_system.running if trading_system else False,
        "connection": trading_system.connection_state.value if trading_system else None,
    }


@app.get("/api/orders")
async def get_orders():
    system = _require_system()
    orders = [order.as_dict() for order in system.get_order_history()]
    return {"orders": orders, "count": len(orders), "timestamp": _now()}


@app.get("/api/candles")
async def get_candles(symbol: Optional[str] = None, limit: int = Query(100, ge=1, le=10000)):
    system = _require_system()
    candles = system.get_candles()
    if symbol is not None:
        if symbol not in candles:
            raise HTTPException(status_code=404, detail=f"No candles for symbol '{symbol}'")
        candles = {symbol: candles[symbol]}
    return {
        "candles": {
            sym: [candle.as_dict() for candle in series[-limit:]]
            for sym, series in candles.items()
        },
        "timestamp": _now(),
    }


@app.get("/api/tickers")
async def get_tickers():
    system = _require_system()
    return {
        "tickers": {sym: ticker.as_dict() for sym, ticker in system.get_tickers().items()},
        "timestamp": _now(),
    }


@app.get("/api/pnl")
async def get_pnl():
    system = _require_system()
    return {
        "pnl": system.get_current_pol(),
        "orders": len(system.get_order_history()),
        "timestamp": _now(),
    }


if __name__ == "__main__":
    import uvicorn
    setup_logging(get_setting(config, 'monitoring', 'log_level', 'INFO'))
    uvicorn.run(
        app,
        host=config.lookup('api.host', '0.0.0.0'),
        port=int(config.lookup('api.port', 8000)),
        log_level="info"
    )
