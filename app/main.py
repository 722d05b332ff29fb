"""
FastAPI Application - Multi-Exchange Candle API

Provides unified REST and WebSocket access to normalized candlestick data.

Supported Exchanges:
    - Binance (spot)
    - OKX (spot)
    - Bybit (spot)
    - MEXC (spot)
    - synthetic (random walk, only when ENABLE_SYNTHETIC_EXCHANGE=true)

Features:
    - Historical candles served cache-first with stale-cache fallback
    - Volume-weighted candles aggregated across exchanges and quote assets
    - Live candle streaming over a single client WebSocket
    - Connection status per series and as an event stream

Usage:
    uvicorn app.main:app --reload --host 0.0.0.0 --port 8000

Docs:
    - Swagger: http://localhost:8000/docs
    - ReDoc: http://localhost:8000/redoc
"""

from fastapi import Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from typing import Dict, List, Optional, Tuple
from contextlib import asynccontextmanager
import contextlib
import json

from core.config import settings
from core.errors import (
    AggregationError,
    TransportError,
    UnsupportedExchangeError,
    ValidationError,
)
from core.exchange_interface import ExchangeConnector
from core.logging import logger, log_api_request, log_websocket_event
from core.multiplexer import STATUS_TOPIC
from core.schemas import AggregatedCandles, Candle, SeriesStatus, SubscriptionKey
from core.utils.time import interval_to_seconds
from services.context import MarketDataContext


# ============================================
# Lifespan Management
# ============================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the market data context on startup and tear it down on shutdown."""
    logger.info("=== Application Starting ===")
    context = MarketDataContext()
    try:
        await context.start()
        logger.info("=== Started Successfully ===")
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        raise

    app.state.context = context
    yield

    logger.info("=== Shutting Down ===")
    try:
        await context.stop()
        logger.info("=== Shutdown Complete ===")
    except Exception as e:
        logger.error(f"Shutdown error: {e}")


# ============================================
# FastAPI Application
# ============================================

app = FastAPI(
    title="candlehub Multi-Exchange Candle API",
    description=(
        "Unified REST and WebSocket API for normalized cryptocurrency candles.\n\n"
        "**Supported Exchanges:** Binance, OKX, Bybit, MEXC\n\n"
        "## REST Endpoints\n"
        "- `GET /{exchange}/candles/{symbol}/{interval}` - Historical candles (cache-first)\n"
        "- `GET /aggregated/candles/{base_asset}/{interval}` - VWAP candles across exchanges/quotes\n"
        "- `GET /{exchange}/status/{symbol}/{interval}` - Connection/cache status of a series\n"
        "- `GET /exchanges` - List supported exchanges\n"
        "- `GET /health` - Health check\n\n"
        "## WebSocket Streams\n"
        "- `ws://{host}/ws` - Live candles. Send "
        "`{\"type\": \"subscribe\", \"exchange\": \"binance\", \"symbol\": \"BTCUSDT\", \"interval\": \"1m\"}`\n"
        "- `ws://{host}/ws/status` - Connection status events\n\n"
        "All WebSocket messages are JSON objects.\n"
        "Clients should handle reconnects on disconnect."
    ),
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)


def get_context(request: Request) -> MarketDataContext:
    return request.app.state.context


def _csv(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    items = [item.strip() for item in value.split(",") if item.strip()]
    return items or None


# ============================================
# System Endpoints
# ============================================

@app.get("/", tags=["System"])
async def root(context: MarketDataContext = Depends(get_context)):
    """API information and available exchanges."""
    return {
        "name": "candlehub Multi-Exchange Candle API",
        "version": "1.0.0",
        "status": "operational",
        "docs": "/docs",
        "exchanges": context.manager.list_exchanges()
    }


@app.get("/health", tags=["System"])
async def health_check(context: MarketDataContext = Depends(get_context)):
    """Health check - tests connectivity to all exchanges."""
    health = await context.manager.health_check_all()
    return {
        "status": "healthy" if all(health.values()) else "degraded",
        "exchanges": health
    }


@app.get("/exchanges", tags=["System"])
async def list_exchanges(context: MarketDataContext = Depends(get_context)):
    """List all supported exchanges and their capabilities."""
    manager = context.manager
    return {
        "exchanges": [
            {
                "name": name,
                "capabilities": manager.get_exchange_capabilities(name)
            }
            for name in manager.list_exchanges()
        ]
    }


# ============================================
# Market Data Endpoints
# ============================================

@app.get("/aggregated/candles/{base_asset}/{interval}", response_model=AggregatedCandles, tags=["Market Data"])
async def get_aggregated_candles(
    base_asset: str,
    interval: str,
    quotes: Optional[str] = Query(default=None, description="Comma-separated quote assets (e.g., USDT,USDC)"),
    exchanges: Optional[str] = Query(default=None, description="Comma-separated exchanges (e.g., binance,okx)"),
    limit: int = Query(default=settings.default_candle_limit, ge=1, le=5000),
    context: MarketDataContext = Depends(get_context)
):
    """
    Volume-weighted candles for a base asset across exchanges and quote assets.

    Example:
        GET /aggregated/candles/BTC/1h?quotes=USDT,USDC&exchanges=binance,okx&limit=200
    """
    interval_to_seconds(interval)
    log_api_request("aggregated", f"/candles/{base_asset}/{interval}", {"quotes": quotes, "exchanges": exchanges})
    return await context.fetcher.fetch_aggregated_candles(
        base_asset,
        interval,
        quote_assets=_csv(quotes),
        exchanges=_csv(exchanges),
        limit=limit
    )


@app.get("/{exchange}/candles/{symbol}/{interval}", response_model=List[Candle], tags=["Market Data"])
async def get_candles(
    exchange: str,
    symbol: str,
    interval: str,
    limit: int = Query(default=settings.default_candle_limit, ge=1, le=5000),
    force_fresh: bool = Query(default=False, description="Skip the cache and refetch"),
    start_time: Optional[int] = Query(default=None, description="Start time (epoch seconds or ms)"),
    end_time: Optional[int] = Query(default=None, description="End time (epoch seconds or ms)"),
    context: MarketDataContext = Depends(get_context)
):
    """
    Historical candles for one series, ascending and deduplicated.

    Example:
        GET /binance/candles/BTCUSDT/1h?limit=100
    """
    interval_to_seconds(interval)
    log_api_request(exchange, f"/candles/{symbol}/{interval}", {"limit": limit, "force_fresh": force_fresh})
    return await context.fetcher.fetch_candles(
        exchange,
        symbol,
        interval,
        limit=limit,
        start_time=start_time,
        end_time=end_time,
        force_fresh=force_fresh
    )


@app.get("/{exchange}/status/{symbol}/{interval}", response_model=SeriesStatus, tags=["Market Data"])
async def get_series_status(
    exchange: str,
    symbol: str,
    interval: str,
    context: MarketDataContext = Depends(get_context)
):
    """Connection and cache status (live, reconnecting, cached, no_data) of one series."""
    interval_to_seconds(interval)
    return context.get_series_status(exchange, symbol, interval)


# ============================================
# WebSocket Endpoints
# ============================================

@app.websocket("/ws")
async def websocket_candles(websocket: WebSocket):
    """
    Live candle stream with client-driven subscriptions.

    Client frames:
        {"type": "subscribe", "exchange": "okx", "symbol": "BTC-USDT", "interval": "1m", "stream": "kline"}
        {"type": "unsubscribe", "exchange": "okx", "symbol": "BTC-USDT", "interval": "1m"}

    Server frames:
        {"type": "status", "connected": true}
        {"type": "subscribed" | "unsubscribed", "exchange", "symbol", "interval", "stream"}
        {"type": "update", "exchange", "symbol", "interval", "data": {candle}}
        {"type": "error", "message": "..."}
    """
    context: MarketDataContext = websocket.app.state.context
    await websocket.accept()
    log_websocket_event("client", "connected", details="/ws")
    await websocket.send_json({"type": "status", "connected": True})

    # key -> (connector, callback id) held by this client
    held: Dict[SubscriptionKey, Tuple[ExchangeConnector, str]] = {}

    async def handle(frame: dict) -> None:
        exchange = frame.get("exchange")
        symbol = frame.get("symbol")
        if not exchange or not symbol:
            await websocket.send_json({
                "type": "error",
                "message": "Missing required parameters: exchange, symbol"
            })
            return

        interval = frame.get("interval") or "1m"
        stream = frame.get("stream") or "kline"
        connector = context.manager.get_exchange(exchange)
        key = connector.subscription_key(symbol, interval, stream)
        reply = {"exchange": connector.name, "symbol": key.symbol, "interval": interval, "stream": stream}

        if frame.get("type") == "subscribe":
            if key not in held:
                async def on_candle(sub_key: SubscriptionKey, candle: Candle) -> None:
                    await websocket.send_json({
                        "type": "update",
                        "exchange": sub_key.exchange,
                        "symbol": sub_key.symbol,
                        "interval": sub_key.interval,
                        "data": candle.model_dump(mode="json")
                    })

                callback_id = await connector.subscribe(symbol, interval, stream, on_candle)
                held[key] = (connector, callback_id)
            await websocket.send_json({"type": "subscribed", **reply})

        elif frame.get("type") == "unsubscribe":
            entry = held.pop(key, None)
            if entry is not None:
                await connector.unsubscribe(symbol, interval, stream, callback_id=entry[1])
            await websocket.send_json({"type": "unsubscribed", **reply})

        else:
            await websocket.send_json({"type": "error", "message": f"Unknown message type: {frame.get('type')}"})

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
                if not isinstance(frame, dict):
                    raise ValueError("frame is not an object")
            except ValueError:
                await websocket.send_json({"type": "error", "message": "Invalid message format"})
                continue

            try:
                await handle(frame)
            except UnsupportedExchangeError as e:
                await websocket.send_json({"type": "error", "message": f"Unsupported exchange: {e.name}"})
            except ValidationError as e:
                await websocket.send_json({"type": "error", "message": str(e)})

    except WebSocketDisconnect:
        log_websocket_event("client", "disconnected", details="/ws")
    except Exception as e:
        log_websocket_event("client", "error", details=f"/ws: {e}")
        with contextlib.suppress(Exception):
            await websocket.close(code=1011, reason="Internal error")
    finally:
        for key, (connector, callback_id) in held.items():
            try:
                await connector.unsubscribe(key.symbol, key.interval, key.stream, callback_id=callback_id)
            except Exception as e:
                logger.error(f"Failed to release {connector.name}/{key.symbol}/{key.interval}: {e}")
        logger.info(f"WS ended: /ws (released {len(held)} subscription(s))")


@app.websocket("/ws/status")
async def websocket_status(websocket: WebSocket):
    """
    Connection status events published by the multiplexers.

    Example event:
        {"type": "connection_status", "exchange": "bybit", "connection_id": "bybit:shared",
         "status": "reconnecting", "keys": ["BTCUSDT/1m/kline"]}
    """
    context: MarketDataContext = websocket.app.state.context
    await websocket.accept()
    logger.info("WS connected: status")
    queue = await context.bus.subscribe(STATUS_TOPIC)
    try:
        while True:
            event = await queue.get()
            await websocket.send_json(event)
    except WebSocketDisconnect:
        logger.info("WS disconnected: status")
    except Exception as e:
        logger.error(f"WS error status: {e}")
        with contextlib.suppress(Exception):
            await websocket.close(code=1011, reason="Internal error")
    finally:
        await context.bus.unsubscribe(STATUS_TOPIC, queue)
        logger.info("WS ended: status")


# ============================================
# Error Handlers
# ============================================

@app.exception_handler(UnsupportedExchangeError)
async def unsupported_exchange_handler(request, exc):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def validation_error_handler(request, exc):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(AggregationError)
async def aggregation_error_handler(request, exc):
    logger.warning(f"Aggregation failed: {exc}")
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.exception_handler(TransportError)
async def transport_error_handler(request, exc):
    logger.error(f"Upstream error: {exc}")
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(404)
async def not_found_handler(request, exc):
    """Handle 404 errors."""
    return JSONResponse(status_code=404, content={"detail": "Not found", "path": str(request.url)})


@app.exception_handler(500)
async def internal_error_handler(request, exc):
    """Handle 500 errors."""
    logger.error(f"Internal error: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})
