"""
Connection Multiplexer

One multiplexer per exchange. It owns every physical WebSocket for that
exchange and fans inbound candles out to any number of subscribers.

Arena-style bookkeeping:
    _connections:   connection_id   -> _Connection (socket + supervising task)
    _subscriptions: SubscriptionKey -> {callback_id}
    _callbacks:     callback_id     -> _Subscriber (callback + delivery queue/task)
    _bindings:      SubscriptionKey -> connection_id

Lifecycle of a connection:
    - opened on the first subscribe that needs it
    - one supervising asyncio task per connection: connect, send subscribe
      frames for every bound key, read frames in wire order
    - on close/error with keys still bound: wait a fixed backoff, reconnect,
      resubscribe every bound key (batched for shared-socket protocols)
    - torn down when its last key is unsubscribed; cancelling the task also
      cancels a pending reconnect

Inbound frame handling:
    parse (exchange protocols tag candles as source "real") -> write to the
    cache sink -> enqueue on every subscriber's bounded queue.
    Each subscriber has its own delivery task, so callbacks run in wire order
    per subscriber while a slow or failing callback never stalls the read
    loop or its siblings. A full queue drops its oldest candle.
"""

import asyncio
import contextlib
import inspect
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

import websockets

from core.config import settings
from core.errors import ValidationError
from core.exchange_interface import StreamProtocol
from core.logging import get_logger, log_websocket_event
from core.schemas import Candle, ConnectionStatus, SubscriptionKey


CandleCallback = Callable[[SubscriptionKey, Candle], Union[None, Awaitable[None]]]

STATUS_TOPIC = "connection_status"


@dataclass
class _Connection:
    """One physical socket and the keys riding on it."""

    connection_id: str
    url: str
    keys: Set[SubscriptionKey] = field(default_factory=set)
    task: Optional[asyncio.Task] = None
    ws: Any = None
    status: ConnectionStatus = ConnectionStatus.CONNECTING
    connects: int = 0
    reconnects: int = 0


@dataclass
class _Subscriber:
    """One callback and the queue its delivery task drains."""

    callback_id: str
    key: SubscriptionKey
    callback: CandleCallback
    queue: asyncio.Queue
    task: Optional[asyncio.Task] = None


class ConnectionMultiplexer:
    """
    Owns sockets for one exchange and multiplexes subscribers over them.

    Args:
        exchange: Exchange identifier (lowercase)
        protocol: Exchange wire protocol
        sink: Object with `async store_candles(series_key, candles)`; every
            live candle is written there before callbacks run
        event_bus: Object with `async publish(topic, event)` for status events
        reconnect_delay: Fixed backoff before reopening a dropped socket
        heartbeat_interval: Seconds between application-level pings
        subscriber_queue_size: Candles buffered per subscriber
        connect: Coroutine factory `connect(url) -> websocket`; defaults to
            websockets.connect

    Example:
        >>> mux = ConnectionMultiplexer("bybit", BybitStreamProtocol(url), sink=cache)
        >>> cid = await mux.subscribe(SubscriptionKey("bybit", "BTCUSDT", "1m"), on_candle)
        >>> await mux.unsubscribe(SubscriptionKey("bybit", "BTCUSDT", "1m"), cid)
    """

    def __init__(
        self,
        exchange: str,
        protocol: StreamProtocol,
        sink: Any = None,
        event_bus: Any = None,
        reconnect_delay: Optional[float] = None,
        heartbeat_interval: Optional[float] = None,
        subscriber_queue_size: Optional[int] = None,
        connect: Optional[Callable[[str], Awaitable[Any]]] = None
    ) -> None:
        self.exchange = exchange
        self.protocol = protocol
        self.sink = sink
        self.event_bus = event_bus
        self.reconnect_delay = settings.ws_reconnect_delay if reconnect_delay is None else reconnect_delay
        self.heartbeat_interval = settings.ws_heartbeat_interval if heartbeat_interval is None else heartbeat_interval
        self.subscriber_queue_size = (
            settings.ws_subscriber_queue_size if subscriber_queue_size is None else subscriber_queue_size
        )
        self._connect = connect or websockets.connect

        self._connections: Dict[str, _Connection] = {}
        self._subscriptions: Dict[SubscriptionKey, Set[str]] = {}
        self._callbacks: Dict[str, _Subscriber] = {}
        self._bindings: Dict[SubscriptionKey, str] = {}
        self._lock = asyncio.Lock()
        self._logger = get_logger(__name__)

    # ============================================
    # Public API
    # ============================================

    async def subscribe(self, key: SubscriptionKey, callback: CandleCallback) -> str:
        """
        Register a callback under `key`, opening or reusing a socket.

        Returns:
            str: Opaque callback id
        """
        callback_id = uuid.uuid4().hex
        async with self._lock:
            sub = _Subscriber(callback_id, key, callback, asyncio.Queue(maxsize=self.subscriber_queue_size))
            sub.task = asyncio.create_task(self._deliver(sub), name=f"ws-deliver:{callback_id[:8]}")
            self._callbacks[callback_id] = sub
            ids = self._subscriptions.setdefault(key, set())
            first = not ids
            ids.add(callback_id)
            if first:
                await self._bind(key)

        self._logger.debug(
            f"{self.exchange}: callback {callback_id[:8]} subscribed to "
            f"{key.symbol}/{key.interval}/{key.stream} (subscribers={len(self._subscriptions[key])})"
        )
        return callback_id

    async def unsubscribe(self, key: SubscriptionKey, callback_id: Optional[str] = None) -> bool:
        """
        Remove one callback, or all callbacks of `key` when callback_id is None.

        When the key loses its last subscriber its protocol unsubscribe frame
        is sent, and the socket is closed if no other key is bound to it.

        Returns:
            bool: True if anything was removed
        """
        async with self._lock:
            ids = self._subscriptions.get(key)
            if not ids:
                return False

            if callback_id is None:
                removed = set(ids)
            elif callback_id in ids:
                removed = {callback_id}
            else:
                return False

            for cid in removed:
                ids.discard(cid)
                self._stop_subscriber(self._callbacks.pop(cid, None))

            if not ids:
                del self._subscriptions[key]
                await self._unbind(key)

        self._logger.debug(
            f"{self.exchange}: removed {len(removed)} callback(s) from {key.symbol}/{key.interval}/{key.stream}"
        )
        return True

    async def close(self) -> None:
        """Drop every subscription and close every socket."""
        async with self._lock:
            connections = list(self._connections.values())
            subscribers = list(self._callbacks.values())
            self._connections.clear()
            self._subscriptions.clear()
            self._callbacks.clear()
            self._bindings.clear()
            for sub in subscribers:
                self._stop_subscriber(sub)
            for conn in connections:
                conn.keys.clear()
                await self._stop_connection(conn)

        pending = [
            sub.task for sub in subscribers
            if sub.task is not None and sub.task is not asyncio.current_task()
        ]
        await asyncio.gather(*pending, return_exceptions=True)

        if connections:
            self._logger.info(f"{self.exchange}: closed {len(connections)} connection(s)")

    def connection_state(self, key: SubscriptionKey) -> Optional[ConnectionStatus]:
        """
        Status of the socket `key` is bound to, or None when not subscribed.
        """
        conn_id = self._bindings.get(key)
        if conn_id is None:
            return None
        conn = self._connections.get(conn_id)
        return conn.status if conn else None

    def subscriber_count(self, key: SubscriptionKey) -> int:
        return len(self._subscriptions.get(key, ()))

    def subscribed_keys(self) -> List[SubscriptionKey]:
        return list(self._subscriptions)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    # ============================================
    # Binding Keys to Connections
    # ============================================

    async def _bind(self, key: SubscriptionKey) -> None:
        conn_id = self.protocol.connection_id(key)
        self._bindings[key] = conn_id

        conn = self._connections.get(conn_id)
        if conn is None:
            conn = _Connection(connection_id=conn_id, url=self.protocol.connection_url(key))
            conn.keys.add(key)
            self._connections[conn_id] = conn
            conn.task = asyncio.create_task(self._supervise(conn), name=f"ws:{conn_id}")
            return

        conn.keys.add(key)
        # Not open yet: the supervisor subscribes every bound key once connected
        if conn.ws is not None and conn.status == ConnectionStatus.LIVE:
            await self._send_frames(conn, self.protocol.subscribe_frames([key]))

    async def _unbind(self, key: SubscriptionKey) -> None:
        conn_id = self._bindings.pop(key, None)
        conn = self._connections.get(conn_id) if conn_id else None
        if conn is None:
            return

        conn.keys.discard(key)
        if conn.keys:
            if conn.ws is not None and conn.status == ConnectionStatus.LIVE:
                await self._send_frames(conn, self.protocol.unsubscribe_frames([key]))
            return

        del self._connections[conn_id]
        await self._stop_connection(conn)

    async def _stop_connection(self, conn: _Connection) -> None:
        task = conn.task
        if task is None or task.done():
            return

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    # ============================================
    # Connection Supervisor
    # ============================================

    async def _supervise(self, conn: _Connection) -> None:
        """Connect, subscribe, read; reconnect after a fixed backoff while keys remain."""
        try:
            while conn.keys:
                if conn.connects:
                    await self._set_status(conn, ConnectionStatus.RECONNECTING)
                    log_websocket_event(
                        self.exchange, "reconnecting",
                        details=f"{conn.connection_id} in {self.reconnect_delay}s"
                    )
                    await asyncio.sleep(self.reconnect_delay)
                    if not conn.keys:
                        break
                    conn.reconnects += 1

                conn.connects += 1
                try:
                    ws = await self._connect(conn.url)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    log_websocket_event(self.exchange, "error", details=f"connect {conn.url} failed: {e}")
                    continue

                await self._run_connection(conn, ws)
        finally:
            conn.ws = None
            await self._set_status(conn, ConnectionStatus.NO_DATA, closed=True)

    async def _run_connection(self, conn: _Connection, ws: Any) -> None:
        heartbeat: Optional[asyncio.Task] = None
        conn.ws = ws
        try:
            await self._set_status(conn, ConnectionStatus.LIVE)
            log_websocket_event(self.exchange, "connected", details=conn.connection_id)

            await self._send_frames(conn, self.protocol.subscribe_frames(list(conn.keys)))

            if self.protocol.heartbeat_frame() is not None and self.heartbeat_interval > 0:
                heartbeat = asyncio.create_task(self._heartbeat(ws), name=f"ws-heartbeat:{conn.connection_id}")

            async for message in ws:
                await self._dispatch(conn, message)

            log_websocket_event(self.exchange, "disconnected", details=f"{conn.connection_id} closed by server")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log_websocket_event(self.exchange, "error", details=f"{conn.connection_id}: {e}")
        finally:
            if heartbeat is not None:
                heartbeat.cancel()
            conn.ws = None
            with contextlib.suppress(Exception):
                await ws.close()

    async def _heartbeat(self, ws: Any) -> None:
        frame = self.protocol.heartbeat_frame()
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await ws.send(frame)
            except Exception as e:
                self._logger.debug(f"{self.exchange}: heartbeat stopped: {e}")
                return

    async def _send_frames(self, conn: _Connection, frames: List[str]) -> None:
        ws = conn.ws
        if ws is None:
            return
        for frame in frames:
            try:
                await ws.send(frame)
            except Exception as e:
                # The read loop sees the broken socket and reconnects
                self._logger.warning(f"{self.exchange}: failed to send frame on {conn.connection_id}: {e}")
                return
            self._logger.debug(f"{self.exchange}: sent {frame}")

    # ============================================
    # Fan-out
    # ============================================

    async def _dispatch(self, conn: _Connection, message: Any) -> None:
        try:
            updates = self.protocol.parse_message(message, list(conn.keys))
        except ValidationError as e:
            self._logger.warning(f"{self.exchange}: dropping malformed frame: {e}")
            return

        for update in updates:
            key = SubscriptionKey(self.exchange, update.symbol.upper(), update.interval, update.stream)
            if not self._subscriptions.get(key):
                continue

            candle = update.candle

            if self.sink is not None:
                try:
                    await self.sink.store_candles(key.series, [candle])
                except Exception as e:
                    self._logger.error(f"{self.exchange}: cache write failed for {key.symbol}/{key.interval}: {e}")

            for callback_id in list(self._subscriptions.get(key, ())):
                sub = self._callbacks.get(callback_id)
                if sub is not None:
                    self._enqueue(sub, candle)

    def _enqueue(self, sub: _Subscriber, candle: Candle) -> None:
        if sub.queue.full():
            sub.queue.get_nowait()
            self._logger.warning(
                f"{self.exchange}: subscriber {sub.callback_id[:8]} is behind on "
                f"{sub.key.symbol}/{sub.key.interval}; dropped its oldest candle"
            )
        sub.queue.put_nowait(candle)

    async def _deliver(self, sub: _Subscriber) -> None:
        """Drain one subscriber's queue in order until it is unsubscribed."""
        while sub.callback_id in self._callbacks:
            candle = await sub.queue.get()
            await self._invoke(sub.callback_id, sub.callback, sub.key, candle)

    @staticmethod
    def _stop_subscriber(sub: Optional[_Subscriber]) -> None:
        if sub is None or sub.task is None or sub.task.done():
            return
        # A callback unsubscribing itself ends its own loop after returning
        if sub.task is not asyncio.current_task():
            sub.task.cancel()

    async def _invoke(self, callback_id: str, callback: CandleCallback, key: SubscriptionKey, candle: Candle) -> None:
        try:
            result = callback(key, candle)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.error(
                f"{self.exchange}: callback {callback_id[:8]} failed for "
                f"{key.symbol}/{key.interval}: {e}"
            )

    # ============================================
    # Status Events
    # ============================================

    async def _set_status(self, conn: _Connection, status: ConnectionStatus, closed: bool = False) -> None:
        conn.status = status
        if self.event_bus is None:
            return
        event = {
            "type": STATUS_TOPIC,
            "exchange": self.exchange,
            "connection_id": conn.connection_id,
            "status": "closed" if closed else status.value,
            "keys": [f"{k.symbol}/{k.interval}/{k.stream}" for k in sorted(conn.keys)],
        }
        try:
            await self.event_bus.publish(STATUS_TOPIC, event)
        except Exception as e:
            self._logger.warning(f"{self.exchange}: failed to publish status event: {e}")

    def __repr__(self) -> str:
        return (
            f"<ConnectionMultiplexer(exchange={self.exchange}, "
            f"connections={len(self._connections)}, keys={len(self._subscriptions)})>"
        )
