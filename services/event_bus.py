"""
Simple Async Pub/Sub Event Bus

This module provides a lightweight publish/subscribe utility built on top of
asyncio queues. Connection multiplexers publish "connection_status" events
and any number of WebSocket handlers subscribe and consume them independently.

Event shape on the "connection_status" topic:
    {"type": "connection_status", "exchange": "bybit",
     "connection_id": "bybit:shared", "status": "reconnecting",
     "keys": ["BTCUSDT/1m/kline"]}
"""

import asyncio
from typing import Any, Dict, DefaultDict, Set
from collections import defaultdict

from core.logging import get_logger


class EventBus:
    """
    Async event bus with topic-based pub/sub.

    - Each subscriber gets its own asyncio.Queue and will not block publishers.
    - Unsubscribing is important to avoid queue leaks when clients disconnect.
    """

    def __init__(self, max_queue_size: int = 1000) -> None:
        self._topics: DefaultDict[str, Set[asyncio.Queue]] = defaultdict(set)
        self._max_queue_size = max_queue_size
        self._lock = asyncio.Lock()
        self._logger = get_logger(__name__)

    async def subscribe(self, topic: str) -> asyncio.Queue:
        """
        Subscribe to a topic. Returns an asyncio.Queue for receiving events.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        async with self._lock:
            self._topics[topic].add(queue)
        self._logger.debug(f"Subscriber added to topic '{topic}'. total={len(self._topics[topic])}")
        return queue

    async def unsubscribe(self, topic: str, queue: asyncio.Queue) -> None:
        """
        Unsubscribe a queue from a topic and drain what it still holds.
        """
        async with self._lock:
            subscribers = self._topics.get(topic)
            if subscribers and queue in subscribers:
                subscribers.remove(queue)
                while not queue.empty():
                    queue.get_nowait()
                if not subscribers:
                    del self._topics[topic]
        self._logger.debug(f"Subscriber removed from topic '{topic}'. total={self.subscriber_count(topic)}")

    async def publish(self, topic: str, event: Dict[str, Any]) -> int:
        """
        Publish an event to a topic. Drops events if subscriber queue is full.

        Returns:
            int: Number of queues the event was delivered to
        """
        subscribers = list(self._topics.get(topic, set()))
        delivered = 0
        for q in subscribers:
            try:
                q.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                # Drop event to avoid backpressure blocking
                self._logger.warning(f"Dropping event for topic '{topic}' due to full queue")
        return delivered

    def subscriber_count(self, topic: str) -> int:
        return len(self._topics.get(topic, ()))
