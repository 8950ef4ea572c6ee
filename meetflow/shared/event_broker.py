"""
Redis Streams Event Broker Wrapper.

Publishes pipeline events to per-session Redis Streams and replays them, so UI
collaborators can follow or catch up on a recording without holding a WebSocket
to the orchestrator.
"""

import logging
from typing import Dict, List, Optional, Tuple

import redis.asyncio as redis

from .events import PipelineEvent

logger = logging.getLogger(__name__)


def session_stream_key(session_id: str, prefix: str = "meetflow") -> str:
    """Stream key for all events of one session."""
    return f"{prefix}:session:{session_id}"


class EventBroker:
    """
    Wrapper around Redis Streams for pipeline events.
    """
    def __init__(self, redis_client: redis.Redis, stream_prefix: str = "meetflow", max_len: int = 10000):
        self.redis = redis_client
        self.stream_prefix = stream_prefix
        self.max_len = max_len

    async def publish(self, stream_key: str, event: PipelineEvent, max_len: int = None) -> str:
        """
        Publish an event to a Redis Stream.

        Args:
            stream_key: The Redis key for the stream (e.g., "meetflow:session:123")
            event: PipelineEvent object
            max_len: Maximum stream length (older entries are trimmed)

        Returns:
            The message ID of the published event.
        """
        try:
            data = event.to_redis_dict()
            message_id = await self.redis.xadd(
                stream_key, data, maxlen=max_len or self.max_len, approximate=True
            )
            return message_id
        except Exception as e:
            logger.error(f"Failed to publish event to {stream_key}: {e}")
            raise

    async def publish_session_event(self, event: PipelineEvent) -> str:
        """Publish to the stream of the event's own session."""
        return await self.publish(session_stream_key(event.session_id, self.stream_prefix), event)

    async def consume(
        self,
        streams: Dict[str, str],
        count: int = 10,
        block: Optional[int] = 100
    ) -> List[Tuple[str, List[Tuple[str, Dict]]]]:
        """
        Consume events from one or more streams (XREAD).

        Args:
            streams: Dict mapping stream_key -> last_id (e.g. {"meetflow:session:1": "$"})
            count: Max messages per stream
            block: Block time in ms (0 = infinite, None = return immediately)

        Returns:
            List of [stream_key, [(msg_id, data), ...]]
        """
        return await self.redis.xread(streams, count=count, block=block)

    async def read_events(
        self, session_id: str, last_id: str = "0", count: int = 100
    ) -> List[Tuple[str, PipelineEvent]]:
        """
        Replay the events of one session published after last_id.

        Returns (message_id, event) pairs; pass the last message_id back as
        last_id to page through the stream. Never blocks.
        """
        stream_key = session_stream_key(session_id, self.stream_prefix)
        messages = await self.consume({stream_key: last_id}, count=count, block=None)
        events = []
        for _stream_key, message_list in messages or []:
            for message_id, data in message_list:
                if isinstance(message_id, bytes):
                    message_id = message_id.decode("utf-8")
                events.append((message_id, PipelineEvent.from_redis_dict(data)))
        return events
