"""
NATS JetStream Client for Python Microservices

Event envelope plus a JetStream-backed event bus built on nats-py.

Delivery is at-least-once: consumers are durable, messages are acked after
the handler returns, nak'ed when the handler raises, and terminated when the
payload cannot be decoded at all.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union, TYPE_CHECKING

import nats
from nats.js.errors import BadRequestError

if TYPE_CHECKING:
    from core.config_manager import ConfigManager

logger = logging.getLogger(__name__)


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal and datetime values"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


class EventType(Enum):
    """Platform event catalogue (services may define their own str Enums)"""

    # Customer mirror (subscription provider state)
    CUSTOMER_UPDATED = "customer.updated"

    # Credit ledger
    CREDIT_CONSUMED = "credit.consumed"
    CREDIT_PAID_ADDED = "credit.paid_added"
    CREDIT_GIFT_RESET = "credit.gift_reset"
    CREDIT_GIFT_CLEARED = "credit.gift_cleared"
    CREDIT_REFUNDED = "credit.refunded"


class ServiceSource(Enum):
    """Service sources"""

    CREDIT_SERVICE = "credit_service"
    CUSTOMER_MIRROR = "customer_mirror"


class Event:
    """Event model"""

    def __init__(
        self,
        event_type: Union[EventType, Enum],
        source: ServiceSource,
        data: Dict[str, Any],
        subject: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ):
        self.id = str(uuid.uuid4())
        self.type = event_type.value
        self.source = source.value
        self.data = data
        self.subject = subject
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.metadata = metadata or {}
        self.version = "1.0.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "subject": self.subject,
            "timestamp": self.timestamp,
            "data": self.data,
            "metadata": self.metadata,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        event = cls.__new__(cls)
        event.id = data.get("id")
        event.type = data.get("type")
        event.source = data.get("source")
        event.subject = data.get("subject")
        event.timestamp = data.get("timestamp")
        event.data = data.get("data", {})
        event.metadata = data.get("metadata", {})
        event.version = data.get("version", "1.0.0")
        return event

    @classmethod
    def wrap_raw(cls, subject: str, data: Dict[str, Any], source: str = "external") -> "Event":
        """Wrap a raw payload (no envelope) published by another system"""
        event = cls.__new__(cls)
        event.id = str(uuid.uuid4())
        event.type = subject
        event.source = source
        event.subject = subject
        event.timestamp = data.get("timestamp", datetime.now(timezone.utc).isoformat())
        event.data = data
        event.metadata = {}
        event.version = "1.0.0"
        return event


def decode_event(subject: str, payload: bytes) -> Event:
    """Decode a message body into an Event (envelope or raw payload)"""
    data = json.loads(payload.decode())
    if not isinstance(data, dict):
        raise ValueError(f"Event payload on {subject} is not an object")
    if "type" in data and "source" in data and "data" in data:
        return Event.from_dict(data)
    return Event.wrap_raw(subject, data)


class NATSEventBus:
    """NATS JetStream event bus"""

    def __init__(
        self,
        service_name: str,
        config: Optional["ConfigManager"] = None,
    ):
        """
        Initialize NATS Event Bus.

        Args:
            service_name: Name of the service (used as connection name)
            config: Optional ConfigManager instance for service discovery
        """
        from core.config_manager import ConfigManager

        self.service_name = service_name

        if config is None:
            config = ConfigManager(service_name)

        infra = config.get_infra_config()
        if infra.nats_url:
            self.servers = infra.nats_url
        else:
            host, port = config.discover_service(
                service_name="nats_service",
                default_host=infra.nats_host,
                default_port=infra.nats_port,
                env_host_key="NATS_HOST",
                env_port_key="NATS_PORT",
            )
            self.servers = f"nats://{host}:{port}"

        self._nc = None
        self._js = None
        self._subscriptions: List[Any] = []
        self._known_streams: Dict[str, bool] = {}

        logger.info(f"NATS EventBus initialized: {self.servers}")

    async def connect(self):
        """Connect to NATS and open a JetStream context"""
        try:
            self._nc = await nats.connect(servers=[self.servers], name=self.service_name)
            self._js = self._nc.jetstream()
            logger.info(f"Connected to NATS as {self.service_name}")
        except Exception as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise

    @staticmethod
    def _get_stream_name_for_event(event_type: str) -> str:
        """customer.updated -> customer-stream, credit.consumed -> credit-stream"""
        prefix = event_type.split('.')[0]
        return f"{prefix}-stream"

    async def _ensure_stream(self, subject: str) -> str:
        """Create the stream covering subject's prefix (idempotent)"""
        prefix = subject.split('.')[0]
        stream_name = self._get_stream_name_for_event(prefix)
        if stream_name not in self._known_streams:
            try:
                await self._js.add_stream(name=stream_name, subjects=[f"{prefix}.>"])
            except BadRequestError as e:
                # Stream already exists with a different config
                logger.debug(f"Stream creation note: {e}")
            self._known_streams[stream_name] = True
        return stream_name

    async def publish_event(self, event: Event) -> bool:
        """Publish an event to its JetStream stream"""
        if not self.is_connected:
            logger.error("Not connected to NATS")
            return False

        try:
            subject = event.type
            data = json.dumps(event.to_dict(), cls=DecimalEncoder).encode()
            stream_name = await self._ensure_stream(subject)

            ack = await self._js.publish(subject, data)
            logger.info(f"Published event {event.type} [{event.id}] to stream {stream_name}, seq={ack.seq}")
            return True

        except Exception as e:
            logger.error(f"Error publishing event {event.id}: {e}")
            return False

    async def subscribe_to_events(
        self,
        pattern: str,
        handler: Callable[[Event], Awaitable[Any]],
        durable: Optional[str] = None,
    ) -> Optional[str]:
        """
        Subscribe to events with a durable JetStream push consumer.

        Args:
            pattern: Subject pattern to subscribe to (e.g., "customer.updated")
            handler: Async callback receiving an Event
            durable: Optional durable name for the consumer
        """
        if not self.is_connected:
            logger.error("Not connected to NATS")
            return None

        durable = durable or f"{pattern.split('.')[0]}-consumer"

        async def _on_message(msg):
            try:
                event = decode_event(msg.subject, msg.data)
            except (ValueError, UnicodeDecodeError) as e:
                logger.error(f"Dropping undecodable message on {msg.subject}: {e}")
                await msg.term()
                return

            try:
                await handler(event)
            except Exception as e:
                logger.error(f"Error processing {event.type} [{event.id}]: {e}")
                await msg.nak()
                return

            await msg.ack()

        try:
            stream_name = await self._ensure_stream(pattern)
            sub = await self._js.subscribe(
                pattern,
                durable=durable,
                stream=stream_name,
                cb=_on_message,
                manual_ack=True,
            )
            self._subscriptions.append(sub)
            logger.info(f"Subscribed to {pattern} (durable={durable})")
            return durable

        except Exception as e:
            logger.error(f"Error subscribing to {pattern}: {e}")
            return None

    async def close(self):
        """Drain subscriptions and close the connection"""
        for sub in self._subscriptions:
            try:
                await sub.unsubscribe()
            except Exception as e:
                logger.debug(f"Unsubscribe note: {e}")
        self._subscriptions.clear()

        if self._nc is not None:
            await self._nc.drain()
            self._nc = None
            self._js = None

        logger.info("Disconnected from NATS")

    @property
    def is_connected(self) -> bool:
        """Check if connected to NATS"""
        return self._nc is not None and self._nc.is_connected


async def create_event_bus(
    service_name: str,
    config: Optional["ConfigManager"] = None,
) -> NATSEventBus:
    """
    Create and connect an event bus for a service.

    Args:
        service_name: Name of the service using the event bus
        config: Optional ConfigManager instance for service discovery

    Returns:
        Connected NATSEventBus instance
    """
    event_bus = NATSEventBus(service_name=service_name, config=config)
    await event_bus.connect()
    return event_bus


__all__ = [
    "DecimalEncoder",
    "EventType",
    "ServiceSource",
    "Event",
    "decode_event",
    "NATSEventBus",
    "create_event_bus",
]
