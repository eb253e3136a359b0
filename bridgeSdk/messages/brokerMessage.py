"""
BrokerMessage: Topic-addressed message exchanged over the pub/sub broker.

Wire format (one broker message per payload, orjson-encoded):
    {"topic": "clock:arm", "headers": {"x-overlay-source": "..."}, "data": {...}}

- topic: '<namespace>:<verb>'
- headers: routing metadata only (str -> str)
- data: optional payload (omitted on the wire when absent)

Property of Uncompromising Sensors LLC.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import orjson


class MessageFormatError(ValueError):
    """Raised when a broker payload cannot be decoded into a BrokerMessage."""


@dataclass
class BrokerMessage:
    """Broker message: topic + headers + optional data"""

    topic: str
    data: Any = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def namespace(self) -> str:
        return self.topic.split(':', 1)[0]

    @property
    def verb(self) -> Optional[str]:
        parts = self.topic.split(':', 1)
        return parts[1] if len(parts) > 1 else None

    def toDict(self) -> dict:
        """Convert to dict for JSON serialization"""
        result = {
            'topic': self.topic,
            'headers': dict(self.headers)
        }
        if self.data is not None:
            result['data'] = self.data
        return result

    def toBytes(self) -> bytes:
        """Convert to bytes for transport"""
        return orjson.dumps(self.toDict())

    @staticmethod
    def fromDict(data: dict) -> 'BrokerMessage':
        """Create from dict, coercing header values to strings"""
        if not isinstance(data, dict):
            raise MessageFormatError(f"Message must be a JSON object, got {type(data).__name__}")

        topic = data.get('topic')
        if not isinstance(topic, str):
            raise MessageFormatError("Message has no string 'topic'")

        headers = data.get('headers') or {}
        if not isinstance(headers, dict):
            raise MessageFormatError("Message 'headers' must be an object")

        return BrokerMessage(
            topic=topic,
            data=data.get('data'),
            headers={str(k): str(v) for k, v in headers.items()}
        )

    @staticmethod
    def fromBytes(payload: bytes) -> 'BrokerMessage':
        """Create from transport bytes"""
        try:
            data = orjson.loads(payload)
        except orjson.JSONDecodeError as e:
            raise MessageFormatError(f"Invalid JSON payload: {e}") from e
        return BrokerMessage.fromDict(data)
