"""
OverlayToBrokerBridge: overlay events -> broker messages.

For each event line from the overlay events link:
    1. decode with codec.stringToMessage()
    2. drop noise topics (time:tick, debug:message, misc:unknown_command)
    3. drop echoes of our own commands (x-overlay-source == our identity)
    4. stamp 'x-via-<identity>: true' and publish; publish failures are logged, never queued or retried

Property of Uncompromising Sensors LLC.
"""

# Imports
from typing import Optional

# Local imports
from bridgeSdk.logging import getLogger
from bridgeSdk.messages import BrokerMessage
from .brokerLink import ReconnectingBrokerLink
from .codec import stringToMessage
from .identity import InstanceIdentity, SOURCE_HEADER


NOISY_TOPICS = frozenset({'time:tick', 'debug:message', 'misc:unknown_command'})


class OverlayToBrokerBridge:

    def __init__(self, identity: InstanceIdentity, brokerLink: ReconnectingBrokerLink):
        self.log = getLogger()
        self.identity = identity
        self.brokerLink = brokerLink
        self.stats = {'received': 0, 'forwarded': 0, 'filtered': 0, 'looped': 0, 'failed': 0}

    async def handleEvent(self, line: str) -> Optional[BrokerMessage]:
        """Translate and forward one overlay event. Returns the published message, or None if dropped."""
        self.stats['received'] += 1
        message = stringToMessage(line)

        if message.topic in NOISY_TOPICS:
            self.stats['filtered'] += 1
            return None

        # Prevent message loops: don't forward what we initiated ourselves
        if self.identity.isOwnSource(message.headers):
            self.stats['looped'] += 1
            self.log.debug('Skipping echo of own command', topic=message.topic)
            return None

        message.headers[self.identity.viaHeader] = 'true'
        self.log.info(f'Forwarding {message.topic}', source=message.headers.get(SOURCE_HEADER), data=message.data)

        try:
            await self.brokerLink.publish(message)
        except Exception as e:
            self.stats['failed'] += 1
            self.log.warning(f'Publish of {message.topic} failed: {e}', errorClass=type(e).__name__)
            return None

        self.stats['forwarded'] += 1
        return message
