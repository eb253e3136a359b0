"""bridgeSdk.messages - Broker message envelope."""

from .brokerMessage import BrokerMessage, MessageFormatError

__all__ = ['BrokerMessage', 'MessageFormatError']
