"""bridgeSdk.transport - Broker and overlay transports.

Public API:
    - TransportBase: Abstract base class for broker transport adapters
    - SubscriptionHandle: Lightweight subscription handle
    - createTransport: Factory function for creating broker transports from URLs
    - registerAdapter: Register custom broker transport adapters
    - NatsTransport: NATS broker transport
    - OverlayClient: Line-protocol client for the overlay server
    - OverlayCommandError, messageEncode, messageDecode: overlay protocol helpers

Default Adapters:
    - NatsTransport: Registered for the 'nats' scheme

Usage:
    from bridgeSdk.transport import createTransport

    transport = createTransport('nats://localhost:4222', onClose=handleClose, onError=handleError)
    await transport.connect('nats://localhost:4222')
    await transport.subscribe('default', handler)     # handler(subject, payload)
    await transport.publish('default', b'{"topic": "clock:arm"}')
    await transport.close()

Property of Uncompromising Sensors LLC.
"""

from .transportBase import TransportBase, SubscriptionHandle
from .transportFactory import (
    createTransport,
    registerAdapter,
    TransportRegistry,
    getDefaultRegistry
)
from .natsTransport import NatsTransport
from .overlayTransport import OverlayClient, OverlayCommandError, messageEncode, messageDecode

# Register default adapters
registerAdapter('nats', NatsTransport)

__all__ = [
    'TransportBase',
    'SubscriptionHandle',
    'createTransport',
    'registerAdapter',
    'TransportRegistry',
    'getDefaultRegistry',
    'NatsTransport',
    'OverlayClient',
    'OverlayCommandError',
    'messageEncode',
    'messageDecode'
]
