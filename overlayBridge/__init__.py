"""
The overlayBridge app translates between the overlay server's line protocol and the message broker,
in both directions, so either side can observe and control the other.

- codec: overlay line <-> BrokerMessage translation
- legacyLink / brokerLink: self-healing connections (shared state machine in reconnectingLink)
- overlayToBroker / brokerToOverlay: routing, noise filtering and loop prevention
- identity: per-process InstanceIdentity used by both loop guards
- main: configuration, wiring and CLI

Property of Uncompromising Sensors LLC.
"""

__version__ = "1.0.0"
