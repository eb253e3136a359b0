"""bridgeSdk - Shared building blocks for the overlay bridge

Contains reusable modules for:
    - logging: Structured hierarchical logging with bridge context
    - transport: Broker (NATS) adapter, transport registry and the legacy overlay line-protocol client
    - messages: Broker message envelope and wire encoding
"""

__version__ = "1.0.0"
__versionInfo__ = (1, 0, 0)
