"""
TransportFactory: Maps broker URL schemes to transport adapter classes.

The broker link never names an adapter class; it hands its configured URL to createTransport()
and gets back an unconnected adapter. Tests swap adapters by passing their own TransportRegistry.

Usage: createTransport('nats://localhost:4222', onClose=..., onError=...) -> TransportBase

Property of Uncompromising Sensors LLC.
"""


# Imports
from typing import Dict, Type, Optional
from urllib.parse import urlparse

# Local imports
from .transportBase import TransportBase


class TransportRegistry:
    """Scheme -> adapter class lookup"""

    def __init__(self):
        self._adapters: Dict[str, Type[TransportBase]] = {}

    def register(self, scheme: str, adapterClass: Type[TransportBase]) -> None:
        if not issubclass(adapterClass, TransportBase):
            raise TypeError(f"Adapter {adapterClass} must be a TransportBase subclass")
        self._adapters[scheme.lower()] = adapterClass

    def resolve(self, uri: str) -> Type[TransportBase]:
        """Return the adapter class for the URI's scheme, or raise ValueError."""
        scheme = urlparse(uri).scheme.lower()
        if not scheme:
            raise ValueError(f"Broker URL must include a scheme (e.g. 'nats://'): {uri!r}")
        adapterClass = self._adapters.get(scheme)
        if adapterClass is None:
            available = ', '.join(sorted(self._adapters)) or 'none'
            raise ValueError(f"No transport registered for scheme '{scheme}' (available: {available})")
        return adapterClass

    def schemes(self) -> list:
        return sorted(self._adapters)


# Process-wide registry, populated by bridgeSdk.transport
_defaultRegistry = TransportRegistry()


def registerAdapter(scheme: str, adapterClass: Type[TransportBase]) -> None:
    _defaultRegistry.register(scheme, adapterClass)


def getDefaultRegistry() -> TransportRegistry:
    return _defaultRegistry


def createTransport(uri: str, registry: Optional[TransportRegistry] = None, **opts) -> TransportBase:
    """Instantiate (but do not connect) the adapter registered for uri's scheme; opts go to its constructor."""
    adapterClass = (registry or _defaultRegistry).resolve(uri)
    try:
        return adapterClass(**opts)
    except TypeError as e:
        raise TypeError(f"Failed to instantiate {adapterClass.__name__}: {e}") from e
