"""
TransportBase: Abstract base for bytes-in/bytes-out broker transports.
connect(uri, **opts), publish(subject, bytes), subscribe(subject, handler), close()

Connection notifications:
    onClose(transport)            - connection closed by the remote side / network
    onError(transport, exception) - protocol or connection error
Both receive the transport instance so an owner can ignore notifications from a transport it has replaced.

Property of Uncompromising Sensors LLC.
"""


# Imports
import asyncio, uuid
from abc import ABC, abstractmethod
from typing import Callable, Optional, Dict, Any

# Local imports
from bridgeSdk.logging import getLogger


CloseCallback = Callable[['TransportBase'], Any]
ErrorCallback = Callable[['TransportBase', BaseException], Any]


class SubscriptionHandle:
    """
    Lightweight subscription handle for local lifecycle control.

    Read-only fields:
        - subject: The subscription subject/topic
        - active: Whether this subscription is currently active
        - messagesSeen: Counter for messages received"""


    def __init__(self, subject: str, unsubscribeCallback: Callable):
        self._subject = subject
        self._active = True
        self._messagesSeen = 0
        self._unsubscribeCallback = unsubscribeCallback

    @property
    def subject(self) -> str:
        return self._subject

    @property
    def active(self) -> bool:
        return self._active

    @property
    def messagesSeen(self) -> int:
        return self._messagesSeen

    def _incrementMessages(self):
        self._messagesSeen += 1

    async def unsubscribe(self):
        """Unsubscribe from this subject (local instance only)."""
        if self._active:
            self._active = False
            await self._unsubscribeCallback(self)


class TransportBase(ABC):
    """
    Abstract base class for transport adapters.

    Lifecycle States:
        - CLOSED: Not connected (initial and after close/loss)
        - READY: Transport is operational"""


    def __init__(self, onClose: Optional[CloseCallback] = None, onError: Optional[ErrorCallback] = None):
        self._logger = getLogger()

        self._state = 'CLOSED'
        self._endpoint = None
        self._connectedAt = None
        self._instanceId = str(uuid.uuid4())[:8]
        self._subscriptions: Dict[str, SubscriptionHandle] = {}
        self._onClose = onClose
        self._onError = onError


    # ===== Core Abstract Methods (Must Implement) =====
    @abstractmethod
    async def connect(self, uri: str, **opts) -> None:
        pass

    @abstractmethod
    async def publish(self, subject: str, payload: bytes, timeout: Optional[float] = None) -> None:
        pass

    @abstractmethod
    async def subscribe(self, subject: str, handler: Callable[[str, bytes], Any],
                       timeout: Optional[float] = None) -> SubscriptionHandle:
        pass

    @abstractmethod
    async def close(self, timeout: Optional[float] = None) -> None:
        pass


    # ===== Core Properties =====
    @property
    @abstractmethod
    def transportType(self) -> str:
        pass

    @property
    def state(self) -> str:
        return self._state

    @property
    def isConnected(self) -> bool:
        return self._state == 'READY'

    @property
    def endpoint(self) -> Optional[str]:
        return self._endpoint


    # ===== Helper Methods =====
    def _log(self, message: str, level: str = 'INFO', **fields):
        fields.setdefault('transport', self.transportType)
        fields.setdefault('endpoint', self._endpoint)
        fields.setdefault('transportId', self._instanceId)
        getattr(self._logger, level.lower(), self._logger.info)(message, **fields)

    async def _notify(self, callback: Optional[Callable], *args) -> None:
        """Invoke an owner notification; sync or async callbacks are both accepted."""
        if callback is None:
            return
        try:
            result = callback(self, *args)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            self._log(f'Notification handler error: {e}', level='ERROR')

    async def _notifyClose(self) -> None:
        await self._notify(self._onClose)

    async def _notifyError(self, error: BaseException) -> None:
        await self._notify(self._onError, error)

    async def _unsubscribeHandle(self, handle: SubscriptionHandle):
        if handle.subject in self._subscriptions:
            del self._subscriptions[handle.subject]
