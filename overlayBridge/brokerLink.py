"""
ReconnectingBrokerLink: One persistent connection to the message broker.

- Publishes BrokerMessages to the publish node
- Re-subscribes every subscribe node on each (re)connect and hands decoded messages to onMessage
- Reconnects 1 second after a close, 10 seconds after an error

Property of Uncompromising Sensors LLC.
"""

# Imports
import asyncio
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

# Local imports
from bridgeSdk.messages import BrokerMessage, MessageFormatError
from bridgeSdk.transport import SubscriptionHandle, TransportBase, TransportRegistry, createTransport
from .errors import LinkNotReadyError
from .reconnectingLink import ReconnectingLink


class ReconnectingBrokerLink(ReconnectingLink):

    def __init__(self, url: str, publishNode: str, subscribeNodes: Iterable[str] = (), *,
                 onMessage: Optional[Callable[[BrokerMessage], Any]] = None,
                 closeDelay: float = 1.0, errorDelay: float = 10.0,
                 transportOptions: Optional[dict] = None, registry: Optional[TransportRegistry] = None):
        super().__init__('broker', closeDelay=closeDelay, errorDelay=errorDelay)
        self.url = url
        self.publishNode = publishNode
        self._subscribeNodes: List[str] = list(subscribeNodes)
        self._onMessage = onMessage
        self._transportOptions = dict(transportOptions or {})
        self._registry = registry
        self._closingTasks: Set[asyncio.Task] = set()
        self._handles: Dict[str, SubscriptionHandle] = {}

        # Stats
        self.published = 0
        self.received = 0
        self.malformed = 0

    @property
    def subscriptions(self) -> List[str]:
        return list(self._subscribeNodes)

    async def publish(self, message: BrokerMessage, node: Optional[str] = None) -> None:
        """Publish to the broker; raises LinkNotReadyError unless READY. Never queued or retried."""
        transport = self._transport
        if not self.isReady or transport is None:
            raise LinkNotReadyError(self.name, self.state.value)
        await transport.publish(node or self.publishNode, message.toBytes())
        self.published += 1

    async def stop(self) -> None:
        # Leave the subscribe nodes before the connection is closed
        handles, self._handles = self._handles, {}
        if self.isReady:
            for handle in handles.values():
                await handle.unsubscribe()
            self.log.info('Unsubscribed broker nodes', link=self.name,
                          messagesSeen={node: handle.messagesSeen for node, handle in handles.items()})
        await super().stop()
        if self._closingTasks:
            await asyncio.gather(*self._closingTasks, return_exceptions=True)


    # --- ReconnectingLink hooks ---
    def _createTransport(self) -> TransportBase:
        return createTransport(self.url, registry=self._registry,
                               onClose=self._handleClose, onError=self._handleError)

    async def _openTransport(self, transport: TransportBase) -> None:
        await transport.connect(self.url, **self._transportOptions)
        self.log.info('MClient connected', link=self.name, endpoint=transport.endpoint)

    async def _onConnected(self, transport: TransportBase) -> None:
        self._handles = {}
        for node in self._subscribeNodes:
            self._handles[node] = await transport.subscribe(node, partial(self._dispatchPayload, transport))

    def _abortTransport(self, transport: TransportBase) -> None:
        task = asyncio.create_task(self._closeTransport(transport))
        self._closingTasks.add(task)
        task.add_done_callback(self._closingTasks.discard)

    async def _closeTransport(self, transport: TransportBase) -> None:
        await transport.close()


    # --- Message dispatch ---
    async def _dispatchPayload(self, transport: TransportBase, subject: str, payload: bytes) -> None:
        if transport is not self._transport:
            return
        try:
            message = BrokerMessage.fromBytes(payload)
        except MessageFormatError as e:
            self.malformed += 1
            self.log.warning(f'Dropping malformed broker message: {e}', link=self.name, node=subject)
            return

        self.received += 1
        if self._onMessage is None:
            return
        result = self._onMessage(message)
        if asyncio.iscoroutine(result):
            await result
