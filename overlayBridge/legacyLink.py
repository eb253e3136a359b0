"""
ReconnectingLegacyLink: One persistent connection to the overlay server.

Two instances run side by side:
    - EVENTS link: announces our source, switches to event streaming, hands every event line to onEvent.
      Losing it also tears down its dependents (the control link), whose server-side session goes stale with it.
    - CONTROL link: announces our source and is only READY once the server acknowledged it;
      the broker -> overlay bridge sends its commands through send().

Both reconnect 1 second after a close or error.

Property of Uncompromising Sensors LLC.
"""

# Imports
import asyncio
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional

# Local imports
from bridgeSdk.transport import OverlayClient
from .errors import LinkNotReadyError
from .identity import InstanceIdentity
from .reconnectingLink import ReconnectingLink


class LinkRole(str, Enum):
    CONTROL = 'control'
    EVENTS = 'events'


class ReconnectingLegacyLink(ReconnectingLink):

    def __init__(self, role: LinkRole, identity: InstanceIdentity, overlayParams: dict, *,
                 onEvent: Optional[Callable[[str], Any]] = None, dependents: Iterable[ReconnectingLink] = (),
                 reconnectDelay: float = 1.0, clientFactory: Callable[..., OverlayClient] = OverlayClient):
        super().__init__(f'overlay-{role.value}', closeDelay=reconnectDelay, errorDelay=reconnectDelay)
        self.role = role
        self.identity = identity
        self._params = dict(overlayParams)
        self._onEvent = onEvent
        self._dependents: List[ReconnectingLink] = list(dependents)
        self._clientFactory = clientFactory

        # Stats
        self.eventsIn = 0
        self.commandsSent = 0

    async def send(self, command: str) -> str:
        """
        Send a command and wait (bounded by the client's ack timeout) for its acknowledgement.

        Raises LinkNotReadyError when not READY; OverlayCommandError / asyncio.TimeoutError / ConnectionError
        from the client otherwise.
        """
        client = self._transport
        if not self.isReady or client is None:
            raise LinkNotReadyError(self.name, self.state.value)
        self.commandsSent += 1
        return await client.sendAndExpect(command)


    # --- ReconnectingLink hooks ---
    def _createTransport(self) -> OverlayClient:
        return self._clientFactory(**self._params, onEvent=self._dispatchEvent,
                                   onClose=self._handleClose, onError=self._handleError)

    async def _openTransport(self, client: OverlayClient) -> None:
        await client.connect()
        self.log.info('Overlay connected', link=self.name, endpoint=client.endpoint)

    async def _onConnected(self, client: OverlayClient) -> None:
        await client.sendAndExpect(self.identity.setSourceCommand)
        if self.role is LinkRole.EVENTS:
            await client.eventsMode()

    def _abortTransport(self, client: OverlayClient) -> None:
        client.abort(f'{self.name} link teardown')

    async def _closeTransport(self, client: OverlayClient) -> None:
        await client.close()

    def _onDisconnected(self) -> None:
        for link in self._dependents:
            link.abort(f'{self.name} link lost')


    # --- Event dispatch ---
    async def _dispatchEvent(self, client: OverlayClient, line: str) -> None:
        if client is not self._transport or self._onEvent is None:
            return
        self.eventsIn += 1
        result = self._onEvent(line)
        if asyncio.iscoroutine(result):
            await result
