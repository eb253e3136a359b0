"""
ReconnectingLink: Shared connection lifecycle for the overlay and broker links.

State machine (no terminal state, runs until stop()):

    DISCONNECTED --start/timer--> CONNECTING --open + handshake ok--> READY
         ^                            |                                  |
         +------- close / error ------+----------------------------------+

- Every connect attempt uses a fresh transport object; notifications from a replaced transport are ignored.
- Close and error notifications each have a fixed reconnect delay (closeDelay / errorDelay).
- At most one reconnect timer is outstanding per link; failures while it is pending do not add another.
- Dispatch points: _handleClose(transport), _handleError(transport, e), plus the subclass hooks.

Property of Uncompromising Sensors LLC.
"""

# Imports
import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional

# Local imports
from bridgeSdk.logging import getLogger


class ConnectionState(str, Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    READY = 'ready'


class ReconnectingLink(ABC):
    """
    Owns one persistent connection and keeps it alive.

    Subclasses implement:
    - _createTransport(): new unconnected transport wired to _handleClose/_handleError
    - _openTransport(transport): connect it
    - _onConnected(transport): handshake before the link counts as READY (optional)
    - _abortTransport(transport) / _closeTransport(transport): immediate / graceful teardown
    """

    def __init__(self, name: str, closeDelay: float = 1.0, errorDelay: float = 1.0):
        self.log = getLogger()
        self.name = name
        self.closeDelay = closeDelay
        self.errorDelay = errorDelay

        self._state = ConnectionState.DISCONNECTED
        self._transport: Optional[Any] = None
        self._connectTask: Optional[asyncio.Task] = None
        self._reconnectHandle: Optional[asyncio.TimerHandle] = None
        self._running = False

        # Stats
        self.connectAttempts = 0
        self.failures = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def isReady(self) -> bool:
        return self._state is ConnectionState.READY

    @property
    def isRunning(self) -> bool:
        return self._running

    @property
    def reconnectPending(self) -> bool:
        return self._reconnectHandle is not None


    # --- Subclass hooks ---
    @abstractmethod
    def _createTransport(self) -> Any:
        pass

    @abstractmethod
    async def _openTransport(self, transport: Any) -> None:
        pass

    async def _onConnected(self, transport: Any) -> None:
        pass

    @abstractmethod
    def _abortTransport(self, transport: Any) -> None:
        pass

    @abstractmethod
    async def _closeTransport(self, transport: Any) -> None:
        pass

    def _onDisconnected(self) -> None:
        pass


    # --- Lifecycle ---
    def start(self) -> None:
        """Begin connecting (must be called with a running event loop)."""
        if self._running:
            return
        self._running = True
        self._connect()

    async def stop(self) -> None:
        """Stop for good: cancel any pending reconnect and close the current transport."""
        self._running = False
        if self._reconnectHandle is not None:
            self._reconnectHandle.cancel()
            self._reconnectHandle = None

        task, self._connectTask = self._connectTask, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        transport, self._transport = self._transport, None
        self._setState(ConnectionState.DISCONNECTED)
        if transport is not None:
            await self._closeTransport(transport)
        self.log.info(f'{self.name} link stopped', link=self.name)

    def abort(self, reason: str) -> None:
        """Drop the current connection (if any) and reconnect after closeDelay."""
        if self._transport is not None:
            self.log.warning(f'Destroying {self.name} connection: {reason}', link=self.name)
        self._fail(self._transport, self.closeDelay)


    # --- Dispatch points ---
    def _handleClose(self, transport: Any) -> None:
        self._fail(transport, self.closeDelay)

    def _handleError(self, transport: Any, error: BaseException) -> None:
        self._fail(transport, self.errorDelay, error)


    # --- Internals ---
    def _connect(self) -> None:
        self._reconnectHandle = None
        if not self._running:
            return

        self.connectAttempts += 1
        self._setState(ConnectionState.CONNECTING)
        self.log.info(f'Connecting {self.name}...', link=self.name, attempt=self.connectAttempts)
        try:
            transport = self._createTransport()
        except Exception as e:
            self.log.error(f'Cannot create {self.name} transport: {e}', link=self.name)
            self._fail(None, self.errorDelay, e)
            return

        self._transport = transport
        self._connectTask = asyncio.create_task(self._runConnect(transport))

    async def _runConnect(self, transport: Any) -> None:
        try:
            await self._openTransport(transport)
            await self._onConnected(transport)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._fail(transport, self.errorDelay, e)
            return

        if transport is not self._transport:
            return
        self._setState(ConnectionState.READY)
        self.log.info(f'{self.name} ready', link=self.name)

    def _fail(self, transport: Any, delay: float, error: Optional[BaseException] = None) -> None:
        # Late notification from a transport this link already replaced
        if transport is not self._transport:
            return

        if self._state is not ConnectionState.DISCONNECTED or transport is not None:
            self.failures += 1
            if error is not None:
                self.log.warning(f"{self.name} connection error '{error}', reconnecting...", link=self.name, delay=delay)
            else:
                self.log.warning(f'{self.name} connection closed, reconnecting...', link=self.name, delay=delay)

        self._teardown()
        self._setState(ConnectionState.DISCONNECTED)
        self._onDisconnected()
        self._scheduleReconnect(delay)

    def _teardown(self) -> None:
        transport, self._transport = self._transport, None
        task, self._connectTask = self._connectTask, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if transport is not None:
            self._abortTransport(transport)

    def _scheduleReconnect(self, delay: float) -> None:
        if not self._running or self._reconnectHandle is not None:
            return
        self._reconnectHandle = asyncio.get_running_loop().call_later(delay, self._connect)

    def _setState(self, state: ConnectionState) -> None:
        if state is not self._state:
            self.log.debug(f'{self.name}: {self._state.value} -> {state.value}', link=self.name)
            self._state = state
