"""
Overlay Transport - asyncio client for the overlay server's line protocol.

Protocol:
    - UTF-8 lines terminated by '\\n' (a trailing '\\r' is stripped)
    - Commands are single lines; each is acknowledged, in order, by a status line '<code> <text>' (e.g. '200 OK')
    - After eventsMode() the server streams event lines '<source> <command> <args...>'

API:
    client = OverlayClient(host, port, onEvent=..., onClose=..., onError=...)
    await client.connect()
    await client.sendAndExpect('setsource proxy-1234', 200)   # raises OverlayCommandError / asyncio.TimeoutError
    await client.eventsMode()
    client.abort()                                            # sync teardown, no close notification

Notifications (sync or async callables, first argument is the client):
    onEvent(client, line), onClose(client), onError(client, exception)

Property of Uncompromising Sensors LLC.
"""

# Imports
import asyncio, re
from collections import deque
from typing import Any, Callable, Deque, Optional

# Local imports
from bridgeSdk.logging import getLogger


STATUS_LINE = re.compile(r'^(\d{3})(?: (.*))?$')
EVENTS_COMMAND = 'events'
DEFAULT_EXPECTED_CODE = 200

_ENCODE_MAP = {'\\': '\\\\', '\n': '\\n', '\r': '\\r'}
_DECODE_MAP = {'\\': '\\', 'n': '\n', 'r': '\r'}


def messageEncode(text: str) -> str:
    """Escape free text so it fits on a single protocol line."""
    return ''.join(_ENCODE_MAP.get(ch, ch) for ch in text)


def messageDecode(text: str) -> str:
    """Inverse of messageEncode(); unknown escapes are kept verbatim."""
    out = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == '\\' and i + 1 < len(text) and text[i + 1] in _DECODE_MAP:
            out.append(_DECODE_MAP[text[i + 1]])
            i += 2
            continue
        out.append(ch)
        i += 1
    return ''.join(out)


class OverlayCommandError(Exception):
    """The overlay server answered a command with an unexpected status code."""

    def __init__(self, command: str, code: int, text: str = ''):
        super().__init__(f"'{command}' failed: {code} {text}".rstrip())
        self.command = command
        self.code = code
        self.text = text


class _PendingCommand:
    __slots__ = ('command', 'expectedCode', 'future')

    def __init__(self, command: str, expectedCode: int, future: asyncio.Future):
        self.command = command
        self.expectedCode = expectedCode
        self.future = future


class OverlayClient:
    """
    Single TCP connection to the overlay server.

    States: CLOSED -> CONNECTING -> READY -> CLOSED. A client is used for one connection only;
    the owning link creates a fresh client for every reconnect.
    """

    def __init__(self, host: str = 'localhost', port: int = 5000, connectTimeout: float = 5.0,
                 ackTimeout: float = 2.0, encoding: str = 'utf-8',
                 onEvent: Optional[Callable] = None, onClose: Optional[Callable] = None,
                 onError: Optional[Callable] = None):
        self.log = getLogger()
        self.host = host
        self.port = int(port)
        self.connectTimeout = connectTimeout
        self.ackTimeout = ackTimeout
        self.encoding = encoding

        self._onEvent = onEvent
        self._onClose = onClose
        self._onError = onError

        self._state = 'CLOSED'
        self._eventsMode = False
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._readerTask: Optional[asyncio.Task] = None
        self._pending: Deque[_PendingCommand] = deque()

        # Stats
        self.linesIn = 0
        self.commandsOut = 0

    @property
    def state(self) -> str:
        return self._state

    @property
    def isConnected(self) -> bool:
        return self._state == 'READY'

    @property
    def inEventsMode(self) -> bool:
        return self._eventsMode

    @property
    def endpoint(self) -> str:
        return f"{self.host}:{self.port}"


    # --- Lifecycle ---
    async def connect(self) -> None:
        """Open the TCP connection and start the reader task."""
        if self._state != 'CLOSED':
            raise RuntimeError(f'OverlayClient already {self._state.lower()}')

        self._state = 'CONNECTING'
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=self.connectTimeout)
        except BaseException:
            self._state = 'CLOSED'
            raise

        if self._state != 'CONNECTING':
            # Aborted while the socket was opening
            writer.close()
            raise ConnectionError('Overlay connection aborted')

        self._reader, self._writer = reader, writer
        self._state = 'READY'
        self._readerTask = asyncio.create_task(self._readLoop())
        self.log.debug('Overlay socket open', endpoint=self.endpoint)

    def abort(self, reason: str = 'Overlay connection aborted') -> None:
        """Tear the connection down immediately; pending commands fail with ConnectionError."""
        self._teardown(ConnectionError(reason))

    async def close(self) -> None:
        """abort() and wait for the socket to close."""
        writer = self._writer
        self.abort('Overlay connection closed locally')
        if writer is not None:
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass


    # --- Commands ---
    async def sendAndExpect(self, command: str, expectedCode: int = DEFAULT_EXPECTED_CODE,
                            timeout: Optional[float] = None) -> str:
        """
        Send one command line and wait for its acknowledgement.

        Returns:
            Status text of the acknowledgement
        Raises:
            ConnectionError: not connected, or the connection dropped while waiting
            OverlayCommandError: acknowledged with a different status code
            asyncio.TimeoutError: no acknowledgement within timeout (default: ackTimeout)
        """
        if '\n' in command or '\r' in command:
            raise ValueError('Overlay commands must be a single line, use messageEncode() for free text')

        future = asyncio.get_running_loop().create_future()
        self._write(command)
        self._pending.append(_PendingCommand(command, expectedCode, future))
        try:
            await self._writer.drain()
        except Exception:
            future.cancel()
            raise

        # A timed-out slot stays queued (cancelled) so its late answer is not matched to the next command
        return await asyncio.wait_for(future, timeout if timeout is not None else self.ackTimeout)

    async def eventsMode(self) -> None:
        """Switch this connection into event-streaming mode."""
        self._write(EVENTS_COMMAND)
        await self._writer.drain()
        self._eventsMode = True
        self.log.debug('Overlay events mode enabled', endpoint=self.endpoint)

    def _write(self, line: str) -> None:
        if not self.isConnected or self._writer is None:
            raise ConnectionError('Overlay connection not open')
        self._writer.write((line + '\n').encode(self.encoding))
        self.commandsOut += 1


    # --- Receive path ---
    async def _readLoop(self) -> None:
        try:
            while True:
                raw = await self._reader.readline()
                if not raw:
                    break
                self.linesIn += 1
                line = raw.decode(self.encoding, errors='replace').rstrip('\r\n')
                if line:
                    await self._handleLine(line)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._state == 'CLOSED':
                return
            self._teardown(ConnectionError(f'Overlay connection error: {e}'))
            await self._notify(self._onError, e)
            return

        if self._state != 'CLOSED':
            self._teardown(ConnectionError('Overlay connection closed by server'))
            await self._notify(self._onClose)

    async def _handleLine(self, line: str) -> None:
        match = STATUS_LINE.match(line)
        if match:
            self._resolvePending(int(match.group(1)), match.group(2) or '')
        elif self._eventsMode:
            await self._notify(self._onEvent, line)
        else:
            self.log.debug('Ignoring unexpected overlay line', line=line)

    def _resolvePending(self, code: int, text: str) -> None:
        if not self._pending:
            self.log.debug('Unsolicited overlay status', code=code, text=text)
            return
        pending = self._pending.popleft()
        if pending.future.done():
            return
        if code == pending.expectedCode:
            pending.future.set_result(text)
        else:
            pending.future.set_exception(OverlayCommandError(pending.command, code, text))

    async def _notify(self, callback: Optional[Callable], *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(self, *args)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            self.log.error(f'Overlay notification handler error: {e}', endpoint=self.endpoint, exc_info=True)


    # --- Teardown ---
    def _teardown(self, reason: Exception) -> None:
        self._state = 'CLOSED'
        self._eventsMode = False

        task, self._readerTask = self._readerTask, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

        writer, self._writer = self._writer, None
        self._reader = None
        if writer is not None:
            writer.close()

        while self._pending:
            pending = self._pending.popleft()
            if not pending.future.done():
                pending.future.set_exception(reason)
