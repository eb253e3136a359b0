"""
Codec: Translation between overlay protocol lines and broker messages.

Overlay -> broker (stringToMessage):
    '<source> <command> <args...>' -> BrokerMessage(topic, data, headers={'x-overlay-source': source})
    Unmapped commands become 'misc:unknown_command' {command, args}.

Broker -> overlay (messageToString):
    BrokerMessage -> single command line, or None when the message has no overlay equivalent.

Both directions are pure; the only outside input is the wall clock, which callers may pass in.

Property of Uncompromising Sensors LLC.
"""

# Imports
from datetime import datetime, time, timezone
from typing import Callable, Dict, Optional

# Local imports
from bridgeSdk.messages import BrokerMessage
from bridgeSdk.transport.overlayTransport import messageEncode
from .identity import SOURCE_HEADER


CLOCK_COUNTDOWN_SECONDS = 150  # 2:30 match clock


class LineSplitter:
    """
    Minimal tokenizer for overlay lines: space-separated parts followed by a free-form remainder.

    takePart() returns the next part ('' once exhausted), takeRest() returns everything left.
    """

    def __init__(self, line: str):
        self._line = line
        self._pos = 0

    def takePart(self) -> str:
        line, pos = self._line, self._skipSpaces(self._pos)
        end = line.find(' ', pos)
        if end < 0:
            end = len(line)
        self._pos = self._skipSpaces(end)
        return line[pos:end]

    def takeRest(self) -> str:
        rest = self._line[self._skipSpaces(self._pos):]
        self._pos = len(self._line)
        return rest

    @property
    def exhausted(self) -> bool:
        return self._skipSpaces(self._pos) >= len(self._line)

    def _skipSpaces(self, pos: int) -> int:
        while pos < len(self._line) and self._line[pos] == ' ':
            pos += 1
        return pos


def isoTimestamp(moment: datetime) -> str:
    """ISO-8601 UTC with milliseconds and 'Z' suffix; naive datetimes are taken as local time."""
    utc = moment.astimezone(timezone.utc)
    return f"{utc.strftime('%Y-%m-%dT%H:%M:%S')}.{utc.microsecond // 1000:03d}Z"


# ===== Overlay -> broker =====
Decoder = Callable[[str, LineSplitter, datetime], BrokerMessage]


def _decodeServerTime(command: str, parts: LineSplitter, now: datetime) -> BrokerMessage:
    # Wall-clock date, overlay server's time of day
    rest = parts.takeRest()
    try:
        hours, minutes, seconds = (int(p, 10) for p in rest.split(':'))
        timeOfDay = time(hours, minutes, seconds, now.microsecond)
    except (ValueError, OverflowError):
        return _unknownCommand(command, rest)
    # Built from date + time so the UTC offset is resolved for that time of day (DST)
    stamp = datetime.combine(now.date(), timeOfDay, tzinfo=now.tzinfo)
    return BrokerMessage('time:tick', {'timestamp': isoTimestamp(stamp)})


def _decodeShowClock(command: str, parts: LineSplitter, now: datetime) -> BrokerMessage:
    verb = parts.takeRest()
    data = {}
    if verb in ('arm', 'start'):
        data['countdown'] = CLOCK_COUNTDOWN_SECONDS
    data['timestamp'] = isoTimestamp(now)
    return BrokerMessage(f'clock:{verb}', data)


def _decodeShowScores(command: str, parts: LineSplitter, now: datetime) -> BrokerMessage:
    verb = parts.takePart()
    if verb == 'show':
        return BrokerMessage('scores:show', {'type': parts.takeRest()})  # qualifying etc.
    return BrokerMessage('scores:hide', {'when': 'end' if verb == 'hidelater' else 'now'})


def _decodeShowImage(command: str, parts: LineSplitter, now: datetime) -> BrokerMessage:
    name = parts.takeRest()
    if name:
        return BrokerMessage('image:show', {'name': name})
    return BrokerMessage('image:hide')


def _decodeShowHide(command: str, parts: LineSplitter, now: datetime) -> BrokerMessage:
    # 'showtwitter' -> 'twitter', 'showtime' -> 'time'
    verb = 'show' if parts.takeRest() == 'True' else 'hide'
    return BrokerMessage(f'{command[len("show"):]}:{verb}')


def _decodeDebugMessage(command: str, parts: LineSplitter, now: datetime) -> BrokerMessage:
    return BrokerMessage('debug:message', parts.takeRest())


def _decodeShowMessage(command: str, parts: LineSplitter, now: datetime) -> BrokerMessage:
    hideNow = parts.takePart() == 'True'
    if hideNow:
        return BrokerMessage('announcement:hide')
    # Body is used as received, not passed through messageDecode()
    return BrokerMessage('announcement:show', {'main': parts.takeRest()})


def _unknownCommand(command: str, args: str) -> BrokerMessage:
    return BrokerMessage('misc:unknown_command', {'command': command, 'args': args})


_DECODERS: Dict[str, Decoder] = {
    'servertime': _decodeServerTime,
    'showclock': _decodeShowClock,
    'showscores': _decodeShowScores,
    'showimage': _decodeShowImage,
    'showtwitter': _decodeShowHide,
    'showtime': _decodeShowHide,
    'debugmessage': _decodeDebugMessage,
    'showmessage': _decodeShowMessage,
}


def stringToMessage(line: str, now: Optional[datetime] = None) -> BrokerMessage:
    """Translate one overlay event line into a broker message tagged with its overlay source."""
    if now is None:
        now = datetime.now()  # naive local time

    parts = LineSplitter(line)
    source = parts.takePart()
    command = parts.takePart().lower()

    decoder = _DECODERS.get(command)
    if decoder is None:
        message = _unknownCommand(command, parts.takeRest())
    else:
        message = decoder(command, parts, now)

    message.headers[SOURCE_HEADER] = source
    return message


# ===== Broker -> overlay =====
def _usableName(data) -> Optional[str]:
    name = data.get('name') if isinstance(data, dict) else None
    # Numeric names are sent as their text form
    if isinstance(name, (int, float)) and not isinstance(name, bool) and name:
        name = str(name)
    if isinstance(name, str) and name and '\n' not in name and '\r' not in name:
        return name
    return None


def messageToString(message: BrokerMessage) -> Optional[str]:
    """Translate a broker message into an overlay command line, or None if it has no overlay equivalent."""
    namespace, verb = message.namespace, message.verb
    data = message.data

    if namespace == 'clock':
        if verb in ('arm', 'start', 'stop'):
            return f'{verb}clock'

    elif namespace in ('time', 'twitter'):
        if verb in ('show', 'hide'):
            return f'{verb}{namespace}'

    elif namespace == 'announcement':
        if verb == 'show' and isinstance(data, dict) and isinstance(data.get('main'), str):
            return f"directmsg {messageEncode(data['main'])}"

    elif namespace == 'image':
        if verb == 'show':
            name = _usableName(data)
            return f'showimage {name}' if name else 'hideimage'
        if verb == 'hide':
            return 'hideimage'

    return None
