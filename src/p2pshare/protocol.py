import asyncio
import enum
from asyncio import StreamReader, StreamWriter
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .errors import ProtocolViolation, TransportError

ENCODING = 'utf-8'
LINE_END = b'\n'


class Command(str, enum.Enum):
    # peer protocol
    OPEN = 'OPEN'
    HELLO = 'HELLO'
    GET = 'GET'
    CLOSE = 'CLOSE'
    GOODBYE = 'GOODBYE'
    # tracker protocol
    CONNECT = 'CONNECT'
    ADD = 'ADD'
    DELETE = 'DELETE'
    LIST = 'LIST'
    REQUEST = 'REQUEST'
    QUIT = 'QUIT'
    # replies
    OK = 'OK'
    ERROR = 'ERROR'


def _token(value) -> str:
    return value.value if isinstance(value, enum.Enum) else str(value)


def encode(command: str, *args) -> str:
    """Join a command and its arguments with single spaces."""
    tokens = [_token(command)] + [_token(arg) for arg in args]
    for token in tokens:
        if not token or ' ' in token or '\n' in token or '\r' in token:
            raise ValueError(f'Invalid protocol token: {token!r}')
    return ' '.join(tokens)


def decode(line: str) -> List[str]:
    """Split a line into tokens; blank lines give an empty list."""
    if not line.strip():
        return []
    return [token for token in line.strip('\r\n').split(' ') if token]


@dataclass
class Message:
    """One line of the control channel."""
    command: str
    args: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def tokens(self) -> List[str]:
        return [self.command, *self.args]

    def arg(self, index: int) -> Optional[str]:
        return self.args[index] if index < len(self.args) else None

    def is_terminal(self) -> bool:
        """True for the OK/ERROR line that ends a multi-line reply."""
        return self.command in (Command.OK, Command.ERROR)

    def serialize(self) -> bytes:
        return encode(self.command, *self.args).encode(ENCODING) + LINE_END

    @classmethod
    def deserialize(cls, line: str) -> 'Message':
        tokens = decode(line)
        if not tokens:
            raise ProtocolViolation('Received an empty protocol line')
        return cls(command=tokens[0], args=tuple(tokens[1:]))


async def with_timeout(awaitable, timeout: Optional[float], what: str):
    """Await with an optional deadline, surfacing expiry as a transport failure."""
    try:
        if timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as e:
        raise TransportError(f'Timed out after {timeout}s while {what}') from e


async def read_line(reader: StreamReader, timeout: Optional[float] = None) -> str:
    """Read one raw line, raising TransportError on EOF or reset."""
    try:
        data = await with_timeout(reader.readline(), timeout, 'waiting for a line')
    except (ConnectionError, ValueError) as e:
        raise TransportError(f'Failed to read a line: {e}') from e
    if not data:
        raise TransportError('Connection closed by remote side')
    return data.decode(ENCODING, errors='replace')


async def read_message(reader: StreamReader, timeout: Optional[float] = None) -> Message:
    return Message.deserialize(await read_line(reader, timeout))


async def send_message(writer: StreamWriter, command: str, *args,
                       timeout: Optional[float] = None):
    """Write one framed line and wait for it to drain."""
    writer.write(Message(command, tuple(args)).serialize())
    try:
        await with_timeout(writer.drain(), timeout, f'sending {_token(command)}')
    except ConnectionError as e:
        raise TransportError(f'Connection failed while sending {_token(command)}: {e}') from e


async def close_writer(writer: Optional[StreamWriter]):
    """Close a stream, ignoring errors from an already broken connection."""
    if writer is None or writer.is_closing():
        return
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
