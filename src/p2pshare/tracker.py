import asyncio
import logging
from asyncio import StreamReader, StreamWriter
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .config import PeerConfig
from .errors import HandshakeError, ProtocolViolation, RemoteError, TransportError
from .file_manager import SharedFile
from .peer import PeerAddress
from .protocol import (
    Command, Message, close_writer, read_line, read_message, send_message, with_timeout
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileEntry:
    """One line of a LIST reply."""
    name: str
    size: int


class TrackerSession:
    """Client half of the tracker directory protocol over one connection."""

    def __init__(self, config: PeerConfig):
        self.config = config
        self.greeting: Optional[str] = None
        self._reader: Optional[StreamReader] = None
        self._writer: Optional[StreamWriter] = None

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            await self.quit()
        else:
            await self.close()

    async def connect(self):
        """Open the connection, read the greeting and perform CONNECT/HELLO."""
        host, port = self.config.tracker_host, self.config.tracker_port
        try:
            self._reader, self._writer = await with_timeout(
                asyncio.open_connection(host, port), self.config.timeout,
                f'connecting to tracker {host}:{port}'
            )
        except OSError as e:
            raise TransportError(f'Failed to connect to tracker {host}:{port}: {e}') from e

        try:
            self.greeting = (await read_line(self._reader, self.config.timeout)).strip()
            logger.info(f'Tracker says: {self.greeting}')

            await self._send(Command.CONNECT)
            reply = (await read_line(self._reader, self.config.timeout)).strip('\r\n')
            if reply != Command.HELLO:
                raise HandshakeError(Command.HELLO.value, reply)
        except Exception:
            await self.close()
            raise
        logger.info(f'Successfully connected to tracker at {host}:{port}')

    async def add(self, shared: SharedFile):
        """Index one local file with the tracker."""
        await self._send(Command.ADD, shared.name, shared.hash, shared.size)
        self._expect_ok(await self._receive())

    async def index(self, files: Iterable[SharedFile]) -> int:
        """Index every file, stopping at the first rejected one."""
        total = 0
        for shared in files:
            await self.add(shared)
            total += 1
            logger.debug(f'Indexed {shared.name} [hash: {shared.hash}] [size: {shared.size}]')
        logger.info(f'Successfully indexed {total} files with tracker')
        return total

    async def remove(self, shared: SharedFile):
        """Withdraw one file from the tracker's index."""
        await self._send(Command.DELETE, shared.name, shared.hash)
        self._expect_ok(await self._receive())

    async def list(self) -> List[FileEntry]:
        """Fetch every file known to the tracker."""
        await self._send(Command.LIST)
        entries = []
        for message in await self._receive_until_terminal():
            entries.append(FileEntry(name=message.command, size=self._parse_size(message)))
        logger.info(f'Received list of {len(entries)} files from tracker')
        return entries

    async def request(self, filename: str) -> List[Tuple[PeerAddress, int]]:
        """Resolve ``filename`` to the peers serving it and its declared size."""
        await self._send(Command.REQUEST, filename)
        peers = []
        for message in await self._receive_until_terminal():
            address = PeerAddress(host=message.command,
                                  control_port=self.config.control_port,
                                  data_port=self.config.data_port)
            peers.append((address, self._parse_size(message)))
        logger.info(f'Tracker returned {len(peers)} peers for {filename}')
        return peers

    async def quit(self):
        """Send QUIT and require GOODBYE."""
        try:
            await self._send(Command.QUIT)
            reply = (await read_line(self._reader, self.config.timeout)).strip('\r\n')
            if reply != Command.GOODBYE:
                raise HandshakeError(Command.GOODBYE.value, reply)
            logger.info('Successfully closed connection to tracker')
        finally:
            await self.close()

    async def close(self):
        await close_writer(self._writer)
        self._reader = self._writer = None

    async def _send(self, command: str, *args):
        if not self.connected:
            raise TransportError('Not connected to tracker')
        await send_message(self._writer, command, *args, timeout=self.config.timeout)

    async def _receive(self) -> Message:
        return await read_message(self._reader, self.config.timeout)

    async def _receive_until_terminal(self) -> List[Message]:
        """Collect reply lines up to OK, raising on ERROR."""
        messages = []
        while True:
            message = await self._receive()
            if message.is_terminal():
                self._expect_ok(message)
                return messages
            messages.append(message)

    @staticmethod
    def _expect_ok(message: Message):
        if message.command == Command.ERROR:
            raise RemoteError(message.arg(0))
        if message.command != Command.OK:
            raise ProtocolViolation(f'Unexpected tracker reply: {" ".join(message.tokens)}')

    @staticmethod
    def _parse_size(message: Message) -> int:
        size = message.arg(0)
        if size is None or not size.isdigit():
            raise ProtocolViolation(f'Malformed tracker entry: {" ".join(message.tokens)}')
        return int(size)
