import asyncio
import logging
from asyncio import StreamReader, StreamWriter
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from .config import PeerConfig
from .errors import (
    HandshakeError, P2PError, ProtocolViolation, RemoteError, TransportError
)
from .file_manager import ShareDirectory
from .peer import PeerAddress
from .protocol import (
    Command, close_writer, read_line, read_message, send_message, with_timeout
)

logger = logging.getLogger(__name__)

READ_CHUNK = 64 * 1024


@dataclass(frozen=True)
class TransferDescriptor:
    """A file to pull and the size the remote side announced for it."""
    filename: str
    declared_size: int

    def __post_init__(self):
        if self.declared_size < 0:
            raise ValueError(f'Declared size must be non-negative: {self.declared_size}')


@dataclass
class TransferResult:
    descriptor: TransferDescriptor
    path: Path
    received: int

    @property
    def complete(self) -> bool:
        return self.received == self.descriptor.declared_size


class PeerFetcher:
    """Pulls single files from remote peer file servers."""

    def __init__(self, config: PeerConfig, share: Optional[ShareDirectory] = None):
        self.config = config
        self.share = share or ShareDirectory(config.share_path)

    async def fetch(self, address: PeerAddress, descriptor: TransferDescriptor) -> TransferResult:
        """Download ``descriptor.filename`` from ``address`` into the share directory."""
        limit = self.config.max_transfer_size
        if limit is not None and descriptor.declared_size > limit:
            raise ProtocolViolation(
                f'Declared size {descriptor.declared_size} of {descriptor.filename} '
                f'exceeds the limit of {limit} bytes'
            )
        # validate the destination before touching the network
        self.share.path_for(descriptor.filename)

        control_writer = data_writer = None
        try:
            control_reader, control_writer = await self._connect(address.host, address.control_port)
            await self._handshake(control_reader, control_writer)

            data_reader, data_writer = await self._connect(address.host, address.data_port)
            await send_message(control_writer, Command.GET, descriptor.filename,
                               timeout=self.config.timeout)
            logger.info(f'Initiating transfer of {descriptor.filename} from {address.host}')

            payload = await self._receive(data_reader, descriptor.declared_size)
            await close_writer(data_writer)

            if self.config.confirm_transfer:
                await self._await_confirmation(control_reader, descriptor.filename)

            await self._close_session(control_reader, control_writer)
        finally:
            await close_writer(data_writer)
            await close_writer(control_writer)

        path = await self.share.write_file(descriptor.filename, payload)
        result = TransferResult(descriptor=descriptor, path=path, received=len(payload))
        if result.complete:
            logger.info(f'File transfer complete: {descriptor.filename} ({result.received} bytes)')
        else:
            logger.warning(f'Short transfer of {descriptor.filename}: received {result.received} '
                           f'of {descriptor.declared_size} bytes')
        return result

    async def _connect(self, host: str, port: int) -> Tuple[StreamReader, StreamWriter]:
        try:
            return await with_timeout(
                asyncio.open_connection(host, port), self.config.timeout,
                f'connecting to {host}:{port}'
            )
        except OSError as e:
            raise TransportError(f'Failed to connect to peer {host}:{port}: {e}') from e

    async def _handshake(self, reader: StreamReader, writer: StreamWriter):
        await send_message(writer, Command.OPEN, timeout=self.config.timeout)
        line = (await read_line(reader, self.config.timeout)).strip('\r\n')
        if line != Command.HELLO:
            raise HandshakeError(Command.HELLO.value, line)

    async def _receive(self, reader: StreamReader, declared_size: int) -> bytes:
        """Fill a buffer of exactly ``declared_size`` bytes or stop at end of stream."""
        buffer = bytearray(declared_size)
        view = memoryview(buffer)
        current = 0
        try:
            while current < declared_size:
                chunk = await with_timeout(
                    reader.read(min(READ_CHUNK, declared_size - current)),
                    self.config.timeout, 'receiving file data'
                )
                if not chunk:
                    break
                view[current:current + len(chunk)] = chunk
                current += len(chunk)
        except ConnectionError as e:
            raise TransportError(f'Data connection failed after {current} bytes: {e}') from e
        finally:
            view.release()
        return bytes(buffer[:current])

    async def _await_confirmation(self, reader: StreamReader, filename: str):
        reply = await read_message(reader, self.config.timeout)
        if reply.command == Command.ERROR:
            raise RemoteError(reply.arg(0))
        if reply.command != Command.OK:
            raise ProtocolViolation(f'Unexpected reply to GET {filename}: {reply.command}')

    async def _close_session(self, reader: StreamReader, writer: StreamWriter):
        """Send CLOSE and wait for GOODBYE, skipping any unread reply lines."""
        try:
            await send_message(writer, Command.CLOSE, timeout=self.config.timeout)
            while True:
                line = (await read_line(reader, self.config.timeout)).strip('\r\n')
                if line == Command.GOODBYE:
                    return
        except P2PError as e:
            logger.warning(f'Peer did not close the session cleanly: {e}')
