import asyncio
import logging
from asyncio import StreamReader, StreamWriter
from dataclasses import dataclass
from typing import Dict, Optional, Set

from .config import CONTROL_PORT, DATA_PORT, PeerConfig
from .errors import ErrorCode, LocalResourceError, P2PError, TransportError
from .file_manager import ShareDirectory
from .protocol import (
    Command, Message, close_writer, decode, read_line, send_message, with_timeout
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeerAddress:
    """Where a remote peer serves files."""
    host: str
    control_port: int = CONTROL_PORT
    data_port: int = DATA_PORT


class PeerFileServer:
    """
    Answers other peers' GET requests from the local share directory.

    Every accepted control connection runs in its own task. Data connections
    are accepted independently and parked per remote host until a GET from
    that host claims one or the configured timeout closes them.
    """

    def __init__(self, config: PeerConfig, share: Optional[ShareDirectory] = None):
        self.config = config
        self.share = share or ShareDirectory(config.share_path)

        self._control_server = None
        self._data_server = None
        self._pending_data: Dict[str, asyncio.Queue] = {}
        self._claiming: Dict[str, int] = {}
        self._control_writers: Set[StreamWriter] = set()

    @property
    def running(self) -> bool:
        return self._control_server is not None

    @property
    def control_port(self) -> int:
        return self._control_server.sockets[0].getsockname()[1]

    @property
    def data_port(self) -> int:
        return self._data_server.sockets[0].getsockname()[1]

    async def start(self):
        """Bind the control and data listeners."""
        self._data_server = await asyncio.start_server(
            self._handle_data_connection, self.config.bind_host, self.config.data_port
        )
        self._control_server = await asyncio.start_server(
            self._handle_control_connection, self.config.bind_host, self.config.control_port
        )
        logger.info(f'Peer file server listening on control port {self.control_port}, '
                    f'data port {self.data_port}, sharing {self.share.path}')

    async def serve_forever(self):
        if self._control_server is None:
            await self.start()
        async with self._control_server:
            await self._control_server.serve_forever()

    async def stop(self):
        """Close both listeners and every connection still open."""
        for server in (self._control_server, self._data_server):
            if server:
                server.close()

        for writer in list(self._control_writers):
            await close_writer(writer)
        for queue in self._pending_data.values():
            while not queue.empty():
                _, writer, expiry = queue.get_nowait()
                if expiry:
                    expiry.cancel()
                await close_writer(writer)
        self._pending_data.clear()

        for server in (self._control_server, self._data_server):
            if server:
                await server.wait_closed()
        self._control_server = self._data_server = None
        logger.info('Peer file server stopped')

    async def _handle_data_connection(self, reader: StreamReader, writer: StreamWriter):
        peer_address = writer.get_extra_info('peername')
        logger.debug(f'Data connection from {peer_address}')
        host = peer_address[0]
        expiry = None
        if self.config.timeout is not None:
            expiry = asyncio.get_running_loop().call_later(
                self.config.timeout, self._expire_data_connection, host, writer
            )
        self._pending_for(host).put_nowait((reader, writer, expiry))

    def _pending_for(self, host: str) -> asyncio.Queue:
        if host not in self._pending_data:
            self._pending_data[host] = asyncio.Queue()
        return self._pending_data[host]

    def _release_if_idle(self, host: str):
        queue = self._pending_data.get(host)
        if queue is not None and queue.empty() and host not in self._claiming:
            del self._pending_data[host]

    def _expire_data_connection(self, host: str, writer: StreamWriter):
        """Close a data connection no GET claimed in time."""
        logger.warning(f'Closing unclaimed data connection from {host}')
        writer.close()
        queue = self._pending_data.get(host)
        if queue is None:
            return
        live = []
        while not queue.empty():
            entry = queue.get_nowait()
            if not entry[1].is_closing():
                live.append(entry)
        for entry in live:
            queue.put_nowait(entry)
        self._release_if_idle(host)

    async def _claim_data_connection(self, host: str) -> StreamWriter:
        """Take the oldest live data connection opened by ``host``."""
        queue = self._pending_for(host)
        self._claiming[host] = self._claiming.get(host, 0) + 1
        try:
            while True:
                reader, writer, expiry = await with_timeout(
                    queue.get(), self.config.timeout, f'waiting for a data connection from {host}'
                )
                if expiry:
                    expiry.cancel()
                if writer.is_closing() or reader.at_eof():
                    logger.debug(f'Discarding stale data connection from {host}')
                    await close_writer(writer)
                    continue
                return writer
        finally:
            self._claiming[host] -= 1
            if not self._claiming[host]:
                del self._claiming[host]
            self._release_if_idle(host)

    async def _handle_control_connection(self, reader: StreamReader, writer: StreamWriter):
        """Handle one requesting peer from handshake to GOODBYE."""
        peer_address = writer.get_extra_info('peername')
        host = peer_address[0]
        logger.info(f'Incoming control connection from {peer_address}')
        self._control_writers.add(writer)

        try:
            if await self._await_handshake(reader, writer):
                logger.info(f'Handshake complete with {peer_address}')
                await self._command_loop(reader, writer, host)
        except P2PError as e:
            logger.error(f'Control connection with {peer_address} ended: {e}')
        finally:
            await self._say_goodbye(writer)
            self._control_writers.discard(writer)
            await close_writer(writer)
            logger.info(f'Connection closed for {peer_address}')

    async def _await_handshake(self, reader: StreamReader, writer: StreamWriter) -> bool:
        """Wait for OPEN (True) or CLOSE (False), discarding anything else."""
        while True:
            line = (await read_line(reader, self.config.timeout)).strip('\r\n')
            if line == Command.OPEN:
                await send_message(writer, Command.HELLO, timeout=self.config.timeout)
                return True
            if line == Command.CLOSE:
                return False
            logger.warning(f'Discarding input before handshake: {line!r}')

    async def _command_loop(self, reader: StreamReader, writer: StreamWriter, host: str):
        while True:
            tokens = decode(await read_line(reader, self.config.timeout))
            if not tokens:
                logger.warning(f'Empty command from {host}')
                await self._send_error(writer, ErrorCode.C0)
                continue

            message = Message(command=tokens[0], args=tuple(tokens[1:]))
            if message.command == Command.GET:
                await self._handle_get(message, writer, host)
            elif message.command == Command.CLOSE:
                return
            else:
                logger.warning(f'Unknown command from {host}: {message.command}')
                await self._send_error(writer, ErrorCode.C0)

    async def _handle_get(self, message: Message, writer: StreamWriter, host: str):
        """Stream a shared file over a freshly claimed data connection."""
        filename = message.arg(0)
        if filename is None:
            logger.warning(f'GET without a file name from {host}')
            await self._send_error(writer, ErrorCode.G0)
            return

        try:
            data_writer = await self._claim_data_connection(host)
        except TransportError as e:
            logger.error(f'No data connection for {filename} from {host}: {e}')
            await self._send_error(writer, ErrorCode.G1)
            return

        error = None
        sent = 0
        try:
            data = await self.share.read_file(filename)
            data_writer.write(data)
            await with_timeout(data_writer.drain(), self.config.timeout, f'sending {filename}')
            sent = len(data)
        except (LocalResourceError, TransportError, ConnectionError) as e:
            error = e
        finally:
            await close_writer(data_writer)

        if error:
            logger.error(f'Transfer of {filename} to {host} failed: {error}')
            await self._send_error(writer, ErrorCode.G1)
        else:
            logger.info(f'Sent {filename} ({sent} bytes) to {host}')
            await send_message(writer, Command.OK, timeout=self.config.timeout)

    async def _send_error(self, writer: StreamWriter, code: ErrorCode):
        await send_message(writer, Command.ERROR, code, timeout=self.config.timeout)

    async def _say_goodbye(self, writer: StreamWriter):
        if writer.is_closing():
            return
        try:
            await send_message(writer, Command.GOODBYE, timeout=self.config.timeout)
        except TransportError as e:
            logger.debug(f'Could not send GOODBYE: {e}')
