import asyncio
import tempfile
import unittest
from pathlib import Path

from p2pshare.config import PeerConfig
from p2pshare.peer import PeerFileServer


class PeerFileServerTest(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.share = Path(self._tmp.name)
        (self.share / 'notes.txt').write_bytes(b'hello world!')
        config = PeerConfig(share_path=self.share, bind_host='127.0.0.1',
                            control_port=0, data_port=0, timeout=2.0)
        self.server = PeerFileServer(config)
        await self.server.start()
        self.writers = []

    async def asyncTearDown(self):
        for writer in self.writers:
            writer.close()
        await self.server.stop()
        self._tmp.cleanup()

    async def connect(self, port):
        reader, writer = await asyncio.open_connection('127.0.0.1', port)
        self.writers.append(writer)
        return reader, writer

    async def send(self, writer, line):
        writer.write(line.encode() + b'\n')
        await writer.drain()

    async def recv(self, reader):
        line = await asyncio.wait_for(reader.readline(), 5)
        return line.decode().strip()

    async def open_session(self):
        reader, writer = await self.connect(self.server.control_port)
        await self.send(writer, 'OPEN')
        self.assertEqual(await self.recv(reader), 'HELLO')
        return reader, writer

    async def test_full_get_session(self):
        reader, writer = await self.open_session()
        data_reader, _ = await self.connect(self.server.data_port)
        await self.send(writer, 'GET notes.txt')

        self.assertEqual(await asyncio.wait_for(data_reader.read(), 5), b'hello world!')
        self.assertEqual(await self.recv(reader), 'OK')

        await self.send(writer, 'CLOSE')
        self.assertEqual(await self.recv(reader), 'GOODBYE')
        self.assertEqual(await asyncio.wait_for(reader.read(), 5), b'')

    async def test_get_without_filename_keeps_session_open(self):
        reader, writer = await self.open_session()
        # no data connection is opened, so a data accept would time out with G1
        await self.send(writer, 'GET')
        self.assertEqual(await self.recv(reader), 'ERROR G0')

        data_reader, _ = await self.connect(self.server.data_port)
        await self.send(writer, 'GET notes.txt')
        self.assertEqual(await asyncio.wait_for(data_reader.read(), 5), b'hello world!')
        self.assertEqual(await self.recv(reader), 'OK')

        await self.send(writer, 'CLOSE')
        self.assertEqual(await self.recv(reader), 'GOODBYE')

    async def test_missing_file_reports_io_failure(self):
        reader, writer = await self.open_session()
        data_reader, _ = await self.connect(self.server.data_port)
        await self.send(writer, 'GET missing.txt')

        self.assertEqual(await asyncio.wait_for(data_reader.read(), 5), b'')
        self.assertEqual(await self.recv(reader), 'ERROR G1')

    async def test_get_without_data_connection_times_out(self):
        reader, writer = await self.open_session()
        await self.send(writer, 'GET notes.txt')
        self.assertEqual(await self.recv(reader), 'ERROR G1')

    async def test_unknown_command_is_rejected(self):
        reader, writer = await self.open_session()
        await self.send(writer, 'DANCE now')
        self.assertEqual(await self.recv(reader), 'ERROR C0')
        await self.send(writer, 'CLOSE')
        self.assertEqual(await self.recv(reader), 'GOODBYE')

    async def test_input_before_handshake_is_discarded(self):
        reader, writer = await self.connect(self.server.control_port)
        await self.send(writer, 'GET notes.txt')
        await self.send(writer, 'hello?')
        await self.send(writer, 'OPEN')
        self.assertEqual(await self.recv(reader), 'HELLO')

    async def test_close_during_handshake_says_goodbye(self):
        reader, writer = await self.connect(self.server.control_port)
        await self.send(writer, 'CLOSE')
        self.assertEqual(await self.recv(reader), 'GOODBYE')
        self.assertEqual(await asyncio.wait_for(reader.read(), 5), b'')

    async def test_serves_peers_concurrently(self):
        # an idle session must not block a second peer
        await self.open_session()
        reader, writer = await self.open_session()
        data_reader, _ = await self.connect(self.server.data_port)
        await self.send(writer, 'GET notes.txt')
        self.assertEqual(await asyncio.wait_for(data_reader.read(), 5), b'hello world!')
        self.assertEqual(await self.recv(reader), 'OK')

    async def test_unclaimed_data_connections_are_closed(self):
        readers = []
        for _ in range(5):
            data_reader, _ = await self.connect(self.server.data_port)
            readers.append(data_reader)
        for data_reader in readers:
            self.assertEqual(await asyncio.wait_for(data_reader.read(), 5), b'')
        await asyncio.sleep(0)
        self.assertEqual(self.server._pending_data, {})

    async def test_handshake_timeout_says_goodbye_once(self):
        reader, _ = await self.connect(self.server.control_port)
        self.assertEqual(await asyncio.wait_for(reader.read(), 5), b'GOODBYE\n')

    async def test_eof_before_handshake_says_goodbye_once(self):
        reader, writer = await self.connect(self.server.control_port)
        await self.send(writer, 'junk')
        writer.write_eof()
        self.assertEqual(await asyncio.wait_for(reader.read(), 5), b'GOODBYE\n')
