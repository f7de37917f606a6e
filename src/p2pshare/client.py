import logging
from typing import Callable, List, Optional, Tuple

from .config import PeerConfig
from .errors import FetchError, FileNotIndexedError, P2PError
from .fetch import PeerFetcher, TransferDescriptor, TransferResult
from .file_manager import ShareDirectory, calculate_file_hash
from .peer import PeerFileServer
from .tracker import FileEntry, TrackerSession

logger = logging.getLogger(__name__)


class Client:
    """A peer: indexes its share directory, serves it, and pulls from others."""

    def __init__(self, config: PeerConfig, digest: Optional[Callable[[bytes], str]] = None):
        self.config = config
        self.share = ShareDirectory(config.share_path, digest or calculate_file_hash)
        self.server = PeerFileServer(config, self.share)
        self.fetcher = PeerFetcher(config, self.share)
        self.tracker = TrackerSession(config)
        self.indexed = 0

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self, serve: bool = True):
        """Start serving, then connect to the tracker and index the share directory."""
        if serve:
            await self.server.start()
        await self.tracker.connect()
        logger.info(f'Indexing files from {self.share.path} with tracker...')
        self.indexed = await self.tracker.index(await self.share.enumerate())

    async def list_files(self) -> List[FileEntry]:
        return await self.tracker.list()

    async def download(self, filename: str) -> TransferResult:
        """Fetch ``filename`` from the first resolved peer that delivers it."""
        peers = await self.tracker.request(filename)
        if not peers:
            raise FileNotIndexedError(filename)

        failures: List[Tuple[str, Exception]] = []
        for address, size in peers:
            try:
                return await self.fetcher.fetch(address, TransferDescriptor(filename, size))
            except P2PError as e:
                logger.error(f'Fetching {filename} from {address.host} failed: {e}')
                failures.append((address.host, e))
        raise FetchError(filename, failures)

    async def stop(self):
        try:
            if self.tracker.connected:
                await self.tracker.quit()
        finally:
            if self.server.running:
                await self.server.stop()
