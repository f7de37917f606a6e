import hashlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Union

import aiofiles

from .errors import LocalResourceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SharedFile:
    """A file offered to the tracker."""
    name: str
    hash: str
    size: int


def calculate_file_hash(data: bytes) -> str:
    """Calculate the MD5 hex digest of a file's contents."""
    return hashlib.md5(data).hexdigest()


class ShareDirectory:
    def __init__(self, path: Union[str, Path],
                 digest: Callable[[bytes], str] = calculate_file_hash):
        self.path = Path(path)
        self.digest = digest

    def path_for(self, name: str) -> Path:
        """Resolve a wire filename to a path inside the share directory."""
        if not name or name in ('.', '..') or '/' in name or os.sep in name:
            raise LocalResourceError(f'Refusing file name outside share directory: {name!r}')
        return self.path / name

    async def enumerate(self) -> List[SharedFile]:
        """List the regular files in the share directory with their digests."""
        try:
            entries = sorted(p for p in self.path.iterdir() if p.is_file())
        except OSError as e:
            raise LocalResourceError(f'Failed to list share directory {self.path}: {e}') from e

        shared = []
        for entry in entries:
            if ' ' in entry.name:
                logger.warning(f'Skipping {entry.name!r}: names with spaces cannot be indexed')
                continue
            data = await self.read_file(entry.name)
            shared.append(SharedFile(name=entry.name, hash=self.digest(data), size=len(data)))
        return shared

    async def read_file(self, name: str) -> bytes:
        """Read a shared file fully into memory."""
        path = self.path_for(name)
        try:
            async with aiofiles.open(path, 'rb') as f:
                return await f.read()
        except OSError as e:
            raise LocalResourceError(f'Failed to read {path}: {e}') from e

    async def write_file(self, name: str, data: bytes) -> Path:
        """Write received bytes into the share directory."""
        path = self.path_for(name)
        try:
            async with aiofiles.open(path, 'wb') as f:
                await f.write(data)
                await f.flush()
        except OSError as e:
            raise LocalResourceError(f'Failed to write {path}: {e}') from e
        return path
