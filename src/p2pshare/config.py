"""
Configuration for a p2pshare peer.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

CONTROL_PORT = 6601  # peer command channel
DATA_PORT = 6602     # peer raw file bytes
TRACKER_PORT = 6600
DEFAULT_TIMEOUT = 30.0


@dataclass
class PeerConfig:
    """Settings shared by the file server, the fetcher and the tracker session."""
    share_path: Path
    bind_host: str = '0.0.0.0'
    control_port: int = CONTROL_PORT
    data_port: int = DATA_PORT
    tracker_host: str = '127.0.0.1'
    tracker_port: int = TRACKER_PORT
    # None blocks forever on every socket operation
    timeout: Optional[float] = DEFAULT_TIMEOUT
    # None accepts whatever size the tracker announces
    max_transfer_size: Optional[int] = None
    confirm_transfer: bool = True

    def __post_init__(self):
        self.share_path = Path(self.share_path)
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError('timeout must be positive or None')
        if self.max_transfer_size is not None and self.max_transfer_size < 0:
            raise ValueError('max_transfer_size must be non-negative or None')

    @classmethod
    def from_tracker_url(cls, share_path: Union[str, Path], tracker: str, **kwargs) -> 'PeerConfig':
        """Build a config from a ``host[:port]`` tracker string."""
        host, sep, port = tracker.rpartition(':')
        if not sep:
            host, port = tracker, str(TRACKER_PORT)
        return cls(share_path=Path(share_path), tracker_host=host, tracker_port=int(port), **kwargs)
