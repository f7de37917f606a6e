"""
p2pshare - A tracker-indexed peer-to-peer file sharing client
"""

from .config import PeerConfig, CONTROL_PORT, DATA_PORT, TRACKER_PORT
from .errors import (
    ErrorCode, describe, P2PError, HandshakeError, RemoteError, TransportError,
    LocalResourceError, ProtocolViolation, FileNotIndexedError, FetchError
)
from .protocol import Command, Message, encode, decode
from .file_manager import ShareDirectory, SharedFile, calculate_file_hash
from .peer import PeerAddress, PeerFileServer
from .fetch import PeerFetcher, TransferDescriptor, TransferResult
from .tracker import TrackerSession, FileEntry
from .client import Client

__version__ = '0.1.0'
__all__ = [
    'PeerConfig', 'CONTROL_PORT', 'DATA_PORT', 'TRACKER_PORT',
    'ErrorCode', 'describe', 'P2PError', 'HandshakeError', 'RemoteError', 'TransportError',
    'LocalResourceError', 'ProtocolViolation', 'FileNotIndexedError', 'FetchError',
    'Command', 'Message', 'encode', 'decode',
    'ShareDirectory', 'SharedFile', 'calculate_file_hash',
    'PeerAddress', 'PeerFileServer',
    'PeerFetcher', 'TransferDescriptor', 'TransferResult',
    'TrackerSession', 'FileEntry', 'Client',
]
