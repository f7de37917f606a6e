import enum
from typing import List, Optional, Tuple


class ErrorCode(str, enum.Enum):
    """Error codes exchanged in-band as ``ERROR <code>`` lines."""
    A0 = 'A0'
    A1 = 'A1'
    A2 = 'A2'
    A3 = 'A3'
    A4 = 'A4'
    C0 = 'C0'
    D0 = 'D0'
    D1 = 'D1'
    D2 = 'D2'
    G0 = 'G0'
    G1 = 'G1'
    L0 = 'L0'
    R0 = 'R0'
    R1 = 'R1'

    @property
    def description(self) -> str:
        return ERROR_DESCRIPTIONS[self]


ERROR_DESCRIPTIONS = {
    ErrorCode.A0: 'a database error occurred while indexing files with tracker',
    ErrorCode.A1: 'a null file name was encountered while indexing files with tracker',
    ErrorCode.A2: 'a null file hash was encountered while indexing files with tracker',
    ErrorCode.A3: 'a null file size was encountered while indexing files with tracker',
    ErrorCode.A4: 'a duplicate file from your machine was encountered while indexing files with tracker',
    ErrorCode.C0: 'remote side received an unknown command',
    ErrorCode.D0: 'a database error occurred while deleting files from the tracker',
    ErrorCode.D1: 'a null file name was encountered while deleting files from tracker',
    ErrorCode.D2: 'a null file hash was encountered while deleting files from tracker',
    ErrorCode.G0: 'a null file name was encountered when attempting file transfer',
    ErrorCode.G1: 'file transfer with peer failed',
    ErrorCode.L0: 'a database error occurred while retrieving a list of files from the tracker',
    ErrorCode.R0: 'a database error occurred while requesting peer addresses from the tracker',
    ErrorCode.R1: 'a null file name was encountered while requesting peer addresses from the tracker',
}


def describe(code: Optional[str]) -> str:
    """Map a wire error code to a human-readable cause."""
    try:
        return ErrorCode(code).description
    except ValueError:
        return f'an unknown error occurred: {code}'


class P2PError(Exception):
    """Base class for every failure raised by this package."""


class HandshakeError(P2PError):
    """Remote side answered a handshake with the wrong token."""

    def __init__(self, expected: str, received: Optional[str]):
        super().__init__(f'expected {expected!r} but received {received!r}')
        self.expected = expected
        self.received = received


class RemoteError(P2PError):
    """Remote side replied with ``ERROR <code>``."""

    def __init__(self, code: Optional[str]):
        self.code = code
        self.description = describe(code)
        super().__init__(f'ERROR {code}: {self.description}')


class TransportError(P2PError):
    """Connection refused, reset, closed early or timed out."""


class LocalResourceError(P2PError):
    """A file in the share directory could not be read or written."""


class ProtocolViolation(P2PError):
    """Remote side sent an empty or malformed line."""


class FileNotIndexedError(P2PError):
    """The tracker knows no peer serving the requested file."""

    def __init__(self, filename: str):
        super().__init__(f"file '{filename}' was not found on the tracker")
        self.filename = filename


class FetchError(P2PError):
    """Every peer offered by the tracker failed to deliver the file."""

    def __init__(self, filename: str, failures: List[Tuple[str, Exception]]):
        causes = '; '.join(f'{host}: {exc}' for host, exc in failures)
        super().__init__(f"could not fetch '{filename}' from any peer ({causes})")
        self.filename = filename
        self.failures = failures
