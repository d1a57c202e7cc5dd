"""
TFTP Engine - a complete RFC 1350 TFTP implementation on asyncio.

This package implements the Trivial File Transfer Protocol from first
principles: the packet codec, lock-step block transfer with retransmission
and exponential backoff, transfer ID checking, and a server that gives every
transfer its own UDP port.
"""

from .packet import (
    Opcode, ErrorCode, TFTPError, ProtocolError, PeerError, RequestRejected,
    Packet, ReadRequest, WriteRequest, DataPacket, AckPacket, ErrorPacket,
)
from .states import TransferPhase, TransferStateMachine
from .buffer import SendBuffer, ReceiveBuffer
from .timer import RetransmissionTimer
from .session import (
    TFTPConfig, TransferHandler, TransferSession,
    ClientDownloadSession, ClientUploadSession,
    ServerDownloadSession, ServerUploadSession,
)
from .socket import TransferSocket
from .server import RequestHandler, ListeningDispatcher, TFTPServer, ReadOnlyFileServer
from .client import TransferResult, get, put

__version__ = "1.0.0"

__all__ = [
    "Opcode",
    "ErrorCode",
    "TFTPError",
    "ProtocolError",
    "PeerError",
    "RequestRejected",
    "Packet",
    "ReadRequest",
    "WriteRequest",
    "DataPacket",
    "AckPacket",
    "ErrorPacket",
    "TransferPhase",
    "TransferStateMachine",
    "SendBuffer",
    "ReceiveBuffer",
    "RetransmissionTimer",
    "TFTPConfig",
    "TransferHandler",
    "TransferSession",
    "ClientDownloadSession",
    "ClientUploadSession",
    "ServerDownloadSession",
    "ServerUploadSession",
    "TransferSocket",
    "RequestHandler",
    "ListeningDispatcher",
    "TFTPServer",
    "ReadOnlyFileServer",
    "TransferResult",
    "get",
    "put",
]
