"""
TFTP Client - get and put.

Client transfers never touch a listening dispatcher: each one opens its own
TransferSocket on an ephemeral port, sends RRQ/WRQ to the server's
well-known port and then locks onto whichever port the server replies from.

    result = await get("10.0.0.1", 69, "pxelinux.0")
    if result.success:
        image = result.data

    success, error = await put("10.0.0.1", 69, "log.txt", b"...")
"""

import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import Callable, Optional

from .buffer import ReceiveBuffer
from .session import (
    TFTPConfig, TransferHandler,
    ClientDownloadSession, ClientUploadSession,
)
from .socket import TransferSocket, open_transfer_socket


logger = logging.getLogger(__name__)


@dataclass
class TransferResult:
    """
    Outcome of a client transfer.

    Unpacks as ``(success, content_or_error)``.
    """
    success: bool
    data: bytes = b""
    error: Optional[str] = None

    def __iter__(self):
        return iter((self.success, self.data if self.success else self.error))


ResultCallback = Callable[[TransferResult], None]


class _ClientHandler(TransferHandler):
    """Collects blocks and reports the outcome exactly once."""

    def __init__(self, callback: ResultCallback, collect: bool):
        self._callback = callback
        self._buffer = ReceiveBuffer() if collect else None
        self._reported = False

    def on_block(self, block: bytes) -> None:
        if self._buffer is not None:
            self._buffer.append(block)

    def on_complete(self) -> None:
        data = self._buffer.getvalue() if self._buffer is not None else b""
        self._report(TransferResult(True, data=data))

    def on_failed(self, message: str) -> None:
        self._report(TransferResult(False, error=message))

    def _report(self, result: TransferResult):
        if self._reported:
            return
        self._reported = True
        self._callback(result)


async def _resolve(host: str, port: int) -> str:
    """Numeric IPv4 address for ``host``; the transfer ID check compares these."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, port, family=socket.AF_INET, type=socket.SOCK_DGRAM)
    return infos[0][4][0]


async def open_get(host: str, port: int, filename: str, callback: ResultCallback, *,
                   config: Optional[TFTPConfig] = None,
                   local_addr=("0.0.0.0", 0)) -> TransferSocket:
    """
    Start downloading ``filename``; ``callback`` receives the TransferResult.

    Returns as soon as the RRQ is sent.
    """
    loop = asyncio.get_running_loop()
    addr = await _resolve(host, port)
    session = ClientDownloadSession(
        addr, port, filename, _ClientHandler(callback, collect=True),
        loop=loop, config=config,
    )
    return await open_transfer_socket(session, local_addr)


async def open_put(host: str, port: int, filename: str, data: bytes, callback: ResultCallback, *,
                   config: Optional[TFTPConfig] = None,
                   local_addr=("0.0.0.0", 0)) -> TransferSocket:
    """
    Start uploading ``data`` as ``filename``; ``callback`` receives the TransferResult.

    Returns as soon as the WRQ is sent.
    """
    loop = asyncio.get_running_loop()
    addr = await _resolve(host, port)
    session = ClientUploadSession(
        addr, port, filename, data, _ClientHandler(callback, collect=False),
        loop=loop, config=config,
    )
    return await open_transfer_socket(session, local_addr)


async def get(host: str, port: int, filename: str, *,
              config: Optional[TFTPConfig] = None) -> TransferResult:
    """Download a file and wait for the outcome."""
    future = asyncio.get_running_loop().create_future()
    await open_get(host, port, filename, _settle(future), config=config)
    return await future


async def put(host: str, port: int, filename: str, data: bytes, *,
              config: Optional[TFTPConfig] = None) -> TransferResult:
    """Upload a file and wait for the outcome."""
    future = asyncio.get_running_loop().create_future()
    await open_put(host, port, filename, data, _settle(future), config=config)
    return await future


def _settle(future: asyncio.Future) -> ResultCallback:
    def callback(result: TransferResult):
        if not future.done():
            future.set_result(result)
    return callback
