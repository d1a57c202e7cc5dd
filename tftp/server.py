"""
TFTP Server - the well-known port and what happens to requests.

The listening socket only ever sees the first packet of a transfer. For
each RRQ/WRQ it asks the application's RequestHandler whether to serve the
request. On acceptance it spawns a TransferSocket on a fresh ephemeral
port, and the peer talks to that socket from then on:

    client:54321  --RRQ-->   server:69        (ListeningDispatcher)
    client:54321  <--DATA--  server:40001     (TransferSocket)
    client:54321  --ACK-->   server:40001
    ...

Handler decisions may block (reading a file), so they run in the loop's
default executor and their result comes back into the loop as an awaited
value.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional, Set, Tuple, Union

from .packet import (
    Opcode, ErrorCode, error_message, PeerError, ProtocolError, RequestRejected,
    Packet, Request, ErrorPacket,
)
from .session import (
    TFTPConfig, TransferHandler, TransferSession,
    ServerDownloadSession, ServerUploadSession,
)
from .socket import TransferSocket, open_transfer_socket


logger = logging.getLogger(__name__)


class RequestHandler:
    """
    Application side of a TFTP server.

    ``accept_read`` and ``accept_put`` are called once per request, in a
    worker thread. They return ``(True, data)`` (data as bytes) / ``(True, None)`` to accept,
    ``(False, reason)`` to refuse with error code 0, or raise
    RequestRejected to refuse with a specific code.

    The default handler refuses everything.
    """

    def accept_read(self, peer_addr: str, peer_port: int,
                    filename: str) -> Tuple[bool, Union[bytes, str]]:
        raise RequestRejected(error_code=ErrorCode.ACCESS_VIOLATION)

    def accept_put(self, peer_addr: str, peer_port: int,
                   filename: str) -> Tuple[bool, Optional[str]]:
        raise RequestRejected(error_code=ErrorCode.ACCESS_VIOLATION)

    def new_transfer(self, peer_addr: str, peer_port: int, filename: str) -> TransferHandler:
        """Create the callbacks for one accepted transfer."""
        return TransferHandler()

    def on_malformed_request(self, message: str) -> None:
        """Called when a datagram on the listening port cannot be decoded."""


class ListeningDispatcher(asyncio.DatagramProtocol):
    """
    Datagram protocol for the well-known port.

    Never holds transfer state: every accepted request gets its own
    TransferSocket, and a refused request gets a single ERROR packet.
    """

    def __init__(self, handler: RequestHandler, config: Optional[TFTPConfig] = None):
        self.handler = handler
        self.config = config or TFTPConfig()
        self.transport: Optional[asyncio.DatagramTransport] = None
        self.loop: Optional[asyncio.AbstractEventLoop] = None

        self._dispatch = {
            Opcode.RRQ: self._on_read_request,
            Opcode.WRQ: self._on_write_request,
            Opcode.DATA: self._on_stray_data,
            Opcode.ACK: self._on_stray_ack,
        }

        # Decisions in flight and live transfers
        self._pending: Set[asyncio.Task] = set()
        self.transfers: Set[TransferSocket] = set()

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport  # type: ignore[assignment]
        self.loop = asyncio.get_running_loop()

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        addr = (addr[0], addr[1])
        try:
            packet = Packet.parse(data)
        except PeerError as exc:
            # ERROR packets are never answered
            logger.debug(f"Ignoring ERROR from {addr[0]}:{addr[1]}: {exc.message}")
            return
        except ProtocolError as exc:
            logger.warning(f"Malformed datagram from {addr[0]}:{addr[1]}: {exc.message}")
            hook = getattr(self.handler, "on_malformed_request", None)
            if hook is not None:
                hook(exc.message)
            return

        self._dispatch[packet.opcode](packet, addr)

    # ========== Requests ==========

    def _on_read_request(self, packet: Request, addr: Tuple[str, int]):
        self._spawn(self._serve_read(packet, addr))

    def _on_write_request(self, packet: Request, addr: Tuple[str, int]):
        self._spawn(self._serve_write(packet, addr))

    def _spawn(self, coro):
        task = self.loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _serve_read(self, packet: Request, addr: Tuple[str, int]):
        host, port = addr
        logger.info(f"RRQ {packet.filename!r} ({packet.mode}) from {host}:{port}")

        data = await self._decide(self.handler.accept_read, packet, addr)
        if data is None:
            return
        if not isinstance(data, (bytes, bytearray, memoryview)):
            logger.error(f"Request handler accepted {packet.filename!r} with "
                         f"{type(data).__name__} data, expected bytes")
            self._reject(addr, ErrorCode.NOT_DEFINED, error_message(ErrorCode.NOT_DEFINED))
            return

        session = ServerUploadSession(
            host, port, data,
            self.handler.new_transfer(host, port, packet.filename),
            loop=self.loop, config=self.config,
        )
        await self._open(session)

    async def _serve_write(self, packet: Request, addr: Tuple[str, int]):
        host, port = addr
        logger.info(f"WRQ {packet.filename!r} ({packet.mode}) from {host}:{port}")

        if await self._decide(self.handler.accept_put, packet, addr) is None:
            return

        session = ServerDownloadSession(
            host, port,
            self.handler.new_transfer(host, port, packet.filename),
            loop=self.loop, config=self.config,
        )
        await self._open(session)

    async def _decide(self, decision, packet: Request, addr: Tuple[str, int]) -> Optional[Any]:
        """
        Run a handler decision in a worker thread.

        Returns the accepted result (``b""`` standing in for None), or None
        once the refusal has been sent.
        """
        host, port = addr
        try:
            accepted, result = await self.loop.run_in_executor(
                None, decision, host, port, packet.filename)
        except RequestRejected as exc:
            self._reject(addr, exc.error_code, exc.message)
            return None
        except Exception:
            logger.exception(f"Request handler failed for {packet.filename!r}")
            self._reject(addr, ErrorCode.NOT_DEFINED, error_message(ErrorCode.NOT_DEFINED))
            return None

        if not accepted:
            self._reject(addr, ErrorCode.NOT_DEFINED, result or "")
            return None

        return b"" if result is None else result

    async def _open(self, session: TransferSession):
        try:
            transfer = await open_transfer_socket(session, local_addr=(self.config.host, 0))
        except OSError as exc:
            logger.error(f"Could not open transfer socket: {exc}")
            self._reject((session.transfer_id.peer_addr, session.transfer_id.peer_port),
                         ErrorCode.NOT_DEFINED, "Could not open transfer socket")
            return

        if transfer.closed:
            return
        self.transfers.add(transfer)
        session.on_terminal = lambda: self._transfer_done(transfer)

    def _transfer_done(self, transfer: TransferSocket):
        transfer.close()
        self.transfers.discard(transfer)

    def _reject(self, addr: Tuple[str, int], code: int, message: str):
        logger.warning(f"Refusing request from {addr[0]}:{addr[1]}: "
                       f"{message or error_message(code)}")
        self._send_error(addr, code, message)

    # ========== Stray Packets ==========

    def _on_stray_data(self, packet: Packet, addr: Tuple[str, int]):
        logger.debug(f"DATA for unknown transfer from {addr[0]}:{addr[1]}")
        self._send_error(addr, ErrorCode.UNKNOWN_TRANSFER_ID,
                         error_message(ErrorCode.UNKNOWN_TRANSFER_ID))

    def _on_stray_ack(self, packet: Packet, addr: Tuple[str, int]):
        logger.debug(f"Ignoring ACK for unknown transfer from {addr[0]}:{addr[1]}")

    def _send_error(self, addr: Tuple[str, int], code: int, message: str):
        if self.transport is not None:
            self.transport.sendto(ErrorPacket(code, message).serialize(), addr)

    # ========== Shutdown ==========

    def close_transfers(self):
        for task in list(self._pending):
            task.cancel()
        for transfer in list(self.transfers):
            transfer.close()
        self.transfers.clear()


class TFTPServer:
    """
    A TFTP server bound to one address.

        server = TFTPServer(ReadOnlyFileServer("/srv/tftp"))
        await server.start()
        await server.serve_forever()
    """

    def __init__(self, handler: RequestHandler, config: Optional[TFTPConfig] = None):
        self.handler = handler
        self.config = config or TFTPConfig()
        self.dispatcher: Optional[ListeningDispatcher] = None
        self._transport: Optional[asyncio.DatagramTransport] = None
        self._stopped: Optional[asyncio.Event] = None

    @property
    def address(self) -> Optional[Tuple[str, int]]:
        if self._transport is None:
            return None
        return self._transport.get_extra_info("sockname")[:2]

    async def start(self):
        """Bind the listening socket."""
        loop = asyncio.get_running_loop()
        self._stopped = asyncio.Event()
        self._transport, self.dispatcher = await loop.create_datagram_endpoint(
            lambda: ListeningDispatcher(self.handler, self.config),
            local_addr=(self.config.host, self.config.port),
        )
        logger.info(f"TFTP server listening on {self.address[0]}:{self.address[1]}")

    async def serve_forever(self):
        """Run until ``close`` is called."""
        if self._transport is None:
            await self.start()
        await self._stopped.wait()

    def close(self):
        """Stop listening and abandon every live transfer."""
        if self.dispatcher is not None:
            self.dispatcher.close_transfers()
        if self._transport is not None:
            self._transport.close()
            self._transport = None
            logger.info("TFTP server stopped")
        if self._stopped is not None:
            self._stopped.set()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, *args):
        self.close()


class ReadOnlyFileServer(RequestHandler):
    """
    Serve files from a directory; refuse all writes.

    Files are read whole into memory before the first block is sent, which
    is fine for what TFTP is used for (boot images, configs). Paths are
    resolved relative to ``base_dir`` and may not escape it.
    """

    def __init__(self, base_dir: Union[str, Path]):
        self.base_dir = Path(base_dir).resolve()

    def resolve(self, filename: str) -> Path:
        """
        Map a requested filename to a path under ``base_dir``.

        Raises:
            RequestRejected: If the path escapes the base directory
        """
        path = (self.base_dir / filename.lstrip("/")).resolve()
        if path != self.base_dir and self.base_dir not in path.parents:
            raise RequestRejected(error_message(ErrorCode.ACCESS_VIOLATION),
                                  ErrorCode.ACCESS_VIOLATION)
        return path

    def accept_read(self, peer_addr, peer_port, filename):
        path = self.resolve(filename)
        if not path.is_file():
            raise RequestRejected(error_message(ErrorCode.FILE_NOT_FOUND),
                                  ErrorCode.FILE_NOT_FOUND)
        try:
            return True, path.read_bytes()
        except OSError as exc:
            logger.warning(f"Cannot read {path}: {exc}")
            raise RequestRejected(error_message(ErrorCode.ACCESS_VIOLATION),
                                  ErrorCode.ACCESS_VIOLATION) from exc

    def accept_put(self, peer_addr, peer_port, filename):
        raise RequestRejected(error_message(ErrorCode.ACCESS_VIOLATION),
                              ErrorCode.ACCESS_VIOLATION)
