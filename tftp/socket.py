"""
TFTP Transfer Socket - one UDP endpoint per transfer.

RFC 1350 identifies a transfer by its pair of UDP ports. Giving every
transfer its own socket, bound to a fresh ephemeral port, makes our half of
that pair unique for free, and leaves the socket with a single job:

- carry datagrams for exactly one TransferSession
- drop anything that does not come from that session's peer
- close exactly once, when the session reaches a terminal phase

The socket is an asyncio datagram protocol. Datagram delivery and the
session's retransmission timer both run on the event loop, so the session
is never entered concurrently and needs no locks.
"""

import asyncio
import logging
from typing import Optional, Tuple

from .packet import Packet, ProtocolError
from .session import TransferSession


logger = logging.getLogger(__name__)


class TransferSocket(asyncio.DatagramProtocol):
    """
    Dedicated datagram endpoint owning one transfer session.

    Usage:
        session = ClientDownloadSession(addr, 69, "boot.img", handler, loop=loop)
        sock = await open_transfer_socket(session)
    """

    def __init__(self, session: TransferSession):
        self.session = session
        self.transport: Optional[asyncio.DatagramTransport] = None
        self._closed = False

        session.on_terminal = self.close

        # Statistics
        self.datagrams_dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def local_address(self) -> Optional[Tuple[str, int]]:
        if self.transport is None:
            return None
        return self.transport.get_extra_info("sockname")[:2]

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport  # type: ignore[assignment]
        self.session.attach(self._sendto)
        logger.debug(f"Transfer socket bound to {self.local_address} for {self.session.transfer_id}")
        self.session.start()

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        if self.session.is_terminal:
            return

        host, port = addr[0], addr[1]
        transfer_id = self.session.transfer_id

        # Transfer ID check: anything not from our peer is dropped untouched
        if not transfer_id.matches(host, port):
            self.datagrams_dropped += 1
            logger.debug(f"Dropping datagram from {host}:{port}, transfer is with {transfer_id}")
            return
        transfer_id.resolve(port)

        try:
            packet = Packet.parse(data)
        except ProtocolError as exc:
            self.session.fail(exc.message)
            return

        self.session.handle(packet)

    def error_received(self, exc: Exception) -> None:
        # ICMP errors (e.g. port unreachable) surface here; the timer decides
        logger.debug(f"Socket error on transfer with {self.session.transfer_id}: {exc}")

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self._closed = True
        if not self.session.is_terminal:
            self.session.fail("Connection closed")

    def close(self):
        """Close the endpoint. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self.transport is not None:
            self.transport.close()

    def _sendto(self, datagram: bytes, addr: str, port: int):
        if self.transport is None or self._closed:
            logger.debug(f"Not sending {len(datagram)} bytes, socket closed")
            return
        self.transport.sendto(datagram, (addr, port))

    def __repr__(self):
        state = "closed" if self._closed else self.session.phase.name
        return f"TransferSocket({self.local_address} -> {self.session.transfer_id}, {state})"


async def open_transfer_socket(session: TransferSession,
                               local_addr: Tuple[str, int] = ("0.0.0.0", 0)) -> TransferSocket:
    """
    Bind a new transfer socket for ``session`` and start the transfer.

    Args:
        session: The session the socket will own
        local_addr: Address to bind; port 0 picks an ephemeral port

    Returns:
        The TransferSocket (the session's opening packet is already sent)
    """
    loop = asyncio.get_running_loop()
    _, protocol = await loop.create_datagram_endpoint(
        lambda: TransferSocket(session),
        local_addr=local_addr,
    )
    return protocol
