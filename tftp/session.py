"""
TFTP Transfer Sessions - the per-transfer protocol state machines.

This module brings together the TFTP components:
- Packet parsing and construction
- Phase state machine for the transfer lifecycle
- Send buffer for slicing data into blocks
- Retransmission timer for reliability

A TransferSession represents one end of one file transfer. There are four
roles, but only two behaviors:

    Receive (expects DATA, answers ACK):  client download, server download (WRQ)
    Send    (sends DATA, expects ACK):    client upload,   server upload   (RRQ)

The roles differ only in their opening move:

    client download:  send RRQ, wait for DATA(1) from the server's new port
    client upload:    send WRQ, wait for ACK(0) from the server's new port
    server download:  send ACK(0)
    server upload:    send DATA(1)

A session never touches a socket or a file. Outgoing datagrams go through a
send callback supplied by the owning TransferSocket; file data goes to and
comes from a TransferHandler supplied by the application.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .buffer import SendBuffer
from .packet import (
    MAX_BLOCK_NUMBER, DEFAULT_MODE,
    Opcode, ErrorCode, error_message, RequestRejected,
    Packet, ReadRequest, WriteRequest, DataPacket, AckPacket, ErrorPacket,
)
from .states import TransferDirection, TransferPhase, TransferStateMachine
from .timer import RetransmissionTimer


logger = logging.getLogger(__name__)


# Well-known TFTP server port
DEFAULT_PORT = 69


@dataclass
class TFTPConfig:
    """Configuration options for TFTP clients, servers and sessions."""

    # Address the server listens on; transfer sockets bind here too
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT

    # Retransmission settings (seconds)
    base_timeout: float = RetransmissionTimer.BASE_TIMEOUT
    max_timeout: float = RetransmissionTimer.MAX_TIMEOUT

    # Senders finish only once the final DATA block is acknowledged.
    # False finishes right after sending it.
    wait_final_ack: bool = True

    # Mode sent in RRQ/WRQ; data is always transferred as raw bytes
    mode: str = DEFAULT_MODE


@dataclass
class TransferId:
    """
    Identifies the peer of one transfer.

    RFC 1350 uses the UDP port pair as the transfer ID. Our side of the pair
    is the dedicated socket's ephemeral port, so only the peer's half has to
    be checked. A client does not know the server's reply port until the
    first datagram arrives, so the port starts out unresolved.
    """
    peer_addr: str
    peer_port: int
    resolved: bool = True

    def matches(self, addr: str, port: int) -> bool:
        """Check a datagram's source against the recorded peer."""
        if addr != self.peer_addr:
            return False
        return not self.resolved or port == self.peer_port

    def resolve(self, port: int):
        """Fix the peer port from the first inbound datagram."""
        if not self.resolved:
            self.peer_port = port
            self.resolved = True

    def __str__(self) -> str:
        port = self.peer_port if self.resolved else f"{self.peer_port}?"
        return f"{self.peer_addr}:{port}"


class TransferHandler:
    """
    Application callbacks for one transfer.

    Override the ones you need. ``on_block`` may raise RequestRejected to
    abort the transfer with a specific error code (e.g. disk full); any
    other exception aborts it with code 0.
    Exactly one of ``on_complete`` / ``on_failed`` is called per transfer.
    """

    def on_block(self, block: bytes) -> None:
        pass

    def on_complete(self) -> None:
        pass

    def on_failed(self, message: str) -> None:
        pass


SendCallback = Callable[[bytes, str, int], None]


class TransferSession:
    """
    Shared machinery for all four transfer roles.

    Subclasses implement ``start`` (the opening move) and override the
    opcode handlers that are legal for their direction. Every other packet
    is a protocol violation and aborts the transfer with error code 4.
    """

    direction: TransferDirection

    def __init__(self, peer_addr: str, peer_port: int,
                 handler: Optional[TransferHandler] = None, *,
                 loop: Any,
                 config: Optional[TFTPConfig] = None,
                 send_callback: Optional[SendCallback] = None,
                 peer_resolved: bool = True):
        """
        Initialize a transfer session.

        Args:
            peer_addr: Numeric address of the peer
            peer_port: Peer port (the server's well-known port for clients)
            handler: Application callbacks for this transfer
            loop: Event loop used to schedule retransmissions
            config: TFTP configuration options
            send_callback: Function to call when sending datagrams
                           Signature: (datagram, dest_addr, dest_port)
            peer_resolved: False until the peer's reply port is known
        """
        self.config = config or TFTPConfig()
        self.handler = handler or TransferHandler()
        self.transfer_id = TransferId(peer_addr, peer_port, peer_resolved)
        self._send_callback = send_callback

        self._state_machine = TransferStateMachine()

        # Block currently expected (receive) or outstanding (send)
        self._block_no = 0

        self._timer = RetransmissionTimer(
            loop,
            on_retransmit=self._transmit,
            on_expired=self._on_timer_expired,
            base_timeout=self.config.base_timeout,
            max_timeout=self.config.max_timeout,
        )

        # Called once when the session reaches a terminal phase
        self.on_terminal: Optional[Callable[[], None]] = None

        self._dispatch = {
            Opcode.RRQ: self._on_request,
            Opcode.WRQ: self._on_request,
            Opcode.DATA: self._on_data,
            Opcode.ACK: self._on_ack,
        }

        # Statistics
        self.packets_sent = 0
        self.packets_received = 0

    @property
    def phase(self) -> TransferPhase:
        return self._state_machine.phase

    @property
    def is_terminal(self) -> bool:
        return self._state_machine.is_terminal()

    @property
    def block_no(self) -> int:
        return self._block_no

    @property
    def timer(self) -> RetransmissionTimer:
        return self._timer

    def attach(self, send_callback: SendCallback):
        """Connect the session to the socket that carries its datagrams."""
        self._send_callback = send_callback

    def start(self):
        """Make the role's opening move."""
        raise NotImplementedError

    # ========== Inbound Events ==========

    def handle(self, packet: Packet):
        """
        Process a packet from the peer.

        This is the single entry point for inbound traffic. The caller has
        already checked that the packet comes from the transfer's peer.
        ERROR packets never get here: decoding one raises PeerError, which
        the socket turns into ``fail``.
        """
        if self.is_terminal:
            return
        self.packets_received += 1
        logger.debug(f"{self.transfer_id} -> {packet}")
        self._dispatch[packet.opcode](packet)

    def _on_request(self, packet: Packet):
        self._illegal(packet)

    def _on_data(self, packet: DataPacket):
        self._illegal(packet)

    def _on_ack(self, packet: AckPacket):
        self._illegal(packet)

    def _illegal(self, packet: Packet):
        logger.warning(f"Unexpected {packet.opcode.name} from {self.transfer_id} "
                       f"on {self.direction.name.lower()} session")
        self.abort(ErrorCode.ILLEGAL_OPERATION)

    def _on_timer_expired(self):
        self.fail("Transfer timed out")

    # ========== Termination ==========

    def abort(self, code: int = ErrorCode.NOT_DEFINED, message: Optional[str] = None):
        """
        Abort the transfer and tell the peer why.

        Sends one ERROR packet (never retransmitted) unless the peer's port
        is still unknown, in which case there is nobody to tell.
        """
        if self.is_terminal:
            return

        message = message or error_message(code)
        self._timer.disarm()

        if self.transfer_id.resolved:
            self._send_packet(ErrorPacket(code, message), arm=False)

        self._state_machine.transition("abort")
        logger.warning(f"Transfer aborted: {self.transfer_id} ({message})")
        self._notify_failed(message)

    def fail(self, message: str):
        """
        End the transfer without replying.

        Used for peer-reported errors, undecodable datagrams and timeouts.
        """
        if self.is_terminal:
            return

        self._timer.disarm()
        self._state_machine.transition("abort")
        logger.warning(f"Transfer failed: {self.transfer_id} ({message})")
        self._notify_failed(message)

    def finish(self):
        """Mark the transfer as successfully completed."""
        if self.is_terminal:
            return

        self._timer.disarm()
        if self.phase == TransferPhase.AWAITING_HANDSHAKE:
            self._state_machine.transition("handshake")
        self._state_machine.transition("finish")
        logger.info(f"Transfer complete: {self.transfer_id}")

        try:
            self.handler.on_complete()
        finally:
            self._closed()

    def _notify_failed(self, message: str):
        try:
            self.handler.on_failed(message)
        finally:
            self._closed()

    def _closed(self):
        if self.on_terminal:
            self.on_terminal()

    # ========== Transmission ==========

    def _send_packet(self, packet: Packet, arm: bool = True):
        """Send a packet, waiting for a reply to it unless ``arm`` is False."""
        datagram = packet.serialize()
        logger.debug(f"{self.transfer_id} <- {packet}")
        self._transmit(datagram)
        if arm:
            self._timer.arm(datagram)

    def _transmit(self, datagram: bytes):
        if self._send_callback is None:
            raise RuntimeError("Session is not attached to a socket")
        self.packets_sent += 1
        self._send_callback(datagram, self.transfer_id.peer_addr, self.transfer_id.peer_port)

    def _deliver(self, block: bytes) -> bool:
        """Hand a block to the application. False if it refused it."""
        try:
            self.handler.on_block(block)
        except RequestRejected as exc:
            self.abort(exc.error_code, exc.message)
            return False
        except Exception:
            logger.exception(f"Transfer handler failed on block {self._block_no}")
            self.abort(ErrorCode.NOT_DEFINED)
            return False
        return True

    # ========== Statistics and Debugging ==========

    def get_statistics(self) -> dict:
        """Get session statistics."""
        return {
            "phase": self.phase.name,
            "direction": self.direction.name,
            "block_no": self._block_no,
            "packets_sent": self.packets_sent,
            "packets_received": self.packets_received,
            "timeout": self._timer.timeout,
            "retransmits": self._timer.retransmit_count,
        }

    def __str__(self) -> str:
        return (f"{type(self).__name__}({self.transfer_id}, "
                f"phase={self.phase.name}, block={self._block_no})")


class ReceiveSession(TransferSession):
    """
    Receiving end: expects DATA, answers with ACK.

    Duplicate or stale DATA (any block number other than the expected one)
    is ignored. The sender owns retransmission of DATA; our ACKs are armed
    too so a lost ACK is repeated, except the final one.
    """

    direction = TransferDirection.RECEIVE

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._block_no = 1
        self.bytes_received = 0

    def _on_data(self, packet: DataPacket):
        if packet.block_no != self._block_no:
            logger.debug(f"Ignoring DATA block {packet.block_no}, expecting {self._block_no}")
            return

        self._timer.disarm()
        if self.phase == TransferPhase.AWAITING_HANDSHAKE:
            self._state_machine.transition("handshake")

        if packet.data:
            self.bytes_received += len(packet.data)
            if not self._deliver(packet.data):
                return

        if packet.is_final:
            self._send_packet(AckPacket(self._block_no), arm=False)
            self.finish()
            return

        if self._block_no == MAX_BLOCK_NUMBER:
            # No wraparound: the next block number would not fit in 16 bits
            self.abort(ErrorCode.DISK_FULL, "File exceeds the TFTP block number limit")
            return

        self._send_packet(AckPacket(self._block_no))
        self._block_no += 1


class SendSession(TransferSession):
    """
    Sending end: sends DATA, expects ACK.

    ``_block_no`` is the block waiting to be acknowledged (0 for a WRQ).
    An ACK for any other block is ignored.
    """

    direction = TransferDirection.SEND

    def __init__(self, peer_addr: str, peer_port: int, data: bytes,
                 handler: Optional[TransferHandler] = None, **kwargs):
        super().__init__(peer_addr, peer_port, handler, **kwargs)
        self._buffer = SendBuffer(data)

    @property
    def bytes_sent(self) -> int:
        return self._buffer.bytes_sent

    def _too_large(self) -> bool:
        return self._buffer.block_count > MAX_BLOCK_NUMBER

    def _on_ack(self, packet: AckPacket):
        if packet.block_no != self._block_no:
            logger.debug(f"Ignoring ACK block {packet.block_no}, expecting {self._block_no}")
            return

        self._timer.disarm()
        if self.phase == TransferPhase.AWAITING_HANDSHAKE:
            self._state_machine.transition("handshake")

        if self._buffer.exhausted:
            # ACK of the final short block
            self.finish()
            return

        self._send_next_block()

    def _send_next_block(self):
        self._block_no += 1
        block = self._buffer.next_block()
        self._send_packet(DataPacket(self._block_no, block))

        if self._buffer.exhausted and not self.config.wait_final_ack:
            self.finish()


class ClientDownloadSession(ReceiveSession):
    """Client side of a read: RRQ, then receive DATA."""

    def __init__(self, server_addr: str, server_port: int, filename: str,
                 handler: Optional[TransferHandler] = None, **kwargs):
        kwargs.setdefault("peer_resolved", False)
        super().__init__(server_addr, server_port, handler, **kwargs)
        self.filename = filename

    def start(self):
        self._state_machine.transition("send_request")
        logger.info(f"Requesting {self.filename!r} from {self.transfer_id}")
        self._send_packet(ReadRequest(self.filename, self.config.mode))


class ClientUploadSession(SendSession):
    """Client side of a write: WRQ, wait for ACK(0), then send DATA."""

    def __init__(self, server_addr: str, server_port: int, filename: str, data: bytes,
                 handler: Optional[TransferHandler] = None, **kwargs):
        kwargs.setdefault("peer_resolved", False)
        super().__init__(server_addr, server_port, data, handler, **kwargs)
        self.filename = filename

    def start(self):
        if self._too_large():
            self.fail("File too large for TFTP transfer")
            return

        self._state_machine.transition("send_request")
        logger.info(f"Sending {self.filename!r} ({len(self._buffer)} bytes) to {self.transfer_id}")
        self._block_no = 0
        self._send_packet(WriteRequest(self.filename, self.config.mode))


class ServerDownloadSession(ReceiveSession):
    """Server side of an accepted WRQ: send ACK(0), then receive DATA."""

    def start(self):
        self._state_machine.transition("accept_request")
        self._send_packet(AckPacket(0))


class ServerUploadSession(SendSession):
    """Server side of an accepted RRQ: send DATA(1) right away."""

    def start(self):
        self._state_machine.transition("accept_request")

        if self._too_large():
            self.abort(ErrorCode.DISK_FULL, "File too large for TFTP transfer")
            return

        self._block_no = 0
        self._send_next_block()
