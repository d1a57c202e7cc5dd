"""
Tests for TFTP Transfer Sockets.
"""

import pytest
from tftp.packet import ErrorCode, PeerError, ReadRequest, DataPacket, AckPacket, ErrorPacket
from tftp.session import ClientDownloadSession, ServerUploadSession
from tftp.socket import TransferSocket
from tftp.states import TransferPhase


@pytest.fixture
def download(loop, handler, transport):
    """A client download bound to a fake transport, RRQ already sent."""
    session = ClientDownloadSession("10.0.0.1", 69, "boot.img", handler, loop=loop)
    sock = TransferSocket(session)
    sock.connection_made(transport)
    return sock


@pytest.fixture
def upload(loop, handler, transport):
    """A server upload to 10.0.0.1:5000 bound to a fake transport, DATA 1 already sent."""
    session = ServerUploadSession("10.0.0.1", 5000, b"a" * 600, handler, loop=loop)
    sock = TransferSocket(session)
    sock.connection_made(transport)
    return sock


class TestOpening:
    """Test that binding the socket starts the transfer."""

    def test_connection_made_sends_opening_packet(self, download, transport):
        assert transport.packets() == [ReadRequest("boot.img")]
        assert transport.sent[0][1] == ("10.0.0.1", 69)

    def test_local_address(self, download):
        assert download.local_address == ("127.0.0.1", 40000)


class TestTransferIdCheck:
    """Test that only the transfer's peer can affect it."""

    def test_first_reply_resolves_port(self, download, transport, handler):
        download.datagram_received(DataPacket(1, b"hi").serialize(), ("10.0.0.1", 41000))

        assert download.session.transfer_id.peer_port == 41000
        assert transport.sent[-1] == (AckPacket(1).serialize(), ("10.0.0.1", 41000))
        assert handler.data == b"hi"

    def test_other_port_dropped_after_resolution(self, download, transport):
        download.datagram_received(DataPacket(1, b"a" * 512).serialize(), ("10.0.0.1", 41000))
        count = len(transport.sent)

        download.datagram_received(DataPacket(2, b"x").serialize(), ("10.0.0.1", 41001))
        assert len(transport.sent) == count
        assert download.datagrams_dropped == 1
        assert download.session.phase == TransferPhase.TRANSFERRING

    def test_other_host_dropped(self, upload, transport):
        upload.datagram_received(AckPacket(1).serialize(), ("10.0.0.2", 5000))
        assert upload.datagrams_dropped == 1
        assert len(transport.sent) == 1

    def test_error_from_wrong_port_ignored(self, upload, handler):
        """Test that a spoofed ERROR cannot end someone else's transfer."""
        upload.datagram_received(ErrorPacket(ErrorCode.NOT_DEFINED, "bye").serialize(),
                                 ("10.0.0.1", 6000))
        assert upload.session.phase == TransferPhase.TRANSFERRING
        assert handler.failures == []

    def test_garbage_from_wrong_port_ignored(self, upload, handler):
        upload.datagram_received(b"\x00", ("10.0.0.1", 6000))
        assert handler.failures == []


class TestInbound:
    """Test decoding and delivery of peer datagrams."""

    def test_ack_advances_transfer(self, upload, transport):
        upload.datagram_received(AckPacket(1).serialize(), ("10.0.0.1", 5000))
        assert transport.packets()[-1] == DataPacket(2, b"a" * 88)

    def test_undecodable_datagram_fails_transfer(self, upload, transport, handler):
        upload.datagram_received(b"\x00", ("10.0.0.1", 5000))

        assert handler.failures == ["TFTP packet too small (1 bytes)"]
        assert upload.session.phase == TransferPhase.ABORTED
        assert len(transport.sent) == 1
        assert transport.close_count == 1

    def test_peer_error_fails_transfer(self, upload, handler, transport):
        upload.datagram_received(ErrorPacket(ErrorCode.DISK_FULL, "").serialize(),
                                 ("10.0.0.1", 5000))
        assert handler.failures == ["Disk full or allocation exceeded"]
        assert len(transport.sent) == 1

    def test_illegal_packet_answered(self, upload, transport):
        upload.datagram_received(DataPacket(1, b"x").serialize(), ("10.0.0.1", 5000))
        error = transport.packets()[-1]
        assert isinstance(error, PeerError)
        assert error.error_code == ErrorCode.ILLEGAL_OPERATION


class TestClosing:
    """Test that the socket closes exactly once."""

    def test_closes_on_completion(self, upload, transport):
        upload.datagram_received(AckPacket(1).serialize(), ("10.0.0.1", 5000))
        upload.datagram_received(AckPacket(2).serialize(), ("10.0.0.1", 5000))

        assert upload.session.phase == TransferPhase.COMPLETED
        assert upload.closed
        assert transport.close_count == 1

    def test_close_is_idempotent(self, upload, transport):
        upload.close()
        upload.close()
        assert transport.close_count == 1

    def test_no_sends_after_close(self, upload, transport):
        upload.close()
        upload.session.abort()
        assert len(transport.sent) == 1

    def test_datagrams_after_completion_ignored(self, upload, transport):
        upload.datagram_received(AckPacket(1).serialize(), ("10.0.0.1", 5000))
        upload.datagram_received(AckPacket(2).serialize(), ("10.0.0.1", 5000))
        count = len(transport.sent)

        upload.datagram_received(AckPacket(2).serialize(), ("10.0.0.1", 5000))
        assert len(transport.sent) == count

    def test_connection_lost_fails_live_transfer(self, upload, handler):
        upload.connection_lost(None)
        assert handler.failures == ["Connection closed"]
        assert upload.closed

    def test_connection_lost_after_completion(self, upload, handler):
        upload.datagram_received(AckPacket(1).serialize(), ("10.0.0.1", 5000))
        upload.datagram_received(AckPacket(2).serialize(), ("10.0.0.1", 5000))
        upload.connection_lost(None)
        assert handler.failures == []
        assert handler.completed == 1
