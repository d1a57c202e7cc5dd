"""
Tests for TFTP Buffers.
"""

import pytest
from tftp.buffer import SendBuffer, ReceiveBuffer


class TestSendBuffer:
    """Test slicing outgoing data into blocks."""

    def test_block_count(self):
        assert SendBuffer(b"").block_count == 1
        assert SendBuffer(b"a" * 300).block_count == 1
        assert SendBuffer(b"a" * 512).block_count == 2
        assert SendBuffer(b"a" * 1024).block_count == 3
        assert SendBuffer(b"a" * 1025).block_count == 3

    def test_exact_multiple_ends_with_empty_block(self):
        """Test 1024 bytes -> 512, 512, 0."""
        buf = SendBuffer(b"a" * 1024)
        blocks = []
        while not buf.exhausted:
            blocks.append(buf.next_block())
        assert [len(b) for b in blocks] == [512, 512, 0]

    def test_short_payload_is_one_block(self):
        buf = SendBuffer(b"hello")
        assert buf.next_block() == b"hello"
        assert buf.exhausted

    def test_cursor_tracking(self):
        buf = SendBuffer(b"b" * 700)
        assert buf.bytes_remaining == 700
        buf.next_block()
        assert buf.bytes_sent == 512
        assert buf.bytes_remaining == 188
        assert not buf.exhausted

    def test_next_block_after_exhausted(self):
        buf = SendBuffer(b"")
        assert buf.next_block() == b""
        with pytest.raises(RuntimeError):
            buf.next_block()

    def test_custom_block_size(self):
        buf = SendBuffer(b"abcdef", block_size=4)
        assert buf.next_block() == b"abcd"
        assert buf.next_block() == b"ef"
        assert len(buf) == 6


class TestReceiveBuffer:
    """Test collecting incoming blocks."""

    def test_append_in_order(self):
        buf = ReceiveBuffer()
        buf.append(b"Hello, ")
        buf.append(b"World!")
        assert buf.getvalue() == b"Hello, World!"
        assert buf.block_count == 2
        assert len(buf) == 13

    def test_empty_block_counted(self):
        buf = ReceiveBuffer()
        buf.append(b"abc")
        buf.append(b"")
        assert buf.block_count == 2
        assert buf.getvalue() == b"abc"

    def test_empty(self):
        buf = ReceiveBuffer()
        assert buf.getvalue() == b""
        assert len(buf) == 0
