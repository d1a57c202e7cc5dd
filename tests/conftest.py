"""
Shared fixtures: a fake event loop with controllable time, and a recorder
for datagrams sent by a session.
"""

import pytest

from tftp.packet import Packet, ProtocolError


class FakeHandle:
    """Stand-in for asyncio.TimerHandle."""

    def __init__(self, when, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeLoop:
    """
    Just enough of an event loop for the retransmission timer.

    Time only moves when ``advance`` is called; callbacks whose deadline has
    passed run in deadline order.
    """

    def __init__(self):
        self.now = 0.0
        self._handles = []

    def time(self):
        return self.now

    def call_later(self, delay, callback, *args):
        handle = FakeHandle(self.now + delay, callback, args)
        self._handles.append(handle)
        return handle

    def pending(self):
        return [h for h in self._handles if not h.cancelled]

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = [h for h in self.pending() if h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.when)
            self._handles.remove(handle)
            self.now = handle.when
            handle.callback(*handle.args)
        self.now = target


class SentLog:
    """Records datagrams passed to a session's send callback."""

    def __init__(self):
        self.datagrams = []

    def __call__(self, datagram, addr, port):
        self.datagrams.append((datagram, addr, port))

    def packets(self):
        """Decoded packets; ERROR packets come back as the exception raised."""
        decoded = []
        for datagram, _, _ in self.datagrams:
            try:
                decoded.append(Packet.parse(datagram))
            except ProtocolError as exc:
                decoded.append(exc)
        return decoded

    def last(self):
        return self.packets()[-1]

    def clear(self):
        self.datagrams.clear()


class FakeTransport:
    """Datagram transport that records instead of sending."""

    def __init__(self, sockname=("127.0.0.1", 40000)):
        self.sockname = sockname
        self.sent = []
        self.close_count = 0

    def sendto(self, data, addr=None):
        self.sent.append((data, addr))

    def close(self):
        self.close_count += 1

    def get_extra_info(self, name, default=None):
        if name == "sockname":
            return self.sockname
        return default

    def packets(self):
        decoded = []
        for datagram, _ in self.sent:
            try:
                decoded.append(Packet.parse(datagram))
            except ProtocolError as exc:
                decoded.append(exc)
        return decoded


class RecordingHandler:
    """TransferHandler that remembers everything it was told."""

    def __init__(self):
        self.blocks = []
        self.completed = 0
        self.failures = []

    def on_block(self, block):
        self.blocks.append(block)

    def on_complete(self):
        self.completed += 1

    def on_failed(self, message):
        self.failures.append(message)

    @property
    def data(self):
        return b"".join(self.blocks)


@pytest.fixture
def loop():
    return FakeLoop()


@pytest.fixture
def sent():
    return SentLog()


@pytest.fixture
def handler():
    return RecordingHandler()


@pytest.fixture
def transport():
    return FakeTransport()
