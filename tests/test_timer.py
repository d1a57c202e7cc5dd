"""
Tests for TFTP Retransmission Timer.
"""

import pytest
from tftp.timer import RetransmissionTimer


class TimerProbe:
    """Records retransmissions and expiry with the loop time they happened at."""

    def __init__(self, loop):
        self.loop = loop
        self.retransmits = []
        self.expired_at = []

    def on_retransmit(self, payload):
        self.retransmits.append((self.loop.time(), payload))

    def on_expired(self):
        self.expired_at.append(self.loop.time())


@pytest.fixture
def probe(loop):
    return TimerProbe(loop)


@pytest.fixture
def timer(loop, probe):
    return RetransmissionTimer(loop, probe.on_retransmit, probe.on_expired)


class TestBackoff:
    """Test exponential backoff and the give-up ceiling."""

    def test_defaults(self, timer):
        assert timer.timeout == 1.5
        assert not timer.is_active()

    def test_retransmit_schedule(self, loop, probe, timer):
        """Test retransmits at 1.5s, 4.5s and 10.5s, then expiry at 22.5s."""
        timer.arm(b"packet")
        loop.advance(30)

        assert [t for t, _ in probe.retransmits] == [1.5, 4.5, 10.5]
        assert all(payload == b"packet" for _, payload in probe.retransmits)
        assert probe.expired_at == [22.5]
        assert timer.retransmit_count == 3
        assert not timer.is_active()

    def test_nothing_before_base_timeout(self, loop, probe, timer):
        timer.arm(b"packet")
        loop.advance(1.4)
        assert probe.retransmits == []
        assert timer.is_active()

    def test_timeout_doubles(self, loop, timer):
        timer.arm(b"packet")
        loop.advance(1.5)
        assert timer.timeout == 3.0
        loop.advance(3.0)
        assert timer.timeout == 6.0

    def test_custom_limits(self, loop, probe):
        timer = RetransmissionTimer(loop, probe.on_retransmit, probe.on_expired,
                                    base_timeout=0.1, max_timeout=0.2)
        timer.arm(b"x")
        loop.advance(1)
        assert [t for t, _ in probe.retransmits] == [pytest.approx(0.1)]
        assert probe.expired_at == [pytest.approx(0.3)]


class TestArmDisarm:
    """Test arming, re-arming and cancelling the timer."""

    def test_disarm_cancels(self, loop, probe, timer):
        timer.arm(b"packet")
        loop.advance(1.0)
        timer.disarm()
        loop.advance(60)
        assert probe.retransmits == []
        assert probe.expired_at == []

    def test_disarm_resets_backoff(self, loop, timer):
        timer.arm(b"packet")
        loop.advance(1.5)
        assert timer.timeout == 3.0
        timer.disarm()
        assert timer.timeout == 1.5

    def test_rearm_replaces_pending_fire(self, loop, probe, timer):
        """Test that at most one fire is ever pending."""
        timer.arm(b"first")
        loop.advance(1.0)
        timer.arm(b"second")
        assert len(loop.pending()) == 1

        loop.advance(1.0)
        assert probe.retransmits == []
        loop.advance(0.5)
        assert probe.retransmits == [(2.5, b"second")]

    def test_arm_restarts_backoff(self, loop, timer):
        timer.arm(b"packet")
        loop.advance(4.5)
        assert timer.timeout == 6.0
        timer.arm(b"next")
        assert timer.timeout == 1.5

    def test_disarm_from_retransmit_callback(self, loop):
        """Test that a callback which disarms leaves nothing scheduled."""
        holder = {}

        def on_retransmit(payload):
            holder["timer"].disarm()

        timer = RetransmissionTimer(loop, on_retransmit, lambda: None)
        holder["timer"] = timer
        timer.arm(b"packet")
        loop.advance(2)
        assert not timer.is_active()
        assert loop.pending() == []

    def test_statistics(self, loop, timer):
        timer.arm(b"packet")
        loop.advance(30)
        stats = timer.get_statistics()
        assert stats["retransmit_count"] == 3
        assert stats["expired_count"] == 1
        assert stats["is_active"] is False
