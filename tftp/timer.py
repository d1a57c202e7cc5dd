"""
TFTP Retransmission Timer - timeout and exponential backoff.

TFTP has no sliding window: exactly one packet is outstanding at any time,
and reliability comes entirely from retransmitting that packet when the
expected reply does not arrive.

Unlike TCP there is no RTT estimation. The timer starts at a fixed base
timeout and doubles on every expiry:

    1.5s -> 3s -> 6s -> 12s -> give up

The doubled value is compared against a hard ceiling before each retransmit.
Once it exceeds the ceiling the transfer is declared dead and nothing more is
sent. With the defaults a silent peer is abandoned 22.5 seconds after the
last real send.

The timer never owns a thread. It schedules itself on an event loop through
``call_later``, so its callbacks run on the same loop as datagram delivery and
never overlap with them.
"""

import logging
from typing import Any, Callable, Optional


logger = logging.getLogger(__name__)


class RetransmissionTimer:
    """
    Single-shot retransmission timer for one transfer.

    At most one fire is pending at any time: ``arm`` always cancels the
    previous schedule before creating a new one.
    """

    BASE_TIMEOUT = 1.5   # seconds
    MAX_TIMEOUT = 12.0   # seconds

    def __init__(self, loop: Any,
                 on_retransmit: Callable[[bytes], None],
                 on_expired: Callable[[], None],
                 base_timeout: Optional[float] = None,
                 max_timeout: Optional[float] = None):
        """
        Initialize the retransmission timer.

        Args:
            loop: Event loop providing ``call_later(delay, callback)``
            on_retransmit: Called with the saved payload on each retransmit
            on_expired: Called once when the backoff exceeds the ceiling
            base_timeout: First wait, and the value restored by ``disarm``
            max_timeout: Largest wait that is still followed by a retransmit
        """
        self._loop = loop
        self._on_retransmit = on_retransmit
        self._on_expired = on_expired

        self._base_timeout = base_timeout if base_timeout is not None else self.BASE_TIMEOUT
        self._max_timeout = max_timeout if max_timeout is not None else self.MAX_TIMEOUT
        self._timeout = self._base_timeout

        self._handle = None
        self._payload: Optional[bytes] = None

        # Statistics
        self._retransmit_count = 0
        self._expired_count = 0

    @property
    def timeout(self) -> float:
        """Current wait in seconds."""
        return self._timeout

    @property
    def retransmit_count(self) -> int:
        return self._retransmit_count

    def arm(self, payload: bytes):
        """
        Start waiting for a reply to ``payload``.

        Called after every send that expects an answer. The backoff restarts
        from the base timeout.
        """
        self._cancel()
        self._timeout = self._base_timeout
        self._payload = payload
        self._handle = self._loop.call_later(self._timeout, self._fire)

    def disarm(self):
        """
        Cancel any pending fire and reset the backoff.

        Called when the expected reply arrives and when the transfer ends.
        """
        self._cancel()
        self._timeout = self._base_timeout
        self._payload = None

    def _cancel(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self):
        """Handle an expiry: retransmit with a doubled wait, or give up."""
        self._handle = None
        payload = self._payload
        if payload is None:
            return

        self._timeout *= 2

        if self._timeout <= self._max_timeout:
            self._retransmit_count += 1
            logger.debug(f"Retransmit #{self._retransmit_count}, next wait {self._timeout}s")
            # Schedule before the callback so a callback that disarms wins
            self._handle = self._loop.call_later(self._timeout, self._fire)
            self._on_retransmit(payload)
        else:
            self._expired_count += 1
            self._payload = None
            logger.debug(f"Backoff exceeded {self._max_timeout}s, giving up")
            self._on_expired()

    def is_active(self) -> bool:
        """Check if a fire is pending."""
        return self._handle is not None

    def get_statistics(self) -> dict:
        """Get timer statistics for debugging."""
        return {
            "timeout": self._timeout,
            "base_timeout": self._base_timeout,
            "max_timeout": self._max_timeout,
            "retransmit_count": self._retransmit_count,
            "expired_count": self._expired_count,
            "is_active": self.is_active(),
        }

    def __str__(self) -> str:
        state = "armed" if self.is_active() else "idle"
        return f"Timer({state}, timeout={self._timeout}s)"
