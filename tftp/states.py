"""
TFTP Transfer Phases - the lifecycle of a single transfer.

A TFTP transfer is far simpler than a TCP connection, but it still has a
lifecycle worth making explicit:

    IDLE --send_request--> AWAITING_HANDSHAKE --handshake--> TRANSFERRING
      |                            |                              |
      +-------accept_request-------|----------------------------->+
                                   |                              |
                                   +--finish--> COMPLETED <--finish+
                                   |                              |
                                   +--abort---> ABORTED  <--abort-+

Clients start in IDLE, send RRQ/WRQ and wait for the first reply from the
server's new port (AWAITING_HANDSHAKE). Servers accept a request and go
straight to TRANSFERRING. COMPLETED and ABORTED are terminal: a terminal
session ignores every further event.
"""

from enum import Enum, auto
from typing import Callable, Dict, Optional, Tuple


class TransferPhase(Enum):
    """Where a transfer is in its lifecycle."""

    # Created, nothing sent yet
    IDLE = auto()

    # Client sent RRQ/WRQ, waiting for the server's first reply
    AWAITING_HANDSHAKE = auto()

    # Blocks are flowing
    TRANSFERRING = auto()

    # Every block delivered and acknowledged
    COMPLETED = auto()

    # Failed: peer error, protocol violation, timeout or local refusal
    ABORTED = auto()

    def is_terminal(self) -> bool:
        """Check if the transfer is over."""
        return self in (TransferPhase.COMPLETED, TransferPhase.ABORTED)

    def is_active(self) -> bool:
        """Check if packets may still be exchanged."""
        return self in (TransferPhase.AWAITING_HANDSHAKE, TransferPhase.TRANSFERRING)


class TransferDirection(Enum):
    """Which way file data flows, seen from the local end."""
    SEND = auto()
    RECEIVE = auto()


# (from_phase, event) -> to_phase
_TRANSITIONS: Dict[Tuple[TransferPhase, str], TransferPhase] = {
    (TransferPhase.IDLE, "send_request"): TransferPhase.AWAITING_HANDSHAKE,
    (TransferPhase.IDLE, "accept_request"): TransferPhase.TRANSFERRING,
    (TransferPhase.IDLE, "abort"): TransferPhase.ABORTED,

    (TransferPhase.AWAITING_HANDSHAKE, "handshake"): TransferPhase.TRANSFERRING,
    (TransferPhase.AWAITING_HANDSHAKE, "abort"): TransferPhase.ABORTED,

    (TransferPhase.TRANSFERRING, "finish"): TransferPhase.COMPLETED,
    (TransferPhase.TRANSFERRING, "abort"): TransferPhase.ABORTED,
}


class TransferStateMachine:
    """
    Transfer phase state machine.

    Transitions are table driven; anything not in the table is rejected and
    leaves the phase unchanged.
    """

    def __init__(self, initial_phase: TransferPhase = TransferPhase.IDLE):
        self.phase = initial_phase
        self._transition_callbacks: list[Callable] = []

    def on_transition(self, callback: Callable[[TransferPhase, TransferPhase, str], None]):
        """Register a callback for phase transitions."""
        self._transition_callbacks.append(callback)

    def transition(self, event: str) -> bool:
        """
        Attempt a phase transition.

        Args:
            event: The event triggering the transition

        Returns:
            True if the transition was legal and applied
        """
        new_phase: Optional[TransferPhase] = _TRANSITIONS.get((self.phase, event))
        if new_phase is None:
            return False

        old_phase = self.phase
        self.phase = new_phase
        for callback in self._transition_callbacks:
            callback(old_phase, new_phase, event)
        return True

    def is_terminal(self) -> bool:
        return self.phase.is_terminal()

    def __str__(self) -> str:
        return f"TransferStateMachine(phase={self.phase.name})"
