"""
TFTP Buffers - slicing outgoing data into blocks, collecting incoming blocks.

TFTP buffers are much simpler than TCP's: with exactly one block in flight
there is no reordering and nothing to reassemble.

Send Buffer:
- Holds the complete payload for the transfer
- A cursor marks how much has been handed out as blocks
- Always produces a final short block, even if that block is empty

    [   sent (ACKed or in flight)   |          not yet sent          ]
    ^                               ^                                ^
    0                             cursor                          len(data)

Receive Buffer:
- Growable byte array that blocks are appended to in order
"""

from .packet import BLOCK_SIZE


class SendBuffer:
    """
    Outgoing data for one transfer.

    Number of blocks is ``len(data) // block_size + 1``: a payload that is an
    exact multiple of the block size ends with an empty block.
    """

    def __init__(self, data: bytes, block_size: int = BLOCK_SIZE):
        self._data = bytes(data)
        self._block_size = block_size
        self._cursor = 0
        self._final_taken = False

    @property
    def block_count(self) -> int:
        """Number of DATA packets needed for the whole payload."""
        return len(self._data) // self._block_size + 1

    @property
    def bytes_sent(self) -> int:
        return self._cursor

    @property
    def bytes_remaining(self) -> int:
        return len(self._data) - self._cursor

    @property
    def exhausted(self) -> bool:
        """True once the final (short) block has been handed out."""
        return self._final_taken

    def next_block(self) -> bytes:
        """
        Take the next block and advance the cursor.

        Raises:
            RuntimeError: If the final block was already taken
        """
        if self._final_taken:
            raise RuntimeError("Send buffer exhausted")

        block = self._data[self._cursor:self._cursor + self._block_size]
        self._cursor += len(block)
        if len(block) < self._block_size:
            self._final_taken = True
        return block

    def __len__(self) -> int:
        return len(self._data)


class ReceiveBuffer:
    """Incoming data for one transfer, in block order."""

    def __init__(self):
        self._buffer = bytearray()
        self._blocks = 0

    def append(self, block: bytes):
        self._buffer.extend(block)
        self._blocks += 1

    @property
    def block_count(self) -> int:
        """Number of blocks appended."""
        return self._blocks

    def getvalue(self) -> bytes:
        return bytes(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)
