"""
TFTP Packet - Parsing and construction of TFTP packets.

TFTP (RFC 1350) has exactly five packet types. Every packet starts with a
2-byte opcode; the rest of the layout depends on the opcode:

      2 bytes     string    1 byte     string   1 byte
     ------------------------------------------------
    | 01/02  |  Filename  |   0  |    Mode    |   0  |     RRQ / WRQ
     ------------------------------------------------

      2 bytes     2 bytes      n bytes (0-512)
     ----------------------------------
    |   03   |   Block #  |   Data     |                     DATA
     ----------------------------------

      2 bytes     2 bytes
     ---------------------
    |   04   |   Block #  |                                  ACK
     ---------------------

      2 bytes     2 bytes      string    1 byte
     -----------------------------------------
    |   05   |  ErrorCode |   ErrMsg   |   0  |             ERROR
     -----------------------------------------

All integers are big-endian. All strings are NUL-terminated.

Key design insight: a DATA packet shorter than the full block size is the
only end-of-file signal TFTP has. That is why a file whose length is an exact
multiple of 512 bytes ends with an empty DATA packet.
"""

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar


# Fixed by RFC 1350; there is no option negotiation in this implementation
BLOCK_SIZE = 512

# Opcode (2) + block number (2)
HEADER_SIZE = 4

MIN_PACKET_SIZE = HEADER_SIZE
MAX_PACKET_SIZE = HEADER_SIZE + BLOCK_SIZE

MAX_BLOCK_NUMBER = 0xFFFF

TRANSFER_MODES = ("netascii", "octet", "mail")
DEFAULT_MODE = "octet"

_HEADER = struct.Struct("!HH")
_OPCODE = struct.Struct("!H")


class Opcode(IntEnum):
    """The five TFTP packet types."""
    RRQ = 1    # Read request
    WRQ = 2    # Write request
    DATA = 3   # Data block
    ACK = 4    # Acknowledgment
    ERROR = 5  # Error


class ErrorCode(IntEnum):
    """
    Error codes defined by RFC 1350.

    Code 0 means "not defined, see error message"; the others have fixed
    meanings and a canned message used when the peer sends no text.
    """
    NOT_DEFINED = 0
    FILE_NOT_FOUND = 1
    ACCESS_VIOLATION = 2
    DISK_FULL = 3
    ILLEGAL_OPERATION = 4
    UNKNOWN_TRANSFER_ID = 5
    FILE_EXISTS = 6
    NO_SUCH_USER = 7


ERROR_MESSAGES = {
    ErrorCode.NOT_DEFINED: "Unknown error",
    ErrorCode.FILE_NOT_FOUND: "File not found",
    ErrorCode.ACCESS_VIOLATION: "Access violation",
    ErrorCode.DISK_FULL: "Disk full or allocation exceeded",
    ErrorCode.ILLEGAL_OPERATION: "Illegal TFTP operation",
    ErrorCode.UNKNOWN_TRANSFER_ID: "Unknown transfer ID",
    ErrorCode.FILE_EXISTS: "File already exists",
    ErrorCode.NO_SUCH_USER: "No such user",
}


def error_message(code: int) -> str:
    """Canned message for an error code ("Unknown error" for unknown codes)."""
    return ERROR_MESSAGES.get(code, ERROR_MESSAGES[ErrorCode.NOT_DEFINED])


class TFTPError(Exception):
    """
    Base class for TFTP failures.

    Carries the error code that should be reported to the peer (or that the
    peer reported to us) alongside a human-readable message.
    """

    def __init__(self, message: str = "", error_code: int = ErrorCode.NOT_DEFINED):
        self.message = message or error_message(error_code)
        self.error_code = error_code
        super().__init__(self.message)


class ProtocolError(TFTPError, ValueError):
    """A datagram could not be decoded as a TFTP packet."""


class PeerError(ProtocolError):
    """The datagram was an ERROR packet: the peer has aborted the transfer."""


class RequestRejected(TFTPError):
    """
    Raised by application handlers to refuse a request or a block.

    The error code and message are sent to the peer in an ERROR packet.
    """


@dataclass(frozen=True)
class Packet:
    """
    Base class for the five TFTP packet types.

    Each subclass fixes its opcode as a class attribute, so a decoded packet
    is always exactly one of the five shapes and never partially populated.
    """

    opcode: ClassVar[Opcode]

    def serialize(self) -> bytes:
        raise NotImplementedError

    @classmethod
    def parse(cls, data: bytes) -> "Packet":
        """
        Parse a TFTP packet from raw bytes.

        Args:
            data: Raw UDP payload

        Returns:
            One of ReadRequest, WriteRequest, DataPacket, AckPacket

        Raises:
            PeerError: If the datagram is an ERROR packet
            ProtocolError: If the datagram is not a valid TFTP packet
        """
        if len(data) < MIN_PACKET_SIZE:
            raise ProtocolError(f"TFTP packet too small ({len(data)} bytes)")
        if len(data) > MAX_PACKET_SIZE:
            raise ProtocolError(f"TFTP packet too large ({len(data)} bytes)")

        (code,) = _OPCODE.unpack_from(data)
        try:
            opcode = Opcode(code)
        except ValueError:
            raise ProtocolError(f"Unknown TFTP packet type (code {code})") from None

        if opcode in (Opcode.RRQ, Opcode.WRQ):
            filename, mode = _parse_request(data[2:])
            if opcode == Opcode.RRQ:
                return ReadRequest(filename, mode)
            return WriteRequest(filename, mode)

        (_, number) = _HEADER.unpack_from(data)

        if opcode == Opcode.DATA:
            return DataPacket(number, bytes(data[HEADER_SIZE:]))

        if opcode == Opcode.ACK:
            return AckPacket(number)

        # ERROR packets are never handed back as packets: the transfer is over
        text = bytes(data[HEADER_SIZE:]).split(b"\x00", 1)[0]
        message = text.decode("utf-8", errors="replace") or error_message(number)
        raise PeerError(message, number)


def _parse_request(body: bytes):
    """Split the filename and mode out of an RRQ/WRQ body."""
    # Anything after the mode (RFC 2347 options) is ignored
    fields = body.split(b"\x00", 2)
    if len(fields) < 3:
        raise ProtocolError("Malformed request packet (missing NUL terminator)")

    raw_filename, raw_mode = fields[0], fields[1]
    if not raw_filename:
        raise ProtocolError("Malformed request packet (empty filename)")

    try:
        filename = raw_filename.decode("utf-8")
        mode = raw_mode.decode("ascii").lower()
    except UnicodeDecodeError:
        raise ProtocolError("Malformed request packet (undecodable text)") from None

    if mode not in TRANSFER_MODES:
        raise ProtocolError(f"Unknown transfer mode: {mode!r}")

    return filename, mode


@dataclass(frozen=True)
class Request(Packet):
    """Common shape of read and write requests."""

    filename: str
    mode: str = DEFAULT_MODE

    def serialize(self) -> bytes:
        return (
            _OPCODE.pack(self.opcode)
            + self.filename.encode("utf-8") + b"\x00"
            + self.mode.encode("ascii") + b"\x00"
        )


@dataclass(frozen=True)
class ReadRequest(Request):
    opcode: ClassVar[Opcode] = Opcode.RRQ


@dataclass(frozen=True)
class WriteRequest(Request):
    opcode: ClassVar[Opcode] = Opcode.WRQ


@dataclass(frozen=True)
class DataPacket(Packet):
    """One block of file data (0-512 bytes)."""

    opcode: ClassVar[Opcode] = Opcode.DATA

    block_no: int
    data: bytes = b""

    @property
    def is_final(self) -> bool:
        """A short block ends the transfer."""
        return len(self.data) < BLOCK_SIZE

    def serialize(self) -> bytes:
        return _HEADER.pack(self.opcode, self.block_no) + self.data

    def __str__(self) -> str:
        return f"DATA block={self.block_no} len={len(self.data)}"


@dataclass(frozen=True)
class AckPacket(Packet):
    opcode: ClassVar[Opcode] = Opcode.ACK

    block_no: int

    def serialize(self) -> bytes:
        return _HEADER.pack(self.opcode, self.block_no)

    def __str__(self) -> str:
        return f"ACK block={self.block_no}"


@dataclass(frozen=True)
class ErrorPacket(Packet):
    """
    An ERROR packet.

    Only ever constructed for sending. Decoding one raises PeerError instead.
    """

    opcode: ClassVar[Opcode] = Opcode.ERROR

    error_code: int
    message: str = ""

    def serialize(self) -> bytes:
        return (
            _HEADER.pack(self.opcode, self.error_code)
            + self.message.encode("utf-8") + b"\x00"
        )

    def __str__(self) -> str:
        return f"ERROR code={self.error_code} message={self.message!r}"


def decode(data: bytes) -> Packet:
    """Decode a datagram. See Packet.parse."""
    return Packet.parse(data)


def encode(packet: Packet) -> bytes:
    """Encode a packet to its wire form."""
    return packet.serialize()
