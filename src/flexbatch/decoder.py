"""Decode raw register bytes into typed measurements.

The register block is read as a big-endian byte stream, one field after
another, never seeking backwards.  A buffer that runs out part way
raises ``DecodeError`` at the first field that does not fit.

Layout of the block (three uint32 words, two registers each):

    word 0  active power, hundredths of a watt
    word 1  reserved
    word 2  reserved

The reserved words are read so the cursor ends up where later fields
will start; their values are returned in ``DecodedBlock.reserved`` and
not published as channels.

Example:
    >>> import struct
    >>> from flexbatch.decoder import decode
    >>> from flexbatch.plan import RegisterReadPlan
    >>> buf = struct.pack(">III", 12345, 7, 9) + bytes(4)
    >>> decode(buf, RegisterReadPlan(device_id=2))[0].value
    123.45
"""

import struct
from dataclasses import dataclass

from flexbatch.errors import DecodeError
from flexbatch.plan import ACTIVE_POWER, channel_key

UNIT_WATT = "W"

_ACTIVE_POWER_SCALE = 100
_RESERVED_WORDS = 2


@dataclass(frozen=True)
class DecodedMeasurement:
    """One decoded value for one device channel."""

    device_id: int
    channel_key: str
    value: float
    unit: str


@dataclass(frozen=True)
class DecodedBlock:
    """Everything read from one register block."""

    measurements: list[DecodedMeasurement]
    reserved: tuple[int, ...]


class RegisterBuffer:
    """Sequential big-endian reader over a register payload.

    Example:
        >>> buf = RegisterBuffer(bytes([0, 0, 1, 0]))
        >>> buf.get_uint32()
        256
        >>> buf.remaining()
        0
    """

    def __init__(self, data: bytes):
        self._data = bytes(data)
        self._pos = 0

    def remaining(self) -> int:
        """Number of unread bytes."""
        return len(self._data) - self._pos

    def position(self) -> int:
        """Offset of the next unread byte."""
        return self._pos

    def _take(self, fmt: str):
        size = struct.calcsize(fmt)
        if self.remaining() < size:
            raise DecodeError(
                "buffer under-run at offset %d: need %d bytes, %d left"
                % (self._pos, size, self.remaining())
            )
        value = struct.unpack_from(fmt, self._data, self._pos)[0]
        self._pos += size
        return value

    def get_uint16(self) -> int:
        return self._take(">H")

    def get_uint32(self) -> int:
        return self._take(">I")

    def get_int32(self) -> int:
        return self._take(">i")


def decode_block(buffer: bytes, plan) -> DecodedBlock:
    """Decode a register block read for *plan*.

    Raises:
        DecodeError: If *buffer* is shorter than ``plan.register_count``
            registers, or too short for the field layout.
    """
    required = plan.register_count * 2
    if len(buffer) < required:
        raise DecodeError(
            "device %d: got %d bytes, plan needs %d"
            % (plan.device_id, len(buffer), required)
        )

    reader = RegisterBuffer(buffer)
    raw_power = reader.get_uint32()
    reserved = tuple(reader.get_uint32() for _ in range(_RESERVED_WORDS))

    power = DecodedMeasurement(
        device_id=plan.device_id,
        channel_key=channel_key(plan.device_id, ACTIVE_POWER),
        value=raw_power / _ACTIVE_POWER_SCALE,
        unit=UNIT_WATT,
    )
    return DecodedBlock(measurements=[power], reserved=reserved)


def decode(buffer: bytes, plan) -> list[DecodedMeasurement]:
    """Decode *buffer* and return only the published measurements."""
    return decode_block(buffer, plan).measurements
