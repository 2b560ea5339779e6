"""Modbus constants shared by the plan builder and the bus.

Framing and CRC are handled by pymodbus; this module only names the
function codes and address limits the rest of the package checks
against.
"""

import struct

FC_READ_HOLDING_REGISTERS = 0x03
FC_READ_INPUT_REGISTERS = 0x04

READ_REGISTER_FUNCTIONS = (FC_READ_HOLDING_REGISTERS, FC_READ_INPUT_REGISTERS)

# Unit addresses a master may poll (0 is broadcast, 248-255 reserved).
MIN_UNIT_ID = 1
MAX_UNIT_ID = 247

MAX_READ_REGISTERS = 125


def registers_to_bytes(registers):
    """Pack 16-bit register values into big-endian wire order.

    Example:
        >>> registers_to_bytes([0x0001, 0xE240]).hex()
        '0001e240'
    """
    return struct.pack(">%dH" % len(registers), *registers)
