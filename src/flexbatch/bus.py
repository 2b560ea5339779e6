"""Shared Modbus line: RTU over RS-485 or Modbus TCP.

Both buses wrap a synchronous pymodbus client and expose
``read_registers(unit_id, function_code, address, count)``, which
returns the register block as big-endian bytes.  A lock serializes
requests so any number of poll threads can share one line.

Errors are split in two:

    ModbusError      the line works but this read failed (no answer,
                     exception response, bad unit id)
    ConnectionError  the line itself is gone; counted in
                     ``link_failures`` until a response arrives again

Example:
    >>> from flexbatch.bus import SerialBus
    >>> bus = SerialBus("/dev/ttyUSB0", 9600)
    >>> bus.read_registers(1, 3, 23316, 8).hex()
    '00003039000000000000000000000000'
"""

import logging
import threading

from pymodbus import FramerType
from pymodbus.client import ModbusSerialClient, ModbusTcpClient
from pymodbus.exceptions import ConnectionException, ModbusException

from flexbatch.config import BUS_TIMEOUT_MS
from flexbatch.errors import ModbusError
from flexbatch.protocol import (
    FC_READ_HOLDING_REGISTERS,
    FC_READ_INPUT_REGISTERS,
    MAX_READ_REGISTERS,
    MAX_UNIT_ID,
    MIN_UNIT_ID,
    registers_to_bytes,
)

log = logging.getLogger(__name__)


class ModbusBus:
    """A connected pymodbus client shared by many unit ids.

    Args:
        name: Display name (port or host:port) for log messages.
        client: Unconnected ``ModbusSerialClient`` or ``ModbusTcpClient``.

    Raises:
        ConnectionError: If the client cannot connect.
    """

    def __init__(self, name, client):
        self.name = name
        self._client = client
        self._lock = threading.Lock()
        self._link_failures = 0
        if not client.connect():
            client.close()
            raise ConnectionError("cannot open %s" % name)
        log.debug("opened %s", name)

    @property
    def link_failures(self) -> int:
        """Consecutive requests that failed because the line was down."""
        return self._link_failures

    def read_registers(self, unit_id, function_code, address, count):
        """Read *count* registers from *unit_id*; return them as bytes.

        Raises:
            ModbusError: On a bad request, no response, an exception
                response or a short reply.
            ConnectionError: If the line is down.
        """
        if not MIN_UNIT_ID <= unit_id <= MAX_UNIT_ID:
            raise ModbusError(
                "unit id %d outside %d-%d" % (unit_id, MIN_UNIT_ID, MAX_UNIT_ID)
            )
        if not 1 <= count <= MAX_READ_REGISTERS:
            raise ModbusError("register count %d out of range" % count)
        if function_code == FC_READ_HOLDING_REGISTERS:
            read = self._client.read_holding_registers
        elif function_code == FC_READ_INPUT_REGISTERS:
            read = self._client.read_input_registers
        else:
            raise ModbusError("unsupported function code 0x%02x" % function_code)

        with self._lock:
            try:
                response = read(address, count=count, device_id=unit_id)
            except (ConnectionException, OSError) as exc:
                self._link_failures += 1
                raise ConnectionError("%s: %s" % (self.name, exc)) from exc
            except ModbusException as exc:
                raise ModbusError("unit %d: %s" % (unit_id, exc)) from exc
            self._link_failures = 0

        if response.isError():
            raise ModbusError(
                "exception response from unit %d: %s" % (unit_id, response)
            )
        if len(response.registers) != count:
            raise ModbusError(
                "unit %d: expected %d registers, got %d"
                % (unit_id, count, len(response.registers))
            )
        return registers_to_bytes(response.registers)

    def close(self):
        """Close the underlying client."""
        with self._lock:
            self._client.close()


class SerialBus(ModbusBus):
    """Half-duplex RS-485 line speaking Modbus RTU.

    Args:
        port: Serial port device path (e.g. ``"/dev/ttyUSB0"``).
        baudrate: Baud rate for the connection (e.g. ``9600``).
        timeout_ms: Response timeout in milliseconds.
    """

    def __init__(self, port, baudrate, timeout_ms=BUS_TIMEOUT_MS):
        # No client-side retries; the next poll tick is the retry.
        client = ModbusSerialClient(
            port,
            framer=FramerType.RTU,
            baudrate=baudrate,
            timeout=timeout_ms / 1000.0,
            retries=0,
        )
        super().__init__(port, client)


class TcpBus(ModbusBus):
    """Modbus TCP connection to a gateway or device.

    pymodbus reconnects on the next request after the socket drops.

    Args:
        host: Gateway host name or address.
        port: TCP port (usually 502).
        timeout_ms: Connect and response timeout in milliseconds.
    """

    def __init__(self, host, port, timeout_ms=BUS_TIMEOUT_MS):
        client = ModbusTcpClient(
            host, port=port, timeout=timeout_ms / 1000.0, retries=0,
        )
        super().__init__("%s:%d" % (host, port), client)
