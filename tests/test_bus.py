"""Tests for flexbatch.bus."""

from unittest.mock import MagicMock, patch

import pytest
from pymodbus import FramerType
from pymodbus.exceptions import ConnectionException, ModbusIOException

from conftest import make_block
from flexbatch.bus import SerialBus, TcpBus
from flexbatch.config import BUS_TIMEOUT_MS
from flexbatch.errors import ModbusError


def _response(registers=None, error=False):
    """Stand-in for a pymodbus read response."""
    response = MagicMock()
    response.isError.return_value = error
    response.registers = list(registers or [])
    return response


def _registers(block: bytes) -> list[int]:
    return [int.from_bytes(block[i:i + 2], "big") for i in range(0, len(block), 2)]


@pytest.fixture
def client():
    """A connected mock client returned by both client constructors."""
    mock_client = MagicMock()
    mock_client.connect.return_value = True
    with patch("flexbatch.bus.ModbusSerialClient", return_value=mock_client) as s, \
            patch("flexbatch.bus.ModbusTcpClient", return_value=mock_client) as t:
        mock_client.serial_cls = s
        mock_client.tcp_cls = t
        yield mock_client


class TestOpen:
    """Tests for bus construction."""

    def test_serial_client_settings(self, client):
        bus = SerialBus("/dev/ttyUSB0", 9600)
        assert bus.name == "/dev/ttyUSB0"
        args, kwargs = client.serial_cls.call_args
        assert args == ("/dev/ttyUSB0",)
        assert kwargs["framer"] == FramerType.RTU
        assert kwargs["baudrate"] == 9600
        assert kwargs["timeout"] == BUS_TIMEOUT_MS / 1000.0
        assert kwargs["retries"] == 0
        client.connect.assert_called_once()

    def test_tcp_client_settings(self, client):
        bus = TcpBus("10.0.0.5", 1502, timeout_ms=500)
        assert bus.name == "10.0.0.5:1502"
        args, kwargs = client.tcp_cls.call_args
        assert args == ("10.0.0.5",)
        assert kwargs["port"] == 1502
        assert kwargs["timeout"] == 0.5

    def test_connect_failure(self, client):
        """A bus that cannot connect raises ConnectionError (an OSError)."""
        client.connect.return_value = False
        with pytest.raises(OSError, match="cannot open /dev/ttyUSB9"):
            SerialBus("/dev/ttyUSB9", 9600)
        client.close.assert_called_once()


class TestReadRegisters:
    """Tests for ModbusBus.read_registers."""

    def test_holding_registers_as_bytes(self, client):
        block = make_block(12345, 7, 9)
        client.read_holding_registers.return_value = _response(_registers(block))
        bus = SerialBus("/dev/ttyUSB0", 9600)

        assert bus.read_registers(2, 3, 23316, 8) == block
        client.read_holding_registers.assert_called_once_with(
            23316, count=8, device_id=2
        )

    def test_input_registers(self, client):
        client.read_input_registers.return_value = _response([0x002A])
        bus = TcpBus("127.0.0.1", 502)
        assert bus.read_registers(1, 4, 0, 1) == b"\x00\x2a"

    def test_exception_response(self, client):
        client.read_holding_registers.return_value = _response(error=True)
        bus = SerialBus("/dev/ttyUSB0", 9600)
        with pytest.raises(ModbusError, match="exception response from unit 1"):
            bus.read_registers(1, 3, 0, 1)

    def test_no_response(self, client):
        """A silent unit is a read failure, not a line failure."""
        client.read_holding_registers.side_effect = ModbusIOException("no data")
        bus = SerialBus("/dev/ttyUSB0", 9600)
        with pytest.raises(ModbusError, match="unit 3"):
            bus.read_registers(3, 3, 0, 1)
        assert bus.link_failures == 0

    def test_short_reply(self, client):
        client.read_holding_registers.return_value = _response([1, 2])
        bus = SerialBus("/dev/ttyUSB0", 9600)
        with pytest.raises(ModbusError, match="expected 8 registers, got 2"):
            bus.read_registers(1, 3, 23316, 8)

    @pytest.mark.parametrize("unit", [0, 248, 300])
    def test_unit_id_out_of_range(self, client, unit):
        """Ids a Modbus frame cannot address fail as ModbusError."""
        bus = TcpBus("127.0.0.1", 502)
        with pytest.raises(ModbusError, match="outside 1-247"):
            bus.read_registers(unit, 3, 23316, 8)
        client.read_holding_registers.assert_not_called()

    def test_unsupported_function(self, client):
        bus = SerialBus("/dev/ttyUSB0", 9600)
        with pytest.raises(ModbusError, match="0x01"):
            bus.read_registers(1, 1, 0, 1)

    def test_bad_count(self, client):
        bus = SerialBus("/dev/ttyUSB0", 9600)
        with pytest.raises(ModbusError, match="count"):
            bus.read_registers(1, 3, 0, 126)


class TestLinkFailures:
    """Line failures are counted until a response arrives."""

    def test_connection_exception_counts(self, client):
        client.read_holding_registers.side_effect = ConnectionException("gone")
        bus = SerialBus("/dev/ttyUSB0", 9600)
        for _ in range(2):
            with pytest.raises(ConnectionError):
                bus.read_registers(1, 3, 0, 1)
        assert bus.link_failures == 2

    def test_os_error_counts(self, client):
        client.read_holding_registers.side_effect = OSError("device removed")
        bus = SerialBus("/dev/ttyUSB0", 9600)
        with pytest.raises(ConnectionError, match="device removed"):
            bus.read_registers(1, 3, 0, 1)
        assert bus.link_failures == 1

    def test_response_resets_count(self, client):
        client.read_holding_registers.side_effect = [
            ConnectionException("gone"), _response([5]),
        ]
        bus = SerialBus("/dev/ttyUSB0", 9600)
        with pytest.raises(ConnectionError):
            bus.read_registers(1, 3, 0, 1)
        assert bus.read_registers(1, 3, 0, 1) == b"\x00\x05"
        assert bus.link_failures == 0


class TestClose:
    def test_close(self, client):
        SerialBus("/dev/ttyUSB0", 9600).close()
        client.close.assert_called_once()
