"""flexbatch -- poll Modbus register blocks from many unit ids on one line."""

__version__ = "0.1.0"
