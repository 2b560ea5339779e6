"""Exception types shared across flexbatch modules.

Configuration and decoding problems subclass ``ValueError`` so callers
that only care about "bad input" can keep catching that.
"""


class ConfigError(ValueError):
    """Device id list or config file is malformed."""


class EmptyConfigError(ConfigError):
    """Device id list parsed to zero devices."""


class DecodeError(ValueError):
    """Register payload is too short for the decoding plan."""


class ModbusError(ValueError):
    """A read failed on a working line (no answer, exception response)."""


class DrainTimeout(TimeoutError):
    """Poll jobs did not stop within the drain timeout."""


class BridgeUnavailable(Exception):
    """The shared endpoint cannot be used yet.

    Args:
        reason: Human-readable description, e.g.
            ``"Bridge 'RS485' is offline"``.
    """

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason
