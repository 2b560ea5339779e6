"""Project-wide configuration constants and config-file loading.

Central place for tuneable parameters shared across modules.
Import individual names where needed.

Example:
    >>> from flexbatch.config import load_config
    >>> cfg = load_config("flexbatch.toml")
    >>> cfg["transport"]
    'rs485'
"""

import tomllib
from dataclasses import dataclass, field

# Response timeout in milliseconds for bus communication.
BUS_TIMEOUT_MS = 200

# Poll schedule applied to every device.
POLL_INTERVAL_MS = 1000
INITIAL_DELAY_MS = 1000

# Consecutive line failures after which the bridge counts as offline.
LINK_FAILURE_LIMIT = 3

# Upper bound on waiting for the previous poll generation to stop.
DRAIN_TIMEOUT_S = 10.0

DEFAULT_DEVICE_IDS = "1"
DEFAULT_LABEL = "Modbus bridge"


@dataclass
class HandlerConfig:
    """Thing configuration consumed by ``FlexbatchHandler``.

    ``registers`` is reserved for per-device register layouts and is
    not used by the fixed decoding plan.
    """

    device_ids: str = DEFAULT_DEVICE_IDS
    registers: list[str] = field(default_factory=list)
    interval_ms: int = POLL_INTERVAL_MS
    initial_delay_ms: int = INITIAL_DELAY_MS


def load_config(path: str) -> dict:
    """Read a TOML config file and validate required keys.

    Common keys: ``db`` (str), ``label`` (str, optional),
    ``device_ids`` (str, default ``"1"``), ``registers`` (list[str],
    optional), ``interval_ms`` and ``initial_delay_ms`` (int, optional).

    Exactly one transport section is required: ``[rs485]`` with
    ``port`` (str) and ``baudrate`` (int), or ``[tcp]`` with ``host``
    (str) and ``port`` (int).

    Device ids are not parsed here; that happens when the handler
    builds its poll plans.

    Raises:
        ValueError: If any required key is missing or has the wrong type.

    Example:
        >>> cfg = load_config("flexbatch.toml")
        >>> cfg["device_ids"]
        '1,2,3'
    """
    with open(path, "rb") as f:
        raw = tomllib.load(f)

    _require_str(raw, "db")

    result = {
        "db": raw["db"],
        "label": _optional(raw, "label", str, DEFAULT_LABEL),
        "device_ids": _optional(raw, "device_ids", str, DEFAULT_DEVICE_IDS),
        "registers": _optional(raw, "registers", list, []),
        "interval_ms": _optional(raw, "interval_ms", int, POLL_INTERVAL_MS),
        "initial_delay_ms": _optional(
            raw, "initial_delay_ms", int, INITIAL_DELAY_MS
        ),
    }

    for i, v in enumerate(result["registers"]):
        if not isinstance(v, str):
            raise ValueError(
                "registers[%d] must be str, got %s" % (i, type(v).__name__)
            )
    if result["interval_ms"] <= 0:
        raise ValueError("interval_ms must be positive")
    if result["initial_delay_ms"] < 0:
        raise ValueError("initial_delay_ms must not be negative")

    has_rs485 = "rs485" in raw
    has_tcp = "tcp" in raw
    if has_rs485 == has_tcp:
        raise ValueError("config needs exactly one of [rs485] or [tcp]")

    if has_rs485:
        section = _require_section(raw, "rs485")
        _require_str(section, "port")
        _require_int(section, "baudrate")
        result["transport"] = "rs485"
        result["port"] = section["port"]
        result["baudrate"] = section["baudrate"]
    else:
        section = _require_section(raw, "tcp")
        _require_str(section, "host")
        _require_int(section, "port")
        result["transport"] = "tcp"
        result["host"] = section["host"]
        result["port"] = section["port"]

    return result


def handler_config(cfg: dict) -> HandlerConfig:
    """Pick the handler settings out of a loaded config dict."""
    return HandlerConfig(
        device_ids=cfg["device_ids"],
        registers=list(cfg["registers"]),
        interval_ms=cfg["interval_ms"],
        initial_delay_ms=cfg["initial_delay_ms"],
    )


def _optional(raw: dict[str, object], key: str, kind: type, default):
    """Return ``raw[key]`` checked against *kind*, or *default*."""
    if key not in raw:
        return default
    value = raw[key]
    # bool is an int subclass; reject it where an int is expected.
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise ValueError(
            "%s must be %s, got %s"
            % (key, kind.__name__, type(value).__name__)
        )
    return value


def _require_section(raw: dict[str, object], name: str) -> dict:
    """Validate that ``[name]`` is a table."""
    section = raw[name]
    if not isinstance(section, dict):
        raise ValueError("[%s] must be a table" % name)
    return section


def _require_str(raw: dict[str, object], key: str) -> None:
    """Validate that *key* exists in *raw* and is a str."""
    if key not in raw:
        raise ValueError("missing required key: %s" % key)
    if not isinstance(raw[key], str):
        raise ValueError("%s must be str, got %s" % (key, type(raw[key]).__name__))


def _require_int(raw: dict[str, object], key: str) -> None:
    """Validate that *key* exists in *raw* and is an int."""
    if key not in raw:
        raise ValueError("missing required key: %s" % key)
    if not isinstance(raw[key], int):
        raise ValueError("%s must be int, got %s" % (key, type(raw[key]).__name__))
