"""Expand the configured device id list into per-device read plans.

Each device id gets exactly one ``RegisterReadPlan`` for the same
register block, and one deterministic set of channels.

Example:
    >>> from flexbatch.plan import build_plans
    >>> [p.device_id for p in build_plans("3, 1,2")]
    [3, 1, 2]
"""

import logging
import re
from dataclasses import dataclass

from flexbatch.errors import ConfigError, EmptyConfigError
from flexbatch.protocol import FC_READ_HOLDING_REGISTERS, MAX_UNIT_ID

log = logging.getLogger(__name__)

# Register block read from every device.
BLOCK_START_ADDRESS = 23316
BLOCK_REGISTER_COUNT = 8

CHANNEL_GROUP = "Messwerte"
ACTIVE_POWER = "ActivePower"

_DIGITS = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class RegisterReadPlan:
    """One read of a contiguous register block from one unit id."""

    device_id: int
    start_address: int = BLOCK_START_ADDRESS
    register_count: int = BLOCK_REGISTER_COUNT
    function_code: int = FC_READ_HOLDING_REGISTERS


@dataclass(frozen=True)
class Channel:
    """A measurement slot exposed to the host for one device."""

    uid: str
    key: str
    device_id: int
    label: str
    channel_type: str = "active-power"
    item_type: str = "Number"
    description: str = "The active Channel"


def parse_device_ids(device_ids_csv: str) -> list[int]:
    """Parse ``"1, 2,3"`` into ``[1, 2, 3]``.

    Order is preserved and duplicates are kept; a duplicate id is polled
    as an independent device.  Tokens must be plain ASCII digits and
    each id a Modbus unit address (1-247).

    Raises:
        ConfigError: If a token is not such an id.
        EmptyConfigError: If the string holds no tokens at all.
    """
    tokens = [t.strip() for t in device_ids_csv.split(",")]
    if all(t == "" for t in tokens):
        raise EmptyConfigError("device id list is empty")

    ids = []
    for i, token in enumerate(tokens):
        if not _DIGITS.fullmatch(token):
            raise ConfigError(
                "device id %d is not an integer: %r" % (i, token)
            )
        value = int(token)
        if not 1 <= value <= MAX_UNIT_ID:
            raise ConfigError(
                "device id %d must be between 1 and %d, got %d"
                % (i, MAX_UNIT_ID, value)
            )
        ids.append(value)
    return ids


def build_plans(
    device_ids_csv: str, register_specs=()
) -> list[RegisterReadPlan]:
    """Build one read plan per configured device id.

    *register_specs* is the reserved ``registers`` list from the thing
    configuration.  The decoding layout is fixed for this device type,
    so the specs do not change the plans yet.

    Raises:
        ConfigError: On a malformed device id.
        EmptyConfigError: If no device ids are configured.
    """
    ids = parse_device_ids(device_ids_csv)
    if register_specs:
        log.debug("ignoring %d reserved register specs", len(register_specs))
    return [RegisterReadPlan(device_id=d) for d in ids]


def channel_key(device_id: int, kind: str = ACTIVE_POWER) -> str:
    """Return the channel key for *kind* on *device_id*.

    Example:
        >>> channel_key(7)
        'ActivePower-7'
    """
    return "%s-%d" % (kind, device_id)


def channel_keys(device_id: int) -> tuple[str, ...]:
    """Return every channel key published for *device_id*."""
    return (channel_key(device_id, ACTIVE_POWER),)


def channel_uid(device_id: int, kind: str = ACTIVE_POWER) -> str:
    """Return ``<group>/<key>`` for a device channel."""
    return "%s/%s" % (CHANNEL_GROUP, channel_key(device_id, kind))


def channels_for(plans: list[RegisterReadPlan]) -> list[Channel]:
    """Build the channel definitions for *plans*, in plan order."""
    channels = []
    for plan in plans:
        channels.append(Channel(
            uid=channel_uid(plan.device_id),
            key=channel_key(plan.device_id),
            device_id=plan.device_id,
            label="%s %d" % (ACTIVE_POWER, plan.device_id),
        ))
    return channels
