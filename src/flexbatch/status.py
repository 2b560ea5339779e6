"""Externally visible thing status.

The handler reports to a *status sink*: any object with

    update_status(status, detail=ThingStatusDetail.NONE, description=None)
    update_channels(channels)
    update_state(channel_uid, measurement)

Tests substitute a recording double; the daemon uses ``StorageSink``.
"""

from enum import Enum


class ThingStatus(str, Enum):
    """Overall status of the polled device group."""
    UNKNOWN = "UNKNOWN"
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"


class ThingStatusDetail(str, Enum):
    """Reason code attached to an OFFLINE status."""
    NONE = "NONE"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    BRIDGE_OFFLINE = "BRIDGE_OFFLINE"
    COMMUNICATION_ERROR = "COMMUNICATION_ERROR"
