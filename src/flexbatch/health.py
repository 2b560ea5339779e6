"""Edge-triggered read health tracking.

Each device moves between NOT_RECEIVED, SUCCESS and FAILED.  A status
change is published only when the kind of outcome flips, so a device
that answers every second does not flood the status sink.

Example:
    >>> sm = HealthStateMachine()
    >>> sm.observe(Outcome.SUCCESS), sm.observe(Outcome.SUCCESS)
    (True, False)
"""

import logging
import threading
from enum import Enum

from flexbatch.status import ThingStatus, ThingStatusDetail

log = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    NOT_RECEIVED = "NOT_RECEIVED"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class Outcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


_OUTCOME_TO_STATUS = {
    Outcome.SUCCESS: HealthStatus.SUCCESS,
    Outcome.FAILURE: HealthStatus.FAILED,
}


class HealthStateMachine:
    """Read status of one entity.

    Args:
        on_change: Optional callable receiving the new ``ThingStatus``
            (ONLINE or OFFLINE) on each transition.  It runs under the
            machine's lock and must not call ``observe`` itself.
    """

    def __init__(self, on_change=None):
        self._status = HealthStatus.NOT_RECEIVED
        self._on_change = on_change
        self._lock = threading.Lock()

    @property
    def status(self) -> HealthStatus:
        return self._status

    def observe(self, outcome: Outcome) -> bool:
        """Record *outcome*; return True if the status changed."""
        new = _OUTCOME_TO_STATUS[outcome]
        with self._lock:
            if self._status == new:
                return False
            self._status = new
            # Held across the callback: edges leave in observe order.
            if self._on_change is not None:
                self._on_change(
                    ThingStatus.ONLINE if new == HealthStatus.SUCCESS
                    else ThingStatus.OFFLINE
                )
        return True


class HealthTracker:
    """Per-device health plus an aggregate thing status.

    The thing is ONLINE while every device that has reported is healthy
    and OFFLINE (COMMUNICATION_ERROR) once any of them has failed.  The
    aggregate is pushed to *sink* only when it changes.

    Args:
        sink: Status sink with ``update_status(status, detail, description)``.
    """

    def __init__(self, sink):
        self._sink = sink
        self._devices: dict[int, HealthStateMachine] = {}
        self._published = None
        self._lock = threading.Lock()

    def reset(self) -> None:
        """Forget all devices; the next outcome publishes again."""
        with self._lock:
            self._devices.clear()
            self._published = None

    def status_of(self, device_id: int) -> HealthStatus:
        with self._lock:
            sm = self._devices.get(device_id)
        return sm.status if sm is not None else HealthStatus.NOT_RECEIVED

    def observe(self, device_id: int, outcome: Outcome) -> bool:
        """Record *outcome* for *device_id*.

        Returns True if that device changed status.  The aggregate is
        recomputed and published under the tracker lock so interleaved
        callbacks for different devices cannot publish out of order.
        """
        with self._lock:
            sm = self._devices.get(device_id)
            if sm is None:
                sm = self._devices[device_id] = HealthStateMachine()
            changed = sm.observe(outcome)
            if not changed:
                return False

            log.debug("device %d: %s", device_id, sm.status.value)
            failed = sorted(
                d for d, m in self._devices.items()
                if m.status == HealthStatus.FAILED
            )
            if failed:
                aggregate = (
                    ThingStatus.OFFLINE,
                    ThingStatusDetail.COMMUNICATION_ERROR,
                    "No response from device(s) %s"
                    % ", ".join(str(d) for d in failed),
                )
            else:
                aggregate = (ThingStatus.ONLINE, ThingStatusDetail.NONE, None)

            if aggregate != self._published:
                self._published = aggregate
                status, detail, description = aggregate
                if status == ThingStatus.OFFLINE:
                    log.warning("status %s: %s", status.value, description)
                else:
                    log.info("status %s", status.value)
                self._sink.update_status(status, detail, description)
        return True
