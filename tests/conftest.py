"""Shared test doubles for flexbatch tests."""

import struct
import threading

from flexbatch.errors import ModbusError


def make_block(power: int, reserved_1: int = 0, reserved_2: int = 0) -> bytes:
    """Build a 16-byte (8 register) block: three uint32 words + padding."""
    return struct.pack(">III", power, reserved_1, reserved_2) + bytes(4)


class FakeBus:
    """Test double for a bus: canned register blocks, records requests.

    A response that is an exception instance is raised instead of
    returned; a ``ConnectionError`` also counts as a line failure.
    When exhausted, ``read_registers`` raises a timeout.
    """

    def __init__(self, responses=()):
        self._responses = list(responses)
        self._lock = threading.Lock()
        self.sent = []
        self.closed = False
        self.link_failures = 0

    def read_registers(self, unit_id, function_code, address, count):
        with self._lock:
            self.sent.append((unit_id, function_code, address, count))
            if not self._responses:
                raise ModbusError("no response from unit %d" % unit_id)
            response = self._responses.pop(0)
            if isinstance(response, ConnectionError):
                self.link_failures += 1
            else:
                self.link_failures = 0
        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        self.closed = True


class FakeTask:
    """Stand-in for a transport poll task."""

    def __init__(self, request, events):
        self.request = request
        self.cancelled = False
        self.alive = True
        self._events = events

    def cancel(self):
        self.cancelled = True
        self.alive = False

    def join(self, timeout=None):
        return not self.alive


class FakeComms:
    """Records poll registrations; callbacks are driven by the test.

    ``events`` is a shared, ordered log of ``("register", device_id)``
    and ``("cancel", device_id)`` tuples.
    """

    def __init__(self, events=None):
        self.events = events if events is not None else []
        self.tasks = []
        self.callbacks = {}
        self._lock = threading.Lock()

    def register_regular_poll(self, request, interval_ms, initial_delay_ms,
                              on_result, on_failure):
        task = FakeTask(request, self.events)
        with self._lock:
            self.events.append(("register", request.device_id))
            self.tasks.append(task)
            self.callbacks[request.device_id] = (on_result, on_failure)
        return task

    def unregister_regular_poll(self, task):
        with self._lock:
            self.events.append(("cancel", task.request.device_id))
        task.cancel()
        return True

    def live_tasks(self):
        with self._lock:
            return [t for t in self.tasks if not t.cancelled]


class FakeBridge:
    """Parent bridge double with a switchable ready state."""

    def __init__(self, label="RS485", ready=True, comms=None):
        self.label = label
        self.ready = ready
        self.comms = comms
        self.lookups = 0

    def is_ready(self):
        return self.ready

    def communication_interface(self):
        self.lookups += 1
        return self.comms


class RecordingSink:
    """Status sink that records every call."""

    def __init__(self):
        self.statuses = []
        self.states = []
        self.channels = []
        self._lock = threading.Lock()

    def update_status(self, status, detail=None, description=None):
        with self._lock:
            self.statuses.append((status, detail, description))

    def update_channels(self, channels):
        self.channels = list(channels)

    def update_state(self, channel_uid, measurement):
        with self._lock:
            self.states.append((channel_uid, measurement))
