"""Recurring register reads on a shared bus, and the bridge that owns it.

``CommunicationInterface.register_regular_poll`` starts one daemon
thread per request.  Each thread waits the initial delay, then reads
the register block every interval and hands the outcome to the result
or failure callback.  Failed reads are not retried; the next tick is
the retry.

Example:
    >>> bridge = EndpointBridge("RS485", lambda: SerialBus("/dev/ttyUSB0", 9600))
    >>> bridge.start()
    >>> comms = bridge.communication_interface()
    >>> task = comms.register_regular_poll(plan, 1000, 1000, on_ok, on_err)
    >>> task.cancel()
"""

import logging
import threading
from dataclasses import dataclass

from flexbatch.config import LINK_FAILURE_LIMIT

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReadResult:
    """Successful read: the originating request and its register bytes."""

    request: object
    registers: bytes


@dataclass(frozen=True)
class ReadFailure:
    """Failed read: the originating request and what went wrong."""

    request: object
    cause: Exception


class PollTask:
    """One recurring read of one register block.

    Args:
        bus: Object with ``read_registers(unit_id, function_code,
            address, count)``.
        request: Read plan with ``device_id``, ``function_code``,
            ``start_address`` and ``register_count``.
        interval_ms: Time between reads.
        initial_delay_ms: Time before the first read.
        on_result: Called with a ``ReadResult``.
        on_failure: Called with a ``ReadFailure``.
    """

    def __init__(self, bus, request, interval_ms, initial_delay_ms,
                 on_result, on_failure):
        self.request = request
        self._bus = bus
        self._interval = interval_ms / 1000.0
        self._initial_delay = initial_delay_ms / 1000.0
        self._on_result = on_result
        self._on_failure = on_failure
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            name="poll-unit-%d" % request.device_id,
            daemon=True,
        )

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        """Stop future reads; a read already on the wire completes."""
        self._stop.set()

    def join(self, timeout=None) -> bool:
        """Wait for the poll thread; return True if it has stopped."""
        if self._thread.ident is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _run(self) -> None:
        if self._stop.wait(self._initial_delay):
            return
        while not self._stop.is_set():
            self.poll_once()
            self._stop.wait(self._interval)

    def poll_once(self) -> None:
        """Read the block once and deliver the outcome."""
        req = self.request
        try:
            registers = self._bus.read_registers(
                req.device_id, req.function_code,
                req.start_address, req.register_count,
            )
        except Exception as exc:
            # Transport errors are opaque; all of them count as a failed read.
            log.debug("read from unit %d failed: %s", req.device_id, exc)
            outcome, callback = ReadFailure(req, exc), self._on_failure
        else:
            outcome, callback = ReadResult(req, registers), self._on_result

        if self._stop.is_set():
            return
        try:
            callback(outcome)
        except Exception:
            log.exception("poll callback for unit %d failed", req.device_id)


class CommunicationInterface:
    """Registers recurring reads against one bus."""

    def __init__(self, bus):
        self._bus = bus
        self._tasks: set[PollTask] = set()
        self._lock = threading.Lock()

    def register_regular_poll(self, request, interval_ms, initial_delay_ms,
                              on_result, on_failure) -> PollTask:
        """Start polling *request*; return the task handle."""
        task = PollTask(self._bus, request, interval_ms, initial_delay_ms,
                        on_result, on_failure)
        with self._lock:
            self._tasks.add(task)
        task.start()
        log.debug(
            "registered poll: unit %d fc %d addr %d count %d every %d ms",
            request.device_id, request.function_code,
            request.start_address, request.register_count, interval_ms,
        )
        return task

    def unregister_regular_poll(self, task: PollTask) -> bool:
        """Cancel *task*; return False if it was not registered here."""
        with self._lock:
            if task not in self._tasks:
                return False
            self._tasks.discard(task)
        task.cancel()
        return True

    def close(self) -> None:
        """Cancel every registered task."""
        with self._lock:
            tasks = list(self._tasks)
            self._tasks.clear()
        for task in tasks:
            task.cancel()


class EndpointBridge:
    """Owns the shared bus and its communication interface.

    The bridge is ready once ``start()`` has opened the bus.  If opening
    fails the bridge stays offline; calling ``start()`` again retries.
    After ``LINK_FAILURE_LIMIT`` consecutive line failures the bridge
    reports itself not ready; the owner is expected to ``close()`` and
    ``start()`` it again.

    Args:
        label: Display name used in status messages.
        bus_factory: Zero-argument callable that opens and returns a bus.
    """

    def __init__(self, label, bus_factory):
        self.label = label
        self._bus_factory = bus_factory
        self._bus = None
        self._comms = None
        self._lock = threading.Lock()

    def start(self) -> bool:
        """Open the bus; return True if the bridge is ready."""
        with self._lock:
            if self._bus is not None:
                return True
            try:
                self._bus = self._bus_factory()
            except OSError as exc:
                log.warning("bridge %s: cannot open bus: %s", self.label, exc)
                return False
            self._comms = CommunicationInterface(self._bus)
            log.info("bridge %s online", self.label)
            return True

    def is_ready(self) -> bool:
        bus = self._bus
        return bus is not None and bus.link_failures < LINK_FAILURE_LIMIT

    def communication_interface(self):
        return self._comms

    def close(self) -> None:
        """Cancel all polls and close the bus."""
        with self._lock:
            if self._comms is not None:
                self._comms.close()
                self._comms = None
            if self._bus is not None:
                self._bus.close()
                self._bus = None
