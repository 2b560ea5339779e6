"""Polls a batch of Modbus devices behind one bridge and publishes their channels.

``FlexbatchHandler`` ties the pieces together:

    build_plans -> PollScheduler.register_poll (one setup task per device)
    transport result  -> decode_block -> HealthTracker -> sink.update_state
    transport failure -> HealthTracker

Every ``initialize()`` starts a new generation: the previous setup tasks
and poll jobs are stopped (with a bounded wait) before anything new is
registered.

Example:
    >>> handler = FlexbatchHandler(lambda: bridge, sink)
    >>> handler.initialize(HandlerConfig(device_ids="1,2"))
    True
    >>> handler.dispose()
"""

import logging
import threading
import time
from concurrent import futures

from flexbatch.config import DRAIN_TIMEOUT_S, HandlerConfig
from flexbatch.decoder import decode_block
from flexbatch.endpoint import EndpointResolver
from flexbatch.errors import BridgeUnavailable, ConfigError, DecodeError, DrainTimeout
from flexbatch.health import HealthTracker, Outcome
from flexbatch.plan import CHANNEL_GROUP, build_plans, channels_for
from flexbatch.scheduler import PollScheduler
from flexbatch.status import ThingStatus, ThingStatusDetail

log = logging.getLogger(__name__)

_SETUP_WORKERS = 4


class FlexbatchHandler:
    """Lifecycle of one polled device batch.

    Args:
        bridge_lookup: Callable returning the parent bridge or None.
        sink: Status sink (see ``flexbatch.status``).
        drain_timeout: Seconds to wait for the previous generation to stop.
        max_workers: Size of the setup worker pool.
    """

    def __init__(self, bridge_lookup, sink, drain_timeout=DRAIN_TIMEOUT_S,
                 max_workers=_SETUP_WORKERS):
        self._sink = sink
        self._drain_timeout = drain_timeout
        self._max_workers = max_workers
        self.resolver = EndpointResolver(bridge_lookup)
        self.scheduler = PollScheduler(self.resolver)
        self.health = HealthTracker(sink)
        self.plans = []
        self._config: HandlerConfig | None = None
        self._executor: futures.ThreadPoolExecutor | None = None
        self._setup_futures: list[futures.Future] = []
        self._bridge_reason: str | None = None
        self._lock = threading.Lock()
        self._status_lock = threading.Lock()

    def initialize(self, config: HandlerConfig) -> bool:
        """Start (or restart) polling for *config*.

        Returns False if the device id list is invalid; in that case the
        status is OFFLINE / CONFIGURATION_ERROR and nothing is polled.

        Raises:
            DrainTimeout: If the previous generation did not stop in time.
        """
        with self._lock:
            self._config = config
            self._sink.update_status(ThingStatus.UNKNOWN)
            self._stop_generation()
            self.health.reset()
            self._bridge_reason = None

            try:
                plans = build_plans(config.device_ids, config.registers)
            except ConfigError as exc:
                log.warning("invalid device ids %r: %s", config.device_ids, exc)
                self.plans = []
                self._sink.update_channels([])
                self._sink.update_status(
                    ThingStatus.OFFLINE,
                    ThingStatusDetail.CONFIGURATION_ERROR,
                    str(exc),
                )
                return False

            self.plans = plans
            self._sink.update_channels(channels_for(plans))
            self._executor = futures.ThreadPoolExecutor(
                max_workers=self._max_workers,
                thread_name_prefix="flexbatch-setup",
            )
            self._setup_futures = [
                self._executor.submit(self._setup_device, plan, config)
                for plan in plans
            ]
            log.info(
                "initialized %d devices: %s",
                len(plans), ", ".join(str(p.device_id) for p in plans),
            )
            return True

    def wait_for_setup(self, timeout=None) -> bool:
        """Block until every setup task of this generation has run."""
        done, pending = futures.wait(self._setup_futures, timeout=timeout)
        return not pending

    def bridge_status_changed(self, ready: bool) -> None:
        """React to the parent bridge going online or offline.

        Online re-runs ``initialize`` with the last config.  Offline
        stops polling and drops the cached endpoint.
        """
        if ready:
            if self._config is not None:
                self.initialize(self._config)
            return
        with self._lock:
            self._stop_generation()
            self.resolver.invalidate()
        self._set_bridge_offline(self.resolver.offline_reason())

    def handle_command(self, channel_uid: str, command) -> None:
        """Channels are read-only; commands are logged and ignored."""
        log.debug("ignoring command %r for %s", command, channel_uid)

    def dispose(self) -> None:
        """Stop polling and release the endpoint.

        Raises:
            DrainTimeout: If poll threads did not stop in time.
        """
        with self._lock:
            try:
                self._stop_generation()
            finally:
                self.resolver.invalidate()
                self.health.reset()
        log.info("disposed")

    def _stop_generation(self) -> None:
        """Cancel pending setup tasks and drain the poll jobs."""
        deadline = time.monotonic() + self._drain_timeout
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            done, pending = futures.wait(
                self._setup_futures, timeout=self._drain_timeout
            )
            self._executor = None
            self._setup_futures = []
            if pending:
                raise DrainTimeout(
                    "%d setup tasks still running after %.1fs"
                    % (len(pending), self._drain_timeout)
                )
        self.scheduler.drain(max(0.0, deadline - time.monotonic()))

    def _setup_device(self, plan, config: HandlerConfig) -> None:
        """Resolve the endpoint and register the poll for one device."""
        try:
            self.scheduler.register_poll(
                plan,
                config.interval_ms,
                config.initial_delay_ms,
                self._handle_result,
                self._handle_failure,
            )
        except BridgeUnavailable as exc:
            log.debug("device %d not scheduled: %s", plan.device_id, exc.reason)
            self._set_bridge_offline(exc.reason)

    def _set_bridge_offline(self, reason: str) -> None:
        with self._status_lock:
            if reason == self._bridge_reason:
                return
            self._bridge_reason = reason
        log.warning("bridge unavailable: %s", reason)
        self._sink.update_status(
            ThingStatus.OFFLINE, ThingStatusDetail.BRIDGE_OFFLINE, reason
        )

    def _handle_result(self, result) -> None:
        plan = result.request
        try:
            block = decode_block(result.registers, plan)
        except DecodeError as exc:
            log.debug("device %d: %s", plan.device_id, exc)
            self.health.observe(plan.device_id, Outcome.FAILURE)
            return

        self.health.observe(plan.device_id, Outcome.SUCCESS)
        for m in block.measurements:
            self._sink.update_state("%s/%s" % (CHANNEL_GROUP, m.channel_key), m)

    def _handle_failure(self, failure) -> None:
        log.debug(
            "device %d: read failed: %s", failure.request.device_id, failure.cause
        )
        self.health.observe(failure.request.device_id, Outcome.FAILURE)
