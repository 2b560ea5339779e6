"""Register recurring reads against the shared endpoint.

The scheduler resolves the endpoint before each registration and keeps
track of the live jobs so a reinitialization can cancel all of them,
and wait for their threads, before the next generation starts.  Within
a generation a repeated device id gets its own job on the shared key.

Example:
    >>> scheduler = PollScheduler(resolver)
    >>> job = scheduler.register_poll(plan, 1000, 1000, on_ok, on_err)
    >>> scheduler.drain(10.0)
"""

import logging
import threading
import time
from enum import Enum

from flexbatch.errors import DrainTimeout
from flexbatch.plan import channel_key

log = logging.getLogger(__name__)


class JobState(str, Enum):
    UNREGISTERED = "UNREGISTERED"
    ACTIVE = "ACTIVE"


class PollJob:
    """A registered recurring read.

    Created by ``PollScheduler.register_poll``; never reused after it
    is cancelled.
    """

    def __init__(self, plan, interval_ms, initial_delay_ms, comms, task):
        self.plan = plan
        self.channel_key = channel_key(plan.device_id)
        self.interval_ms = interval_ms
        self.initial_delay_ms = initial_delay_ms
        self._comms = comms
        self._task = task
        self._state = JobState.ACTIVE

    @property
    def state(self) -> JobState:
        return self._state

    def cancel(self) -> None:
        """Stop future callbacks.  Safe to call more than once."""
        if self._state == JobState.UNREGISTERED:
            return
        self._state = JobState.UNREGISTERED
        self._comms.unregister_regular_poll(self._task)

    def join(self, timeout=None) -> bool:
        """Wait for the poll thread to stop; True if it has."""
        return self._task.join(timeout)

    def __repr__(self) -> str:
        return "<PollJob %s %s>" % (self.channel_key, self._state.value)


class PollScheduler:
    """Owns the poll jobs of one handler.

    Args:
        resolver: ``EndpointResolver`` for the shared bus.
    """

    def __init__(self, resolver):
        self._resolver = resolver
        self._jobs: list[PollJob] = []
        self._lock = threading.Lock()

    def register_poll(self, plan, interval_ms, initial_delay_ms,
                      on_result, on_failure) -> PollJob:
        """Start polling *plan* on the shared endpoint.

        Raises:
            BridgeUnavailable: If the endpoint cannot be resolved; nothing
                is scheduled in that case.
        """
        comms = self._resolver.resolve()
        task = comms.register_regular_poll(
            plan, interval_ms, initial_delay_ms, on_result, on_failure
        )
        job = PollJob(plan, interval_ms, initial_delay_ms, comms, task)
        with self._lock:
            self._jobs.append(job)
        log.debug("scheduled %s", job)
        return job

    def cancel(self, job: PollJob) -> None:
        """Cancel *job* and forget it."""
        with self._lock:
            if job in self._jobs:
                self._jobs.remove(job)
        job.cancel()
        log.debug("cancelled %s", job)

    def active_jobs(self) -> list[PollJob]:
        with self._lock:
            return list(self._jobs)

    def jobs_for(self, key: str) -> list[PollJob]:
        """Active jobs publishing to channel *key*."""
        with self._lock:
            return [j for j in self._jobs if j.channel_key == key]

    def drain(self, timeout: float) -> None:
        """Cancel every job and wait for the poll threads to stop.

        Raises:
            DrainTimeout: If a thread is still running after *timeout*
                seconds.  Its job is cancelled regardless.
        """
        with self._lock:
            jobs = list(self._jobs)
            self._jobs.clear()

        for job in jobs:
            job.cancel()

        deadline = time.monotonic() + timeout
        stuck = []
        for job in jobs:
            remaining = max(0.0, deadline - time.monotonic())
            if not job.join(remaining):
                stuck.append(job.channel_key)

        if stuck:
            raise DrainTimeout(
                "poll jobs still running after %.1fs: %s"
                % (timeout, ", ".join(stuck))
            )
        if jobs:
            log.debug("drained %d poll jobs", len(jobs))
