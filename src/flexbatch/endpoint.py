"""Locate and cache the communication interface of the parent bridge.

The bridge lookup is a zero-argument callable returning the bridge
object or None.  A bridge exposes ``label``, ``is_ready()`` and
``communication_interface()``.

Example:
    >>> resolver = EndpointResolver(lambda: bridge)
    >>> comms = resolver.resolve()
"""

import logging
import threading

from flexbatch.errors import BridgeUnavailable

log = logging.getLogger(__name__)


def offline_reason(bridge) -> str:
    """Status detail for a missing or offline *bridge*."""
    label = "<null>" if bridge is None else bridge.label
    return "Bridge '%s' is offline" % label


class EndpointResolver:
    """Resolve the shared endpoint once, then hand out the cached handle.

    Concurrent ``resolve()`` calls are serialized; the first success is
    cached and the bridge lookup is not consulted again until
    ``invalidate()``.

    Args:
        bridge_lookup: Callable returning the parent bridge or None.
    """

    def __init__(self, bridge_lookup):
        self._bridge_lookup = bridge_lookup
        self._comms = None
        self._lock = threading.Lock()

    @property
    def cached(self):
        """The cached handle, or None."""
        return self._comms

    def resolve(self):
        """Return the communication interface.

        Raises:
            BridgeUnavailable: If there is no bridge, it is not ready, or
                it does not expose an interface yet.
        """
        comms = self._comms
        if comms is not None:
            return comms

        with self._lock:
            if self._comms is not None:
                return self._comms

            bridge = self._bridge_lookup()
            if bridge is None:
                log.debug("bridge is null")
                raise BridgeUnavailable(offline_reason(None))

            label = bridge.label
            if not bridge.is_ready():
                log.debug("bridge %s is not online", label)
                raise BridgeUnavailable(offline_reason(bridge))

            comms = bridge.communication_interface()
            if comms is None:
                log.debug("bridge %s has no communication interface", label)
                raise BridgeUnavailable(
                    "Bridge '%s' not completely initialized" % label
                )

            self._comms = comms
            log.debug("resolved endpoint of bridge %s", label)
            return comms

    def offline_reason(self) -> str:
        """Status detail naming the current bridge as offline."""
        return offline_reason(self._bridge_lookup())

    def invalidate(self) -> None:
        """Drop the cached handle; the next resolve looks it up again."""
        with self._lock:
            self._comms = None
