"""flexbatch daemon -- polls a device batch and stores its measurements.

Foreground process driven by a TOML config file.  Shuts down cleanly
on SIGINT or SIGTERM; SIGHUP re-reads the config file and restarts
polling with the new device list (the bus settings are kept).

Example:
    Run from the command line::

        flexbatch flexbatch.toml -v
"""

import argparse
import logging
import signal
import threading

from flexbatch.bus import SerialBus, TcpBus
from flexbatch.comms import EndpointBridge
from flexbatch.config import handler_config, load_config
from flexbatch.errors import DrainTimeout
from flexbatch.handler import FlexbatchHandler
from flexbatch.paths import resolve_config, resolve_db
from flexbatch.storage import Storage, StorageSink

_RETENTION_DAYS = 365
_TICK_S = 1.0
_BRIDGE_RETRY_TICKS = 10

log = logging.getLogger(__name__)

_shutdown = threading.Event()
_reload = threading.Event()


def _on_signal(signum: int, frame) -> None:
    """Set the module-level shutdown event on SIGINT/SIGTERM."""
    _shutdown.set()


def _on_reload(signum: int, frame) -> None:
    """Request a config reload on SIGHUP."""
    _reload.set()


def bus_factory(cfg: dict):
    """Return a zero-argument callable opening the configured bus."""
    if cfg["transport"] == "tcp":
        return lambda: TcpBus(cfg["host"], cfg["port"])
    return lambda: SerialBus(cfg["port"], cfg["baudrate"])


def run(cfg: dict, bridge, handler, shutdown: threading.Event,
        reload: threading.Event | None = None,
        config_path: str | None = None) -> int:
    """Run until *shutdown* is set; return the number of initializations.

    Starts the bridge and the handler, retries an offline bridge every
    few seconds, and reinitializes the handler when *reload* is set.  A
    bridge that loses its bus takes the handler offline and is closed,
    then reopened by the same retry.
    The handler is disposed and the bridge closed on the way out.
    """
    generations = 0
    ready = bridge.start()
    ticks = 0
    try:
        handler.initialize(handler_config(cfg))
        generations += 1

        while not shutdown.is_set():
            shutdown.wait(_TICK_S)
            if shutdown.is_set():
                break
            ticks += 1

            if ready and not bridge.is_ready():
                log.warning("bridge %s lost its bus, reopening", bridge.label)
                handler.bridge_status_changed(False)
                bridge.close()
                ready = False
                ticks = 0
                continue

            if not ready and ticks % _BRIDGE_RETRY_TICKS == 0:
                ready = bridge.start()
                if ready:
                    handler.bridge_status_changed(True)
                    generations += 1

            if reload is not None and reload.is_set():
                reload.clear()
                try:
                    cfg = load_config(config_path)
                except (OSError, ValueError) as exc:
                    log.error("reload failed, keeping current config: %s", exc)
                    continue
                log.info("reloaded %s", config_path)
                handler.initialize(handler_config(cfg))
                generations += 1
    except DrainTimeout as exc:
        log.error("cannot restart polling: %s", exc)
    finally:
        try:
            handler.dispose()
        except DrainTimeout as exc:
            log.error("shutdown incomplete: %s", exc)
        bridge.close()

    return generations


def main() -> None:
    """CLI entry point -- parse args, load config, run the daemon.

    Example:
        From the shell::

            flexbatch flexbatch.toml
            flexbatch /etc/flexbatch/flexbatch.toml -v
    """
    _shutdown.clear()
    _reload.clear()

    parser = argparse.ArgumentParser(description="flexbatch Modbus poller")
    parser.add_argument("config", help="path to TOML config file")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="enable debug logging",
    )
    args = parser.parse_args()

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        level=level,
    )

    config_path = resolve_config(args.config)
    cfg = load_config(config_path)
    cfg["db"] = resolve_db(config_path, cfg["db"])

    storage = Storage(cfg["db"])
    storage.purge(_RETENTION_DAYS)
    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)
    signal.signal(signal.SIGHUP, _on_reload)

    log.info(
        "starting: transport=%s devices=%s interval=%dms db=%s",
        cfg["transport"], cfg["device_ids"], cfg["interval_ms"], cfg["db"],
    )
    bridge = EndpointBridge(cfg["label"], bus_factory(cfg))
    handler = FlexbatchHandler(lambda: bridge, StorageSink(storage))
    try:
        run(cfg, bridge, handler, _shutdown, _reload, config_path)
    finally:
        storage.close()
        log.info("shutting down")


if __name__ == "__main__":
    main()
