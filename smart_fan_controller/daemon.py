"""Main daemon entry point: wires the controller, the HTTP API and signal handling."""

import atexit
import logging
import signal
import sys
import threading
import time

from werkzeug.serving import make_server

from smart_fan_controller.actuator import FanActuator, IpmiFanActuator, SimulatedActuator
from smart_fan_controller.api import create_app
from smart_fan_controller.config import Config
from smart_fan_controller.controller import FanController
from smart_fan_controller.gpu import nvidia_smi_available
from smart_fan_controller.ipmi import IpmiTool
from smart_fan_controller.protocol import load_protocol
from smart_fan_controller.sources import HardwareSource, ReadingSource, SimulatedSource
from smart_fan_controller.storage import HistoryStore, StorageError

log = logging.getLogger(__name__)

HISTORY_CLEANUP_INTERVAL = 3600.0


def build_controller(config: Config, store: HistoryStore) -> FanController:
    """Assemble a controller with simulated or hardware-backed collaborators."""
    source: ReadingSource
    actuator: FanActuator

    if config.demo:
        simulated = SimulatedSource()
        source, actuator = simulated, SimulatedActuator()
        controller = FanController(config, source, actuator, store, live=False)
        simulated.attach_load_probe(controller.has_active_hints)
        return controller

    ipmi = IpmiTool(
        host=config.idrac.host,
        username=config.idrac.username,
        password=config.idrac.password,
        timeout=config.idrac.timeout,
    )
    if config.gpu.enabled and not nvidia_smi_available(config.gpu.nvidia_smi_path):
        log.warning("nvidia-smi not available at %s, GPU readings will be empty",
                    config.gpu.nvidia_smi_path)

    source = HardwareSource(config, ipmi)
    actuator = IpmiFanActuator(ipmi, load_protocol(config.protocol))
    return FanController(config, source, actuator, store, live=True)


class Daemon:
    """Runs the controller and API until SIGTERM/SIGINT."""

    def __init__(self, config: Config, store: HistoryStore) -> None:
        self._config = config
        self._store = store
        self._controller = build_controller(config, store)
        self._server = make_server(
            config.api.host,
            config.api.port,
            create_app(self._controller, store, config),
            threaded=True,
        )
        self._shutdown = threading.Event()

    def _on_shutdown(self, signum: int, _frame: object) -> None:
        sig_name = signal.Signals(signum).name
        log.info("Received %s, shutting down", sig_name)
        self._shutdown.set()

    def prune_history(self) -> None:
        """Drop history rows older than the storage retention. Failures are logged."""
        try:
            self._store.cleanup(self._config.storage.retention)
        except StorageError as e:
            log.warning("History cleanup failed: %s", e)

    def run(self) -> None:
        if self._config.demo:
            log.info("DEMO MODE - simulated temperatures, no hardware control")
        log.info(
            "Starting daemon with BMC host=%s, protocol=%s, gpu=%s, interval=%.1fs",
            self._config.idrac.host,
            self._config.protocol,
            self._config.gpu.enabled,
            self._config.monitoring.interval,
        )

        signal.signal(signal.SIGTERM, self._on_shutdown)
        signal.signal(signal.SIGINT, self._on_shutdown)
        # stop() is idempotent, so this only matters if we never reach the finally block
        atexit.register(self._controller.stop)

        server_thread = threading.Thread(
            target=self._server.serve_forever, name="api-server", daemon=True,
        )
        try:
            self._controller.start()
            server_thread.start()
            log.info("API server listening on %s:%d", self._config.api.host, self._config.api.port)

            next_cleanup = time.monotonic() + HISTORY_CLEANUP_INTERVAL
            while not self._shutdown.wait(1.0):
                if time.monotonic() >= next_cleanup:
                    self.prune_history()
                    next_cleanup = time.monotonic() + HISTORY_CLEANUP_INTERVAL
        finally:
            if server_thread.is_alive():
                self._server.shutdown()
            self._server.server_close()
            self._controller.stop()
            self._store.close()
            log.info("Daemon stopped")


def main() -> None:
    """Entry point."""
    try:
        config = Config.load()
    except (ValueError, TypeError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    config.setup_logging()

    try:
        store = HistoryStore(config.storage.path)
        store.cleanup(config.storage.retention)
    except StorageError as e:
        log.error("Failed to initialize storage: %s", e)
        sys.exit(1)

    try:
        daemon = Daemon(config, store)
    except OSError as e:
        log.error("Failed to start daemon: %s", e)
        store.close()
        sys.exit(1)

    daemon.run()


if __name__ == "__main__":
    main()
