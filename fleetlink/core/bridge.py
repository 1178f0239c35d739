import logging
from typing import Optional

from fleetlink.config.loader import RelayConfig
from fleetlink.core.registry import ConnectionRegistry
from fleetlink.core.router import MessageRouter
from fleetlink.core.scenario import ScenarioPlayer
from fleetlink.transports.tcp_server import TcpListener


class Bridge:
    """Wires devices (TCP) to observers (broadcast sink) through one registry.

    The registry is created here and injected into the router and the scenario
    player; nothing else holds device sinks.
    """

    def __init__(self, cfg: RelayConfig, broadcast):
        self.cfg = cfg
        self.broadcast = broadcast
        self.server_id = cfg.server.server_id
        self.registry = ConnectionRegistry()
        self.router = MessageRouter(self.registry, broadcast, self.server_id,
                                    on_change=self._publish_devices)
        self.listener = TcpListener(
            name="relay",
            host=cfg.server.host,
            port=cfg.server.port,
            on_connection=self.router.serve,
            read_timeout=cfg.server.read_timeout,
        )
        self.player: Optional[ScenarioPlayer] = None
        if cfg.scenario.enabled and cfg.scenario.path:
            self.player = ScenarioPlayer(
                cfg.scenario.path,
                self.registry,
                broadcast,
                self.server_id,
                startup_delay=cfg.scenario.startup_delay_s,
            )

    # --- lifecycle ---
    def start(self):
        logging.info(f"[{self.server_id}] relay starting")
        self.broadcast.start()
        self.listener.start()
        if self.player is not None:
            self.player.start()
        else:
            logging.info(f"[{self.server_id}] no scenario configured")

    def stop(self):
        # a running scenario wait is not cancelled; its thread is a daemon
        self.listener.stop()
        self.broadcast.stop()
        logging.info(f"[{self.server_id}] relay stopped")

    def _publish_devices(self):
        self.broadcast.publish_devices(self.registry.snapshot())
