import logging
import threading
import time
from typing import Callable, List

from fleetlink.config.loader import DeviceConfig, RelayConfig
from fleetlink.core.errors import ChannelClosed
from fleetlink.devices.cell import Cell
from fleetlink.devices.robot import Robot
from fleetlink.transports.line_channel import LineChannel


class DeviceClient:
    """
    Connects one simulated device to the relay and pumps its read loop.

    `make_device(send)` builds the device around the channel's send; the device
    must offer hello() and handle_line(line).
    """

    def __init__(self, name: str, host: str, port: int, make_device: Callable):
        self.name = name
        self.host = host
        self.port = int(port)
        self.make_device = make_device
        self.device = None
        self.channel = None
        self._thread = None

    def start(self):
        self._thread = threading.Thread(target=self.run, name=self.name, daemon=False)
        self._thread.start()

    def join(self, timeout: float = None):
        if self._thread is not None:
            self._thread.join(timeout)

    def stop(self):
        if self.channel is not None:
            self.channel.close()

    def run(self):
        try:
            self.channel = LineChannel.connect(self.host, self.port, name=self.name)
        except OSError as e:
            logging.error(f"[{self.name}] cannot reach relay {self.host}:{self.port}: {e}")
            return
        logging.info(f"[{self.name}] connected to relay {self.host}:{self.port}")
        self.device = self.make_device(self.channel.send)
        try:
            self.device.hello()
            for line in self.channel.lines():
                self.device.handle_line(line)
        except ChannelClosed as e:
            logging.warning(f"[{self.name}] connection lost: {e}")
        finally:
            self.channel.close()
            logging.info(f"[{self.name}] disconnected")


def build_client(dev: DeviceConfig, host: str, port: int, server_id: str) -> DeviceClient:
    host = dev.host or host
    port = dev.port or port
    if dev.type == "CELL":
        def make(send):
            return Cell(dev.id, send, server_id=server_id, work_duration=dev.work_duration)
    else:
        def make(send):
            return Robot(dev.id, dev.type, send, server_id=server_id,
                         travel_interval=dev.travel_interval, arrival_delay=dev.arrival_delay)
    return DeviceClient(dev.id, host, port, make)


def launch_devices(cfg: RelayConfig, host: str = "127.0.0.1", only=None,
                   stagger: float = 0.5) -> List[DeviceClient]:
    """Start every configured device, `stagger` seconds apart."""
    clients = []
    for dev in cfg.devices:
        if only and dev.id not in only:
            continue
        if clients and stagger > 0:
            time.sleep(stagger)
        client = build_client(dev, host, cfg.server.port, cfg.server.server_id)
        client.start()
        clients.append(client)
    logging.info(f"[launcher] started {len(clients)} devices")
    return clients
