import logging
import threading
import time
from typing import Callable, List, Optional

from fleetlink.core.constants import DEFAULT_SERVER_ID, DEFAULT_WORK_DURATION_SECS
from fleetlink.core.errors import ChannelClosed, DecodeError
from fleetlink.core.packet import (
    DeviceMode, DeviceType, Packet, PacketType, decode, encode_text, status_packet,
)

# log_text fragments meaning "a vehicle arrived at this cell"
ARRIVAL_HINTS = ("arrived", "도착")


class Cell:
    """Work cell: starts a work cycle when a vehicle is announced.

    A cycle is STATUS ACTIVE, `work_duration` of work, then STATUS INACTIVE.
    """

    def __init__(self, cell_id: str, send: Callable[[str], None],
                 server_id: str = DEFAULT_SERVER_ID,
                 work_duration: float = DEFAULT_WORK_DURATION_SECS,
                 sleep: Callable[[float], None] = time.sleep):
        self.device_id = cell_id
        self._send = send
        self.server_id = server_id
        self.work_duration = float(work_duration)
        self._sleep = sleep
        self.workers: List[threading.Thread] = []

    def hello(self):
        self._status(DeviceMode.INACTIVE, "idle (empty)")

    def handle_line(self, line: str) -> Optional[threading.Thread]:
        try:
            pkt = decode(line)
        except DecodeError as e:
            logging.debug(f"[{self.device_id}] ignoring bad packet: {e}")
            return None
        return self.handle_packet(pkt)

    def handle_packet(self, pkt: Packet) -> Optional[threading.Thread]:
        if not pkt.accepts(self.device_id):
            return None
        if not self._announces_arrival(pkt):
            return None
        payload = pkt.body.get("payload")
        agv_id = pkt.sender_id
        if isinstance(payload, dict) and payload.get("agv_id"):
            agv_id = str(payload["agv_id"])
        t = threading.Thread(target=self._run_cycle, args=(agv_id,),
                             name=f"{self.device_id}-work", daemon=True)
        self.workers = [w for w in self.workers if w.is_alive()]
        self.workers.append(t)
        t.start()
        return t

    def _announces_arrival(self, pkt: Packet) -> bool:
        if pkt.kind is PacketType.EVENT:
            return True
        text = pkt.log_text.lower()
        return any(hint in text for hint in ARRIVAL_HINTS)

    def _run_cycle(self, agv_id: str):
        try:
            self.work(agv_id)
        except ChannelClosed as e:
            logging.warning(f"[{self.device_id}] work cycle aborted: {e}")

    def work(self, agv_id: str):
        self._status(DeviceMode.ACTIVE, f"assembly started (AGV: {agv_id})")
        self._sleep(self.work_duration)
        self._status(DeviceMode.INACTIVE, "assembly done, waiting for pickup")

    def _status(self, mode: DeviceMode, text: str):
        pkt = status_packet(self.device_id, self.server_id, DeviceType.CELL, mode,
                            log_text=f"[status] {text}")
        self._send(encode_text(pkt))
