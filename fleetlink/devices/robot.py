"""Simulated AGV/AMR.

A robot idles in ACTIVE until it receives a movement COMMAND addressed to it
(or to ALL). It then moves through the order's waypoints on a worker thread,
reporting one LOCATION per waypoint, and finishes with an ACK for the task
followed by a STATUS INACTIVE. The read loop keeps running meanwhile, so a
second order received while moving starts a second, concurrent sequence.
"""
import logging
import threading
import time
from enum import Enum
from typing import Callable, List, Optional

from fleetlink.core import command_mapper
from fleetlink.core.command_mapper import MovementOrder
from fleetlink.core.constants import (
    DEFAULT_ARRIVAL_DELAY_SECS, DEFAULT_SERVER_ID, DEFAULT_TRAVEL_INTERVAL_SECS,
)
from fleetlink.core.errors import ChannelClosed, DecodeError
from fleetlink.core.packet import (
    DeviceMode, DeviceType, Packet, ack_packet, decode, encode_text, location_packet,
    status_packet,
)


class RobotState(str, Enum):
    ACTIVE = "ACTIVE"
    MOVING = "MOVING"
    INACTIVE = "INACTIVE"


class Robot:
    def __init__(self, device_id: str, device_type, send: Callable[[str], None],
                 server_id: str = DEFAULT_SERVER_ID,
                 travel_interval: float = DEFAULT_TRAVEL_INTERVAL_SECS,
                 arrival_delay: float = DEFAULT_ARRIVAL_DELAY_SECS,
                 sleep: Callable[[float], None] = time.sleep):
        self.device_id = device_id
        self.device_type = DeviceType(device_type)
        if self.device_type is DeviceType.CELL:
            raise ValueError("a work cell is not a robot; use devices.cell.Cell")
        self._send = send
        self.server_id = server_id
        self.travel_interval = float(travel_interval)
        self.arrival_delay = float(arrival_delay)
        self._sleep = sleep
        self.state = RobotState.ACTIVE
        self.workers: List[threading.Thread] = []

    def hello(self):
        """First packet on a fresh connection: binds our id on the relay."""
        self.emit(status_packet(self.device_id, self.server_id, self.device_type,
                                DeviceMode.ACTIVE, is_occupied=False))

    def emit(self, pkt: Packet):
        self._send(encode_text(pkt))

    def handle_line(self, line: str) -> Optional[threading.Thread]:
        try:
            pkt = decode(line)
        except DecodeError as e:
            logging.warning(f"[{self.device_id}] bad packet: {e}")
            return None
        return self.handle_packet(pkt)

    def handle_packet(self, pkt: Packet) -> Optional[threading.Thread]:
        if not pkt.accepts(self.device_id):
            return None
        logging.info(f"[{self.device_id}] << {pkt.log_text}")
        order = command_mapper.movement_order(pkt)
        if order is None:
            return None
        t = threading.Thread(target=self._run_order, args=(order,),
                             name=f"{self.device_id}-{order.task_id}", daemon=True)
        self.workers = [w for w in self.workers if w.is_alive()]
        self.workers.append(t)
        t.start()
        return t

    def _run_order(self, order: MovementOrder):
        try:
            self.execute(order)
        except ChannelClosed as e:
            logging.warning(f"[{self.device_id}] task {order.task_id} aborted: {e}")

    def execute(self, order: MovementOrder):
        """Run one movement sequence to completion (blocking).

        The robot ends INACTIVE even when the sequence is cut short."""
        self.state = RobotState.MOVING
        logging.info(f"[{self.device_id}] moving to {order.destination} ({len(order.waypoints)} waypoints)")
        try:
            for idx, waypoint in enumerate(order.waypoints, start=1):
                self._sleep(self.travel_interval)
                self.emit(location_packet(self.device_id, self.server_id, waypoint,
                                          order.destination, idx))
                logging.info(f"[{self.device_id}] passed {waypoint}")
            if not order.waypoints:
                self._sleep(self.travel_interval)
            self._sleep(self.arrival_delay)

            if self.device_type is DeviceType.AGV:
                ack = ack_packet(self.device_id, self.server_id, order.task_id,
                                 message=f"{order.destination} arrived")
            else:
                ack = ack_packet(self.device_id, self.server_id, order.task_id,
                                 command=f"ARRIVED_AT_{order.destination.upper()}")
            self.emit(ack)
            self.emit(status_packet(self.device_id, self.server_id, self.device_type,
                                    DeviceMode.INACTIVE, is_occupied=False))
        finally:
            self.state = RobotState.INACTIVE
        logging.info(f"[{self.device_id}] task {order.task_id} completed")
