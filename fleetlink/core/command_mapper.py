"""Command mapping utilities.

This module centralizes the two conversions between COMMAND packets and the
rest of the system: scenario steps become COMMAND packets on the server side,
and received COMMAND bodies become MovementOrders on the robot side. Extend
MOVEMENT_COMMANDS as more directives are needed.
"""
import uuid
from dataclasses import dataclass
from typing import List, Optional, Tuple

from fleetlink.core.constants import DEFAULT_DESTINATION
from fleetlink.core.packet import Packet, PacketType, command_packet

# Directives that start a movement sequence on a robot
MOVEMENT_COMMANDS = (
    "MOVE_PATH",
    "DELIVER_PART",
    "MOVE_CMD",
)

# Payload keys naming the destination, in order of precedence
DESTINATION_KEYS = ("final_dest", "target_cell")


@dataclass(frozen=True)
class MovementOrder:
    task_id: str
    command: str
    destination: str
    waypoints: Tuple[str, ...] = ()


def is_movement_command(command: Optional[str]) -> bool:
    return command in MOVEMENT_COMMANDS


def synthesize_task_id() -> str:
    return f"AUTO_{uuid.uuid4().hex[:6].upper()}"


def movement_order(pkt: Packet) -> Optional[MovementOrder]:
    """Parse a COMMAND packet into a MovementOrder.

    Returns None when the packet is not a COMMAND or its directive is not a
    movement directive. Waypoints are opaque tokens kept in order.
    """
    if pkt.kind is not PacketType.COMMAND:
        return None
    command = pkt.body.get("command")
    if not is_movement_command(command):
        return None
    payload = pkt.body.get("payload")
    payload = payload if isinstance(payload, dict) else {}

    destination = DEFAULT_DESTINATION
    for key in DESTINATION_KEYS:
        if payload.get(key):
            destination = str(payload[key])
            break

    raw_wps = payload.get("waypoints") or []
    waypoints: List[str] = [str(w) for w in raw_wps] if isinstance(raw_wps, list) else []

    task_id = pkt.body.get("task_id") or synthesize_task_id()
    return MovementOrder(task_id=str(task_id), command=command, destination=destination,
                         waypoints=tuple(waypoints))


def step_to_packet(step) -> Packet:
    """Build the packet a scenario step injects.

    The header type is the step's `message_type`; the body follows the
    COMMAND shape. A missing task id is synthesized.
    """
    return command_packet(
        sender=step.sender_id,
        receiver=step.receiver_id,
        task_id=step.task_id or synthesize_task_id(),
        command=step.command,
        payload=step.payload,
        log_text=f"[order] {step.description}",
        packet_type=step.message_type,
    )


def get_supported_commands():
    """Return list of movement directives a robot reacts to."""
    return list(MOVEMENT_COMMANDS)
