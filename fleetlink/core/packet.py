"""Wire packet model and newline-delimited JSON codec.

A record on the wire is one line of compact JSON::

    {"header": {"packet_id", "type", "sender_id", "receiver_id",
                "timestamp", "log_text"}, "body": {...}}

Only `type`, `sender_id` and `receiver_id` are required to decode. Unknown
header keys and every body key are carried through untouched.
"""
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

from fleetlink.core.constants import BROADCAST_ID
from fleetlink.core.errors import DecodeError
from fleetlink.core.utils import dumps_compact, format_timestamp, new_packet_id


class PacketType(str, Enum):
    STATUS = "STATUS"
    LOCATION = "LOCATION"
    COMMAND = "COMMAND"
    ACK = "ACK"
    LOG = "LOG"
    EVENT = "EVENT"


class DeviceType(str, Enum):
    AGV = "AGV"
    AMR = "AMR"
    CELL = "CELL"


class DeviceMode(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


REQUIRED_HEADER_FIELDS = ("type", "sender_id", "receiver_id")
_KNOWN_HEADER_FIELDS = ("packet_id", "timestamp", "log_text") + REQUIRED_HEADER_FIELDS


@dataclass
class Packet:
    type: str                # a PacketType value, or anything a peer sent
    sender_id: str
    receiver_id: str         # device id or BROADCAST_ID
    body: Dict[str, Any] = field(default_factory=dict)
    log_text: str = ""
    packet_id: str = field(default_factory=new_packet_id)
    timestamp: str = field(default_factory=format_timestamp)
    # header keys this codec does not know about (forward compatibility)
    extra_header: Dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> Optional[PacketType]:
        """The PacketType for `type`, or None when the type is unrecognized."""
        try:
            return PacketType(self.type)
        except ValueError:
            return None

    def accepts(self, device_id: str) -> bool:
        return self.receiver_id == device_id or self.receiver_id == BROADCAST_ID

    def header(self) -> Dict[str, Any]:
        return {
            **self.extra_header,
            "packet_id": self.packet_id,
            "type": self.type,
            "sender_id": self.sender_id,
            "receiver_id": self.receiver_id,
            "timestamp": self.timestamp,
            "log_text": self.log_text,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {"header": self.header(), "body": self.body}


def encode_text(pkt: Packet) -> str:
    """One JSON record without the line terminator."""
    return dumps_compact(pkt.to_dict())


def encode(pkt: Packet) -> bytes:
    return (encode_text(pkt) + "\n").encode("utf-8")


def decode(data: Union[bytes, str]) -> Packet:
    if isinstance(data, (bytes, bytearray)):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"not utf-8: {e}") from e
    text = data.strip()
    if not text:
        raise DecodeError("empty record")
    try:
        root = json.loads(text)
    except ValueError as e:
        raise DecodeError(f"malformed json: {e}") from e
    if not isinstance(root, dict):
        raise DecodeError("record is not an object")
    header = root.get("header")
    if not isinstance(header, dict):
        raise DecodeError("missing header")
    missing = [k for k in REQUIRED_HEADER_FIELDS if not isinstance(header.get(k), str)]
    if missing:
        raise DecodeError(f"missing header fields: {', '.join(missing)}")
    body = root.get("body")
    if body is None:
        body = {}
    if not isinstance(body, dict):
        raise DecodeError("body is not an object")

    pkt = Packet(
        type=header["type"],
        sender_id=header["sender_id"],
        receiver_id=header["receiver_id"],
        body=body,
        log_text=str(header.get("log_text") or ""),
        extra_header={k: v for k, v in header.items() if k not in _KNOWN_HEADER_FIELDS},
    )
    # absent id/timestamp keep the freshly generated defaults
    if header.get("packet_id"):
        pkt.packet_id = str(header["packet_id"])
    if header.get("timestamp"):
        pkt.timestamp = str(header["timestamp"])
    return pkt


# --- constructors for the packets devices emit ---

def status_packet(sender: str, receiver: str, device_type, mode, is_occupied: bool = False,
                  log_text: str = None) -> Packet:
    """STATUS report. AGVs always carry `is_occupied`; other devices never do."""
    device_type = DeviceType(device_type)
    mode = DeviceMode(mode)
    body = {"device_type": device_type.value, "mode": mode.value}
    if device_type is DeviceType.AGV:
        body["is_occupied"] = bool(is_occupied)
    return Packet(
        type=PacketType.STATUS.value,
        sender_id=sender,
        receiver_id=receiver,
        body=body,
        log_text=log_text or f"[status] {sender} mode: {mode.value}",
    )


def location_packet(sender: str, receiver: str, waypoint: str, destination: str,
                    segment_index: int) -> Packet:
    body = {
        "location_status": "MOVING",
        "coordinates": {"last_qr_scanned": waypoint},
        "navigation": {"current_segment_index": segment_index, "final_dest": destination},
    }
    return Packet(
        type=PacketType.LOCATION.value,
        sender_id=sender,
        receiver_id=receiver,
        body=body,
        log_text=f"[moving] {sender} at {waypoint}",
    )


def ack_packet(sender: str, receiver: str, task_id: str, command: str = None,
               message: str = None) -> Packet:
    body = {"task_id": task_id, "status": "COMPLETED"}
    if command is not None:
        body["command"] = command
    if message is not None:
        body["message"] = message
    return Packet(
        type=PacketType.ACK.value,
        sender_id=sender,
        receiver_id=receiver,
        body=body,
        log_text=f"[done] {message or command or task_id}",
    )


def log_packet(sender: str, receiver: str, text: str) -> Packet:
    return Packet(
        type=PacketType.LOG.value,
        sender_id=sender,
        receiver_id=receiver,
        body={"message_text": text},
        log_text=text,
    )


def event_packet(sender: str, receiver: str, event: str, payload: dict = None,
                 log_text: str = None) -> Packet:
    body = {"event": event}
    if payload is not None:
        body["payload"] = payload
    return Packet(
        type=PacketType.EVENT.value,
        sender_id=sender,
        receiver_id=receiver,
        body=body,
        log_text=log_text or f"[event] {event}",
    )


def command_packet(sender: str, receiver: str, task_id: str, command: str,
                   payload: dict = None, log_text: str = "",
                   packet_type: str = PacketType.COMMAND.value) -> Packet:
    return Packet(
        type=packet_type,
        sender_id=sender,
        receiver_id=receiver,
        body={"task_id": task_id, "command": command, "payload": dict(payload or {})},
        log_text=log_text,
    )
