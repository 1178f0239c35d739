"""Per-connection inbound loop and packet delivery.

Every accepted connection gets one MessageRouter.serve() call on its own
thread. The first decodable packet binds the connection to its sender id;
the binding never changes afterwards and is dropped from the registry when
the connection ends.
"""
import logging
from typing import List, Optional

from fleetlink.core.constants import BROADCAST_ID
from fleetlink.core.errors import ChannelClosed, DecodeError, UndeliverableError
from fleetlink.core.packet import DeviceType, Packet, PacketType, decode, encode_text
from fleetlink.core.registry import ConnectionRegistry


class Session:
    """Connection-scoped state: the channel and the device id bound to it."""

    def __init__(self, channel):
        self.channel = channel
        self.device_id: Optional[str] = None
        self.packets = 0
        self.rejected = 0


def deliver(registry: ConnectionRegistry, pkt: Packet, text: str = None) -> List[str]:
    """Send a packet to its receiver, or to every device for BROADCAST_ID.

    Best effort: a failed send is logged and skipped. Returns the ids that
    were written to; raises UndeliverableError when there were none.
    """
    text = text if text is not None else encode_text(pkt)
    if pkt.receiver_id == BROADCAST_ID:
        targets = registry.sinks()
    else:
        sink = registry.lookup(pkt.receiver_id)
        targets = {pkt.receiver_id: sink} if sink is not None else {}
    if not targets:
        raise UndeliverableError(pkt.receiver_id)

    delivered = []
    for device_id, sink in targets.items():
        try:
            sink.send(text)
            delivered.append(device_id)
        except (ChannelClosed, OSError) as e:
            logging.warning(f"[router] send to {device_id} failed: {e}")
    if not delivered:
        raise UndeliverableError(pkt.receiver_id)
    return delivered


class MessageRouter:
    def __init__(self, registry: ConnectionRegistry, broadcast, server_id: str, on_change=None):
        self.registry = registry
        self.broadcast = broadcast
        self.server_id = server_id
        # called with no args when a device joins, leaves or reports STATUS
        self.on_change = on_change
        self._handlers = {
            PacketType.STATUS: self._on_status,
            PacketType.ACK: self._on_ack,
            PacketType.LOG: self._on_log,
            PacketType.LOCATION: self._on_location,
            PacketType.COMMAND: self._on_passthrough,
            PacketType.EVENT: self._on_passthrough,
        }

    # --- connection lifecycle ---
    def serve(self, channel) -> Session:
        """Run the inbound loop for one connection until it closes."""
        session = Session(channel)
        try:
            for line in channel.lines():
                self.handle_line(session, line)
        except ChannelClosed as e:
            logging.info(f"[router] connection {getattr(channel, 'peer', '?')} lost: {e}")
        finally:
            self.disconnect(session)
        return session

    def disconnect(self, session: Session):
        if session.device_id is None:
            return
        self.registry.remove(session.device_id)
        logging.info(f"[router] {session.device_id} disconnected")
        self._changed()

    def handle_line(self, session: Session, line: str) -> Optional[Packet]:
        try:
            pkt = decode(line)
        except DecodeError as e:
            session.rejected += 1
            logging.warning(f"[router] invalid packet from {session.device_id or getattr(session.channel, 'peer', '?')}: {e}")
            return None
        session.packets += 1

        self._mirror(line)

        if session.device_id is None:
            session.device_id = pkt.sender_id
            self.registry.register(pkt.sender_id, session.channel)
            logging.info(f"[router] {pkt.sender_id} connected ({getattr(session.channel, 'peer', '?')})")
            self._changed()

        logging.info(f"[router] [{pkt.type:<8}] {pkt.sender_id} -> {pkt.receiver_id} : {pkt.log_text}")
        handler = self._handlers.get(pkt.kind)
        if handler is None:
            logging.warning(f"[router] unknown packet type {pkt.type!r} from {pkt.sender_id}")
        else:
            handler(session, pkt)
        return pkt

    # --- dispatch ---
    def _on_status(self, session: Session, pkt: Packet):
        if pkt.sender_id != session.device_id:
            logging.warning(f"[router] STATUS for {pkt.sender_id} on connection bound to {session.device_id}; ignored")
            return
        device_type = pkt.body.get("device_type")
        mode = pkt.body.get("mode")
        is_occupied = pkt.body.get("is_occupied") if device_type == DeviceType.AGV.value else None
        if device_type not in [t.value for t in DeviceType]:
            logging.warning(f"[router] STATUS from {pkt.sender_id}: unknown device type {device_type!r}")
        self.registry.update_status(session.device_id, device_type=device_type, mode=mode,
                                    is_occupied=is_occupied)
        extra = f" occupied={is_occupied}" if is_occupied is not None else ""
        logging.info(f"[router]   status {pkt.sender_id} ({device_type}) mode={mode}{extra}")
        self._changed()

    def _on_ack(self, session: Session, pkt: Packet):
        task_id = pkt.body.get("task_id", "N/A")
        detail = pkt.body.get("command") or pkt.body.get("message") or "ACK"
        status = pkt.body.get("status", "?")
        logging.info(f"[router]   ack task {task_id} {status} ({detail}) from {pkt.sender_id}")

    def _on_log(self, session: Session, pkt: Packet):
        text = pkt.body.get("message_text") or pkt.log_text
        logging.info(f"[router]   log {pkt.sender_id}: {text}")

    def _on_location(self, session: Session, pkt: Packet):
        nav = pkt.body.get("navigation") or {}
        coords = pkt.body.get("coordinates") or {}
        logging.info(
            f"[router]   location {pkt.sender_id} qr={coords.get('last_qr_scanned')} "
            f"segment={nav.get('current_segment_index')} dest={nav.get('final_dest')}"
        )

    def _on_passthrough(self, session: Session, pkt: Packet):
        logging.debug(f"[router]   {pkt.type} from {pkt.sender_id} mirrored only")

    # --- helpers ---
    def _mirror(self, text: str):
        try:
            self.broadcast.publish(text)
        except Exception as e:
            logging.warning(f"[router] broadcast failed: {e}")

    def _changed(self):
        if self.on_change is None:
            return
        try:
            self.on_change()
        except Exception as e:
            logging.warning(f"[router] change hook failed: {e}")
