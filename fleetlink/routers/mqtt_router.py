import json, time, logging
import threading
import paho.mqtt.client as mqtt

from fleetlink.core.constants import DEVICES_TOPIC, MONITOR_TOPIC, MONITOR_TYPE_TOPIC, TOPIC_VERSION


class MQTTRouter:
    """Broadcast sink fanning every relayed packet out to MQTT observers.

    Publishing is fire-and-forget: while the broker is unreachable packets are
    dropped (and logged), never queued.
    """

    def __init__(self, name: str, cfg: dict):
        self.name = name
        self.cfg = cfg
        self.root = cfg.get("topic_prefix") or TOPIC_VERSION
        self.qos = int(cfg.get("qos", 0))
        self._client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=cfg.get("client_id", "fleetlink-relay"),
        )
        self._client.on_disconnect = self._on_disconnect
        self._client.on_connect = self._on_connect
        self._client.on_log = self._on_log
        self._lock = threading.Lock()
        self._run = False
        self._connected = False
        self._retry_backoff = 1.0  # seconds
        self._threads = []
        self.dropped = 0

    @property
    def connected(self) -> bool:
        return self._connected

    def start(self):
        self._run = True
        t = threading.Thread(target=self._connect_loop, daemon=True)
        t.start()
        self._threads.append(t)

    def _connect_loop(self):
        host = self.cfg["host"]
        port = int(self.cfg.get("port", 1883))
        while self._run:
            if self._connected:
                time.sleep(1.0)
                continue
            try:
                logging.info(f"[mqtt:{self.name}] attempting connect_async {host}:{port}")
                username = self.cfg.get("username")
                if username:
                    self._client.username_pw_set(username, self.cfg.get("password"))
                self._client.connect_async(host, port)
                # Start the network loop and wait for on_connect to set _connected
                self._client.loop_start()
                wait_for = 5.0
                start = time.time()
                while self._run and not self._connected and (time.time() - start) < wait_for:
                    time.sleep(0.1)
                if self._connected:
                    logging.info(f"[mqtt:{self.name}] connected (on_connect confirmed)")
                else:
                    logging.warning(f"[mqtt:{self.name}] connect not confirmed within {wait_for}s; will retry in {self._retry_backoff:.1f}s")
                    self._client.loop_stop()
                    time.sleep(self._retry_backoff)
            except (OSError, ValueError) as e:
                logging.warning(f"[mqtt:{self.name}] connect error: {e}; retry in {self._retry_backoff:.1f}s")
                time.sleep(self._retry_backoff)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if not reason_code.is_failure:
            logging.info(f"[mqtt:{self.name}] on_connect rc={reason_code} (success)")
            self._connected = True
        else:
            logging.warning(f"[mqtt:{self.name}] on_connect rc={reason_code}")

    def _on_log(self, client, userdata, level, buf):
        logging.debug(f"[mqtt:{self.name}] paho_log level={level} msg={buf}")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        if not self._run:
            return
        if reason_code.is_failure:
            logging.warning(f"[mqtt:{self.name}] unexpected disconnect rc={reason_code}; will retry")
        else:
            logging.info(f"[mqtt:{self.name}] clean disconnect")
        self._connected = False
        # hand reconnects back to _connect_loop
        self._client.loop_stop()

    def stop(self):
        self._run = False
        try:
            self._client.disconnect()
            self._client.loop_stop()
        except (OSError, ValueError) as e:
            logging.debug(f"[mqtt:{self.name}] stop: {e}")
        self._connected = False
        for thr in self._threads:
            thr.join(timeout=2.0)

    # --- broadcast sink ---
    def publish(self, raw_text: str):
        """Mirror one raw packet to the monitor topics."""
        if not self._publish(MONITOR_TOPIC.format(root=self.root), raw_text):
            return
        ptype = _packet_type(raw_text)
        if ptype:
            self._publish(MONITOR_TYPE_TOPIC.format(root=self.root, type=ptype), raw_text)

    def publish_devices(self, snapshot: dict):
        data = json.dumps({"devices": snapshot, "ts": time.time()}, separators=(",", ":"))
        self._publish(DEVICES_TOPIC.format(root=self.root), data, retain=True)

    def _publish(self, topic: str, data: str, retain: bool = False) -> bool:
        if not self._connected:
            # observable drop (not connected)
            self.dropped += 1
            logging.debug(f"[mqtt:{self.name}] drop publish (not connected) topic={topic}")
            return False
        with self._lock:
            self._client.publish(topic, data, qos=self.qos, retain=retain)
        return True


class NullBroadcast:
    """Broadcast sink used when monitoring is disabled."""

    def __init__(self):
        self.published = 0

    def start(self):
        logging.info("[monitor] disabled; packets are not mirrored")

    def stop(self):
        pass

    def publish(self, raw_text: str):
        self.published += 1

    def publish_devices(self, snapshot: dict):
        pass


def _packet_type(raw_text: str):
    try:
        header = json.loads(raw_text).get("header") or {}
    except (ValueError, AttributeError):
        return None
    ptype = header.get("type")
    # MQTT topic levels must not contain wildcards or separators
    if not isinstance(ptype, str) or not ptype or any(c in ptype for c in "/#+"):
        return None
    return ptype
