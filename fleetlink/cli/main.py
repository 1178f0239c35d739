import argparse
import logging
import time

from fleetlink.config.loader import DeviceConfig, load_config
from fleetlink.core.bridge import Bridge
from fleetlink.core.errors import ScenarioLoadError
from fleetlink.core.scenario import load_scenario
from fleetlink.devices.launcher import build_client, launch_devices
from fleetlink.routers.mqtt_router import MQTTRouter, NullBroadcast

LOG_FORMAT = "[%(asctime)s] %(levelname)-7s %(message)s"


def build_broadcast(cfg):
    if not cfg.monitor.enabled:
        return NullBroadcast()
    return MQTTRouter("monitor", cfg.monitor.model_dump())


def _wait_forever(on_stop):
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        on_stop()


def cmd_serve(args):
    cfg = load_config(args.config)
    if args.scenario:
        cfg.scenario.path = args.scenario
    if args.no_monitor:
        cfg.monitor.enabled = False
    bridge = Bridge(cfg, build_broadcast(cfg))
    bridge.start()
    _wait_forever(bridge.stop)
    return 0


def cmd_devices(args):
    cfg = load_config(args.config)
    clients = launch_devices(cfg, host=args.host, only=args.only or None)
    if not clients:
        logging.warning("no devices configured")
        return 1

    def stop():
        for c in clients:
            c.stop()
    _wait_forever(stop)
    return 0


def cmd_robot(args):
    dev = DeviceConfig(id=args.id, type=args.type, travel_interval=args.travel_interval,
                       arrival_delay=args.arrival_delay)
    client = build_client(dev, args.host, args.port, args.server_id)
    # run in the foreground; returns when the relay closes the connection
    try:
        client.run()
    except KeyboardInterrupt:
        client.stop()
    return 0


def cmd_check_scenario(args):
    try:
        steps = load_scenario(args.path, default_sender=args.server_id)
    except ScenarioLoadError as e:
        print(f"[ERROR] {e}")
        return 1
    for i, s in enumerate(steps):
        print(f"{i:3d} +{s.time_offset_ms:>7d}ms [{s.message_type:<8}] {s.sender_id} -> {s.receiver_id} "
              f"{s.command} : {s.description}")
    print(f"{len(steps)} steps OK")
    return 0


def build_parser():
    p = argparse.ArgumentParser("fleetlink")
    p.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, ...)")
    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("serve", help="Run the relay: TCP listener, scenario player, monitor")
    s.add_argument("--config", "-c", help="Path to YAML config")
    s.add_argument("--scenario", help="Scenario file (overrides config)")
    s.add_argument("--no-monitor", action="store_true", help="Do not mirror packets to MQTT")
    s.set_defaults(func=cmd_serve)

    d = sub.add_parser("devices", help="Launch the devices listed in the config")
    d.add_argument("--config", "-c", required=True, help="Path to YAML config")
    d.add_argument("--host", default="127.0.0.1", help="Relay host")
    d.add_argument("--only", nargs="*", help="Device ids to launch (default: all)")
    d.set_defaults(func=cmd_devices)

    r = sub.add_parser("robot", help="Run a single simulated robot")
    r.add_argument("--id", required=True)
    r.add_argument("--type", choices=["AGV", "AMR", "CELL"], default="AGV")
    r.add_argument("--host", default="127.0.0.1")
    r.add_argument("--port", type=int, default=9001)
    r.add_argument("--server-id", default="ACS_SERVER")
    r.add_argument("--travel-interval", type=float, default=2.0)
    r.add_argument("--arrival-delay", type=float, default=1.0)
    r.set_defaults(func=cmd_robot)

    c = sub.add_parser("check-scenario", help="Validate a scenario file and list its steps")
    c.add_argument("path")
    c.add_argument("--server-id", default="ACS_SERVER")
    c.set_defaults(func=cmd_check_scenario)
    return p


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.INFO),
                        format=LOG_FORMAT)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
