"""Timed scenario replay.

A scenario is a file of steps, each scheduled at a millisecond offset from
the moment replay starts. The player walks the steps strictly in file order
on its own thread; it waits until a step is due (never early, immediately if
already late), mirrors the step's packet to the broadcast sink, and hands it
to the addressed device when the step is sent by the server.
"""
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml

from fleetlink.core import command_mapper
from fleetlink.core.constants import DEFAULT_STEP_DESCRIPTION, DEFAULT_STARTUP_DELAY_SECS
from fleetlink.core.errors import ScenarioLoadError, UndeliverableError
from fleetlink.core.packet import PacketType, encode_text
from fleetlink.core.registry import ConnectionRegistry
from fleetlink.core.router import deliver


@dataclass(frozen=True)
class ScenarioStep:
    time_offset_ms: int
    sender_id: str
    receiver_id: str
    message_type: str
    command: str
    description: str = DEFAULT_STEP_DESCRIPTION
    task_id: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None


def _parse_step(idx: int, raw: Any, default_sender: str) -> ScenarioStep:
    if not isinstance(raw, dict):
        raise ScenarioLoadError(f"step {idx}: expected a mapping, got {type(raw).__name__}")
    try:
        offset = int(raw["time_offset_ms"])
    except KeyError:
        raise ScenarioLoadError(f"step {idx}: missing time_offset_ms")
    except (TypeError, ValueError):
        raise ScenarioLoadError(f"step {idx}: time_offset_ms must be an integer")
    receiver = raw.get("receiver_id") or raw.get("target_id")
    if not receiver:
        raise ScenarioLoadError(f"step {idx}: missing receiver_id/target_id")
    command = raw.get("command")
    if not command:
        raise ScenarioLoadError(f"step {idx}: missing command")
    payload = raw.get("payload")
    if payload is not None and not isinstance(payload, dict):
        raise ScenarioLoadError(f"step {idx}: payload must be a mapping")
    task_id = raw.get("task_id")
    return ScenarioStep(
        time_offset_ms=offset,
        sender_id=str(raw.get("sender_id") or default_sender),
        receiver_id=str(receiver),
        message_type=str(raw.get("message_type") or PacketType.COMMAND.value),
        command=str(command),
        description=str(raw.get("description") or DEFAULT_STEP_DESCRIPTION),
        task_id=str(task_id) if task_id else None,
        payload=payload,
    )


def load_scenario(path, default_sender: str) -> Tuple[ScenarioStep, ...]:
    """Read a scenario file into an immutable, file-ordered tuple of steps.

    `.yaml`/`.yml` files are parsed as YAML, everything else as JSON. The top
    level is either a list of steps or a mapping with a `steps` list.
    """
    path = Path(path)
    if not path.exists():
        raise ScenarioLoadError(f"scenario file not found: {path}")
    try:
        text = path.read_text(encoding="utf-8")
        if path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ScenarioLoadError(f"cannot parse scenario {path}: {e}") from e

    if isinstance(data, dict):
        data = data.get("steps")
    if not isinstance(data, list):
        raise ScenarioLoadError(f"scenario {path}: expected a list of steps")
    return tuple(_parse_step(i, raw, default_sender) for i, raw in enumerate(data))


def is_server_identity(sender_id: str, server_id: str) -> bool:
    return sender_id == server_id or "SERVER" in sender_id.upper()


class PlayerState(str, Enum):
    LOADED = "LOADED"
    WAITING = "WAITING"
    EXECUTED = "EXECUTED"
    DONE = "DONE"


@dataclass
class StepResult:
    index: int
    step: ScenarioStep
    executed_at_ms: float
    delivered_to: List[str] = field(default_factory=list)
    undeliverable: bool = False


class ScenarioPlayer:
    """Replays a scenario once; never loops, never restarts, never cancels."""

    def __init__(self, path, registry: ConnectionRegistry, broadcast, server_id: str,
                 startup_delay: float = DEFAULT_STARTUP_DELAY_SECS,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.path = path
        self.registry = registry
        self.broadcast = broadcast
        self.server_id = server_id
        self.startup_delay = float(startup_delay)
        self._clock = clock
        self._sleep = sleep
        self.state = PlayerState.LOADED
        self.current_index: Optional[int] = None
        self.steps: Tuple[ScenarioStep, ...] = ()
        self.results: List[StepResult] = []
        self.load_error: Optional[ScenarioLoadError] = None
        self._thread: Optional[threading.Thread] = None

    def start(self):
        self._thread = threading.Thread(target=self.run, name="scenario", daemon=True)
        self._thread.start()

    def join(self, timeout: float = None):
        if self._thread is not None:
            self._thread.join(timeout)

    def run(self):
        logging.info(f"[scenario] starting in {self.startup_delay:.1f}s (waiting for devices)")
        if self.startup_delay > 0:
            self._sleep(self.startup_delay)
        try:
            self.steps = load_scenario(self.path, default_sender=self.server_id)
        except ScenarioLoadError as e:
            self.load_error = e
            logging.error(f"[scenario] load failed, replay not started: {e}")
            return
        logging.info(f"[scenario] loaded {len(self.steps)} steps from {self.path}")
        self.play()

    def play(self):
        """Replay the loaded steps against the timeline starting now."""
        start = self._clock()
        for idx, step in enumerate(self.steps):
            self.current_index = idx
            self.state = PlayerState.WAITING
            elapsed_ms = (self._clock() - start) * 1000.0
            wait_ms = step.time_offset_ms - elapsed_ms
            if wait_ms > 0:
                self._sleep(wait_ms / 1000.0)
            result = self.execute(idx, step, (self._clock() - start) * 1000.0)
            self.results.append(result)
            self.state = PlayerState.EXECUTED
        self.state = PlayerState.DONE
        logging.info(f"[scenario] all {len(self.steps)} steps done")

    def execute(self, idx: int, step: ScenarioStep, at_ms: float = 0.0) -> StepResult:
        pkt = command_mapper.step_to_packet(step)
        text = encode_text(pkt)
        result = StepResult(index=idx, step=step, executed_at_ms=at_ms)
        logging.info(f"[scenario] [{step.message_type:<8}] {step.sender_id} -> {step.receiver_id} : {step.description}")

        try:
            self.broadcast.publish(text)
        except Exception as e:
            logging.warning(f"[scenario] broadcast failed: {e}")

        # Steps sent by a robot are expectations for the monitor, not traffic
        if not is_server_identity(step.sender_id, self.server_id):
            return result
        try:
            result.delivered_to = deliver(self.registry, pkt, text)
        except UndeliverableError as e:
            result.undeliverable = True
            logging.warning(f"[scenario] step {idx} undeliverable: {e}")
        return result
